"""FastMCP server bridging an MCP host to MCPP servers."""

import asyncio
import logging
import signal
import sys
from typing import Annotated, Any

from fastmcp import FastMCP, Context
from pydantic import Field

from .config import Settings

settings = Settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

from .consent.elicitation import ElicitationConsentPresenter
from .errors import McppError, ToolCallNotFound
from .session import McppSession

mcp = FastMCP("mcpp-client")

_session: McppSession | None = None


def get_session() -> McppSession:
    """Get the process-wide session, creating it on first use."""
    global _session
    if _session is None:
        _session = McppSession(settings)
        logger.info(f"[Server] Session created for servers {_session.router.server_keys}")
    return _session


def _attach_presenter(session: McppSession, ctx: Context | None) -> None:
    if ctx is not None:
        session.consent.set_presenter(ElicitationConsentPresenter(ctx))


@mcp.tool(annotations={"title": "List MCPP tools", "readOnlyHint": True})
async def list_server_tools() -> dict[str, Any]:
    """List the tools offered by every configured MCPP server."""
    session = get_session()
    tools = await session.load_tools()
    return {
        "tools": [
            {
                "name": tool.name,
                "server": session.catalog.server_for(tool.name),
                "description": tool.description,
                "inputSchema": tool.input_schema,
                "isSensitive": tool.is_sensitive,
            }
            for tool in tools
        ]
    }


@mcp.tool(
    annotations={
        "title": "Call MCPP tool",
        "readOnlyHint": False,
        "openWorldHint": True,
    }
)
async def call_server_tool(
    tool_call_id: Annotated[str, Field(description="Unique id of this tool call")],
    tool_name: Annotated[str, Field(description="Name of the tool to call")],
    arguments: Annotated[dict[str, Any] | None, Field(
        default=None,
        description="Tool arguments; may contain placeholders"
    )] = None,
    ctx: Context | None = None,
) -> dict[str, Any]:
    """Call a tool on the MCPP server that offers it.
    Sensitive results come back with placeholders instead of values.
    """
    session = get_session()
    _attach_presenter(session, ctx)
    if not len(session.catalog):
        await session.load_tools()

    try:
        result = await session.call_tool(tool_call_id, tool_name, arguments or {})
    except McppError as e:
        logger.error(f"[Server] call_server_tool failed: {e}")
        return {"success": False, "error": str(e)}

    return {
        "success": not result.is_error,
        "tool_call_id": tool_call_id,
        "server": session.lookup_server(tool_call_id),
        "text": result.text,
    }


@mcp.tool(annotations={"title": "Resolve placeholders", "readOnlyHint": True})
async def resolve_text(
    text: Annotated[str, Field(description="Text containing {toolCallId.row.column} placeholders")],
    ctx: Context | None = None,
) -> dict[str, Any]:
    """Replace placeholders with their values for display to the user."""
    session = get_session()
    _attach_presenter(session, ctx)
    result = await session.resolve_text(text)
    return {
        "text": result.text,
        "status": result.status.to_dict(),
        "errors": {server or "unrouted": str(error) for server, error in result.errors.items()},
    }


@mcp.tool(annotations={"title": "Lookup server", "readOnlyHint": True})
async def lookup_server(
    tool_call_id: Annotated[str, Field(description="Id of a previous tool call")],
) -> dict[str, Any]:
    """Get the server that handled a tool call."""
    try:
        return {"tool_call_id": tool_call_id, "server": get_session().lookup_server(tool_call_id)}
    except ToolCallNotFound as e:
        return {"tool_call_id": tool_call_id, "error": str(e)}


@mcp.tool(annotations={"title": "Get reference", "readOnlyHint": True})
async def get_reference(
    tool_call_id: Annotated[str, Field(description="Id of the tool call holding the value")],
    keyword: Annotated[str, Field(description="Text identifying the value")],
    column_name: Annotated[str | None, Field(
        default=None,
        description="Column to search in"
    )] = None,
) -> dict[str, Any]:
    """Find the placeholder of a value in a previous tool result."""
    try:
        placeholder = await get_session().get_reference(tool_call_id, keyword, column_name)
    except McppError as e:
        return {"placeholder": None, "error": str(e)}
    return {"placeholder": placeholder}


@mcp.tool(annotations={"title": "Provide consent decision", "readOnlyHint": False})
async def provide_consent_decision(
    request_id: Annotated[str, Field(description="Consent request id")],
    approved: Annotated[bool, Field(description="Whether the user allows the data operation")],
    remember_choice: Annotated[bool, Field(
        default=False,
        description="Remember the approval for this session"
    )] = False,
) -> dict[str, Any]:
    """Post the user's answer to a pending consent request."""
    accepted = get_session().request_consent_decision(request_id, approved, remember_choice)
    return {"request_id": request_id, "accepted": accepted}


async def _graceful_shutdown(sig: signal.Signals) -> None:
    """Handle graceful shutdown on signal.

    Args:
        sig: Signal that triggered shutdown
    """
    logger.info(f"Received {sig.name}, initiating graceful shutdown...")

    if _session is not None:
        try:
            await _session.aclose()
        except Exception as e:
            logger.warning(f"Error during session cleanup: {e}")

    logger.info("Graceful shutdown complete")
    sys.exit(0)


def _setup_signal_handlers() -> None:
    """Setup signal handlers for graceful shutdown.

    The handler schedules the async shutdown task on the running event loop.
    """
    def _signal_handler(sig: int, frame: Any = None) -> None:
        signal_enum = signal.Signals(sig)
        logger.info(f"Received {signal_enum.name}, scheduling graceful shutdown...")

        try:
            loop = asyncio.get_running_loop()
            loop.create_task(_graceful_shutdown(signal_enum))
        except RuntimeError:
            logger.warning("No event loop running, cannot schedule graceful shutdown")
            sys.exit(1)

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            signal.signal(sig, _signal_handler)
            logger.debug(f"Registered signal handler for {sig.name}")
        except (ValueError, OSError) as e:
            logger.debug(f"Signal handler for {sig.name} not supported: {e}")


def main() -> None:
    """Main entry point for the MCPP client bridge."""
    logger.info("Starting MCPP client bridge...")
    logger.info(f"Settings: servers={sorted(settings.servers)}, "
                f"request_timeout={settings.request_timeout_seconds}s, "
                f"retries={settings.transport_retries}")

    _setup_signal_handlers()

    mcp.run(show_banner=False)


if __name__ == "__main__":
    main()
