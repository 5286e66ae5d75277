"""Session-level orchestrator for one conversation."""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .access import AccessControlFacade
from .config import Settings
from .consent.coordinator import ConsentCoordinator, ConsentPresenter
from .errors import AccessDenied, ConsentDenied, McppError, ToolCallNotFound
from .models.actions import (
    AccessDeniedMessage,
    ConsentResponse,
    DirectMessage,
    DisplayData,
    McppAction,
    PlaceholderMessage,
    ReferenceRequest,
    parse_action,
)
from .models.resolution import ResolutionResult
from .models.tools import FetchedData, ToolCallResult, ToolDefinition
from .models.usage import DataUsage, TargetType, UsageContext
from .placeholders import Placeholder, extract, is_placeholder, substitute, to_model_form
from .resolution.engine import ResolutionEngine
from .routing.catalog import ToolCatalog
from .routing.ledger import ToolCallLedger
from .routing.router import ServerRouter, TransportFactory

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_MESSAGE = "Unable to display the requested information."
CONSENT_WITHHELD_MESSAGE = "The requested data was withheld because consent was not given."


class OutcomeKind(Enum):
    """What the UI should do with an action outcome."""

    MESSAGE = "message"
    DATA = "data"
    MODEL_NOTE = "model_note"
    CONSENT_PROMPT = "consent_prompt"
    FALLBACK = "fallback"
    CONSENT_WITHHELD = "consent_withheld"
    ACCESS_DENIED = "access_denied"
    ERROR = "error"


@dataclass
class ActionOutcome:
    """Result of handling one model action.

    Attributes:
        kind: How the outcome should be presented
        text: Text for the user, or for the model when kind is MODEL_NOTE
        data: Structured payload (fetched data, placeholder, request id)
        detail: Why data was withheld, for fallback outcomes
        resolution: Resolution details for placeholder messages
    """

    kind: OutcomeKind
    text: str
    data: Any = None
    detail: str | None = None
    resolution: ResolutionResult | None = None


class McppSession:
    """Owns the routing, resolution and consent state of one conversation.

    Entry points used by the UI and model collaborators are record_tool_call,
    lookup_server, resolve_text and request_consent_decision; the remaining
    methods drive tool calls and model actions end to end.

    Attributes:
        settings: Application settings
        ledger: Tool call ownership records
        catalog: Tools offered by the configured servers
        router: Transport per server key
        access: Usage context builder and error classifier
        consent: Consent state machine
        engine: Placeholder resolution engine
    """

    def __init__(
        self,
        settings: Settings | None = None,
        presenter: ConsentPresenter | None = None,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        """Initialize session.

        Args:
            settings: Application settings (servers, identity, timeouts)
            presenter: Optional callback showing consent prompts to the user
            transport_factory: Optional factory replacing transport construction
        """
        self.settings = settings or Settings()
        self.ledger = ToolCallLedger()
        self.catalog = ToolCatalog()
        self.router = ServerRouter(self.settings.servers, self.settings, transport_factory)
        self.access = AccessControlFacade(self.settings.host_id)
        self.consent = ConsentCoordinator(
            presenter=presenter,
            remember_minutes=self.settings.remember_consent_minutes,
        )
        self.engine = ResolutionEngine(self.ledger, self.router, self.consent, self.access)

    # -- entry points ---------------------------------------------------------

    def record_tool_call(self, tool_call_id: str, server_key: str, tool_name: str, is_sensitive: bool = False) -> None:
        self.ledger.record(tool_call_id, server_key, tool_name, is_sensitive)

    def lookup_server(self, tool_call_id: str) -> str:
        return self.ledger.lookup_server(tool_call_id)

    async def resolve_text(
        self,
        text: str,
        usage_context: UsageContext | None = None,
        routing: dict[str, str] | None = None,
    ) -> ResolutionResult:
        return await self.engine.resolve_text(text, usage_context, routing)

    def request_consent_decision(self, request_id: str, approved: bool, remember_choice: bool = False) -> bool:
        """Post the user's answer to a pending consent request."""
        return self.consent.submit_decision(request_id, approved, remember_choice)

    # -- tools ----------------------------------------------------------------

    async def load_tools(self) -> list[ToolDefinition]:
        """Load tools from every configured server concurrently.

        Servers that fail are logged and skipped.
        """
        server_keys = self.router.server_keys
        results = await asyncio.gather(
            *(self.router.client_for(key).list_tools() for key in server_keys),
            return_exceptions=True,
        )

        for server_key, result in zip(server_keys, results):
            if isinstance(result, McppError):
                logger.error(f"[Session] Error listing tools from {server_key}: {result}")
                continue
            if isinstance(result, BaseException):
                raise result
            self.catalog.register(server_key, result)
            logger.info(f"[Session] Loaded {len(result)} tools from {server_key}")

        logger.info(f"[Session] Tools loaded: {len(self.catalog)} tools from {len(server_keys)} servers")
        return self.catalog.tools()

    async def call_tool(self, tool_call_id: str, tool_name: str, arguments: dict[str, Any]) -> ToolCallResult:
        """Dispatch a tool call requested by the model.

        Placeholders owned by another server are resolved here and their values
        passed to the tool; placeholders owned by the tool's server are sent in
        model-facing form for the server to resolve itself.

        Raises:
            DuplicateToolCallId: If the id was already used for another call
            McppError: On transport or server failures
        """
        server_key = self.router.resolve_key(self.catalog.server_for(tool_name))
        arguments = await self._resolve_foreign_arguments(arguments, server_key, tool_name)

        is_sensitive = self.catalog.is_sensitive(tool_name)
        self.ledger.record(tool_call_id, server_key, tool_name, is_sensitive)

        logger.info(f"[Session] Calling {tool_name} on {server_key} ({tool_call_id})")
        return await self.router.client_for(server_key).call_tool(tool_name, arguments, tool_call_id)

    async def get_reference(self, tool_call_id: str, keyword: str, column_name: str | None = None) -> str | None:
        """Find the placeholder of a value, in model-facing form.

        Raises:
            ToolCallNotFound: If the tool call id is unknown
        """
        server_key = self.ledger.lookup_server(tool_call_id)
        reference = await self.router.client_for(server_key).get_references(tool_call_id, keyword, column_name)
        if reference is None:
            return None
        return to_model_form(reference.placeholder)

    async def get_data(self, tool_call_id: str) -> FetchedData:
        """Fetch the raw result of a tool call from its server.

        Raises:
            ToolCallNotFound: If the tool call id is unknown
        """
        server_key = self.ledger.lookup_server(tool_call_id)
        return await self.router.client_for(server_key).get_data(tool_call_id)

    # -- model actions --------------------------------------------------------

    async def handle_model_output(self, content: str) -> ActionOutcome:
        """Handle raw model output; anything that is not an action is shown as-is."""
        action = parse_action(content)
        if action is None:
            return ActionOutcome(OutcomeKind.MESSAGE, content)
        return await self.handle_action(action)

    async def handle_action(self, action: McppAction) -> ActionOutcome:
        if isinstance(action, DirectMessage):
            return ActionOutcome(OutcomeKind.MESSAGE, action.message)
        if isinstance(action, PlaceholderMessage):
            return await self._handle_placeholder_message(action)
        if isinstance(action, ReferenceRequest):
            return await self._handle_reference_request(action)
        if isinstance(action, DisplayData):
            return await self._handle_display_data(action)
        if isinstance(action, ConsentResponse):
            return self._handle_consent_response(action)
        if isinstance(action, AccessDeniedMessage):
            return self._handle_access_denied_message(action)
        raise TypeError(f"Unsupported action: {action!r}")

    async def _handle_placeholder_message(self, action: PlaceholderMessage) -> ActionOutcome:
        fallback = action.fallback_message or DEFAULT_FALLBACK_MESSAGE
        result = await self.resolve_text(action.message, action.usage_context)

        if not result.nothing_resolved:
            return ActionOutcome(OutcomeKind.MESSAGE, result.text, resolution=result)

        if result.consent_withheld:
            return ActionOutcome(
                OutcomeKind.CONSENT_WITHHELD, fallback, detail=CONSENT_WITHHELD_MESSAGE, resolution=result
            )
        if result.access_denied:
            reasons = "; ".join(str(e) for e in result.errors.values() if isinstance(e, AccessDenied))
            return ActionOutcome(OutcomeKind.ACCESS_DENIED, fallback, detail=reasons, resolution=result)
        return ActionOutcome(OutcomeKind.FALLBACK, fallback, resolution=result)

    async def _handle_reference_request(self, action: ReferenceRequest) -> ActionOutcome:
        try:
            placeholder = await self.get_reference(action.tool_call_id, action.keyword, action.column_name)
        except ToolCallNotFound:
            return ActionOutcome(
                OutcomeKind.MODEL_NOTE,
                f"Error: The tool_call_id '{action.tool_call_id}' is not recognized. "
                "Please use a valid tool_call_id from a previous tool call.",
            )
        except McppError as e:
            logger.error(f"[Session] Error getting reference: {e}")
            return ActionOutcome(OutcomeKind.MODEL_NOTE, f"Error getting reference: {e}")

        column = f' in column "{action.column_name}"' if action.column_name else ""
        if placeholder is None:
            return ActionOutcome(
                OutcomeKind.MODEL_NOTE,
                f'No reference found for keyword "{action.keyword}"{column} of tool call {action.tool_call_id}.',
            )
        return ActionOutcome(
            OutcomeKind.MODEL_NOTE,
            f'Reference found for keyword "{action.keyword}"{column}: {placeholder}',
            data=placeholder,
        )

    async def _handle_display_data(self, action: DisplayData) -> ActionOutcome:
        try:
            server_key = self.ledger.lookup_server(action.tool_call_id)
            fetched = await self.get_data(action.tool_call_id)
            if action.usage_context is None:
                return ActionOutcome(OutcomeKind.DATA, action.message, data=fetched.to_dict())

            resolved = await self.engine.resolve_data(server_key, fetched.to_dict(), action.usage_context)
            return ActionOutcome(OutcomeKind.DATA, action.message, data=resolved)
        except ConsentDenied as e:
            return ActionOutcome(OutcomeKind.CONSENT_WITHHELD, action.message, detail=f"{CONSENT_WITHHELD_MESSAGE} ({e})")
        except AccessDenied as e:
            return ActionOutcome(OutcomeKind.ACCESS_DENIED, action.message, detail=str(e))
        except McppError as e:
            logger.error(f"[Session] Error displaying data for {action.tool_call_id}: {e}")
            return ActionOutcome(OutcomeKind.ERROR, f"Error displaying data: {e}")

    def _handle_consent_response(self, action: ConsentResponse) -> ActionOutcome:
        text = (
            f"{action.message}\n\n"
            f"**Consent Required**\n\n"
            f"{action.data_summary} will be sent to {action.destination}.\n\n"
            f"**Purpose**: {action.purpose}\n\n"
            f"Do you want to allow this data transfer?"
        )
        return ActionOutcome(OutcomeKind.CONSENT_PROMPT, text, data=action.request_id)

    def _handle_access_denied_message(self, action: AccessDeniedMessage) -> ActionOutcome:
        text = action.message
        if action.alternative_suggestions:
            text += "\n\n**Alternative options:**\n"
            text += "".join(f"{i}. {s}\n" for i, s in enumerate(action.alternative_suggestions, start=1))
        if action.reason or action.error_code:
            text += f"\n\n*Technical details: {action.reason} (Error: {action.error_code})*"
        return ActionOutcome(OutcomeKind.ACCESS_DENIED, text)

    # -- arguments ------------------------------------------------------------

    async def _resolve_foreign_arguments(
        self,
        arguments: dict[str, Any],
        server_key: str,
        tool_name: str,
    ) -> dict[str, Any]:
        foreign: dict[str, Placeholder] = {}
        for value in _iter_strings(arguments):
            for placeholder in extract(value):
                owner = self.engine.owner_of(placeholder)
                if owner is not None and owner != server_key:
                    foreign.setdefault(placeholder.token, placeholder)

        if not foreign:
            return arguments

        usage_context = self.access.build_usage_context(
            DataUsage.TRANSFER,
            TargetType.SERVER,
            server_key,
            purpose=f"Argument for tool {tool_name}",
        )
        values, errors = await self.engine.resolve_values(foreign.values(), usage_context, tool_name=tool_name)
        for failed_server, error in errors.items():
            logger.warning(f"[Session] Arguments for {tool_name} keep placeholders from {failed_server}: {error}")

        return _replace_strings(arguments, values)

    # -- lifecycle ------------------------------------------------------------

    def reset(self) -> None:
        """Forget tool calls and fetched data of the cleared chat."""
        self.ledger.reset()
        self.router.clear_data_caches()

    async def aclose(self) -> None:
        self.consent.deny_all()
        self.consent.cache.clear()
        await self.router.aclose()


def _iter_strings(value: Any):
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from _iter_strings(item)
    elif isinstance(value, list):
        for item in value:
            yield from _iter_strings(item)


def _replace_strings(value: Any, values: dict[str, Any]) -> Any:
    """Substitute resolved placeholders; a string that is a single placeholder takes the raw value."""
    if isinstance(value, str):
        if is_placeholder(value):
            placeholder = Placeholder.parse(value)
            if placeholder is not None and placeholder.token in values:
                return values[placeholder.token]
        return substitute(value, values)
    if isinstance(value, dict):
        return {key: _replace_strings(item, values) for key, item in value.items()}
    if isinstance(value, list):
        return [_replace_strings(item, values) for item in value]
    return value
