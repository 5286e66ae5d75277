"""JSON-RPC transport to one MCPP server."""

import asyncio
import json
import logging
import uuid
from typing import Any

import httpx

from ..errors import McppErrorCode, ProtocolError, RpcError, TransportError
from ..models.tools import (
    ConsentAck,
    FetchedData,
    ReferenceResult,
    ResolveReply,
    ToolCallResult,
    ToolDefinition,
)
from ..models.usage import UsageContext
from ..placeholders import Placeholder, strip_server_prefixes_in

logger = logging.getLogger(__name__)

REQUEST_HEADERS = {
    "Accept": "application/json, text/event-stream",
    "Content-Type": "application/json",
}

DEFAULT_TIMEOUT = 30.0
DEFAULT_RETRIES = 1
RETRY_DELAY = 0.1  # seconds

METHOD_GET_REFERENCES = "mcpp/get_references"
METHOD_FIND_REFERENCE = "mcpp/find_reference"


def parse_rpc_response(body: str) -> dict[str, Any]:
    """Unwrap a JSON-RPC envelope from a plain JSON or event-stream body.

    Args:
        body: Raw HTTP response body

    Returns:
        Decoded JSON-RPC envelope

    Raises:
        ProtocolError: If no JSON object can be decoded

    Examples:
        >>> parse_rpc_response('event: message\\ndata: {"jsonrpc": "2.0", "id": "1", "result": {}}\\n')
        {'jsonrpc': '2.0', 'id': '1', 'result': {}}
    """
    payload = body.strip()
    for line in payload.splitlines():
        if line.startswith("data:"):
            payload = line[len("data:"):].strip()
            break

    try:
        envelope = json.loads(payload)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Invalid JSON in response: {e}") from e

    if not isinstance(envelope, dict):
        raise ProtocolError("JSON-RPC response is not an object")
    return envelope


class McppTransport:
    """Issues JSON-RPC requests to one server endpoint.

    Network failures and malformed envelopes are retried up to ``retries``
    times; JSON-RPC error objects are raised as RpcError and never retried.

    Attributes:
        server_key: Key of the server in the client configuration
        url: JSON-RPC endpoint URL
        timeout: Per-request timeout in seconds
        retries: Extra attempts after a transport failure
    """

    def __init__(
        self,
        server_key: str,
        url: str,
        timeout: float = DEFAULT_TIMEOUT,
        retries: int = DEFAULT_RETRIES,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize transport.

        Args:
            server_key: Key of the server in the client configuration
            url: JSON-RPC endpoint URL
            timeout: Per-request timeout in seconds
            retries: Extra attempts after a transport failure
            http_client: Optional preconfigured client (owned by the transport)
        """
        self.server_key = server_key
        self.url = url
        self.timeout = timeout
        self.retries = max(0, retries)
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._data_cache: dict[str, FetchedData] = {}

    async def aclose(self) -> None:
        await self._http.aclose()

    async def request(self, method: str, params: dict[str, Any]) -> Any:
        """Send one JSON-RPC request and return its result.

        Raises:
            RpcError: If the server answers with an error object
            TransportError: If the server cannot be reached or the reply is malformed
        """
        body = {
            "jsonrpc": "2.0",
            "id": f"req-{uuid.uuid4().hex}",
            "method": method,
            "params": params,
        }
        attempts = self.retries + 1

        for attempt in range(attempts):
            logger.debug(f"[Transport] {self.server_key} -> {method} (attempt {attempt + 1}/{attempts})")
            try:
                return await self._send(method, body)
            except TransportError as e:
                logger.warning(
                    f"[Transport] {method} to {self.server_key} failed (attempt {attempt + 1}/{attempts}): {e}"
                )
                if attempt == attempts - 1:
                    raise
                await asyncio.sleep(RETRY_DELAY * (2 ** attempt))

    async def _send(self, method: str, body: dict[str, Any]) -> Any:
        try:
            response = await self._http.post(self.url, json=body, headers=REQUEST_HEADERS)
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP request failed: {e}", server_key=self.server_key, method=method) from e

        try:
            envelope = parse_rpc_response(response.text)
        except ProtocolError:
            if response.status_code >= 400:
                raise TransportError(
                    f"HTTP {response.status_code}", server_key=self.server_key, method=method
                ) from None
            raise

        error = envelope.get("error")
        if error is not None:
            if not isinstance(error, dict):
                raise ProtocolError("Malformed JSON-RPC error object", server_key=self.server_key, method=method)
            code = error.get("code", McppErrorCode.INTERNAL_ERROR)
            if not isinstance(code, int) or isinstance(code, bool):
                raise ProtocolError(
                    f"Malformed JSON-RPC error code {code!r}", server_key=self.server_key, method=method
                )
            raise RpcError(
                int(code),
                str(error.get("message", "Unknown error")),
                data=error.get("data"),
                server_key=self.server_key,
                method=method,
            )

        if response.status_code >= 400:
            raise TransportError(f"HTTP {response.status_code}", server_key=self.server_key, method=method)

        if "result" not in envelope:
            raise ProtocolError("JSON-RPC response has neither result nor error", server_key=self.server_key, method=method)
        return envelope["result"]

    async def list_tools(self) -> list[ToolDefinition]:
        result = await self.request("tools/list", {})
        tools = result.get("tools", []) if isinstance(result, dict) else []
        return [ToolDefinition.from_dict(t) for t in tools if isinstance(t, dict) and "name" in t]

    async def call_tool(self, name: str, arguments: dict[str, Any], tool_call_id: str) -> ToolCallResult:
        """Call a tool; placeholder arguments are sent in model-facing form.

        Args:
            name: Tool name
            arguments: Tool arguments
            tool_call_id: Id the server stores the result under
        """
        processed = strip_server_prefixes_in(arguments)
        result = await self.request(
            "tools/call",
            {"name": name, "arguments": processed, "tool_call_id": tool_call_id},
        )
        return ToolCallResult.from_dict(result if isinstance(result, dict) else {})

    async def get_references(
        self,
        tool_call_id: str,
        keyword: str,
        column_name: str | None = None,
    ) -> ReferenceResult | None:
        """Find the placeholder of a value matching keyword.

        Falls back to the legacy method name on servers that do not know
        mcpp/get_references.

        Returns:
            ReferenceResult with the placeholder in wire form, or None if nothing matched
        """
        params: dict[str, Any] = {"tool_call_id": tool_call_id, "keyword": keyword}
        if column_name:
            params["column_name"] = column_name

        try:
            try:
                result = await self.request(METHOD_GET_REFERENCES, params)
            except RpcError as e:
                if e.code != McppErrorCode.METHOD_NOT_FOUND:
                    raise
                logger.info(f"[Transport] {self.server_key} lacks {METHOD_GET_REFERENCES}, using {METHOD_FIND_REFERENCE}")
                result = await self.request(METHOD_FIND_REFERENCE, params)
        except RpcError as e:
            if e.code == McppErrorCode.REFERENCE_NOT_FOUND:
                return None
            raise

        if not isinstance(result, dict) or not result.get("placeholder"):
            return None

        reference = ReferenceResult.from_dict(result)
        placeholder = Placeholder.parse(reference.placeholder)
        if placeholder is None:
            logger.warning(f"[Transport] {self.server_key} returned malformed placeholder {reference.placeholder!r}")
            return None
        return ReferenceResult(
            placeholder=placeholder.wire_form(self.server_key),
            column=reference.column,
            row_index=reference.row_index,
            confidence=reference.confidence,
        )

    async def get_data(self, tool_call_id: str) -> FetchedData:
        """Fetch the raw data of a tool call (cached per transport)."""
        if tool_call_id in self._data_cache:
            return self._data_cache[tool_call_id]

        result = await self.request("mcpp/get_data", {"tool_call_id": tool_call_id})
        if not isinstance(result, dict):
            raise ProtocolError("Malformed mcpp/get_data result", server_key=self.server_key, method="mcpp/get_data")
        data = FetchedData.from_dict(result)
        self._data_cache[tool_call_id] = data
        return data

    async def resolve_placeholders(
        self,
        data: Any,
        usage_context: UsageContext | None = None,
        tool_name: str | None = None,
    ) -> ResolveReply:
        """Resolve placeholders inside data (string, mapping or list)."""
        params: dict[str, Any] = {"data": data}
        if usage_context is not None:
            params["usage_context"] = usage_context.to_dict()
        if tool_name:
            params["tool_name"] = tool_name

        result = await self.request("mcpp/resolve_placeholders", params)
        if not isinstance(result, dict):
            raise ProtocolError(
                "Malformed mcpp/resolve_placeholders result",
                server_key=self.server_key,
                method="mcpp/resolve_placeholders",
            )
        return ResolveReply.from_dict(result)

    async def provide_consent(
        self,
        request_id: str,
        approved: bool,
        remember_choice: bool | None = None,
        duration_minutes: int | None = None,
    ) -> ConsentAck:
        params: dict[str, Any] = {"request_id": request_id, "approved": approved}
        if remember_choice is not None:
            params["remember_choice"] = remember_choice
        if duration_minutes is not None:
            params["duration_minutes"] = duration_minutes

        result = await self.request("mcpp/provide_consent", params)
        return ConsentAck.from_dict(result if isinstance(result, dict) else {})

    def clear_cache(self) -> None:
        self._data_cache.clear()
