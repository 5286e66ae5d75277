"""Unit tests for the JSON-RPC transport.

HTTP is answered in-process by httpx.MockTransport.
"""

import json

import httpx
import pytest

from mcpp_client.access import AccessControlFacade
from mcpp_client.errors import ProtocolError, RpcError, TransportError
from mcpp_client.models.usage import DataUsage, TargetType
from mcpp_client.transport import client as transport_module
from mcpp_client.transport.client import McppTransport, parse_rpc_response

from conftest import FakeMcppServer, rpc_result


def make_transport(handler, retries: int = 0) -> McppTransport:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return McppTransport("crm", "http://crm.test/mcp", retries=retries, http_client=http_client)


@pytest.fixture(autouse=True)
def no_retry_delay(monkeypatch):
    monkeypatch.setattr(transport_module, "RETRY_DELAY", 0)


class TestParseRpcResponse:
    """Test parse_rpc_response."""

    def test_plain_json(self):
        assert parse_rpc_response('{"jsonrpc": "2.0", "id": "1", "result": 1}')["result"] == 1

    def test_event_stream(self):
        """The first data: line of an event stream carries the envelope."""
        body = 'event: message\ndata: {"jsonrpc": "2.0", "id": "1", "result": {"ok": true}}\n\n'
        assert parse_rpc_response(body)["result"] == {"ok": True}

    def test_invalid_json(self):
        with pytest.raises(ProtocolError):
            parse_rpc_response("data: not json")

    def test_not_an_object(self):
        with pytest.raises(ProtocolError):
            parse_rpc_response("[1, 2]")


class TestRequest:
    """Test McppTransport.request."""

    @pytest.mark.asyncio
    async def test_envelope(self):
        """Requests are JSON-RPC 2.0 with a fresh id."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            seen.append(body)
            return rpc_result(body["id"], {"ok": True})

        transport = make_transport(handler)
        assert await transport.request("tools/list", {}) == {"ok": True}
        assert await transport.request("tools/list", {}) == {"ok": True}
        await transport.aclose()

        assert seen[0]["jsonrpc"] == "2.0"
        assert seen[0]["method"] == "tools/list"
        assert seen[0]["id"] != seen[1]["id"]

    @pytest.mark.asyncio
    async def test_event_stream_response(self):
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            text = f"event: message\ndata: {json.dumps({'jsonrpc': '2.0', 'id': body['id'], 'result': 7})}\n\n"
            return httpx.Response(200, text=text, headers={"content-type": "text/event-stream"})

        transport = make_transport(handler)
        assert await transport.request("x", {}) == 7
        await transport.aclose()

    @pytest.mark.asyncio
    async def test_rpc_error_not_retried(self):
        """JSON-RPC errors are answers, not transport failures."""
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            body = json.loads(request.content)
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": {
                "code": -32005, "message": "Insufficient permissions", "data": {"why": "policy"},
            }})

        transport = make_transport(handler, retries=3)
        with pytest.raises(RpcError) as exc_info:
            await transport.request("mcpp/resolve_placeholders", {})
        await transport.aclose()

        assert len(attempts) == 1
        assert exc_info.value.code == -32005
        assert exc_info.value.data == {"why": "policy"}
        assert exc_info.value.server_key == "crm"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", ["oops", None, 1.5, True])
    async def test_malformed_error_code(self, code):
        """An error object without an integer code is a protocol error."""

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": code, "message": "bad"}})

        transport = make_transport(handler)
        with pytest.raises(ProtocolError):
            await transport.request("mcpp/resolve_placeholders", {})
        await transport.aclose()

    @pytest.mark.asyncio
    async def test_http_error_retried(self):
        """A failed attempt is retried and the next answer wins."""
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            if len(attempts) == 1:
                return httpx.Response(503, text="")
            return rpc_result(json.loads(request.content)["id"], "ok")

        transport = make_transport(handler, retries=1)
        assert await transport.request("x", {}) == "ok"
        await transport.aclose()
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_connection_error_exhausts_retries(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            raise httpx.ConnectError("connection refused")

        transport = make_transport(handler, retries=2)
        with pytest.raises(TransportError):
            await transport.request("x", {})
        await transport.aclose()
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_missing_result(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": "1"})

        transport = make_transport(handler)
        with pytest.raises(ProtocolError):
            await transport.request("x", {})
        await transport.aclose()


class TestMcppMethods:
    """Test the MCPP method wrappers against a fake server."""

    @pytest.fixture
    async def transport(self, crm: FakeMcppServer):
        transport = make_transport(crm.handle)
        yield transport
        await transport.aclose()

    @pytest.mark.asyncio
    async def test_list_tools(self, transport, crm):
        tools = await transport.list_tools()
        assert [t.name for t in tools] == ["get_contacts"]
        assert tools[0].is_sensitive
        assert tools[0].input_schema == {"type": "object", "properties": {}}

    @pytest.mark.asyncio
    async def test_call_tool_strips_prefixes(self, transport, crm):
        """Servers only ever see model-facing placeholders."""
        result = await transport.call_tool("get_contacts", {"q": "{crm:call_1.0.name}", "limit": 5}, "call_2")
        params = crm.calls("tools/call")[0]
        assert params == {"name": "get_contacts", "arguments": {"q": "{call_1.0.name}", "limit": 5}, "tool_call_id": "call_2"}
        assert result.text == "get_contacts done on crm"

    @pytest.mark.asyncio
    async def test_call_tool_strips_nested_prefixes(self, transport, crm):
        arguments = {"filter": {"to": "{crm:call_1.0.email}"}, "cc": ["{crm:call_1.1.email}"]}
        await transport.call_tool("get_contacts", arguments, "call_2")
        assert crm.calls("tools/call")[0]["arguments"] == {
            "filter": {"to": "{call_1.0.email}"},
            "cc": ["{call_1.1.email}"],
        }

    @pytest.mark.asyncio
    async def test_get_references_wire_form(self, transport, crm):
        crm.references["Alice"] = "{call_1.0.email}"
        reference = await transport.get_references("call_1", "Alice", "email")
        assert reference.placeholder == "{crm:call_1.0.email}"
        assert reference.column == "email"
        assert crm.calls("mcpp/get_references")[0] == {"tool_call_id": "call_1", "keyword": "Alice", "column_name": "email"}

    @pytest.mark.asyncio
    async def test_get_references_not_found(self, transport, crm):
        assert await transport.get_references("call_1", "Nobody") is None

    @pytest.mark.asyncio
    async def test_get_references_legacy_method(self, transport, crm):
        """Servers without mcpp/get_references are asked with the legacy name."""
        crm.errors["mcpp/get_references"] = {"code": -32601, "message": "Method not found"}
        crm.references["Alice"] = "{call_1.0.email}"
        reference = await transport.get_references("call_1", "Alice")
        assert reference.placeholder == "{crm:call_1.0.email}"
        assert len(crm.calls("mcpp/find_reference")) == 1

    @pytest.mark.asyncio
    async def test_get_data_cached(self, transport, crm):
        crm.data["call_1"] = {"type": "table", "payload": {"headers": ["name"], "rows": [["Alice"]]}}
        first = await transport.get_data("call_1")
        second = await transport.get_data("call_1")
        assert first is second
        assert first.is_table
        assert len(crm.calls("mcpp/get_data")) == 1

        transport.clear_cache()
        await transport.get_data("call_1")
        assert len(crm.calls("mcpp/get_data")) == 2

    @pytest.mark.asyncio
    async def test_get_data_missing(self, transport):
        with pytest.raises(RpcError) as exc_info:
            await transport.get_data("call_404")
        assert exc_info.value.code == -32004

    @pytest.mark.asyncio
    async def test_resolve_placeholders_sends_usage_context(self, transport, crm):
        usage_context = AccessControlFacade("host", "s1").build_usage_context(
            DataUsage.DISPLAY, TargetType.CLIENT, "user_interface"
        )
        reply = await transport.resolve_placeholders({"p0": "{call_1.0.name}"}, usage_context, "get_contacts")
        assert reply.resolved_data == {"p0": "Alice"}

        params = crm.calls("mcpp/resolve_placeholders")[0]
        assert params["usage_context"]["data_usage"] == "display"
        assert params["usage_context"]["requester"]["session_id"] == "s1"
        assert params["tool_name"] == "get_contacts"

    @pytest.mark.asyncio
    async def test_provide_consent(self, transport, crm):
        ack = await transport.provide_consent("r1", True, remember_choice=True, duration_minutes=30)
        assert ack.consent_recorded
        assert crm.calls("mcpp/provide_consent")[0] == {
            "request_id": "r1", "approved": True, "remember_choice": True, "duration_minutes": 30,
        }

    @pytest.mark.asyncio
    async def test_provide_consent_minimal(self, transport, crm):
        await transport.provide_consent("r1", False)
        assert crm.calls("mcpp/provide_consent")[0] == {"request_id": "r1", "approved": False}
