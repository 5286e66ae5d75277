"""Unit tests for the FastMCP bridge, driven by an in-memory fastmcp Client."""

import pytest
from fastmcp import Client

from mcpp_client import server


@pytest.fixture
async def bridge(session, monkeypatch):
    """Bridge server using the test session."""
    monkeypatch.setattr(server, "_session", session)
    async with Client(server.mcp) as client:
        yield client


class TestBridgeTools:
    """Test the MCP tools exposed by the bridge."""

    @pytest.mark.asyncio
    async def test_tools_registered(self, bridge):
        names = {tool.name for tool in await bridge.list_tools()}
        assert names == {
            "list_server_tools",
            "call_server_tool",
            "resolve_text",
            "lookup_server",
            "get_reference",
            "provide_consent_decision",
        }

    @pytest.mark.asyncio
    async def test_call_and_resolve(self, bridge):
        called = await bridge.call_tool("call_server_tool", {"tool_call_id": "call_1", "tool_name": "get_contacts"})
        assert called.data["success"]
        assert called.data["server"] == "crm"

        resolved = await bridge.call_tool("resolve_text", {"text": "Hi {call_1.0.name}"})
        assert resolved.data["text"] == "Hi Alice"
        assert resolved.data["status"]["success_rate"] == 1.0

    @pytest.mark.asyncio
    async def test_lookup_unknown(self, bridge):
        result = await bridge.call_tool("lookup_server", {"tool_call_id": "call_404"})
        assert "error" in result.data

    @pytest.mark.asyncio
    async def test_provide_consent_decision_unknown(self, bridge):
        result = await bridge.call_tool("provide_consent_decision", {"request_id": "r404", "approved": True})
        assert result.data == {"request_id": "r404", "accepted": False}
