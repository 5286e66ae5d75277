"""Pytest fixtures for unit tests.

Provides:
- FakeMcppServer: in-memory MCPP server answering JSON-RPC over httpx.MockTransport
- crm / mail: two fake servers with tools and sensitive values
- settings: Settings pointing at the fake servers
- session / session_factory: McppSession wired to the fake servers
- StubPresenter: consent presenter returning a fixed decision

No network access! Every HTTP request is answered in-process.
"""

import asyncio
import json
import logging
from typing import Any

import httpx
import pytest

from mcpp_client.config import ServerConfig, Settings
from mcpp_client.models.interactions import ConsentDecision, ConsentPrompt
from mcpp_client.placeholders import PLACEHOLDER_PATTERN, Placeholder
from mcpp_client.session import McppSession
from mcpp_client.transport.client import McppTransport

logger = logging.getLogger(__name__)


# =============================================================================
# FAKE SERVER
# =============================================================================

class RpcFailure(Exception):
    """Raised by fake handlers to answer with a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


def rpc_result(request_id: Any, result: Any) -> httpx.Response:
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": request_id, "result": result})


def rpc_error(request_id: Any, code: int, message: str, data: Any = None) -> httpx.Response:
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": request_id, "error": error})


class FakeMcppServer:
    """In-memory MCPP server.

    Attributes:
        key: Server key the server is configured under
        values: Sensitive values keyed by placeholder body ("call_1.0.email")
        tools: Tool definitions returned by tools/list
        data: mcpp/get_data results keyed by tool call id
        references: Placeholders returned by mcpp/get_references keyed by keyword
        errors: Forced JSON-RPC errors keyed by method
        delay: Seconds to wait before answering
        requests: Every (method, params) pair received, in order
    """

    def __init__(
        self,
        key: str,
        values: dict[str, Any] | None = None,
        tools: list[dict[str, Any]] | None = None,
    ) -> None:
        self.key = key
        self.values = dict(values or {})
        self.tools = list(tools or [])
        self.data: dict[str, dict[str, Any]] = {}
        self.references: dict[str, str] = {}
        self.errors: dict[str, dict[str, Any]] = {}
        self.delay = 0.0
        self.requests: list[tuple[str, dict[str, Any]]] = []
        self.consent_template: dict[str, Any] | None = None
        self.consented = False
        self._consent_counter = 0

    def require_consent(self, **fields: Any) -> None:
        """Answer resolution requests with -32007 until consent is given."""
        self.consent_template = {"message": f"{self.key} wants to share data", **fields}
        self.consented = False

    def calls(self, method: str) -> list[dict[str, Any]]:
        return [params for m, params in self.requests if m == method]

    async def handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        method = body["method"]
        params = body.get("params") or {}
        self.requests.append((method, params))

        if self.delay:
            await asyncio.sleep(self.delay)

        if method in self.errors:
            error = self.errors[method]
            return rpc_error(body["id"], error["code"], error["message"], error.get("data"))

        handler = getattr(self, "_" + method.replace("/", "_"), None)
        if handler is None:
            return rpc_error(body["id"], -32601, f"Method not found: {method}")

        try:
            return rpc_result(body["id"], handler(params))
        except RpcFailure as e:
            return rpc_error(body["id"], e.code, e.message, e.data)

    # -- methods --------------------------------------------------------------

    def _tools_list(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"tools": self.tools}

    def _tools_call(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"content": [{"type": "text", "text": f"{params['name']} done on {self.key}"}]}

    def _mcpp_get_references(self, params: dict[str, Any]) -> dict[str, Any]:
        placeholder = self.references.get(params["keyword"])
        if placeholder is None:
            raise RpcFailure(-32002, "Reference not found")
        return {"placeholder": placeholder, "match_details": {"column": "email", "row_index": 0, "confidence": 1.0}}

    def _mcpp_find_reference(self, params: dict[str, Any]) -> dict[str, Any]:
        return self._mcpp_get_references(params)

    def _mcpp_get_data(self, params: dict[str, Any]) -> dict[str, Any]:
        data = self.data.get(params["tool_call_id"])
        if data is None:
            raise RpcFailure(-32004, "Data not found")
        return data

    def _mcpp_resolve_placeholders(self, params: dict[str, Any]) -> dict[str, Any]:
        if self.consent_template is not None and not self.consented:
            self._consent_counter += 1
            consent_request = {"request_id": f"consent-{self.key}-{self._consent_counter}", **self.consent_template}
            raise RpcFailure(-32007, "Consent required", {"consent_request": consent_request})
        return {"resolved_data": self._resolve(params["data"])}

    def _mcpp_provide_consent(self, params: dict[str, Any]) -> dict[str, Any]:
        if params["approved"]:
            self.consented = True
        return {"consent_recorded": True}

    def _resolve(self, value: Any) -> Any:
        if isinstance(value, str):
            def replace(match):
                body = Placeholder._from_match(match).body
                return str(self.values[body]) if body in self.values else match.group(0)
            return PLACEHOLDER_PATTERN.sub(replace, value)
        if isinstance(value, dict):
            return {k: self._resolve(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self._resolve(v) for v in value]
        return value


def make_transport_factory(fake_servers: dict[str, FakeMcppServer]):
    def factory(server_key: str, config: ServerConfig) -> McppTransport:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake_servers[server_key].handle))
        return McppTransport(server_key, config.url, retries=0, http_client=http_client)
    return factory


class StubPresenter:
    """Consent presenter answering every prompt with the same decision."""

    def __init__(self, approved: bool = True, remember_choice: bool = False) -> None:
        self.decision = ConsentDecision(approved=approved, remember_choice=remember_choice)
        self.prompts: list[ConsentPrompt] = []

    async def __call__(self, prompt: ConsentPrompt) -> ConsentDecision:
        self.prompts.append(prompt)
        return self.decision


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def crm() -> FakeMcppServer:
    """CRM server owning contact data."""
    return FakeMcppServer(
        "crm",
        values={
            "call_1.0.name": "Alice",
            "call_1.0.email": "alice@example.com",
            "call_1.1.name": "Bob",
            "call_1.1.email": "bob@example.com",
        },
        tools=[
            {
                "name": "get_contacts",
                "description": "List contacts",
                "inputSchema": {"type": "object", "properties": {}},
                "isSensitive": True,
            }
        ],
    )


@pytest.fixture
def mail() -> FakeMcppServer:
    """Mail server that sends messages."""
    return FakeMcppServer(
        "mail",
        values={"call_5.0.subject": "Quarterly report"},
        tools=[
            {
                "name": "send_email",
                "description": "Send an email",
                "inputSchema": {"type": "object", "properties": {"to": {"type": "string"}}},
            }
        ],
    )


@pytest.fixture
def fake_servers(crm: FakeMcppServer, mail: FakeMcppServer) -> dict[str, FakeMcppServer]:
    return {"crm": crm, "mail": mail}


@pytest.fixture
def settings(fake_servers: dict[str, FakeMcppServer]) -> Settings:
    return Settings(
        servers={key: ServerConfig(url=f"http://{key}.test/mcp") for key in fake_servers},
        host_id="test-host",
        transport_retries=0,
    )


@pytest.fixture
async def session_factory(settings: Settings, fake_servers: dict[str, FakeMcppServer]):
    """Create sessions wired to the fake servers; all are closed after the test."""
    created: list[McppSession] = []

    def factory(presenter=None, **overrides: Any) -> McppSession:
        session_settings = settings.model_copy(update=overrides) if overrides else settings
        session = McppSession(
            session_settings,
            presenter=presenter,
            transport_factory=make_transport_factory(fake_servers),
        )
        created.append(session)
        return session

    yield factory

    for session in created:
        await session.aclose()


@pytest.fixture
async def session(session_factory) -> McppSession:
    return session_factory()


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "consent: tests that involve consent handling"
    )
