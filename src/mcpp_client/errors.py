"""
MCPP client exceptions and JSON-RPC error codes.
"""

from enum import IntEnum
from typing import Any


class McppErrorCode(IntEnum):
    """JSON-RPC error codes used by MCPP servers."""

    INVALID_PARAMS = -32602
    METHOD_NOT_FOUND = -32601
    INTERNAL_ERROR = -32603
    CACHE_MISS = -32001
    REFERENCE_NOT_FOUND = -32002
    RESOLUTION_FAILED = -32003
    DATA_NOT_FOUND = -32004
    INSUFFICIENT_PERMISSIONS = -32005
    INVALID_DATA_USAGE = -32006
    CONSENT_REQUIRED = -32007
    CONSENT_DENIED = -32008
    CONSENT_TIMEOUT = -32009
    INVALID_TARGET = -32010


# Codes that terminate a resolution attempt without a consent round-trip
ACCESS_DENIED_CODES = frozenset(
    {
        McppErrorCode.INSUFFICIENT_PERMISSIONS,
        McppErrorCode.INVALID_DATA_USAGE,
        McppErrorCode.CONSENT_DENIED,
        McppErrorCode.CONSENT_TIMEOUT,
        McppErrorCode.INVALID_TARGET,
    }
)


class McppError(RuntimeError):
    """Base class for client errors."""


class TransportError(McppError):
    """Raised when a server cannot be reached or answers with a bad HTTP status."""

    def __init__(self, message: str, *, server_key: str | None = None, method: str | None = None) -> None:
        self.server_key = server_key
        self.method = method
        hint = f" [{server_key}:{method}]" if server_key and method else ""
        super().__init__(f"{message}{hint}")


class ProtocolError(TransportError):
    """Raised when a response is not a valid JSON-RPC envelope."""


class RpcError(McppError):
    """Raised when a server answers with a JSON-RPC error object."""

    def __init__(
        self,
        code: int,
        message: str,
        *,
        data: Any = None,
        server_key: str | None = None,
        method: str | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.data = data
        self.server_key = server_key
        self.method = method
        super().__init__(f"{message} (code={code})")

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


class NoServersConfigured(McppError):
    """Raised when routing is attempted without any configured server."""


class DuplicateToolCallId(McppError):
    """Raised when a tool call id is recorded twice with different values."""

    def __init__(self, tool_call_id: str) -> None:
        self.tool_call_id = tool_call_id
        super().__init__(f"Tool call id already recorded: {tool_call_id}")


class ToolCallNotFound(McppError, LookupError):
    """Raised when a tool call id is not known to the session."""

    def __init__(self, tool_call_id: str) -> None:
        self.tool_call_id = tool_call_id
        super().__init__(f"Unknown tool call id: {tool_call_id}")


class NoRouteForPlaceholder(McppError):
    """Raised when no server owns a placeholder."""

    def __init__(self, placeholder: str) -> None:
        self.placeholder = placeholder
        super().__init__(f"No server owns placeholder {placeholder}")


class AccessDenied(McppError):
    """Raised when a server refuses access for the given usage context."""

    def __init__(self, code: int, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(f"Access denied: {message} (code={code})")


class ConsentDenied(McppError):
    """Raised when the user denies consent."""

    def __init__(self, request_id: str, message: str = "User denied consent for data operation") -> None:
        self.request_id = request_id
        super().__init__(message)


class ConsentTimeout(ConsentDenied):
    """Raised when no consent decision arrives in time."""

    def __init__(self, request_id: str, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(request_id, f"Consent request timed out after {timeout_seconds}s")


class DuplicateConsentRequest(McppError):
    """Raised when a server reuses a consent request id."""

    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        super().__init__(f"Consent request id already used: {request_id}")
