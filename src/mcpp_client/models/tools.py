"""Models for MCPP server tools and their JSON-RPC results."""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ToolDefinition:
    """A tool exposed by an MCPP server.

    Attributes:
        name: Tool name
        description: Tool description
        input_schema: JSON schema of the tool arguments
        is_sensitive: Whether the tool output is replaced by placeholders
    """

    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)
    is_sensitive: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolDefinition":
        return cls(
            name=data["name"],
            description=data.get("description", ""),
            input_schema=data.get("inputSchema") or {},
            is_sensitive=bool(data.get("isSensitive", False)),
        )


@dataclass(frozen=True)
class ToolCallRecord:
    """Which server produced a tool result.

    Attributes:
        tool_call_id: Id of the tool call, unique within a session
        server_key: Server the call was dispatched to
        tool_name: Name of the called tool
        is_sensitive: Whether the result contains placeholders
    """

    tool_call_id: str
    server_key: str
    tool_name: str
    is_sensitive: bool = False


@dataclass
class ContentItem:
    type: str
    text: str = ""


@dataclass
class ToolCallResult:
    """Result of a tools/call request.

    Attributes:
        content: Content items returned by the tool
        is_error: Whether the tool reported an error
    """

    content: list[ContentItem] = field(default_factory=list)
    is_error: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolCallResult":
        content = [
            ContentItem(type=c.get("type", ""), text=c.get("text", ""))
            for c in data.get("content", [])
            if isinstance(c, dict)
        ]
        return cls(content=content, is_error=bool(data.get("isError", False)))

    @property
    def text(self) -> str:
        """Text of the first text content item."""
        for item in self.content:
            if item.type == "text":
                return item.text
        return ""


@dataclass(frozen=True)
class FetchedData:
    """Raw tool data fetched with mcpp/get_data.

    Attributes:
        type: "table" or "keyValue"
        payload: {"headers": [...], "rows": [[...]]} for tables, a mapping otherwise
    """

    type: str
    payload: Any

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FetchedData":
        return cls(type=data.get("type", "keyValue"), payload=data.get("payload"))

    @property
    def is_table(self) -> bool:
        return (
            self.type == "table"
            and isinstance(self.payload, dict)
            and isinstance(self.payload.get("headers"), list)
            and isinstance(self.payload.get("rows"), list)
        )

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "payload": self.payload}


@dataclass(frozen=True)
class ReferenceResult:
    """Placeholder found by mcpp/get_references.

    Attributes:
        placeholder: Placeholder as returned by the server
        column: Column the match was found in
        row_index: Row the match was found in
        confidence: Match confidence reported by the server
    """

    placeholder: str
    column: str | None = None
    row_index: int | None = None
    confidence: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReferenceResult":
        details = data.get("match_details") or {}
        return cls(
            placeholder=data["placeholder"],
            column=details.get("column"),
            row_index=details.get("row_index"),
            confidence=details.get("confidence"),
        )


@dataclass(frozen=True)
class ResolveReply:
    """Result of mcpp/resolve_placeholders.

    Attributes:
        resolved_data: Input data with placeholders replaced
        resolution_status: Server-side status, if reported
    """

    resolved_data: Any
    resolution_status: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResolveReply":
        return cls(
            resolved_data=data.get("resolved_data"),
            resolution_status=data.get("resolution_status"),
        )


@dataclass(frozen=True)
class ConsentAck:
    """Result of mcpp/provide_consent.

    Attributes:
        consent_recorded: Whether the server stored the decision
        cached_until: Epoch milliseconds until which the server caches it
    """

    consent_recorded: bool
    cached_until: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConsentAck":
        return cls(
            consent_recorded=bool(data.get("consent_recorded", False)),
            cached_until=data.get("cached_until"),
        )
