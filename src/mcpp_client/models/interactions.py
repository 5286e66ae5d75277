"""Consent interaction models.

This module provides models for:
- Consent requests raised by servers (-32007 error payloads)
- Consent prompts shown to the user
- Consent decisions and their UI labels
- Remembered consent entries
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

DEFAULT_CONSENT_MESSAGE = (
    "Permission needed to process your request. "
    "Do you want to allow access to the requested data?"
)


class ConsentState(Enum):
    """Lifecycle of one consent request."""

    NONE = "none"
    REQUESTED = "requested"
    APPROVED = "approved"
    DENIED = "denied"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (ConsentState.APPROVED, ConsentState.DENIED, ConsentState.TIMED_OUT)


class ConsentResponse(Enum):
    """User-facing consent labels for MCP Elicitation UI.

    These are the exact strings shown to users in consent dialogs.
    """

    ALLOW_ONCE = "Allow Once"
    ALLOW_SESSION = "Allow Session"
    DENY = "Deny"

    @classmethod
    def all_options(cls, allow_remember: bool = True) -> list[str]:
        """Get consent options as a list of strings for elicitation.

        Args:
            allow_remember: Whether the session-wide option may be offered
        """
        return [
            opt.value
            for opt in cls
            if allow_remember or opt is not ConsentResponse.ALLOW_SESSION
        ]

    @classmethod
    def from_string(cls, value: str) -> "ConsentResponse":
        """Convert string to ConsentResponse enum.

        Raises:
            ValueError: If value doesn't match any option
        """
        for opt in cls:
            if opt.value == value:
                return opt
        raise ValueError(f"Invalid consent response: {value}")

    def to_decision(self) -> "ConsentDecision":
        """Convert UI response to a consent decision."""
        return ConsentDecision(
            approved=self is not ConsentResponse.DENY,
            remember_choice=self is ConsentResponse.ALLOW_SESSION,
        )


@dataclass(frozen=True)
class ConsentDecision:
    """Answer from the user interaction collaborator.

    Attributes:
        approved: Whether the user allowed the data operation
        remember_choice: Whether the approval should be reused this session
    """

    approved: bool
    remember_choice: bool = False


@dataclass(frozen=True)
class ConsentRequest:
    """Consent request carried in a -32007 error.

    Attributes:
        request_id: Server-issued correlation id
        message: Text to show the user
        timeout_seconds: Seconds to wait for a decision, 0 waits indefinitely
        allow_remember: Whether the decision may be remembered
        data_preview: Optional preview of the withheld data
        destination_info: Optional description of the destination
    """

    request_id: str
    message: str
    timeout_seconds: float = 0
    allow_remember: bool = False
    data_preview: str | None = None
    destination_info: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConsentRequest":
        """Create ConsentRequest from a server payload.

        Raises:
            KeyError: If request_id is missing
            ValueError: If timeout_seconds is not numeric
        """
        timeout = data.get("timeout_seconds") or 0
        return cls(
            request_id=str(data["request_id"]),
            message=data.get("message") or DEFAULT_CONSENT_MESSAGE,
            timeout_seconds=float(timeout),
            allow_remember=bool(data.get("allow_remember", False)),
            data_preview=data.get("data_preview"),
            destination_info=data.get("destination_info"),
        )


@dataclass(frozen=True)
class ConsentPrompt:
    """Prompt handed to the user interaction collaborator.

    Attributes:
        request_id: Correlation id the decision must be posted back with
        server_key: Server that asked for consent
        message: Text to show the user
        timeout_seconds: Seconds until the request is treated as denied
        allow_remember: Whether "remember my choice" may be offered
        data_preview: Optional preview of the withheld data
        destination_info: Optional description of the destination
    """

    request_id: str
    server_key: str
    message: str
    timeout_seconds: float
    allow_remember: bool
    data_preview: str | None = None
    destination_info: str | None = None

    @classmethod
    def from_request(cls, request: ConsentRequest, server_key: str) -> "ConsentPrompt":
        return cls(
            request_id=request.request_id,
            server_key=server_key,
            message=request.message,
            timeout_seconds=request.timeout_seconds,
            allow_remember=request.allow_remember,
            data_preview=request.data_preview,
            destination_info=request.destination_info,
        )

    def render(self) -> str:
        """Render the prompt as plain text for dialogs."""
        parts = [self.message]
        if self.destination_info:
            parts.append(f"Destination: {self.destination_info}")
        if self.data_preview:
            parts.append(f"Data: {self.data_preview}")
        return "\n\n".join(parts)


@dataclass
class StoredConsent:
    """Remembered consent entry.

    Attributes:
        destination: Normalized destination of the usage context
        data_usage: Usage level the approval covers
        hash: Unique hash for deduplication
        expires_at: Epoch seconds after which the entry is ignored
    """

    destination: str
    data_usage: str
    hash: str
    expires_at: float | None = None
