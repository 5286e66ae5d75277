"""Actions the language model emits instead of plain text.

The model answers with a JSON object {"mcpp_action": {"type": ..., "data": {...}}}.
Anything that does not parse into one of the known variants is simply not an action.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Union

from .usage import UsageContext

logger = logging.getLogger(__name__)

MARKER_ACTION = "mcpp_action"


@dataclass(frozen=True)
class ReferenceRequest:
    """Model asks for a placeholder pointing at a specific value."""

    tool_call_id: str
    keyword: str
    column_name: str | None = None


@dataclass(frozen=True)
class DisplayData:
    """Model asks to show the full result of a tool call to the user."""

    message: str
    tool_call_id: str
    usage_context: UsageContext | None = None


@dataclass(frozen=True)
class PlaceholderMessage:
    """Message containing placeholders to resolve before display."""

    message: str
    fallback_message: str
    usage_context: UsageContext | None = None


@dataclass(frozen=True)
class DirectMessage:
    message: str


@dataclass(frozen=True)
class ConsentResponse:
    """Model explains an upcoming consent request to the user."""

    message: str
    request_id: str
    data_summary: str = ""
    destination: str = ""
    purpose: str = ""


@dataclass(frozen=True)
class AccessDeniedMessage:
    """Model explains why data was withheld."""

    message: str
    alternative_suggestions: list[str] = field(default_factory=list)
    error_code: str | None = None
    blocked_target: str | None = None
    reason: str | None = None


McppAction = Union[
    ReferenceRequest,
    DisplayData,
    PlaceholderMessage,
    DirectMessage,
    ConsentResponse,
    AccessDeniedMessage,
]


def parse_action(content: str) -> McppAction | None:
    """Parse model output into an action.

    Args:
        content: Raw model output

    Returns:
        Parsed action, or None if the content is not an action

    Examples:
        >>> parse_action('{"mcpp_action": {"type": "direct_message", "data": {"message": "Hi"}}}')
        DirectMessage(message='Hi')
        >>> parse_action("plain answer") is None
        True
    """
    data = _extract_action_object(content)
    if data is None:
        return None

    action_type = data.get("type")
    payload = data.get("data")
    if not isinstance(payload, dict):
        return None

    builder = _BUILDERS.get(action_type)
    if builder is None:
        logger.warning(f"[Actions] Unknown action type: {action_type}")
        return None

    try:
        return builder(payload)
    except (KeyError, TypeError, ValueError) as e:
        logger.warning(f"[Actions] Malformed {action_type} action: {e}")
        return None


def _extract_action_object(content: str) -> dict[str, Any] | None:
    """Find the mcpp_action object, either as the whole content or embedded in text."""
    if not isinstance(content, str) or MARKER_ACTION not in content:
        return None

    try:
        obj = json.loads(content)
    except json.JSONDecodeError:
        obj = None

    if obj is None:
        idx = content.find(f'"{MARKER_ACTION}"')
        start_idx = content.rfind("{", 0, idx) if idx != -1 else -1
        json_str = _extract_balanced_json(content, start_idx) if start_idx != -1 else None
        if not json_str:
            return None
        try:
            obj = json.loads(json_str)
        except json.JSONDecodeError as e:
            logger.debug(f"[Actions] Failed to parse embedded action: {e}")
            return None

    if isinstance(obj, dict) and isinstance(obj.get(MARKER_ACTION), dict):
        return obj[MARKER_ACTION]
    return None


def _extract_balanced_json(text: str, start_idx: int) -> str | None:
    """Extract a complete JSON object using balanced brace counting.

    Args:
        text: Text to extract from
        start_idx: Index of opening brace

    Returns:
        Complete JSON string or None if not balanced
    """
    if start_idx >= len(text) or text[start_idx] != "{":
        return None

    depth = 0
    in_string = False
    escape_next = False

    for i in range(start_idx, len(text)):
        char = text[i]

        if escape_next:
            escape_next = False
            continue

        if char == "\\":
            escape_next = True
            continue

        if char == '"':
            in_string = not in_string
            continue

        if in_string:
            continue

        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start_idx:i + 1]

    return None


def _usage_context(payload: dict[str, Any]) -> UsageContext | None:
    raw = payload.get("usage_context")
    if not isinstance(raw, dict):
        return None
    try:
        return UsageContext.from_dict(raw)
    except (KeyError, TypeError, ValueError) as e:
        logger.warning(f"[Actions] Ignoring malformed usage_context: {e}")
        return None


def _reference_request(payload: dict[str, Any]) -> ReferenceRequest:
    return ReferenceRequest(
        tool_call_id=payload["tool_call_id"],
        keyword=payload["keyword"],
        column_name=payload.get("column_name") or None,
    )


def _display_data(payload: dict[str, Any]) -> DisplayData:
    return DisplayData(
        message=payload.get("message", ""),
        tool_call_id=payload["tool_call_id"],
        usage_context=_usage_context(payload),
    )


def _placeholder_message(payload: dict[str, Any]) -> PlaceholderMessage:
    return PlaceholderMessage(
        message=payload["message"],
        fallback_message=payload.get("fallback_message", ""),
        usage_context=_usage_context(payload),
    )


def _direct_message(payload: dict[str, Any]) -> DirectMessage:
    return DirectMessage(message=payload["message"])


def _consent_response(payload: dict[str, Any]) -> ConsentResponse:
    details = payload.get("consent_details") or {}
    return ConsentResponse(
        message=payload.get("message", ""),
        request_id=details["request_id"],
        data_summary=details.get("data_summary", ""),
        destination=details.get("destination", ""),
        purpose=details.get("purpose", ""),
    )


def _access_denied_message(payload: dict[str, Any]) -> AccessDeniedMessage:
    context = payload.get("error_context") or {}
    return AccessDeniedMessage(
        message=payload["message"],
        alternative_suggestions=[str(s) for s in payload.get("alternative_suggestions") or []],
        error_code=context.get("error_code"),
        blocked_target=context.get("blocked_target"),
        reason=context.get("reason"),
    )


_BUILDERS = {
    "reference_request": _reference_request,
    "display_data": _display_data,
    "placeholder_message": _placeholder_message,
    "direct_message": _direct_message,
    "consent_response": _consent_response,
    "access_denied_message": _access_denied_message,
}
