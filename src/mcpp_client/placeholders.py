"""Placeholder tokens standing in for sensitive values.

Two encodings exist:
- model-facing ``{toolCallId.rowIndex.columnName}``, shown to the language model
- wire ``{serverKey:toolCallId.rowIndex.columnName}``, used internally and when
  addressing a server that does not own the value

Examples:
    >>> to_wire_form("{call_1.0.email}", "crm")
    '{crm:call_1.0.email}'
    >>> to_model_form("{crm:call_1.0.email}")
    '{call_1.0.email}'
"""

import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any

# The optional prefix group is tried first, so "{a:b.0.c}" always parses as prefixed.
PLACEHOLDER_PATTERN = re.compile(
    r"\{(?:(?P<server>[\w\-]+):)?(?P<call>[\w\-]+)\.(?P<row>\d+)\.(?P<column>[^.{}:\s]+)\}"
)


@dataclass(frozen=True)
class Placeholder:
    """One parsed placeholder.

    Attributes:
        server_key: Explicit owning server, if the token carries a prefix
        tool_call_id: Tool call that produced the value
        row_index: Row of the value in the tool result
        column_name: Column of the value in the tool result
    """

    server_key: str | None
    tool_call_id: str
    row_index: int
    column_name: str

    @classmethod
    def parse(cls, token: str) -> "Placeholder | None":
        """Parse a single token, with or without braces.

        Returns:
            Placeholder, or None if the token is not a placeholder
        """
        text = token.strip()
        if not text.startswith("{"):
            text = "{" + text + "}"
        match = PLACEHOLDER_PATTERN.fullmatch(text)
        if not match:
            return None
        return cls._from_match(match)

    @classmethod
    def _from_match(cls, match: re.Match) -> "Placeholder":
        return cls(
            server_key=match.group("server"),
            tool_call_id=match.group("call"),
            row_index=int(match.group("row")),
            column_name=match.group("column"),
        )

    @property
    def body(self) -> str:
        """Token without braces and without server prefix."""
        return f"{self.tool_call_id}.{self.row_index}.{self.column_name}"

    @property
    def token(self) -> str:
        """Token without braces, exactly as it appears in text."""
        if self.server_key:
            return f"{self.server_key}:{self.body}"
        return self.body

    @property
    def literal(self) -> str:
        return "{" + self.token + "}"

    @property
    def model_form(self) -> str:
        return "{" + self.body + "}"

    def wire_form(self, owner_server_key: str | None = None) -> str:
        """Braced token carrying a server prefix.

        An existing prefix wins over ``owner_server_key``.

        Raises:
            ValueError: If neither a prefix nor an owner is known
        """
        server_key = self.server_key or owner_server_key
        if not server_key:
            raise ValueError(f"No server key for placeholder {self.literal}")
        return "{" + f"{server_key}:{self.body}" + "}"


def extract(text: str) -> Iterator[Placeholder]:
    """Yield the placeholders in text, in order of first occurrence.

    Repeated literals are yielded once. The iterator is lazy; calling
    extract again on the same text yields the same sequence.
    """
    if not text:
        return
    seen: set[str] = set()
    for match in PLACEHOLDER_PATTERN.finditer(text):
        literal = match.group(0)
        if literal in seen:
            continue
        seen.add(literal)
        yield Placeholder._from_match(match)


def is_placeholder(value: Any) -> bool:
    """True if value is a string consisting of exactly one placeholder."""
    return isinstance(value, str) and PLACEHOLDER_PATTERN.fullmatch(value.strip()) is not None


def to_wire_form(token: str, owner_server_key: str) -> str:
    """Inject the owning server key into a token that has none.

    The result is braced only if the input was. Tokens that are not
    placeholders are returned unchanged.
    """
    placeholder = Placeholder.parse(token)
    if placeholder is None:
        return token
    return _keep_bracing(token, placeholder.wire_form(owner_server_key))


def to_model_form(token: str) -> str:
    """Strip any server key prefix from a token.

    The result is braced only if the input was. Tokens that are not
    placeholders are returned unchanged.
    """
    placeholder = Placeholder.parse(token)
    if placeholder is None:
        return token
    return _keep_bracing(token, placeholder.model_form)


def _keep_bracing(original: str, braced: str) -> str:
    if original.strip().startswith("{"):
        return braced
    return braced[1:-1]


def strip_server_prefixes(text: str) -> str:
    """Rewrite every placeholder inside text to its model-facing form."""
    return PLACEHOLDER_PATTERN.sub(lambda m: Placeholder._from_match(m).model_form, text)


def strip_server_prefixes_in(value: Any) -> Any:
    """Apply strip_server_prefixes to every string nested in dicts and lists."""
    if isinstance(value, str):
        return strip_server_prefixes(value)
    if isinstance(value, dict):
        return {key: strip_server_prefixes_in(item) for key, item in value.items()}
    if isinstance(value, list):
        return [strip_server_prefixes_in(item) for item in value]
    return value


def substitute(text: str, resolved: Mapping[str, Any]) -> str:
    """Replace every literal ``{token}`` whose token has a resolved value.

    Keys may be given with or without braces. Tokens missing from ``resolved``
    stay untouched.
    """
    if not text or not resolved:
        return text

    values: dict[str, str] = {}
    for key, value in resolved.items():
        token = key[1:-1] if key.startswith("{") and key.endswith("}") else key
        values["{" + token + "}"] = "" if value is None else str(value)

    def replace(match: re.Match) -> str:
        return values.get(match.group(0), match.group(0))

    return PLACEHOLDER_PATTERN.sub(replace, text)
