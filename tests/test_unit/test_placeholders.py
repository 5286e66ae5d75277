"""Unit tests for placeholder parsing and rewriting.

These test PURE functions - no mocks needed!
"""

import pytest

from mcpp_client.placeholders import (
    Placeholder,
    extract,
    is_placeholder,
    strip_server_prefixes,
    strip_server_prefixes_in,
    substitute,
    to_model_form,
    to_wire_form,
)


class TestPlaceholderParse:
    """Test Placeholder.parse."""

    def test_model_form(self):
        """Model-facing token has no server key."""
        placeholder = Placeholder.parse("{call_1.0.email}")
        assert placeholder == Placeholder(None, "call_1", 0, "email")

    def test_wire_form(self):
        """Wire token carries the server key."""
        placeholder = Placeholder.parse("{crm:call_1.2.email}")
        assert placeholder.server_key == "crm"
        assert placeholder.tool_call_id == "call_1"
        assert placeholder.row_index == 2
        assert placeholder.column_name == "email"

    def test_without_braces(self):
        """Tokens are accepted without braces."""
        assert Placeholder.parse("crm:call_1.0.email") == Placeholder.parse("{crm:call_1.0.email}")

    @pytest.mark.parametrize("token", ["hello", "{call_1.email}", "{call_1.x.email}", "{}", ""])
    def test_not_a_placeholder(self, token):
        """Anything else is rejected."""
        assert Placeholder.parse(token) is None

    def test_forms(self):
        """Derived forms of one placeholder."""
        placeholder = Placeholder.parse("{crm:call_1.0.email}")
        assert placeholder.body == "call_1.0.email"
        assert placeholder.token == "crm:call_1.0.email"
        assert placeholder.literal == "{crm:call_1.0.email}"
        assert placeholder.model_form == "{call_1.0.email}"

    def test_wire_form_needs_a_server(self):
        """A token without prefix and without owner has no wire form."""
        with pytest.raises(ValueError):
            Placeholder.parse("{call_1.0.email}").wire_form()


class TestFormConversion:
    """Test to_wire_form / to_model_form."""

    def test_inject_server_key(self):
        assert to_wire_form("{call_1.0.email}", "crm") == "{crm:call_1.0.email}"

    def test_existing_prefix_wins(self):
        """A token that already names its server keeps it."""
        assert to_wire_form("{mail:call_1.0.email}", "crm") == "{mail:call_1.0.email}"

    def test_strip_server_key(self):
        assert to_model_form("{crm:call_1.0.email}") == "{call_1.0.email}"

    def test_round_trip(self):
        """Stripping an injected key gives back the model form."""
        token = "{call_7.3.phone_number}"
        assert to_model_form(to_wire_form(token, "crm")) == token

    def test_non_placeholder_unchanged(self):
        assert to_wire_form("plain", "crm") == "plain"
        assert to_model_form("plain") == "plain"

    def test_strip_inside_text(self):
        text = "Write to {crm:call_1.0.email} about {call_2.0.topic}"
        assert strip_server_prefixes(text) == "Write to {call_1.0.email} about {call_2.0.topic}"

    def test_unbraced_round_trip(self):
        """Bare tokens stay bare through both conversions."""
        assert to_wire_form("call_1.0.x", "crm") == "crm:call_1.0.x"
        assert to_model_form(to_wire_form("call_1.0.x", "crm")) == "call_1.0.x"

    def test_strip_nested_values(self):
        arguments = {
            "filter": {"to": "{crm:call_1.0.email}", "cc": ["{crm:call_1.1.email}", "x"]},
            "limit": 5,
        }
        assert strip_server_prefixes_in(arguments) == {
            "filter": {"to": "{call_1.0.email}", "cc": ["{call_1.1.email}", "x"]},
            "limit": 5,
        }


class TestExtract:
    """Test extract."""

    def test_order_of_first_occurrence(self):
        text = "{call_2.0.b} then {call_1.0.a} then {call_2.0.b}"
        assert [p.literal for p in extract(text)] == ["{call_2.0.b}", "{call_1.0.a}"]

    def test_prefixed_and_unprefixed_are_distinct(self):
        """Repeated literals are deduplicated, different literals are not."""
        text = "{call_1.0.a} {crm:call_1.0.a} {call_1.0.a}"
        assert [p.literal for p in extract(text)] == ["{call_1.0.a}", "{crm:call_1.0.a}"]

    def test_idempotent(self):
        text = "Hi {call_1.0.name}, your mail is {call_1.0.email}"
        assert list(extract(text)) == list(extract(text))

    def test_no_placeholders(self):
        assert list(extract("nothing here {not one}")) == []
        assert list(extract("")) == []

    def test_is_lazy(self):
        iterator = extract("{call_1.0.a}")
        assert next(iterator).body == "call_1.0.a"


class TestIsPlaceholder:
    """Test is_placeholder."""

    def test_whole_string(self):
        assert is_placeholder("{call_1.0.email}")
        assert is_placeholder(" {crm:call_1.0.email} ")

    def test_embedded_is_not_whole(self):
        assert not is_placeholder("mail {call_1.0.email}")

    def test_non_string(self):
        assert not is_placeholder(42)
        assert not is_placeholder(None)


class TestSubstitute:
    """Test substitute."""

    def test_replaces_resolved_tokens(self):
        text = "Contact {call_1.0.name} at {call_1.0.email}"
        resolved = {"call_1.0.name": "Alice", "{call_1.0.email}": "alice@example.com"}
        assert substitute(text, resolved) == "Contact Alice at alice@example.com"

    def test_missing_tokens_untouched(self):
        text = "{call_1.0.name} and {call_9.0.name}"
        assert substitute(text, {"call_1.0.name": "Alice"}) == "Alice and {call_9.0.name}"

    def test_prefixed_token_needs_prefixed_key(self):
        """Only the exact literal is replaced."""
        text = "{crm:call_1.0.name} / {call_1.0.name}"
        assert substitute(text, {"crm:call_1.0.name": "Alice"}) == "Alice / {call_1.0.name}"

    def test_non_string_values(self):
        assert substitute("{call_1.0.age} {call_1.0.note}", {"call_1.0.age": 42, "call_1.0.note": None}) == "42 "

    def test_empty_inputs(self):
        assert substitute("", {"call_1.0.a": "x"}) == ""
        assert substitute("{call_1.0.a}", {}) == "{call_1.0.a}"
