"""
Unit tests for schema name validation and quoting.

Tests cover:
- Accepted names and case handling
- Rejection of malformed, reserved and system names
- Quoting helpers only ever emit validated identifiers
"""

import pytest

from db.errors import InvalidIdentifier
from db.identifiers import (
    MAX_IDENTIFIER_LENGTH,
    SchemaName,
    is_valid_schema_name,
    quote_schema,
    quote_table,
    search_path_option,
    validate_schema_name,
)
from tests.fakepg import render


class TestValidateSchemaName:
    """Tests for validate_schema_name()."""

    @pytest.mark.parametrize("name", ["tenant_a", "Tenant_B", "t1", "a", "acme_2024_eu"])
    def test_accepts_plain_identifiers(self, name):
        """Letters, digits and underscores starting with a letter pass."""
        validated = validate_schema_name(name)
        assert validated == name
        assert isinstance(validated, SchemaName)

    def test_accepts_max_length(self):
        """A 63 character name is the longest accepted."""
        name = "t" * MAX_IDENTIFIER_LENGTH
        assert validate_schema_name(name) == name

    @pytest.mark.parametrize(
        "name",
        [
            "",
            "t" * (MAX_IDENTIFIER_LENGTH + 1),
            "1tenant",
            "_tenant",
            "tenant a",
            "tenant;DROP",
            'tenant"x',
            "tenant-a",
            "tenant.a",
            "ténant",
        ],
    )
    def test_rejects_malformed(self, name):
        """Quotes, spaces, separators and non-ASCII are refused."""
        with pytest.raises(InvalidIdentifier) as exc_info:
            validate_schema_name(name)
        assert exc_info.value.code == "INVALID_IDENTIFIER"

    @pytest.mark.parametrize("name", ["select", "SELECT", "Table", "user", "drop"])
    def test_rejects_reserved_words_case_insensitively(self, name):
        """SQL reserved words are refused in any case."""
        with pytest.raises(InvalidIdentifier, match="reserved word"):
            validate_schema_name(name)

    @pytest.mark.parametrize("name", ["public", "PUBLIC", "pg_catalog", "pg_temp_1", "information_schema"])
    def test_rejects_system_schemas(self, name):
        """System schemas and the pg_ prefix are refused."""
        with pytest.raises(InvalidIdentifier, match="system schema"):
            validate_schema_name(name)

    def test_rejects_admin_schema(self):
        """The administrative schema cannot be used as a tenant."""
        with pytest.raises(InvalidIdentifier, match="administrative"):
            validate_schema_name("Control", admin_schema="control")

    def test_rejects_non_strings(self):
        """Non-string input is refused before any pattern check."""
        with pytest.raises(InvalidIdentifier, match="must be a string"):
            validate_schema_name(42)

    def test_error_details(self):
        """The error carries the name and reason."""
        with pytest.raises(InvalidIdentifier) as exc_info:
            validate_schema_name("bad name")
        err = exc_info.value
        assert err.details["name"] == "bad name"
        assert "letters" in err.details["reason"]

    def test_is_valid_schema_name(self):
        assert is_valid_schema_name("tenant_a") is True
        assert is_valid_schema_name("tenant a") is False


class TestQuoting:
    """Tests for the quoting helpers."""

    def test_quote_schema(self):
        assert render(quote_schema("Tenant_A")) == '"Tenant_A"'

    def test_quote_table(self):
        assert render(quote_table("tenant_a", "users")) == '"tenant_a"."users"'

    def test_quote_refuses_invalid(self):
        """Quoting never lets an unvalidated name through."""
        with pytest.raises(InvalidIdentifier):
            quote_schema('x"; DROP SCHEMA public; --')

    def test_search_path_option(self):
        assert search_path_option("tenant_a") == '-c search_path="tenant_a"'

    def test_search_path_option_refuses_invalid(self):
        with pytest.raises(InvalidIdentifier):
            search_path_option("a b")
