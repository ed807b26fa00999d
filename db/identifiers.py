"""
db/identifiers.py
-----------------
Validation and quoting of tenant schema names.

PostgreSQL cannot bind identifiers as query parameters, so a schema name
has to be embedded in the statement text. Every such name goes through
`validate_schema_name()` first and is then rendered only through the
helpers below, which wrap it in `psycopg2.sql.Identifier`.
"""

import re

from psycopg2 import sql

from config import ADMIN_SCHEMA
from db.errors import InvalidIdentifier

MAX_IDENTIFIER_LENGTH = 63  # PostgreSQL NAMEDATALEN - 1

_NAME_RE = re.compile(r"[A-Za-z][A-Za-z0-9_]*")

# PostgreSQL reserved key words plus the DML/DDL verbs
SQL_RESERVED_WORDS = frozenset("""
    all alter analyse analyze and any array as asc asymmetric authorization
    binary both case cast check collate collation column concurrently
    constraint create cross current_catalog current_date current_role
    current_schema current_time current_timestamp current_user default
    deferrable delete desc distinct do drop else end except false fetch for
    foreign freeze from full grant group having ilike in initially inner
    insert intersect into is isnull join lateral leading left like limit
    localtime localtimestamp natural not notnull null offset on only or
    order outer overlaps placing primary references returning right select
    session_user similar some symmetric table tablesample then to trailing
    true truncate union unique update user using variadic verbose when where
    window with
""".split())

RESERVED_SCHEMAS = frozenset({"public", "information_schema", "pg_catalog", "pg_toast"})


class SchemaName(str):
    """A schema name that passed `validate_schema_name()`."""

    __slots__ = ()


def validate_schema_name(name, admin_schema: str = ADMIN_SCHEMA) -> SchemaName:
    """
    Validate a tenant schema name.

    Accepted: 1-63 characters, ASCII letters, digits and underscore,
    starting with a letter. Reserved words, system schemas (pg_*) and the
    administrative schema are rejected. Comparison against reserved names
    is case-insensitive.

    Raises:
        InvalidIdentifier: The name is unsafe or malformed.
    """
    if isinstance(name, SchemaName):
        return name
    if not isinstance(name, str):
        raise InvalidIdentifier(name, "must be a string")
    if not name:
        raise InvalidIdentifier(name, "must not be empty")
    if len(name) > MAX_IDENTIFIER_LENGTH:
        raise InvalidIdentifier(name, f"must be at most {MAX_IDENTIFIER_LENGTH} characters")
    if not _NAME_RE.fullmatch(name):
        raise InvalidIdentifier(
            name, "must start with a letter and contain only letters, digits and underscores"
        )

    lowered = name.lower()
    if lowered in SQL_RESERVED_WORDS:
        raise InvalidIdentifier(name, "is an SQL reserved word")
    if lowered in RESERVED_SCHEMAS or lowered.startswith("pg_"):
        raise InvalidIdentifier(name, "is a reserved system schema")
    if lowered == admin_schema.lower():
        raise InvalidIdentifier(name, "collides with the administrative schema")
    return SchemaName(name)


def is_valid_schema_name(name, admin_schema: str = ADMIN_SCHEMA) -> bool:
    try:
        validate_schema_name(name, admin_schema)
    except InvalidIdentifier:
        return False
    return True


def quote_schema(name: str) -> sql.Identifier:
    """Identifier for a tenant schema; validates before quoting."""
    return sql.Identifier(validate_schema_name(name))


def quote_table(schema: str, table: str) -> sql.Identifier:
    """Schema-qualified identifier for a table inside a tenant schema."""
    return sql.Identifier(validate_schema_name(schema), table)


def search_path_option(schema: str) -> str:
    """libpq `options` value routing a connection to one schema."""
    return f'-c search_path="{validate_schema_name(schema)}"'
