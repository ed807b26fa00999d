"""
db/errors.py
------------
Error taxonomy for schema provisioning and tenant data operations.

Every failure that leaves the db/, repositories/ or services/ layers is a
TenantDbError subclass carrying a stable `code`, a readable message and a
`details` dict (schema, table, operation). Raw psycopg2 errors are mapped
into this taxonomy by `normalize_error()` before they are re-raised.

Codes:
    INVALID_IDENTIFIER   malformed or unsafe schema name (never sent to storage)
    ALREADY_EXISTS       duplicate schema creation
    UNKNOWN_SCHEMA       operation on a schema that is not provisioned
    TABLES_MISSING       schema is provisioned but a managed table is absent
    UNIQUE_CONFLICT      duplicate unique key (email) on insert
    POOL_TIMEOUT         no free connection within the acquire timeout
    POOL_CLOSED          the pool was evicted or shut down
    STORAGE_UNAVAILABLE  connectivity failure, not retried internally
    STORAGE_ERROR        any other driver failure
    INVALID_USER         user payload rejected before reaching storage
"""

from typing import Any, Optional

import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2 import pool as pg_pool


class TenantDbError(Exception):
    """
    Base exception for all tenant database errors.

    Attributes:
        message: Human-readable description.
        code: Stable error kind for programmatic handling.
        details: Extra context (schema, table, operation, ...).
    """

    code = "TENANT_DB_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = {k: v for k, v in (details or {}).items() if v is not None}

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "details": dict(self.details)}


class InvalidIdentifier(TenantDbError):
    """A schema name failed validation."""

    code = "INVALID_IDENTIFIER"

    def __init__(self, name: Any, reason: str) -> None:
        super().__init__(
            f"Invalid schema name {name!r}: {reason}",
            details={"name": name if isinstance(name, str) else repr(name), "reason": reason},
        )
        self.name = name
        self.reason = reason


class AlreadyExists(TenantDbError):
    """The schema is already provisioned."""

    code = "ALREADY_EXISTS"

    def __init__(self, schema: str) -> None:
        super().__init__(f"Schema '{schema}' already exists", details={"schema": schema})
        self.schema = schema


class UnknownSchema(TenantDbError):
    """
    The schema is not provisioned.

    `which` names the role of the schema in the call ("source", "target")
    when more than one schema is involved.
    """

    code = "UNKNOWN_SCHEMA"

    def __init__(self, schema: str, which: Optional[str] = None) -> None:
        label = f"{which.capitalize()} schema" if which else "Schema"
        super().__init__(
            f"{label} '{schema}' does not exist",
            details={"schema": schema, "which": which},
        )
        self.schema = schema
        self.which = which


class UniqueConstraintConflict(TenantDbError):
    code = "UNIQUE_CONFLICT"


class PoolTimeout(TenantDbError):
    """No connection became free before the acquire timeout elapsed."""

    code = "POOL_TIMEOUT"


class StorageError(TenantDbError):
    code = "STORAGE_ERROR"


class StorageUnavailable(StorageError):
    """The database could not be reached or the connection dropped."""

    code = "STORAGE_UNAVAILABLE"


class TablesMissing(StorageError):
    """The schema is provisioned but a managed table is absent; `init` repairs it."""

    code = "TABLES_MISSING"

    def __init__(self, schema: str, table: Optional[str], details: Optional[dict] = None) -> None:
        what = f"Table '{table}'" if table else "A managed table"
        super().__init__(
            f"{what} is missing in schema '{schema}'; run init to create it",
            details={**(details or {}), "schema": schema, "table": table},
        )
        self.schema = schema
        self.table = table


class PoolClosed(StorageUnavailable):
    """The pool handle was evicted or shut down."""

    code = "POOL_CLOSED"


class InvalidUserData(TenantDbError):
    code = "INVALID_USER"


def normalize_error(
    exc: BaseException,
    schema: Optional[str] = None,
    table: Optional[str] = None,
    operation: Optional[str] = None,
) -> TenantDbError:
    """
    Map a driver exception into the TenantDbError taxonomy.

    Already-normalized errors are returned unchanged. Context arguments are
    recorded in `details` so callers can log and decide whether to retry.
    """
    if isinstance(exc, TenantDbError):
        return exc

    details = {"schema": schema, "table": table, "operation": operation}
    text = str(exc).strip() or exc.__class__.__name__

    if isinstance(exc, pg_errors.UniqueViolation):
        err = UniqueConstraintConflict(f"Unique constraint violated: {text}", details)
    elif isinstance(exc, pg_errors.DuplicateSchema):
        err = AlreadyExists(schema or "?")
    elif isinstance(exc, pg_errors.InvalidSchemaName):
        err = UnknownSchema(schema or "?")
        err.details.update({k: v for k, v in details.items() if v is not None})
    elif isinstance(exc, pg_errors.UndefinedTable):
        err = TablesMissing(schema or "?", table, details)
    elif isinstance(exc, (psycopg2.OperationalError, psycopg2.InterfaceError)):
        err = StorageUnavailable(f"Database unavailable: {text}", details)
    elif isinstance(exc, pg_pool.PoolError) and "closed" in text:
        err = PoolClosed(f"Connection pool closed: {text}", details)
    elif isinstance(exc, pg_pool.PoolError):
        err = PoolTimeout(f"Connection pool exhausted: {text}", details)
    else:
        err = StorageError(f"Database operation failed: {text}", details)

    err.__cause__ = exc
    return err
