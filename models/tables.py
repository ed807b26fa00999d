"""
models/tables.py
----------------
The Managed Table Definition: the fixed set of tables every tenant schema
contains. The same definition is applied to every schema; nothing here is
stored per schema.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class ColumnDef:
    """
    One column of a managed table.

    Attributes:
        name: Column name.
        ddl: Type and constraints as written in CREATE TABLE.
        data_type: The type as reported by information_schema.columns.
        nullable: Whether NULL is allowed.
        generated: Filled by the database (serial ids, timestamps); not
            copied by migration.
    """
    name: str
    ddl: str
    data_type: str
    nullable: bool = True
    generated: bool = False


@dataclass(frozen=True)
class ManagedTable:
    """
    A table every tenant schema must contain.

    Attributes:
        name: Table name inside the tenant schema.
        columns: Ordered column definitions.
        primary_key: Column used for deterministic ordering and paging.
        unique_key: Column whose duplicates count as migration conflicts.
        checks: Table-level CHECK expressions.
    """
    name: str
    columns: tuple[ColumnDef, ...]
    primary_key: str
    unique_key: Optional[str] = None
    checks: tuple[str, ...] = field(default_factory=tuple)

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    @property
    def copy_columns(self) -> list[str]:
        """Columns carried over by migration; generated ones are regenerated."""
        return [c.name for c in self.columns if not c.generated]

    def column(self, name: str) -> ColumnDef:
        for col in self.columns:
            if col.name == name:
                return col
        raise KeyError(name)


USERS_TABLE = ManagedTable(
    name="users",
    columns=(
        ColumnDef("id", "SERIAL PRIMARY KEY", "integer", nullable=False, generated=True),
        ColumnDef("name", "VARCHAR(255) NOT NULL", "character varying", nullable=False),
        ColumnDef("email", "VARCHAR(255) UNIQUE NOT NULL", "character varying", nullable=False),
        ColumnDef("age", "INTEGER", "integer"),
        ColumnDef(
            "created_at", "TIMESTAMP DEFAULT CURRENT_TIMESTAMP",
            "timestamp without time zone", generated=True,
        ),
        ColumnDef(
            "updated_at", "TIMESTAMP DEFAULT CURRENT_TIMESTAMP",
            "timestamp without time zone", generated=True,
        ),
    ),
    primary_key="id",
    unique_key="email",
    checks=("age IS NULL OR (age >= 1 AND age <= 150)",),
)

# Order matters: tables are created, exported and migrated in this order.
MANAGED_TABLES: tuple[ManagedTable, ...] = (USERS_TABLE,)
