"""
models/snapshot.py
------------------
Result objects produced by export and migration. Neither is persisted;
both are rebuilt on every call.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional


def _jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


@dataclass
class ExportSnapshot:
    """
    Point-in-time contents of a tenant schema.

    Attributes:
        schema: Exported schema.
        exported_at: When the export started (UTC).
        tables: Table name -> rows ordered by primary key ascending.
    """
    schema: str
    exported_at: datetime
    tables: dict[str, list[dict[str, Any]]] = field(default_factory=dict)

    def row_counts(self) -> dict[str, int]:
        return {name: len(rows) for name, rows in self.tables.items()}

    def rows(self, table: str) -> list[dict[str, Any]]:
        return self.tables.get(table, [])

    def to_dict(self) -> dict:
        """JSON-ready form: timestamps as ISO strings."""
        return {
            "schema": self.schema,
            "exported_at": self.exported_at.isoformat(),
            "tables": {
                name: [{k: _jsonable(v) for k, v in row.items()} for row in rows]
                for name, rows in self.tables.items()
            },
        }


@dataclass
class TableMigration:
    """
    Per-table migration report.

    Attributes:
        table: Table name.
        copied: Rows inserted into the target.
        conflicts: Source rows skipped because their unique key exists in the target.
        conflict_keys: The skipped unique-key values, for reconciliation.
        error: Set when the table copy was rolled back; `copied` is then 0.
    """
    table: str
    copied: int = 0
    conflicts: int = 0
    conflict_keys: list[Any] = field(default_factory=list)
    error: Optional[dict] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        return {
            "table": self.table,
            "copied": self.copied,
            "conflicts": self.conflicts,
            "conflict_keys": list(self.conflict_keys),
            "error": self.error,
        }


@dataclass
class MigrationResult:
    """Outcome of copying one schema's rows into another."""
    source: str
    target: str
    tables: dict[str, TableMigration] = field(default_factory=dict)

    @property
    def copied(self) -> dict[str, int]:
        return {name: t.copied for name, t in self.tables.items()}

    @property
    def conflicts(self) -> dict[str, int]:
        return {name: t.conflicts for name, t in self.tables.items()}

    @property
    def errors(self) -> dict[str, dict]:
        return {name: t.error for name, t in self.tables.items() if t.error is not None}

    @property
    def total_copied(self) -> int:
        return sum(t.copied for t in self.tables.values())

    @property
    def total_conflicts(self) -> int:
        return sum(t.conflicts for t in self.tables.values())

    @property
    def success(self) -> bool:
        """True when every table copied; conflicts alone do not fail a migration."""
        return all(t.ok for t in self.tables.values())

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "target": self.target,
            "copied": self.copied,
            "conflicts": self.conflicts,
            "errors": self.errors,
            "success": self.success,
            "tables": {name: t.to_dict() for name, t in self.tables.items()},
        }
