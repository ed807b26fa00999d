"""
models/schema.py
----------------
Domain models for provisioned tenant schemas.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class SchemaRecord:
    """
    A provisioned tenant schema as recorded in the administrative catalog.

    Attributes:
        name: Schema name (unique, immutable).
        created_at: When the schema was provisioned.
    """
    name: str
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class InitResult:
    """
    Outcome of applying the managed table definition to a schema.

    Attributes:
        schema: Schema that was initialized.
        created: Tables created by this call.
        existing: Tables that were already present.
        warnings: Differences between live tables and the definition.
            They are reported, never repaired.
    """
    schema: str
    created: list[str] = field(default_factory=list)
    existing: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def diverged(self) -> bool:
        return bool(self.warnings)

    def to_dict(self) -> dict:
        return {
            "schema": self.schema,
            "created": list(self.created),
            "existing": list(self.existing),
            "warnings": list(self.warnings),
        }
