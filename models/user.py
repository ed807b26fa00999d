"""
models/user.py
--------------
Domain model for the tenant-scoped user entity.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

MIN_AGE = 1
MAX_AGE = 150


@dataclass
class User:
    """
    A row of a tenant's `users` table.

    Attributes:
        name: Display name (required).
        email: Unique within the schema (required).
        age: Optional, between 1 and 150.
        id: Database primary key (None for new records).
        created_at: Set by the database on insert.
        updated_at: Set by the database on insert and update.
    """
    name: str
    email: str
    age: Optional[int] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def validation_errors(self) -> list[str]:
        errors = []
        if not self.name:
            errors.append("name is required")
        if not self.email:
            errors.append("email is required")
        if self.age is not None and not (MIN_AGE <= self.age <= MAX_AGE):
            errors.append(f"age must be between {MIN_AGE} and {MAX_AGE}")
        return errors

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "age": self.age,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __str__(self) -> str:
        return f"#{self.id} {self.name} <{self.email}>"
