"""
repositories/user_repo.py
--------------------------
Data access layer for the `users` table of a tenant schema.
All statements run on the schema's own pool and are parameterized; the
schema name itself is validated and quoted through db.identifiers.
"""

from typing import Optional

import psycopg2
from psycopg2 import sql

from db.connection import PoolCache
from db.errors import InvalidUserData, UniqueConstraintConflict, normalize_error
from db.identifiers import quote_table
from models.tables import USERS_TABLE
from models.user import User
from utils.logger import get_logger

logger = get_logger(__name__)

_COLUMNS = sql.SQL(", ").join(sql.Identifier(c) for c in USERS_TABLE.column_names)


class UserRepository:
    """Repository for CRUD operations on a tenant's users table."""

    def __init__(self, pools: PoolCache):
        self.pools = pools

    def _table(self, schema: str) -> sql.Identifier:
        return quote_table(schema, USERS_TABLE.name)

    @staticmethod
    def _check(user: User) -> None:
        errors = user.validation_errors()
        if errors:
            raise InvalidUserData("; ".join(errors), details={"errors": errors})

    # ── CREATE ────────────────────────────────────────────

    def add(self, schema: str, user: User) -> User:
        """
        Insert a new user.

        Returns:
            The same User with `id`, `created_at` and `updated_at` populated.

        Raises:
            InvalidUserData: Missing name/email or age out of range.
            UniqueConstraintConflict: The email is already taken.
            UnknownSchema: The schema is not provisioned.
        """
        self._check(user)
        query = sql.SQL(
            "INSERT INTO {} (name, email, age) VALUES (%s, %s, %s) "
            "RETURNING id, created_at, updated_at"
        ).format(self._table(schema))

        with self.pools.connection(schema) as conn:
            try:
                with conn.cursor() as cur:
                    cur.execute(query, (user.name, user.email, user.age))
                    user.id, user.created_at, user.updated_at = cur.fetchone()
                conn.commit()
            except psycopg2.Error as e:
                conn.rollback()
                err = normalize_error(e, schema=schema, table="users", operation="add_user")
                if isinstance(err, UniqueConstraintConflict):
                    err.message = f"Email '{user.email}' already exists"
                logger.error(f"Failed to add user to '{schema}': {err.message}")
                raise err from e

        logger.info(f"Added user #{user.id} to '{schema}'")
        return user

    # ── READ ──────────────────────────────────────────────

    def list(self, schema: str) -> list[User]:
        """All users of a schema, newest first."""
        query = sql.SQL("SELECT {} FROM {} ORDER BY created_at DESC, id DESC").format(
            _COLUMNS, self._table(schema)
        )
        with self.pools.connection(schema) as conn:
            try:
                with conn.cursor() as cur:
                    cur.execute(query)
                    rows = cur.fetchall()
                conn.commit()
            except psycopg2.Error as e:
                conn.rollback()
                raise normalize_error(e, schema=schema, table="users", operation="list_users") from e
        return [self._row_to_user(r) for r in rows]

    def get_by_id(self, schema: str, user_id: int) -> Optional[User]:
        query = sql.SQL("SELECT {} FROM {} WHERE id = %s").format(_COLUMNS, self._table(schema))
        with self.pools.connection(schema) as conn:
            try:
                with conn.cursor() as cur:
                    cur.execute(query, (user_id,))
                    row = cur.fetchone()
                conn.commit()
            except psycopg2.Error as e:
                conn.rollback()
                raise normalize_error(e, schema=schema, table="users", operation="get_user") from e
        return self._row_to_user(row) if row else None

    # ── UPDATE ────────────────────────────────────────────

    def update(self, schema: str, user: User) -> bool:
        """
        Update name, email and age of an existing user (must have id set).

        Returns:
            True if a row was updated, False otherwise.
        """
        self._check(user)
        query = sql.SQL(
            "UPDATE {} SET name = %s, email = %s, age = %s, updated_at = CURRENT_TIMESTAMP "
            "WHERE id = %s RETURNING updated_at"
        ).format(self._table(schema))

        with self.pools.connection(schema) as conn:
            try:
                with conn.cursor() as cur:
                    cur.execute(query, (user.name, user.email, user.age, user.id))
                    row = cur.fetchone()
                conn.commit()
            except psycopg2.Error as e:
                conn.rollback()
                err = normalize_error(e, schema=schema, table="users", operation="update_user")
                if isinstance(err, UniqueConstraintConflict):
                    err.message = f"Email '{user.email}' already exists"
                logger.error(f"Failed to update user #{user.id} in '{schema}': {err.message}")
                raise err from e

        if row is None:
            return False
        user.updated_at = row[0]
        return True

    # ── DELETE ────────────────────────────────────────────

    def delete(self, schema: str, user_id: int) -> bool:
        """
        Delete a user by id.

        Returns:
            True if a row was deleted, False otherwise.
        """
        query = sql.SQL("DELETE FROM {} WHERE id = %s").format(self._table(schema))
        with self.pools.connection(schema) as conn:
            try:
                with conn.cursor() as cur:
                    cur.execute(query, (user_id,))
                    deleted = cur.rowcount > 0
                conn.commit()
            except psycopg2.Error as e:
                conn.rollback()
                err = normalize_error(e, schema=schema, table="users", operation="delete_user")
                logger.error(f"Failed to delete user #{user_id} from '{schema}': {err.message}")
                raise err from e
        if deleted:
            logger.info(f"Deleted user #{user_id} from '{schema}'")
        return deleted

    # ── HELPERS ───────────────────────────────────────────

    @staticmethod
    def _row_to_user(row: tuple) -> User:
        """Convert a database row tuple to a User domain object."""
        return User(
            id=row[0],
            name=row[1],
            email=row[2],
            age=row[3],
            created_at=row[4],
            updated_at=row[5],
        )
