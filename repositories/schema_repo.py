"""
repositories/schema_repo.py
---------------------------
Schema Registry: data access for the catalog of provisioned tenant schemas.

The catalog is a single table in the administrative schema
(`<ADMIN_SCHEMA>.schemas`). A schema counts as provisioned when it has a
catalog row and the physical schema exists in pg_namespace.

All statements run on the administrative pool. Schema names are validated
and quoted through db.identifiers before they reach any statement text.
"""

from typing import Optional

import psycopg2
from psycopg2 import sql

from config import ADMIN_SCHEMA
from db.connection import PoolCache
from db.errors import AlreadyExists, UnknownSchema, normalize_error
from db.identifiers import is_valid_schema_name, quote_schema, validate_schema_name
from models.schema import SchemaRecord
from utils.logger import get_logger

logger = get_logger(__name__)


class SchemaRepository:
    """Repository for the administrative schema catalog."""

    def __init__(self, pools: PoolCache, admin_schema: str = ADMIN_SCHEMA):
        self.pools = pools
        self.admin_schema = admin_schema
        self._catalog = sql.Identifier(admin_schema, "schemas")

    def _admin(self):
        return self.pools.get_administrative_pool().connection()

    # ── BOOTSTRAP ─────────────────────────────────────────

    def ensure_catalog(self) -> None:
        """
        Create the administrative schema and catalog table if missing.
        Safe to call multiple times.
        """
        with self._admin() as conn:
            try:
                with conn.cursor() as cur:
                    cur.execute(sql.SQL("CREATE SCHEMA IF NOT EXISTS {}").format(
                        sql.Identifier(self.admin_schema)))
                    cur.execute(sql.SQL(
                        "CREATE TABLE IF NOT EXISTS {} ("
                        "name VARCHAR(63) PRIMARY KEY, "
                        "created_at TIMESTAMPTZ NOT NULL DEFAULT NOW())"
                    ).format(self._catalog))
                conn.commit()
                logger.info(f"Schema catalog ready in '{self.admin_schema}'.")
            except psycopg2.Error as e:
                conn.rollback()
                logger.error(f"Failed to initialize schema catalog: {e}")
                raise normalize_error(e, schema=self.admin_schema, operation="ensure_catalog") from e

    # ── CREATE ────────────────────────────────────────────

    def create(self, name: str) -> SchemaRecord:
        """
        Provision a new schema and record it in the catalog.

        The catalog insert and CREATE SCHEMA share one transaction. A
        concurrent creator of the same name blocks on the catalog's primary
        key until the first transaction ends, then gets AlreadyExists.

        Raises:
            InvalidIdentifier: Unsafe name; nothing is executed.
            AlreadyExists: The name is taken (in the catalog or physically).
        """
        schema = validate_schema_name(name, self.admin_schema)
        insert = sql.SQL(
            "INSERT INTO {} (name) VALUES (%s) "
            "ON CONFLICT (name) DO NOTHING RETURNING name, created_at"
        ).format(self._catalog)

        with self._admin() as conn:
            try:
                with conn.cursor() as cur:
                    cur.execute(insert, (schema,))
                    row = cur.fetchone()
                    if row is None:
                        conn.rollback()
                        raise AlreadyExists(schema)
                    cur.execute(sql.SQL("CREATE SCHEMA {}").format(quote_schema(schema)))
                conn.commit()
            except AlreadyExists:
                logger.warning(f"Schema '{schema}' already exists.")
                raise
            except psycopg2.Error as e:
                conn.rollback()
                err = normalize_error(e, schema=schema, operation="create_schema")
                logger.error(f"Failed to create schema '{schema}': {err.message}")
                raise err from e

        logger.info(f"Created schema '{schema}'.")
        return SchemaRecord(name=row[0], created_at=row[1])

    # ── READ ──────────────────────────────────────────────

    def exists(self, name: str) -> bool:
        """
        True if the schema is provisioned. Invalid names are simply
        reported as absent; no statement is issued for them.
        """
        if not is_valid_schema_name(name, self.admin_schema):
            return False
        return self.get(name) is not None

    def get(self, name: str) -> Optional[SchemaRecord]:
        """Fetch a provisioned schema's catalog record, or None."""
        schema = validate_schema_name(name, self.admin_schema)
        query = sql.SQL(
            "SELECT s.name, s.created_at FROM {} s "
            "JOIN pg_namespace n ON n.nspname = s.name "
            "WHERE s.name = %s"
        ).format(self._catalog)
        with self._admin() as conn:
            try:
                with conn.cursor() as cur:
                    cur.execute(query, (schema,))
                    row = cur.fetchone()
                conn.commit()
            except psycopg2.Error as e:
                conn.rollback()
                raise normalize_error(e, schema=schema, operation="get_schema") from e
        return SchemaRecord(name=row[0], created_at=row[1]) if row else None

    def require(self, name: str, which: Optional[str] = None) -> SchemaRecord:
        """
        Like get(), but a missing schema is an error.

        Raises:
            InvalidIdentifier: Unsafe name.
            UnknownSchema: Not provisioned; `which` labels the schema's role.
        """
        validate_schema_name(name, self.admin_schema)
        record = self.get(name)
        if record is None:
            raise UnknownSchema(name, which)
        return record

    def list(self) -> list[SchemaRecord]:
        """All provisioned schemas, ordered by name."""
        query = sql.SQL(
            "SELECT s.name, s.created_at FROM {} s "
            "JOIN pg_namespace n ON n.nspname = s.name "
            "ORDER BY s.name"
        ).format(self._catalog)
        with self._admin() as conn:
            try:
                with conn.cursor() as cur:
                    cur.execute(query)
                    rows = cur.fetchall()
                conn.commit()
            except psycopg2.Error as e:
                conn.rollback()
                raise normalize_error(e, operation="list_schemas") from e
        return [SchemaRecord(name=r[0], created_at=r[1]) for r in rows]

    # ── DELETE ────────────────────────────────────────────

    def drop(self, name: str) -> None:
        """
        Remove a schema, its tables and its catalog row.

        Raises:
            UnknownSchema: The schema is not in the catalog.
        """
        schema = validate_schema_name(name, self.admin_schema)
        delete = sql.SQL("DELETE FROM {} WHERE name = %s RETURNING name").format(self._catalog)
        with self._admin() as conn:
            try:
                with conn.cursor() as cur:
                    cur.execute(delete, (schema,))
                    if cur.fetchone() is None:
                        conn.rollback()
                        raise UnknownSchema(schema)
                    cur.execute(sql.SQL("DROP SCHEMA IF EXISTS {} CASCADE").format(quote_schema(schema)))
                conn.commit()
            except UnknownSchema:
                raise
            except psycopg2.Error as e:
                conn.rollback()
                err = normalize_error(e, schema=schema, operation="drop_schema")
                logger.error(f"Failed to drop schema '{schema}': {err.message}")
                raise err from e
        logger.info(f"Dropped schema '{schema}'.")
