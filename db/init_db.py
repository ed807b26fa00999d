"""
db/init_db.py
-------------
Applies the managed table definition inside a tenant schema.

Tables are created with CREATE TABLE IF NOT EXISTS, so initialization is
idempotent and doubles as a repair operation. Existing tables are never
altered: if their shape differs from the definition, the differences are
returned as warnings in the InitResult.
"""

import psycopg2
from psycopg2 import sql

from db.connection import PoolCache
from db.errors import normalize_error
from db.identifiers import quote_table
from models.schema import InitResult
from models.tables import MANAGED_TABLES, ManagedTable
from utils.logger import get_logger

logger = get_logger(__name__)

TABLE_EXISTS_SQL = """
    SELECT 1 FROM information_schema.tables
    WHERE table_schema = %s AND table_name = %s;
"""

TABLE_COLUMNS_SQL = """
    SELECT column_name, data_type, is_nullable FROM information_schema.columns
    WHERE table_schema = %s AND table_name = %s
    ORDER BY ordinal_position;
"""


def build_create_table(schema: str, table: ManagedTable) -> sql.Composed:
    """CREATE TABLE IF NOT EXISTS statement for one managed table."""
    parts = [
        sql.SQL("{} {}").format(sql.Identifier(col.name), sql.SQL(col.ddl))
        for col in table.columns
    ]
    parts += [sql.SQL("CHECK ({})").format(sql.SQL(check)) for check in table.checks]
    return sql.SQL("CREATE TABLE IF NOT EXISTS {} ({})").format(
        quote_table(schema, table.name), sql.SQL(", ").join(parts)
    )


def describe_divergence(table: ManagedTable, live_columns: list[tuple]) -> list[str]:
    """
    Compare live (column_name, data_type, is_nullable) rows with a definition.

    Returns:
        One human-readable warning per difference; empty if the shapes match.
    """
    warnings = []
    live = {name: (data_type, is_nullable == "YES") for name, data_type, is_nullable in live_columns}

    for col in table.columns:
        if col.name not in live:
            warnings.append(f"{table.name}: missing column '{col.name}'")
            continue
        data_type, nullable = live[col.name]
        if data_type != col.data_type:
            warnings.append(
                f"{table.name}.{col.name}: expected type {col.data_type}, found {data_type}"
            )
        if nullable != col.nullable:
            expected = "nullable" if col.nullable else "NOT NULL"
            warnings.append(f"{table.name}.{col.name}: expected {expected}")

    expected_names = set(table.column_names)
    for name, _, _ in live_columns:
        if name not in expected_names:
            warnings.append(f"{table.name}: unexpected column '{name}'")
    return warnings


class TableInitializer:
    """Creates the managed tables inside provisioned schemas."""

    def __init__(
        self,
        pools: PoolCache,
        registry,
        tables: tuple[ManagedTable, ...] = MANAGED_TABLES,
    ):
        self.pools = pools
        self.registry = registry
        self.tables = tables

    def initialize(self, schema_name: str) -> InitResult:
        """
        Create every managed table that is missing in the schema.
        Safe to call multiple times.

        Raises:
            InvalidIdentifier: Unsafe name.
            UnknownSchema: The schema is not provisioned.
        """
        schema = self.registry.require(schema_name).name
        result = InitResult(schema=schema)

        with self.pools.get_administrative_pool().connection() as conn:
            try:
                with conn.cursor() as cur:
                    for table in self.tables:
                        cur.execute(TABLE_EXISTS_SQL, (schema, table.name))
                        present = cur.fetchone() is not None
                        cur.execute(build_create_table(schema, table))
                        if not present:
                            result.created.append(table.name)
                            continue
                        result.existing.append(table.name)
                        cur.execute(TABLE_COLUMNS_SQL, (schema, table.name))
                        result.warnings.extend(describe_divergence(table, cur.fetchall()))
                conn.commit()
            except psycopg2.Error as e:
                conn.rollback()
                err = normalize_error(e, schema=schema, operation="initialize")
                logger.error(f"Failed to initialize tables in '{schema}': {err.message}")
                raise err from e

        for warning in result.warnings:
            logger.warning(f"Schema '{schema}' diverges from table definition: {warning}")
        logger.info(
            f"Initialized schema '{schema}': created={result.created or '-'} "
            f"existing={result.existing or '-'}"
        )
        return result
