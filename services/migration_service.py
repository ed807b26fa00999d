"""
services/migration_service.py
------------------------------
Copies row data from one tenant schema into another's matching tables.

Business rules:
    - Both schemas must already be provisioned; the target is never
      created as a side effect.
    - Generated columns (id, created_at, updated_at) are regenerated in the
      target; only the data columns are copied.
    - A row whose unique key (email) already exists in the target is
      skipped and reported as a conflict. The pre-existing row is untouched.
    - Each table is copied in one transaction on the target connection. A
      failure rolls back that table only; the remaining tables still run.
"""

from contextlib import contextmanager
from typing import Iterator

import psycopg2
from psycopg2 import sql

from config import EXPORT_PAGE_SIZE
from db.connection import PoolCache
from db.errors import TenantDbError, normalize_error
from db.identifiers import quote_table
from models.snapshot import MigrationResult, TableMigration
from models.tables import MANAGED_TABLES, ManagedTable
from repositories.schema_repo import SchemaRepository
from utils.logger import get_logger

logger = get_logger(__name__)


def build_select_copy(schema: str, table: ManagedTable) -> sql.Composed:
    return sql.SQL("SELECT {} FROM {} ORDER BY {} ASC").format(
        sql.SQL(", ").join(sql.Identifier(c) for c in table.copy_columns),
        quote_table(schema, table.name),
        sql.Identifier(table.primary_key),
    )


def build_insert_skip_conflicts(schema: str, table: ManagedTable) -> sql.Composed:
    """INSERT of the copy columns that yields no row when the unique key is taken."""
    columns = table.copy_columns
    conflict_target = (
        sql.SQL("({})").format(sql.Identifier(table.unique_key)) if table.unique_key else sql.SQL("")
    )
    return sql.SQL(
        "INSERT INTO {} ({}) VALUES ({}) ON CONFLICT {} DO NOTHING RETURNING {}"
    ).format(
        quote_table(schema, table.name),
        sql.SQL(", ").join(sql.Identifier(c) for c in columns),
        sql.SQL(", ").join(sql.Placeholder() * len(columns)),
        conflict_target,
        sql.Identifier(table.primary_key),
    )


@contextmanager
def _tagged(schema: str, table: str, operation: str) -> Iterator[None]:
    """Normalize driver errors raised in the block against one side of the copy."""
    try:
        yield
    except psycopg2.Error as e:
        raise normalize_error(e, schema=schema, table=table, operation=operation) from e


class MigrationService:
    """Copies managed-table rows between provisioned schemas."""

    def __init__(
        self,
        pools: PoolCache,
        registry: SchemaRepository,
        tables: tuple[ManagedTable, ...] = MANAGED_TABLES,
        page_size: int = EXPORT_PAGE_SIZE,
    ):
        self.pools = pools
        self.registry = registry
        self.tables = tables
        self.page_size = page_size

    def migrate(self, source_name: str, target_name: str) -> MigrationResult:
        """
        Copy every managed table from `source_name` into `target_name`.

        Returns:
            A MigrationResult with per-table copied/conflict counts and
            errors. Partial completion across tables is reported, not raised.

        Raises:
            InvalidIdentifier: Either name is unsafe.
            UnknownSchema: Either schema is not provisioned (`which` says which).
        """
        source = self.registry.require(source_name, which="source").name
        target = self.registry.require(target_name, which="target").name
        result = MigrationResult(source=source, target=target)

        for table in self.tables:
            result.tables[table.name] = self._copy_table(source, target, table)

        logger.info(
            f"Migrated '{source}' -> '{target}': copied={result.copied} "
            f"conflicts={result.conflicts} success={result.success}"
        )
        return result

    def _copy_table(self, source: str, target: str, table: ManagedTable) -> TableMigration:
        report = TableMigration(table=table.name)
        select = build_select_copy(source, table)
        insert = build_insert_skip_conflicts(target, table)
        key_index = table.copy_columns.index(table.unique_key) if table.unique_key else None
        reading = (source, table.name, "migrate_read")
        writing = (target, table.name, "migrate_write")

        try:
            with self.pools.connection(source) as src, self.pools.connection(target) as dst:
                try:
                    with src.cursor(name=f"migrate_{source}_{table.name}") as read_cur, \
                            dst.cursor() as write_cur:
                        read_cur.itersize = self.page_size
                        with _tagged(*reading):
                            read_cur.execute(select)
                        while True:
                            with _tagged(*reading):
                                page = read_cur.fetchmany(self.page_size)
                            if not page:
                                break
                            for row in page:
                                with _tagged(*writing):
                                    write_cur.execute(insert, tuple(row))
                                    inserted = write_cur.fetchone() is not None
                                if inserted:
                                    report.copied += 1
                                    continue
                                report.conflicts += 1
                                if key_index is not None:
                                    report.conflict_keys.append(row[key_index])
                    with _tagged(*writing):
                        dst.commit()
                    with _tagged(*reading):
                        src.commit()
                except (psycopg2.Error, TenantDbError):
                    dst.rollback()
                    src.rollback()
                    raise
        except (psycopg2.Error, TenantDbError) as e:
            err = normalize_error(e, table=table.name, operation="migrate")
            logger.error(
                f"Migration of table '{table.name}' from '{source}' to '{target}' "
                f"rolled back: {err.message}"
            )
            return TableMigration(table=table.name, error=err.to_dict())

        if report.conflicts:
            logger.warning(
                f"{report.conflicts} conflicting {table.name} row(s) skipped "
                f"migrating '{source}' -> '{target}'"
            )
        return report
