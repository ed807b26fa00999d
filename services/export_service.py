"""
services/export_service.py
---------------------------
Reads every managed table of a tenant schema into an ExportSnapshot, and
renders snapshots as CSV or Excel files.

Rows are streamed through a server-side cursor in pages of
EXPORT_PAGE_SIZE, all inside one read-only REPEATABLE READ transaction, so
the snapshot is consistent across tables without holding the whole result
set in the driver at once.
"""

import io
from datetime import datetime, timezone

import pandas as pd
import psycopg2
from psycopg2 import sql

from config import EXPORT_PAGE_SIZE
from db.connection import PoolCache
from db.errors import normalize_error
from db.identifiers import quote_table
from models.snapshot import ExportSnapshot
from models.tables import MANAGED_TABLES, ManagedTable
from repositories.schema_repo import SchemaRepository
from utils.logger import get_logger

logger = get_logger(__name__)

READ_ONLY_SNAPSHOT_SQL = "SET TRANSACTION ISOLATION LEVEL REPEATABLE READ READ ONLY;"


def build_select_all(schema: str, table: ManagedTable) -> sql.Composed:
    """SELECT every managed column, ordered by primary key ascending."""
    return sql.SQL("SELECT {} FROM {} ORDER BY {} ASC").format(
        sql.SQL(", ").join(sql.Identifier(c) for c in table.column_names),
        quote_table(schema, table.name),
        sql.Identifier(table.primary_key),
    )


class ExportService:
    """Builds point-in-time snapshots of tenant schemas."""

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

    def export(self, schema_name: str) -> ExportSnapshot:
        """
        Read all rows of all managed tables in a schema.

        Args:
            schema_name: Provisioned tenant schema.

        Returns:
            An ExportSnapshot with rows ordered by primary key.

        Raises:
            InvalidIdentifier: Unsafe name.
            UnknownSchema: The schema is not provisioned.
            TablesMissing: A managed table has not been created yet.
        """
        schema = self.registry.require(schema_name).name
        snapshot = ExportSnapshot(schema=schema, exported_at=datetime.now(timezone.utc))

        current = None
        with self.pools.connection(schema) as conn:
            try:
                with conn.cursor() as cur:
                    cur.execute(READ_ONLY_SNAPSHOT_SQL)
                for table in self.tables:
                    current = table.name
                    snapshot.tables[table.name] = self._read_table(conn, schema, table)
                conn.commit()
            except psycopg2.Error as e:
                conn.rollback()
                err = normalize_error(e, schema=schema, table=current, operation="export")
                logger.error(f"Failed to export schema '{schema}': {err.message}")
                raise err from e

        counts = ", ".join(f"{name}={n}" for name, n in snapshot.row_counts().items())
        logger.info(f"Exported schema '{schema}' ({counts})")
        return snapshot

    def _read_table(self, conn, schema: str, table: ManagedTable) -> list[dict]:
        columns = table.column_names
        rows: list[dict] = []
        with conn.cursor(name=f"export_{schema}_{table.name}") as cur:
            cur.itersize = self.page_size
            cur.execute(build_select_all(schema, table))
            while True:
                page = cur.fetchmany(self.page_size)
                if not page:
                    break
                rows.extend(dict(zip(columns, row)) for row in page)
        return rows


# ── Rendering ─────────────────────────────────────────────

def _table_frame(snapshot: ExportSnapshot, table: ManagedTable) -> pd.DataFrame:
    return pd.DataFrame(snapshot.rows(table.name), columns=table.column_names)


def snapshot_to_csv(
    snapshot: ExportSnapshot, table: ManagedTable = MANAGED_TABLES[0]
) -> io.BytesIO:
    """
    Render one table of a snapshot as CSV.

    Returns:
        A BytesIO buffer containing UTF-8 CSV with a header row.
    """
    df = _table_frame(snapshot, table)
    buffer = io.BytesIO()
    df.to_csv(buffer, index=False, encoding="utf-8")
    buffer.seek(0)
    logger.info(f"Rendered {len(df)} {table.name} rows of '{snapshot.schema}' as CSV")
    return buffer


def snapshot_to_excel(
    snapshot: ExportSnapshot, tables: tuple[ManagedTable, ...] = MANAGED_TABLES
) -> io.BytesIO:
    """
    Render a snapshot as an Excel workbook: one sheet per table plus a
    `summary` sheet with row counts.
    """
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        for table in tables:
            _table_frame(snapshot, table).to_excel(writer, sheet_name=table.name, index=False)

        summary = pd.DataFrame(
            [{"table": t.name, "rows": len(snapshot.rows(t.name))} for t in tables]
        )
        summary.to_excel(writer, sheet_name="summary", index=False)

    buffer.seek(0)
    logger.info(f"Rendered snapshot of '{snapshot.schema}' as Excel ({len(tables)} table(s))")
    return buffer
