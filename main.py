"""
main.py
-------
Operator CLI for tenant schema provisioning.

Responsibilities:
    - Initialize the pool cache and the administrative schema catalog.
    - Run the idle-pool evictor while a command executes.
    - Expose create / exists / list / init / export / migrate / drop / logs.
    - Close every pool on exit.

Usage:
    python main.py create tenant_a
    python main.py migrate tenant_a tenant_b
    python main.py export tenant_a --format xlsx --output tenant_a.xlsx
"""

import json
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional

import typer

from config import ACTIVITY_LOG_PATH, DATABASE_URL, LOG_LEVEL
from db.connection import close_pool, init_pool
from db.errors import TenantDbError
from db.evictor import IdlePoolEvictor
from services.export_service import snapshot_to_csv, snapshot_to_excel
from services.schema_service import SchemaService
from utils.activity_log import ANONYMOUS, JsonLinesActivitySink, LoggingActivitySink, MultiSink
from utils.logger import get_logger, set_log_level

logger = get_logger(__name__)

app = typer.Typer(help="Provision and manage tenant schemas.", no_args_is_help=True)

ActorOpt = typer.Option(ANONYMOUS, "--actor", help="Actor id recorded in the activity log")

# Exit codes per error kind; anything else exits with 1
_EXIT_CODES = {
    "INVALID_IDENTIFIER": 2,
    "ALREADY_EXISTS": 2,
    "INVALID_USER": 2,
    "UNKNOWN_SCHEMA": 3,
    "POOL_TIMEOUT": 4,
}


class ExportFormat(str, Enum):
    json = "json"
    csv = "csv"
    xlsx = "xlsx"


def _activity_sink():
    if ACTIVITY_LOG_PATH:
        return MultiSink(LoggingActivitySink(), JsonLinesActivitySink(ACTIVITY_LOG_PATH))
    return LoggingActivitySink()


@contextmanager
def _runtime() -> Iterator[SchemaService]:
    """Pools, catalog and evictor for the duration of one command."""
    # ── 1. Database setup ─────────────────────────────────
    try:
        pools = init_pool(DATABASE_URL)
        service = SchemaService(pools, activity_sink=_activity_sink())
        service.bootstrap()
    except TenantDbError as e:
        close_pool()
        typer.echo(f"✗ {e.message}", err=True)
        raise typer.Exit(1)

    # ── 2. Background eviction ────────────────────────────
    evictor = IdlePoolEvictor(pools)
    evictor.start()

    # ── 3. Run, then clean up ─────────────────────────────
    try:
        yield service
    except TenantDbError as e:
        typer.echo(f"✗ [{e.code}] {e.message}", err=True)
        raise typer.Exit(_EXIT_CODES.get(e.code, 1))
    finally:
        evictor.stop()
        close_pool()


@app.callback()
def _configure(
    log_level: str = typer.Option(LOG_LEVEL, "--log-level", help="DEBUG, INFO, WARNING or ERROR"),
):
    set_log_level(log_level)


def _print_json(data) -> None:
    typer.echo(json.dumps(data, indent=2, ensure_ascii=False, default=str))


@app.command()
def create(name: str = typer.Argument(..., help="New schema name"), actor: str = ActorOpt):
    """Create a schema and its tables."""
    with _runtime() as service:
        record = service.create_schema(name, actor_id=actor)
        typer.echo(f"✓ Created schema '{record.name}'")


@app.command()
def exists(name: str, actor: str = ActorOpt):
    """Check whether a schema is provisioned."""
    with _runtime() as service:
        _print_json({"schema": name, "exists": service.schema_exists(name, actor_id=actor)})


@app.command("list")
def list_cmd(actor: str = ActorOpt):
    """List provisioned schemas."""
    with _runtime() as service:
        _print_json([r.to_dict() for r in service.list_schemas(actor_id=actor)])


@app.command("init")
def init_cmd(name: str, actor: str = ActorOpt):
    """Create missing managed tables (idempotent repair)."""
    with _runtime() as service:
        result = service.initialize_schema(name, actor_id=actor)
        _print_json(result.to_dict())
        for warning in result.warnings:
            typer.echo(f"⚠ {warning}", err=True)


@app.command()
def export(
    name: str,
    fmt: ExportFormat = typer.Option(ExportFormat.json, "--format", help="json, csv or xlsx"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="File to write"),
    actor: str = ActorOpt,
):
    """Export all rows of a schema."""
    with _runtime() as service:
        snapshot = service.export_schema(name, actor_id=actor)

    if fmt is ExportFormat.json:
        payload = json.dumps(snapshot.to_dict(), indent=2, ensure_ascii=False).encode("utf-8")
    elif fmt is ExportFormat.csv:
        payload = snapshot_to_csv(snapshot).getvalue()
    else:
        payload = snapshot_to_excel(snapshot).getvalue()

    if output is None:
        if fmt is ExportFormat.xlsx:
            typer.echo("✗ --output is required for xlsx exports", err=True)
            raise typer.Exit(2)
        typer.echo(payload.decode("utf-8"))
        return
    output.write_bytes(payload)
    typer.echo(f"✓ Wrote {output}")


@app.command()
def migrate(source: str, target: str, actor: str = ActorOpt):
    """Copy rows from SOURCE into TARGET (both must exist)."""
    with _runtime() as service:
        result = service.migrate(source, target, actor_id=actor)
    _print_json(result.to_dict())
    if not result.success:
        raise typer.Exit(1)


@app.command()
def drop(
    name: str,
    yes: bool = typer.Option(False, "--yes", help="Skip confirmation prompt"),
    actor: str = ActorOpt,
):
    """Drop a schema and all of its data."""
    if not yes and not typer.confirm(f"Drop schema '{name}' and all of its data?"):
        typer.echo("Cancelled.")
        raise typer.Exit(0)
    with _runtime() as service:
        service.drop_schema(name, actor_id=actor)
        typer.echo(f"✓ Dropped schema '{name}'")


@app.command()
def logs(limit: int = typer.Option(100, "--limit", help="Newest N events")):
    """Show recent activity events."""
    if not ACTIVITY_LOG_PATH:
        typer.echo("Activity file log is disabled (ACTIVITY_LOG_PATH is empty).")
        raise typer.Exit(0)
    events = JsonLinesActivitySink(ACTIVITY_LOG_PATH).read_logs(limit)
    _print_json({"logs": events, "count": len(events)})


if __name__ == "__main__":
    app()
