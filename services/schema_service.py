"""
services/schema_service.py
---------------------------
Entry point for callers (CLI, HTTP router): one object exposing every
schema lifecycle operation with activity events attached.

Responsibilities:
    - Wire the registry, table initializer, exporter, migrator and user
      repository around a shared PoolCache.
    - Provision = create the schema, then initialize its tables.
    - Emit one ActivityEvent per operation, success or failure.

All failures surface as TenantDbError subclasses; mapping them to
transport status codes is the caller's job.
"""

from typing import Optional

from db.connection import PoolCache
from db.errors import TenantDbError
from db.init_db import TableInitializer
from models.schema import InitResult, SchemaRecord
from models.snapshot import ExportSnapshot, MigrationResult
from models.user import User
from repositories.schema_repo import SchemaRepository
from repositories.user_repo import UserRepository
from services.export_service import ExportService
from services.migration_service import MigrationService
from utils.activity_log import ANONYMOUS, ActivitySink, audited
from utils.logger import get_logger

logger = get_logger(__name__)


class SchemaService:
    """Schema lifecycle facade over a PoolCache."""

    def __init__(self, pools: PoolCache, activity_sink: Optional[ActivitySink] = None):
        self.pools = pools
        self.activity_sink = activity_sink
        self.registry = SchemaRepository(pools)
        if pools.schema_exists is None:
            pools.schema_exists = self.registry.exists
        self.initializer = TableInitializer(pools, self.registry)
        self.exporter = ExportService(pools, self.registry)
        self.migrator = MigrationService(pools, self.registry)
        self.users = UserRepository(pools)

    def bootstrap(self) -> None:
        """Make sure the administrative catalog exists."""
        self.registry.ensure_catalog()

    # ── Schema lifecycle ──────────────────────────────────

    @audited("create")
    def create_schema(self, name: str, actor_id: str = ANONYMOUS) -> SchemaRecord:
        """
        Provision a schema and create its managed tables.

        If table creation fails the schema stays registered; the error
        details carry `initialized: False` and `init` repairs it.
        """
        record = self.registry.create(name)
        try:
            self.initializer.initialize(record.name)
        except TenantDbError as e:
            e.details.update({"schema": record.name, "registered": True, "initialized": False})
            logger.error(f"Schema '{record.name}' registered without tables; run init to repair.")
            raise
        return record

    @audited("exists")
    def schema_exists(self, name: str, actor_id: str = ANONYMOUS) -> bool:
        return self.registry.exists(name)

    @audited("list")
    def list_schemas(self, actor_id: str = ANONYMOUS) -> list[SchemaRecord]:
        return self.registry.list()

    @audited("initialize")
    def initialize_schema(self, name: str, actor_id: str = ANONYMOUS) -> InitResult:
        return self.initializer.initialize(name)

    @audited("export")
    def export_schema(self, name: str, actor_id: str = ANONYMOUS) -> ExportSnapshot:
        return self.exporter.export(name)

    @audited("migrate")
    def migrate(self, source: str, target: str, actor_id: str = ANONYMOUS) -> MigrationResult:
        return self.migrator.migrate(source, target)

    @audited("drop")
    def drop_schema(self, name: str, actor_id: str = ANONYMOUS) -> None:
        """Remove a schema and retire its pool."""
        self.registry.drop(name)
        self.pools.evict(name)

    # ── Users ─────────────────────────────────────────────

    @audited("user.create")
    def add_user(self, schema: str, user: User, actor_id: str = ANONYMOUS) -> User:
        return self.users.add(schema, user)

    @audited("user.list")
    def list_users(self, schema: str, actor_id: str = ANONYMOUS) -> list[User]:
        return self.users.list(schema)

    @audited("user.get")
    def get_user(self, schema: str, user_id: int, actor_id: str = ANONYMOUS) -> Optional[User]:
        return self.users.get_by_id(schema, user_id)

    @audited("user.update")
    def update_user(self, schema: str, user: User, actor_id: str = ANONYMOUS) -> bool:
        return self.users.update(schema, user)

    @audited("user.delete")
    def delete_user(self, schema: str, user_id: int, actor_id: str = ANONYMOUS) -> bool:
        return self.users.delete(schema, user_id)
