"""
Unit tests for the SchemaService facade.

Tests cover:
- Provisioning (create + initialize) end to end on the in-memory database
- Activity events emitted per operation
- Dropping a schema retires its pool
"""

import psycopg2
import pytest

from db.errors import AlreadyExists, InvalidIdentifier, StorageUnavailable, UnknownSchema
from models.user import User


class TestProvisioning:

    def test_create_schema_initializes_tables(self, service, fake_db):
        record = service.create_schema("tenant_a")
        assert record.name == "tenant_a"
        assert ("tenant_a", "users") in fake_db.tables
        assert service.schema_exists("tenant_a") is True

    def test_create_twice(self, service):
        service.create_schema("tenant_a")
        with pytest.raises(AlreadyExists):
            service.create_schema("tenant_a")

    def test_list_schemas(self, service):
        service.create_schema("tenant_b")
        service.create_schema("tenant_a")
        assert [r.name for r in service.list_schemas()] == ["tenant_a", "tenant_b"]

    def test_initialize_is_repair(self, service, fake_db):
        service.create_schema("tenant_a")
        del fake_db.tables[("tenant_a", "users")]
        result = service.initialize_schema("tenant_a")
        assert result.created == ["users"]

    def test_failed_initialization_leaves_repairable_schema(self, service, fake_db, events):
        def fail_create_table(text, params):
            if text.startswith('CREATE TABLE IF NOT EXISTS "tenant_a"'):
                raise psycopg2.OperationalError("disk full")

        fake_db.fail_hook = fail_create_table
        with pytest.raises(StorageUnavailable) as exc_info:
            service.create_schema("tenant_a")
        fake_db.fail_hook = None

        assert exc_info.value.details["initialized"] is False
        assert events.events[-1].detail["details"]["initialized"] is False
        assert service.schema_exists("tenant_a") is True
        assert service.initialize_schema("tenant_a").created == ["users"]

    def test_pools_route_by_registry(self, service):
        """The facade wires the registry as the pool cache's existence check."""
        with pytest.raises(UnknownSchema):
            service.list_users("tenant_a")
        service.create_schema("tenant_a")
        assert service.list_users("tenant_a") == []
        assert "tenant_a" in service.pools


class TestDrop:

    def test_drop_schema_evicts_pool(self, service):
        service.create_schema("tenant_a")
        service.add_user("tenant_a", User(name="Alice", email="alice@example.com"))
        handle = service.pools.get_pool_for("tenant_a")

        service.drop_schema("tenant_a")

        assert handle.closed
        assert "tenant_a" not in service.pools
        assert service.schema_exists("tenant_a") is False
        with pytest.raises(UnknownSchema):
            service.list_users("tenant_a")

    def test_drop_unknown(self, service):
        with pytest.raises(UnknownSchema):
            service.drop_schema("tenant_a")


class TestActivity:
    """Every operation emits exactly one event."""

    def test_events_for_lifecycle(self, service, events):
        service.create_schema("tenant_a", actor_id="alice")
        service.create_schema("tenant_b", actor_id="alice")
        service.schema_exists("tenant_a")
        service.export_schema("tenant_a")
        service.migrate("tenant_a", "tenant_b")

        assert events.operations() == ["create", "create", "exists", "export", "migrate"]
        assert events.events[0].actor_id == "alice"
        assert events.events[2].actor_id == "anonymous"
        assert events.events[4].schemas == ["tenant_a", "tenant_b"]
        assert events.events[4].detail["success"] is True

    def test_export_event_omits_rows(self, service, events):
        service.create_schema("tenant_a")
        service.add_user("tenant_a", User(name="Alice", email="alice@example.com"))
        service.export_schema("tenant_a")
        detail = events.events[-1].detail
        assert detail == {"schema": "tenant_a", "row_counts": {"users": 1}}

    def test_failure_event(self, service, events):
        with pytest.raises(InvalidIdentifier):
            service.create_schema("bad name")
        event = events.events[-1]
        assert event.operation == "create"
        assert event.success is False
        assert event.detail["code"] == "INVALID_IDENTIFIER"

    def test_exists_detail(self, service, events):
        service.schema_exists("tenant_a")
        assert events.events[-1].detail == {"result": False}
