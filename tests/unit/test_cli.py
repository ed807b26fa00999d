"""
Unit tests for the operator CLI, run against the in-memory database.
"""

import json

import pytest
from typer.testing import CliRunner

import main
from db.connection import PoolCache

runner = CliRunner()


@pytest.fixture
def cli(monkeypatch, fake_db, tmp_path):
    """Point the CLI runtime at the fake database and a temp activity log."""
    caches = []

    def fake_init_pool(dsn):
        cache = PoolCache(dsn, pool_factory=fake_db.pool_factory, acquire_timeout=0.2)
        cache.open()
        caches.append(cache)
        return cache

    def fake_close_pool():
        for cache in caches:
            cache.shutdown_all()

    log_path = tmp_path / "activity.jsonl"
    monkeypatch.setattr(main, "init_pool", fake_init_pool)
    monkeypatch.setattr(main, "close_pool", fake_close_pool)
    monkeypatch.setattr(main, "ACTIVITY_LOG_PATH", str(log_path))

    def invoke(*args):
        return runner.invoke(main.app, list(args))

    return invoke


class TestCommands:

    def test_create_and_exists(self, cli):
        result = cli("create", "tenant_a")
        assert result.exit_code == 0, result.output
        assert "Created schema 'tenant_a'" in result.output

        result = cli("exists", "tenant_a")
        assert result.exit_code == 0
        assert '"exists": true' in result.output

    def test_create_duplicate_exit_code(self, cli):
        cli("create", "tenant_a")
        assert cli("create", "tenant_a").exit_code == 2

    def test_invalid_name_exit_code(self, cli):
        assert cli("create", "bad;name").exit_code == 2

    def test_list(self, cli):
        cli("create", "tenant_b")
        cli("create", "tenant_a")
        result = cli("list")
        assert result.exit_code == 0
        assert result.output.index('"tenant_a"') < result.output.index('"tenant_b"')

    def test_init(self, cli):
        cli("create", "tenant_a")
        result = cli("init", "tenant_a")
        assert result.exit_code == 0
        assert '"existing": [\n    "users"\n  ]' in result.output

    def test_migrate_unknown_target(self, cli):
        cli("create", "tenant_a")
        assert cli("migrate", "tenant_a", "tenant_b").exit_code == 3

    def test_migrate(self, cli):
        cli("create", "tenant_a")
        cli("create", "tenant_b")
        result = cli("migrate", "tenant_a", "tenant_b")
        assert result.exit_code == 0
        assert '"success": true' in result.output

    def test_export_csv_to_file(self, cli, tmp_path):
        cli("create", "tenant_a")
        out = tmp_path / "tenant_a.csv"
        result = cli("export", "tenant_a", "--format", "csv", "--output", str(out))
        assert result.exit_code == 0
        assert out.read_text(encoding="utf-8").splitlines()[0] == "id,name,email,age,created_at,updated_at"

    def test_export_xlsx_requires_output(self, cli):
        cli("create", "tenant_a")
        assert cli("export", "tenant_a", "--format", "xlsx").exit_code == 2

    def test_drop(self, cli):
        cli("create", "tenant_a")
        result = cli("drop", "tenant_a", "--yes")
        assert result.exit_code == 0
        assert '"exists": false' in cli("exists", "tenant_a").output

    def test_logs(self, cli, tmp_path):
        cli("create", "tenant_a", "--actor", "alice")
        cli("exists", "tenant_a")
        result = cli("logs", "--limit", "1")
        assert result.exit_code == 0
        payload = json.loads((tmp_path / "activity.jsonl").read_text().splitlines()[0])
        assert payload["operation"] == "create"
        assert payload["actor_id"] == "alice"
        assert '"count": 1' in result.output
