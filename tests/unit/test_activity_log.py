"""
Unit tests for activity events and sinks.

Tests cover:
- JSON-lines sink append and read_logs paging
- Failing sinks never affect the operation
- The audited decorator on success and failure
"""

import json

import pytest

from db.errors import UnknownSchema
from utils.activity_log import (
    ANONYMOUS,
    ActivityEvent,
    JsonLinesActivitySink,
    LoggingActivitySink,
    MultiSink,
    audited,
    emit,
)


class ExplodingSink:
    def record(self, event):
        raise OSError("disk full")


class Recorder:
    def __init__(self):
        self.events = []

    def record(self, event):
        self.events.append(event)


class Widget:
    """Minimal object carrying an activity sink, as services do."""

    def __init__(self, sink):
        self.activity_sink = sink

    @audited("create")
    def create(self, name, actor_id=ANONYMOUS):
        return {"name": name}

    @audited("migrate")
    def fail(self, source, target, actor_id=ANONYMOUS):
        raise UnknownSchema(target, which="target")


class TestJsonLinesSink:
    """Tests for JsonLinesActivitySink."""

    @pytest.fixture
    def sink(self, tmp_path):
        return JsonLinesActivitySink(str(tmp_path / "logs" / "activity.jsonl"))

    def test_record_appends_lines(self, sink):
        sink.record(ActivityEvent("create", ["tenant_a"], "alice", True))
        sink.record(ActivityEvent("export", ["tenant_a"], "alice", True))
        lines = sink.path.read_text(encoding="utf-8").splitlines()
        assert [json.loads(line)["operation"] for line in lines] == ["create", "export"]

    def test_read_logs_newest_first_with_limit(self, sink):
        for i in range(5):
            sink.record(ActivityEvent(f"op{i}", [], ANONYMOUS, True))
        events = sink.read_logs(limit=3)
        assert [e["operation"] for e in events] == ["op4", "op3", "op2"]

    def test_read_logs_missing_file(self, sink):
        assert sink.read_logs() == []

    def test_read_logs_skips_malformed_lines(self, sink):
        sink.record(ActivityEvent("create", ["tenant_a"], ANONYMOUS, True))
        with sink.path.open("a", encoding="utf-8") as fh:
            fh.write("not json\n")
        assert [e["operation"] for e in sink.read_logs()] == ["create"]

    def test_read_logs_zero_limit(self, sink):
        sink.record(ActivityEvent("create", ["tenant_a"], ANONYMOUS, True))
        assert sink.read_logs(limit=0) == []

    def test_rotates_at_max_bytes(self, tmp_path):
        sink = JsonLinesActivitySink(str(tmp_path / "activity.jsonl"), max_bytes=1)
        sink.record(ActivityEvent("create", ["tenant_a"], ANONYMOUS, True))
        sink.record(ActivityEvent("export", ["tenant_a"], ANONYMOUS, True))
        assert [e["operation"] for e in sink.read_logs()] == ["export"]
        rotated = sink.rotated_path.read_text(encoding="utf-8").splitlines()
        assert [json.loads(line)["operation"] for line in rotated] == ["create"]

    def test_event_fields(self, sink):
        sink.record(ActivityEvent("migrate", ["tenant_a", "tenant_b"], "bob", False, {"code": "X"}))
        event = sink.read_logs()[0]
        assert event["schemas"] == ["tenant_a", "tenant_b"]
        assert event["actor_id"] == "bob"
        assert event["success"] is False
        assert event["detail"] == {"code": "X"}
        assert event["timestamp"]


class TestEmit:

    def test_failing_sink_is_ignored(self):
        emit(ExplodingSink(), ActivityEvent("create", ["tenant_a"], ANONYMOUS, True))

    def test_none_sink(self):
        emit(None, ActivityEvent("create", [], ANONYMOUS, True))

    def test_multi_sink_continues_after_failure(self):
        recorder = Recorder()
        MultiSink(ExplodingSink(), recorder).record(ActivityEvent("list", [], ANONYMOUS, True))
        assert len(recorder.events) == 1

    def test_logging_sink(self, caplog):
        with caplog.at_level("INFO", logger="activity"):
            LoggingActivitySink().record(ActivityEvent("exists", ["tenant_a"], ANONYMOUS, True))
        assert '"operation": "exists"' in caplog.text


class TestAudited:
    """Tests for the audited decorator."""

    def test_success_event(self):
        recorder = Recorder()
        assert Widget(recorder).create("tenant_a", actor_id="alice") == {"name": "tenant_a"}
        event = recorder.events[0]
        assert (event.operation, event.schemas, event.actor_id, event.success) == (
            "create", ["tenant_a"], "alice", True,
        )
        assert event.detail == {"result": "{'name': 'tenant_a'}"}

    def test_default_actor_is_anonymous(self):
        recorder = Recorder()
        Widget(recorder).create("tenant_a")
        assert recorder.events[0].actor_id == "anonymous"

    def test_failure_event_and_reraise(self):
        recorder = Recorder()
        with pytest.raises(UnknownSchema):
            Widget(recorder).fail("tenant_a", "tenant_b")
        event = recorder.events[0]
        assert event.success is False
        assert event.schemas == ["tenant_a", "tenant_b"]
        assert event.detail["code"] == "UNKNOWN_SCHEMA"

    def test_failing_sink_does_not_fail_operation(self):
        assert Widget(ExplodingSink()).create("tenant_a") == {"name": "tenant_a"}
