"""
utils/activity_log.py
---------------------
Structured activity events for schema, table and migration operations.

The core hands each event to a sink and never depends on the outcome: a
sink that raises is logged at WARNING and otherwise ignored. Two sinks are
provided: one writing through the standard logger, one appending JSON
lines to a file that `read_logs()` can page back.
"""

import json
import threading
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

from config import ACTIVITY_LOG_MAX_BYTES
from db.errors import TenantDbError
from utils.logger import get_logger

logger = get_logger(__name__)

ANONYMOUS = "anonymous"


@dataclass
class ActivityEvent:
    """
    One recorded operation.

    Attributes:
        operation: e.g. "create", "exists", "initialize", "export", "migrate".
        schemas: Schema name(s) involved, in call order.
        actor_id: Who asked for it ("anonymous" when unauthenticated).
        success: Whether the operation completed.
        detail: Operation result summary, or the error dict on failure.
        timestamp: UTC ISO-8601 time the event was recorded.
    """
    operation: str
    schemas: list[str]
    actor_id: str
    success: bool
    detail: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict:
        return asdict(self)


class ActivitySink(Protocol):
    def record(self, event: ActivityEvent) -> None: ...


class LoggingActivitySink:
    """Writes each event as one JSON line through the `activity` logger."""

    def __init__(self, name: str = "activity"):
        self._logger = get_logger(name)

    def record(self, event: ActivityEvent) -> None:
        self._logger.info(json.dumps(event.to_dict(), default=str))


class JsonLinesActivitySink:
    """
    Appends events to a JSON-lines file.

    Once the file reaches `max_bytes` it is renamed to `<path>.1` (replacing
    any previous one) and a fresh file is started.
    """

    def __init__(self, path: str, max_bytes: int = ACTIVITY_LOG_MAX_BYTES):
        self.path = Path(path)
        self.max_bytes = max_bytes
        self._lock = threading.Lock()

    @property
    def rotated_path(self) -> Path:
        return self.path.with_name(self.path.name + ".1")

    def record(self, event: ActivityEvent) -> None:
        line = json.dumps(event.to_dict(), default=str)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if self.max_bytes and self.path.exists() and self.path.stat().st_size >= self.max_bytes:
                self.path.replace(self.rotated_path)
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")

    def read_logs(self, limit: int = 100) -> list[dict]:
        """
        Return the newest `limit` events of the current file, newest first.
        Lines that are not valid JSON are skipped.
        """
        if not self.path.exists():
            return []

        events: deque = deque(maxlen=max(limit, 0))
        with self._lock, self.path.open(encoding="utf-8") as fh:
            for line in fh:
                if not line.strip():
                    continue
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.warning(f"Skipping malformed activity log line in {self.path}")
        return list(reversed(events))


class MultiSink:
    """Fans an event out to several sinks."""

    def __init__(self, *sinks: ActivitySink):
        self.sinks = list(sinks)

    def record(self, event: ActivityEvent) -> None:
        for sink in self.sinks:
            emit(sink, event)


def emit(sink: Optional[ActivitySink], event: ActivityEvent) -> None:
    """Deliver an event; sink failures are logged, never propagated."""
    if sink is None:
        return
    try:
        sink.record(event)
    except Exception as e:
        logger.warning(f"Activity sink {type(sink).__name__} failed for '{event.operation}': {e}")


def _summarize(value: Any) -> dict:
    if value is None or isinstance(value, bool):
        return {"result": value}
    if hasattr(value, "to_dict"):
        data = value.to_dict()
        # snapshots carry full row data; only their counts belong in the log
        if "tables" in data and hasattr(value, "row_counts"):
            return {"schema": data.get("schema"), "row_counts": value.row_counts()}
        return data
    if isinstance(value, list):
        return {"count": len(value)}
    return {"result": str(value)}


def audited(operation: str) -> Callable:
    """
    Decorator that records an ActivityEvent after a service method runs.

    Positional string arguments are taken as the schema names involved; the
    actor is read from the `actor_id` keyword argument. The wrapped object
    must expose an `activity_sink` attribute.

    Usage:
        @audited("create")
        def create_schema(self, name, actor_id=ANONYMOUS):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(self, *args, actor_id: str = ANONYMOUS, **kwargs):
            schemas = [a for a in args if isinstance(a, str)]
            sink = getattr(self, "activity_sink", None)
            try:
                result = func(self, *args, actor_id=actor_id, **kwargs)
            except TenantDbError as e:
                emit(sink, ActivityEvent(operation, schemas, actor_id, False, e.to_dict()))
                raise
            success = getattr(result, "success", True)
            emit(sink, ActivityEvent(operation, schemas, actor_id, success, _summarize(result)))
            return result

        return wrapper

    return decorator
