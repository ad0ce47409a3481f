"""Notification and audit sinks invoked after a reassignment commits."""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Protocol

from .jsonl import append_jsonl, append_jsonl_many

__all__ = [
    "Notification",
    "AuditRecord",
    "Notifier",
    "AuditSink",
    "JsonlNotifier",
    "JsonlAuditSink",
    "SQLiteAuditSink",
    "InMemoryNotifier",
    "InMemoryAuditSink",
]


@dataclass
class Notification:
    """Message addressed to one moved student."""

    recipient_id: str
    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class AuditRecord:
    """Audit entry describing one committed operation.

    Attributes
    ----------
    operation_id:
        Identifier shared with the :class:`~busreassign.execution.ExecutionResult`.
    action:
        ``"reassign"`` or ``"rollback"``.
    actor / reason / timestamp:
        Who ran the operation, why, and when (UTC, ISO-8601).
    source_bus_id:
        Bus the students left (``None`` for rollbacks).
    groups:
        One mapping per moved stop-group (stop, shift, count, destination).
    bus_loads:
        Per-bus load percentages before and after the commit.
    change_records:
        Serialised before/after states enabling rollback.
    """

    operation_id: str
    action: str
    actor: str
    reason: str
    timestamp: str
    source_bus_id: str | None = None
    moved_count: int = 0
    groups: list[dict[str, Any]] = field(default_factory=list)
    destination_buses: list[str] = field(default_factory=list)
    bus_loads: dict[str, dict[str, Any]] = field(default_factory=dict)
    change_records: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class Notifier(Protocol):
    def notify(self, messages: Sequence[Notification]) -> None:
        ...


class AuditSink(Protocol):
    def record(self, entry: AuditRecord) -> None:
        ...


class JsonlNotifier:
    """Append notifications to a JSONL outbox consumed by a delivery service."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def notify(self, messages: Sequence[Notification]) -> None:
        append_jsonl_many(self.path, [message.to_dict() for message in messages])


class JsonlAuditSink:
    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def record(self, entry: AuditRecord) -> None:
        append_jsonl(self.path, entry.to_dict())


_AUDIT_SCHEMA = """
CREATE TABLE IF NOT EXISTS audit_log (
    operation_id TEXT PRIMARY KEY,
    action TEXT NOT NULL,
    actor TEXT,
    reason TEXT,
    timestamp TEXT,
    source_bus_id TEXT,
    moved_count INTEGER,
    groups_json TEXT,
    destination_buses_json TEXT,
    bus_loads_json TEXT,
    change_records_json TEXT
);
"""


def _json_dumps(payload: Any) -> str | None:
    if not payload:
        return None
    return json.dumps(payload, ensure_ascii=False, sort_keys=True)


class SQLiteAuditSink:
    """Persist audit entries to an ``audit_log`` table."""

    def __init__(self, sqlite_path: str | Path) -> None:
        self.path = Path(sqlite_path)

    def record(self, entry: AuditRecord) -> None:
        if not self.path.parent.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.path)
        try:
            conn.executescript(_AUDIT_SCHEMA)
            with conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO audit_log (
                        operation_id,
                        action,
                        actor,
                        reason,
                        timestamp,
                        source_bus_id,
                        moved_count,
                        groups_json,
                        destination_buses_json,
                        bus_loads_json,
                        change_records_json
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entry.operation_id,
                        entry.action,
                        entry.actor,
                        entry.reason,
                        entry.timestamp,
                        entry.source_bus_id,
                        entry.moved_count,
                        _json_dumps(entry.groups),
                        _json_dumps(entry.destination_buses),
                        _json_dumps(entry.bus_loads),
                        _json_dumps(entry.change_records),
                    ),
                )
        finally:
            conn.close()

    def entries(self) -> list[dict[str, Any]]:
        """Return stored entries ordered by timestamp, JSON columns decoded."""
        if not self.path.exists():
            return []
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        try:
            conn.executescript(_AUDIT_SCHEMA)
            rows = conn.execute("SELECT * FROM audit_log ORDER BY timestamp, operation_id").fetchall()
        finally:
            conn.close()
        entries = []
        for row in rows:
            item = dict(row)
            for key in list(item):
                if key.endswith("_json"):
                    raw = item.pop(key)
                    item[key[: -len("_json")]] = json.loads(raw) if raw else None
            entries.append(item)
        return entries


class InMemoryNotifier:
    def __init__(self) -> None:
        self.messages: list[Notification] = []

    def notify(self, messages: Sequence[Notification]) -> None:
        self.messages.extend(messages)


class InMemoryAuditSink:
    def __init__(self) -> None:
        self.entries: list[AuditRecord] = []

    def record(self, entry: AuditRecord) -> None:
        self.entries.append(entry)
