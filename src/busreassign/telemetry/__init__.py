"""Run telemetry, notification and audit sinks."""

from .jsonl import append_jsonl, append_jsonl_many, read_jsonl
from .run_logger import RunTelemetryLogger
from .sinks import (
    AuditRecord,
    AuditSink,
    InMemoryAuditSink,
    InMemoryNotifier,
    JsonlAuditSink,
    JsonlNotifier,
    Notification,
    Notifier,
    SQLiteAuditSink,
)

__all__ = [
    "append_jsonl",
    "append_jsonl_many",
    "read_jsonl",
    "RunTelemetryLogger",
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
