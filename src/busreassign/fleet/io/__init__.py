"""Snapshot ingestion: adapters for messy upstream records and file loaders."""

from .adapters import adapt_bus, adapt_snapshot, adapt_stop, adapt_stops, adapt_student
from .loaders import load_snapshot, read_csv, write_snapshot_bundle

__all__ = [
    "adapt_bus",
    "adapt_snapshot",
    "adapt_stop",
    "adapt_stops",
    "adapt_student",
    "load_snapshot",
    "read_csv",
    "write_snapshot_bundle",
]
