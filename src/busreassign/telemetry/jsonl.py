"""Utilities for appending structured telemetry records."""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any


def append_jsonl(path: str | Path, record: Mapping[str, Any]) -> None:
    """Append a JSON record as a single line to the given path."""
    append_jsonl_many(path, [record])


def append_jsonl_many(path: str | Path, records: Iterable[Mapping[str, Any]]) -> None:
    """Append several JSON records, one per line, opening the file once."""
    path = Path(path)
    if not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        for record in records:
            json.dump(record, handle, ensure_ascii=False, separators=(",", ":"), default=str)
            handle.write("\n")


def read_jsonl(path: str | Path) -> list[dict[str, Any]]:
    """Read every JSON object line from ``path``; blank and malformed lines are skipped."""
    path = Path(path)
    if not path.exists():
        return []
    records: list[dict[str, Any]] = []
    with path.open("r", encoding="utf-8") as handle:
        for raw in handle:
            line = raw.strip()
            if not line:
                continue
            try:
                payload = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(payload, dict):
                records.append(payload)
    return records


__all__ = ["append_jsonl", "append_jsonl_many", "read_jsonl"]
