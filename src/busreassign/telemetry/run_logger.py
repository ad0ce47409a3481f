"""Run telemetry for planning, execution and rollback operations."""

from __future__ import annotations

import time
from collections import Counter
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping
from uuid import uuid4

from .jsonl import append_jsonl

SCHEMA_VERSION = "1.0"


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass(slots=True)
class RunTelemetryLogger(AbstractContextManager["RunTelemetryLogger"]):
    """Append one ``run`` record per operation, plus optional per-group decision records.

    Parameters
    ----------
    log_path:
        JSONL file receiving run records.
    operation:
        ``"plan"``, ``"execute"``, ``"rollback"`` or ``"reconcile"``.
    snapshot / source_bus_id:
        Snapshot name and the bus being emptied, when known.
    seed:
        Selection seed for randomized plans.
    config:
        Planning options or execution parameters recorded verbatim.
    context:
        Free-form caller metadata (CLI command, actor).
    group_log:
        Write stop-group decisions to ``groups/<run_id>.jsonl`` beside ``log_path``.

    The run record carries an ``outcomes`` tally (``assigned`` plus one key per unassignable
    category) built from the groups logged during the run.
    """

    log_path: Path
    operation: str
    snapshot: str | None = None
    source_bus_id: str | None = None
    seed: int | None = None
    config: Mapping[str, Any] | None = None
    context: Mapping[str, Any] | None = None
    group_log: bool = True
    run_id: str = field(default_factory=lambda: uuid4().hex, init=False)
    _outcomes: Counter = field(default_factory=Counter, init=False)
    _started: float | None = field(default=None, init=False)
    _started_at: str | None = field(default=None, init=False)
    _done: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        self.log_path = Path(self.log_path)

    @property
    def groups_path(self) -> Path | None:
        """Per-group JSONL path, or ``None`` when group logging is off."""
        if not self.group_log:
            return None
        return self.log_path.parent / "groups" / f"{self.run_id}.jsonl"

    def __enter__(self) -> "RunTelemetryLogger":
        self._started = time.perf_counter()
        self._started_at = _iso_now()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type:
            self.finalize(status="error", error=repr(exc))
        else:
            self.finalize()
        return False

    def elapsed(self) -> float:
        if self._started is None:
            return 0.0
        return time.perf_counter() - self._started

    def log_group(
        self,
        *,
        step: int,
        stop_id: str,
        shift: str,
        count: int,
        outcome: str,
        bus_id: str | None = None,
        score: float | None = None,
        candidates: int = 0,
        reason: str | None = None,
    ) -> None:
        """Record how one stop-group was resolved (``outcome`` is ``assigned`` or a category)."""
        self._outcomes[outcome] += 1
        path = self.groups_path
        if path is None:
            return
        append_jsonl(
            path,
            {
                "record_type": "group",
                "schema_version": SCHEMA_VERSION,
                "run_id": self.run_id,
                "timestamp": _iso_now(),
                "step": step,
                "stop_id": stop_id,
                "shift": shift,
                "count": count,
                "outcome": outcome,
                "bus_id": bus_id,
                "score": score,
                "candidates": candidates,
                "reason": reason,
            },
        )

    def finalize(
        self,
        *,
        status: str = "ok",
        metrics: Mapping[str, Any] | None = None,
        extra: Mapping[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        """Write the run record once; later calls (including ``__exit__``) are ignored."""
        if self._done:
            return
        self._done = True
        append_jsonl(
            self.log_path,
            {
                "record_type": "run",
                "schema_version": SCHEMA_VERSION,
                "run_id": self.run_id,
                "operation": self.operation,
                "snapshot": self.snapshot,
                "source_bus_id": self.source_bus_id,
                "seed": self.seed,
                "status": status,
                "error": error,
                "outcomes": dict(self._outcomes),
                "metrics": dict(metrics or {}),
                "config": dict(self.config or {}),
                "context": dict(self.context or {}),
                "extra": dict(extra or {}),
                "started_at": self._started_at,
                "finished_at": _iso_now(),
                "duration_seconds": round(self.elapsed(), 3),
            },
        )


__all__ = ["RunTelemetryLogger", "SCHEMA_VERSION"]
