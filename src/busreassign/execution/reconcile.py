"""Recount bus loads from the student roster and repair drifted counters.

Bus occupancy is stored as denormalized per-shift counters. Reconciliation recomputes each counter
from the active students assigned to the bus and, unless running dry, writes the corrected loads
in one transaction. Every student read during the recount is version-checked at commit, so a
concurrent reassignment forces a retry instead of leaving a stale count behind.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from busreassign.core.errors import ReassignValueError
from busreassign.fleet.contract import Bus, BusLoad, FleetSnapshot, Student, StudentStatus

from .executor import run_with_retries
from .store import TransactionalStore

__all__ = [
    "BusLoadReport",
    "ReconciliationReport",
    "count_active_riders",
    "reconcile_loads",
]


class RosterStore(TransactionalStore, Protocol):
    def snapshot(self, name: str = "store") -> FleetSnapshot:
        ...


@dataclass
class BusLoadReport:
    bus_id: str
    bus_number: str
    before: BusLoad
    after: BusLoad

    @property
    def has_discrepancy(self) -> bool:
        return self.before != self.after

    @property
    def students_counted(self) -> int:
        return self.after.total_count

    def to_dict(self) -> dict[str, Any]:
        return {
            "bus_id": self.bus_id,
            "bus_number": self.bus_number,
            "before": {"morning": self.before.morning_count, "evening": self.before.evening_count},
            "after": {"morning": self.after.morning_count, "evening": self.after.evening_count},
            "students_counted": self.students_counted,
            "has_discrepancy": self.has_discrepancy,
        }


@dataclass
class ReconciliationReport:
    """Per-bus recount results.

    ``committed`` is ``True`` only when corrected loads were written. ``unknown_bus_students``
    lists active students whose ``bus_id`` names no known bus.
    """

    reports: list[BusLoadReport] = field(default_factory=list)
    unknown_bus_students: list[str] = field(default_factory=list)
    dry_run: bool = False
    committed: bool = False
    attempts: int = 0

    @property
    def discrepancies(self) -> list[BusLoadReport]:
        return [report for report in self.reports if report.has_discrepancy]

    @property
    def students_counted(self) -> int:
        return sum(report.students_counted for report in self.reports)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_buses": len(self.reports),
            "buses_with_discrepancies": len(self.discrepancies),
            "students_counted": self.students_counted,
            "dry_run": self.dry_run,
            "committed": self.committed,
            "attempts": self.attempts,
            "unknown_bus_students": list(self.unknown_bus_students),
            "reports": [report.to_dict() for report in self.reports],
        }


def count_active_riders(
    students: Iterable[Student], bus_ids: Iterable[str]
) -> tuple[dict[str, BusLoad], list[str]]:
    """Count active students per bus and shift.

    Returns the load for every id in ``bus_ids`` (zero when nobody rides it) and the ids of
    active students assigned to a bus outside ``bus_ids``.
    """
    loads = {bus_id: BusLoad() for bus_id in bus_ids}
    strays: list[str] = []
    for student in students:
        if student.status is not StudentStatus.ACTIVE or not student.bus_id:
            continue
        if student.bus_id not in loads:
            strays.append(student.id)
            continue
        loads[student.bus_id] = loads[student.bus_id].plus(student.shift, 1)
    return loads, strays


def _scope(snapshot: FleetSnapshot, bus_ids: Sequence[str] | None) -> list[Bus]:
    if bus_ids is None:
        return sorted(snapshot.buses, key=lambda bus: bus.id)
    known = set(snapshot.bus_ids())
    missing = sorted(set(bus_ids) - known)
    if missing:
        raise ReassignValueError(f"Unknown bus id(s): {', '.join(missing)}")
    return [snapshot.bus(bus_id) for bus_id in sorted(set(bus_ids))]


def _report(
    buses: Sequence[Bus], loads: dict[str, BusLoad], strays: list[str]
) -> ReconciliationReport:
    return ReconciliationReport(
        reports=[BusLoadReport(bus.id, bus.bus_number, bus.load, loads[bus.id]) for bus in buses],
        unknown_bus_students=sorted(strays),
    )


def reconcile_loads(
    source: FleetSnapshot | RosterStore,
    *,
    bus_ids: Sequence[str] | None = None,
    dry_run: bool = False,
    max_retries: int = 3,
) -> ReconciliationReport:
    """Recompute per-shift loads from the roster and write the corrected values.

    Parameters
    ----------
    source:
        A store exposing ``snapshot()``, or a :class:`FleetSnapshot`. Snapshots are only
        reported on, never written.
    bus_ids:
        Restrict the recount to these buses. All buses when ``None``.
    dry_run:
        Report discrepancies without writing.
    max_retries:
        Extra attempts after an optimistic-concurrency conflict.

    Raises
    ------
    ReassignValueError
        When ``bus_ids`` names an unknown bus or ``max_retries`` is negative.
    ReassignmentError
        When the store cannot be read or the write keeps conflicting.
    """
    if max_retries < 0:
        raise ReassignValueError("max_retries must be >= 0")
    snapshot = source if isinstance(source, FleetSnapshot) else source.snapshot()
    scope = _scope(snapshot, bus_ids)
    all_ids = set(snapshot.bus_ids())

    if dry_run or isinstance(source, FleetSnapshot):
        loads, strays = count_active_riders(snapshot.students, all_ids)
        report = _report(scope, loads, strays)
        report.dry_run = dry_run
        return report

    attempts = 0

    def attempt() -> ReconciliationReport:
        nonlocal attempts
        attempts += 1
        with source.transaction() as txn:
            students = [txn.read_student(student.id) for student in snapshot.students]
            loads, strays = count_active_riders(students, all_ids)
            buses = [txn.read_bus(bus.id) for bus in scope]
            report = _report(buses, loads, strays)
            for item in report.discrepancies:
                txn.write_bus_load(item.bus_id, item.after)
        report.committed = bool(report.discrepancies)
        return report

    report = run_with_retries(attempt, max_retries)
    report.attempts = attempts
    return report
