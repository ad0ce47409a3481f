"""Commit an assignment plan atomically and fan out post-commit side effects.

The executor converts plan entries into per-bus shift deltas and per-student mutations, then runs
one read-validate-write cycle inside a store transaction. Capacity is re-validated against the
committed state, not the snapshot the plan was built from, so a plan that went stale between
planning and execution fails cleanly instead of overfilling a bus. Notifications and audit entries
are emitted only after the commit succeeds; their failures never undo it.
"""

from __future__ import annotations

import warnings
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, TypeVar
from uuid import uuid4

from busreassign.allocation.planner import AssignmentPlanEntry, PlanResult
from busreassign.core.errors import (
    CapacityViolationError,
    ConflictError,
    ReassignmentError,
    ReassignValueError,
    SinkWarning,
)
from busreassign.fleet.contract import BusLoad, Shift
from busreassign.telemetry.sinks import AuditRecord, AuditSink, Notification, Notifier

from .store import Transaction, TransactionalStore

__all__ = [
    "ShiftDelta",
    "StudentMutation",
    "BusUpdate",
    "ChangeRecord",
    "ExecutionSummary",
    "ExecutionResult",
    "compute_bus_deltas",
    "build_student_mutations",
    "commit_deltas",
    "run_with_retries",
    "dispatch_side_effects",
    "execute_plan",
]

EMPTY_PLAN_ERROR = "No assignment plan provided"

T = TypeVar("T")


@dataclass
class ShiftDelta:
    """Signed per-shift occupancy change for one bus."""

    morning: int = 0
    evening: int = 0

    def add(self, shift: Shift, amount: int) -> None:
        if Shift.parse(shift) is Shift.MORNING:
            self.morning += amount
        else:
            self.evening += amount

    def for_shift(self, shift: Shift) -> int:
        return self.morning if Shift.parse(shift) is Shift.MORNING else self.evening

    @property
    def is_zero(self) -> bool:
        return self.morning == 0 and self.evening == 0


@dataclass(frozen=True)
class StudentMutation:
    """Bus and route change for one student; the pickup stop is carried unchanged."""

    student_id: str
    from_bus_id: str
    to_bus_id: str
    to_bus_number: str
    route_id: str
    stop_id: str
    stop_name: str
    shift: Shift


@dataclass
class BusUpdate:
    bus_id: str
    bus_number: str
    capacity: int
    before: BusLoad
    after: BusLoad

    def load_pct(self, load: BusLoad, shift: Shift) -> float:
        return load.count_for(shift) / self.capacity * 100.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "bus_id": self.bus_id,
            "bus_number": self.bus_number,
            "capacity": self.capacity,
            "before": {"morning": self.before.morning_count, "evening": self.before.evening_count},
            "after": {"morning": self.after.morning_count, "evening": self.after.evening_count},
            "load_before_pct": {
                shift.value.lower(): round(self.load_pct(self.before, shift), 2) for shift in Shift
            },
            "load_after_pct": {
                shift.value.lower(): round(self.load_pct(self.after, shift), 2) for shift in Shift
            },
        }


@dataclass(frozen=True)
class ChangeRecord:
    """Before/after state of one document touched by a commit.

    ``collection`` is ``"buses"`` or ``"students"``. Only the mutated fields are captured.
    """

    collection: str
    doc_id: str
    before: dict[str, Any]
    after: dict[str, Any]

    def inverted(self) -> ChangeRecord:
        return ChangeRecord(self.collection, self.doc_id, dict(self.after), dict(self.before))

    def to_dict(self) -> dict[str, Any]:
        return {
            "collection": self.collection,
            "doc_id": self.doc_id,
            "before": dict(self.before),
            "after": dict(self.after),
        }


@dataclass
class ExecutionSummary:
    moved_count: int = 0
    affected_buses: list[str] = field(default_factory=list)
    affected_stops: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "moved_count": self.moved_count,
            "affected_buses": list(self.affected_buses),
            "affected_stops": list(self.affected_stops),
        }


@dataclass
class ExecutionResult:
    """Outcome of an execution or rollback.

    On failure ``error`` holds a human-readable message and the store is unchanged. On success
    ``warnings`` lists post-commit side effects that failed.
    """

    success: bool
    updated_students: list[str] = field(default_factory=list)
    bus_updates: list[BusUpdate] = field(default_factory=list)
    summary: ExecutionSummary = field(default_factory=ExecutionSummary)
    warnings: list[str] = field(default_factory=list)
    error: str | None = None
    operation_id: str = field(default_factory=lambda: uuid4().hex)
    change_records: list[ChangeRecord] = field(default_factory=list)
    attempts: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "operation_id": self.operation_id,
            "updated_students": list(self.updated_students),
            "bus_updates": [update.to_dict() for update in self.bus_updates],
            "summary": self.summary.to_dict(),
            "warnings": list(self.warnings),
            "error": self.error,
            "attempts": self.attempts,
            "change_records": [record.to_dict() for record in self.change_records],
        }


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def compute_bus_deltas(
    entries: Sequence[AssignmentPlanEntry], source_bus_id: str
) -> dict[str, ShiftDelta]:
    """Return the net per-shift change for every bus touched by ``entries``.

    The source bus is always present, even when every entry nets to zero, so the commit
    re-reads it.
    """
    deltas: dict[str, ShiftDelta] = {source_bus_id: ShiftDelta()}
    for entry in entries:
        deltas[source_bus_id].add(entry.shift, -entry.student_count)
        deltas.setdefault(entry.bus_id, ShiftDelta()).add(entry.shift, entry.student_count)
    return deltas


def build_student_mutations(entries: Sequence[AssignmentPlanEntry]) -> list[StudentMutation]:
    return [
        StudentMutation(
            student_id=student.id,
            from_bus_id=student.bus_id,
            to_bus_id=entry.bus_id,
            to_bus_number=entry.bus_number,
            route_id=entry.route_id,
            stop_id=student.stop_id,
            stop_name=entry.stop_name,
            shift=entry.shift,
        )
        for entry in entries
        for student in entry.students
    ]


def _apply(
    txn: Transaction, deltas: dict[str, ShiftDelta], mutations: Sequence[StudentMutation]
) -> tuple[list[BusUpdate], list[ChangeRecord]]:
    updates: list[BusUpdate] = []
    records: list[ChangeRecord] = []
    for bus_id in sorted(deltas):
        delta = deltas[bus_id]
        bus = txn.read_bus(bus_id)
        counts = {}
        for shift in Shift:
            change = delta.for_shift(shift)
            # Decrements clamp at zero; increments must stay within capacity.
            new_count = max(0, bus.load.count_for(shift) + change)
            if change > 0 and new_count > bus.capacity:
                raise CapacityViolationError(
                    bus.id, bus.bus_number, shift.value, new_count, bus.capacity
                )
            counts[shift] = new_count
        after = BusLoad(morning_count=counts[Shift.MORNING], evening_count=counts[Shift.EVENING])
        updates.append(BusUpdate(bus.id, bus.bus_number, bus.capacity, bus.load, after))
        records.append(
            ChangeRecord("buses", bus.id, bus.load.model_dump(), after.model_dump())
        )
    for mutation in mutations:
        student = txn.read_student(mutation.student_id)
        records.append(
            ChangeRecord(
                "students",
                student.id,
                {"bus_id": student.bus_id, "route_id": student.route_id},
                {"bus_id": mutation.to_bus_id, "route_id": mutation.route_id},
            )
        )
        txn.write_student(
            student.model_copy(update={"bus_id": mutation.to_bus_id, "route_id": mutation.route_id})
        )
    for update in updates:
        txn.write_bus_load(update.bus_id, update.after)
    return updates, records


def commit_deltas(
    store: TransactionalStore,
    deltas: dict[str, ShiftDelta],
    mutations: Sequence[StudentMutation],
) -> tuple[list[BusUpdate], list[ChangeRecord]]:
    """Apply bus deltas and student mutations in one store transaction.

    Raises
    ------
    CapacityViolationError
        When an increased count would exceed the bus capacity. Nothing is written.
    ConflictError
        When another writer committed a touched record in between.
    StoreError
        When a bus or student record is missing or cannot be read.
    """
    with store.transaction() as txn:
        return _apply(txn, deltas, mutations)


def run_with_retries(action: Callable[[], T], max_retries: int) -> T:
    """Run ``action`` and re-run it on :class:`ConflictError` up to ``max_retries`` times."""
    attempt = 0
    while True:
        attempt += 1
        try:
            return action()
        except ConflictError as exc:
            if attempt > max_retries:
                raise ConflictError(f"{exc} (gave up after {attempt} attempts)") from exc


def _warn(result: ExecutionResult, message: str) -> None:
    warnings.warn(message, SinkWarning, stacklevel=3)
    result.warnings.append(message)


def _notifications(mutations: Sequence[StudentMutation], reason: str) -> list[Notification]:
    return [
        Notification(
            recipient_id=mutation.student_id,
            title="Bus assignment changed",
            body=(
                f"You have been moved to bus {mutation.to_bus_number or mutation.to_bus_id}. "
                f"Your pickup stop {mutation.stop_name} is unchanged."
            ),
            data={
                "bus_id": mutation.to_bus_id,
                "route_id": mutation.route_id,
                "stop_id": mutation.stop_id,
                "shift": mutation.shift.value,
                "reason": reason,
            },
        )
        for mutation in mutations
    ]


def dispatch_side_effects(
    result: ExecutionResult,
    *,
    notifications: Sequence[Notification],
    audit: AuditRecord,
    notifier: Notifier | None,
    audit_sink: AuditSink | None,
) -> None:
    """Deliver notifications and the audit entry; failures become warnings on ``result``."""
    if notifier is not None and notifications:
        try:
            notifier.notify(notifications)
        except Exception as exc:
            _warn(result, f"Notification delivery failed: {exc}")
    if audit_sink is not None:
        try:
            audit_sink.record(audit)
        except Exception as exc:
            _warn(result, f"Audit logging failed: {exc}")


def execute_plan(
    plan: PlanResult | Sequence[AssignmentPlanEntry],
    store: TransactionalStore,
    *,
    source_bus_id: str | None = None,
    reason: str = "",
    actor: str = "system",
    notifier: Notifier | None = None,
    audit_sink: AuditSink | None = None,
    max_retries: int = 3,
) -> ExecutionResult:
    """Commit ``plan`` against ``store``.

    Parameters
    ----------
    plan:
        A :class:`PlanResult` or its list of entries.
    store:
        Transactional store holding the authoritative bus and student records.
    source_bus_id:
        Bus the students leave. Defaults to ``plan.source_bus_id`` when a :class:`PlanResult`
        is given.
    reason / actor:
        Recorded in notifications and the audit entry.
    notifier / audit_sink:
        Optional post-commit sinks.
    max_retries:
        Extra attempts after an optimistic-concurrency conflict.

    Returns
    -------
    ExecutionResult
        ``success`` is ``False`` with ``error`` set when nothing was committed.
    """
    if isinstance(plan, PlanResult):
        entries = list(plan.plan)
        source_bus_id = source_bus_id or plan.source_bus_id
    else:
        entries = list(plan)
    if not entries:
        return ExecutionResult(success=False, error=EMPTY_PLAN_ERROR)
    if not source_bus_id or not source_bus_id.strip():
        raise ReassignValueError("source_bus_id must be non-empty")
    if max_retries < 0:
        raise ReassignValueError("max_retries must be >= 0")

    deltas = compute_bus_deltas(entries, source_bus_id)
    mutations = build_student_mutations(entries)
    attempts = 0

    def attempt() -> tuple[list[BusUpdate], list[ChangeRecord]]:
        nonlocal attempts
        attempts += 1
        return commit_deltas(store, deltas, mutations)

    try:
        updates, records = run_with_retries(attempt, max_retries)
    except ReassignmentError as exc:
        return ExecutionResult(success=False, error=str(exc), attempts=attempts)

    summary = ExecutionSummary(
        moved_count=len(mutations),
        affected_buses=sorted(deltas),
        affected_stops=sorted({entry.stop_id for entry in entries}),
    )
    result = ExecutionResult(
        success=True,
        updated_students=[mutation.student_id for mutation in mutations],
        bus_updates=updates,
        summary=summary,
        change_records=records,
        attempts=attempts,
    )
    audit = AuditRecord(
        operation_id=result.operation_id,
        action="reassign",
        actor=actor,
        reason=reason,
        timestamp=_iso_now(),
        source_bus_id=source_bus_id,
        moved_count=len(mutations),
        groups=[
            {
                "stop_id": entry.stop_id,
                "stop_name": entry.stop_name,
                "shift": entry.shift.value,
                "count": entry.student_count,
                "bus_id": entry.bus_id,
                "bus_number": entry.bus_number,
            }
            for entry in entries
        ],
        destination_buses=sorted({entry.bus_id for entry in entries}),
        bus_loads={update.bus_id: update.to_dict() for update in updates},
        change_records=[record.to_dict() for record in records],
    )
    dispatch_side_effects(
        result,
        notifications=_notifications(mutations, reason),
        audit=audit,
        notifier=notifier,
        audit_sink=audit_sink,
    )
    return result
