"""Undo a committed execution using its change records."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone

from busreassign.core.errors import ReassignmentError, RollbackConflictError, StoreError
from busreassign.fleet.contract import BusLoad
from busreassign.telemetry.sinks import AuditRecord, AuditSink, Notification, Notifier

from .executor import (
    BusUpdate,
    ChangeRecord,
    ExecutionResult,
    ExecutionSummary,
    dispatch_side_effects,
    run_with_retries,
)
from .store import Transaction, TransactionalStore

__all__ = ["check_rollback", "rollback_execution"]

_BUS_FIELDS = ("morning_count", "evening_count")
_STUDENT_FIELDS = ("bus_id", "route_id")
_LABELS = {"buses": "bus", "students": "student"}


def _current_state(reader: TransactionalStore | Transaction, record: ChangeRecord) -> dict:
    if record.collection == "buses":
        load = reader.read_bus(record.doc_id).load
        return {name: getattr(load, name) for name in _BUS_FIELDS}
    if record.collection == "students":
        student = reader.read_student(record.doc_id)
        return {name: getattr(student, name) for name in _STUDENT_FIELDS}
    raise StoreError(f"Unknown collection '{record.collection}'")


def _conflicts(reader: TransactionalStore | Transaction, records: Sequence[ChangeRecord]) -> list[str]:
    conflicts: list[str] = []
    for record in records:
        label = f"{_LABELS.get(record.collection, record.collection)} {record.doc_id}"
        try:
            current = _current_state(reader, record)
        except StoreError:
            conflicts.append(f"{label} no longer exists")
            continue
        changed = sorted(key for key, value in record.after.items() if current.get(key) != value)
        if changed:
            conflicts.append(f"{label} changed since execution ({', '.join(changed)})")
    return conflicts


def check_rollback(records: Sequence[ChangeRecord], store: TransactionalStore) -> list[str]:
    """Return human-readable conflicts preventing a rollback; empty when it is safe."""
    return _conflicts(store, records)


def _restore(
    txn: Transaction, records: Sequence[ChangeRecord]
) -> tuple[list[BusUpdate], list[str]]:
    conflicts = _conflicts(txn, records)
    if conflicts:
        raise RollbackConflictError(conflicts)
    updates: list[BusUpdate] = []
    students: list[str] = []
    for record in records:
        if record.collection == "buses":
            bus = txn.read_bus(record.doc_id)
            before = BusLoad(**record.before)
            updates.append(BusUpdate(bus.id, bus.bus_number, bus.capacity, bus.load, before))
            txn.write_bus_load(bus.id, before)
        else:
            student = txn.read_student(record.doc_id)
            txn.write_student(student.model_copy(update=dict(record.before)))
            students.append(student.id)
    return updates, students


def rollback_execution(
    result: ExecutionResult,
    store: TransactionalStore,
    *,
    actor: str = "system",
    reason: str = "rollback",
    notifier: Notifier | None = None,
    audit_sink: AuditSink | None = None,
    max_retries: int = 3,
) -> ExecutionResult:
    """Restore every record touched by ``result`` to its pre-execution state.

    The rollback runs in one transaction and only when every record still holds the state the
    execution left behind. Otherwise nothing is written and the returned result lists the
    conflicts in ``error``.
    """
    if not result.success or not result.change_records:
        return ExecutionResult(success=False, error="Execution has no committed changes to roll back")

    records = list(result.change_records)
    attempts = 0

    def attempt() -> tuple[list[BusUpdate], list[str]]:
        nonlocal attempts
        attempts += 1
        with store.transaction() as txn:
            return _restore(txn, records)

    try:
        updates, students = run_with_retries(attempt, max_retries)
    except ReassignmentError as exc:
        return ExecutionResult(success=False, error=str(exc), attempts=attempts)

    restored = ExecutionResult(
        success=True,
        updated_students=students,
        bus_updates=updates,
        summary=ExecutionSummary(
            moved_count=len(students),
            affected_buses=sorted(update.bus_id for update in updates),
            affected_stops=list(result.summary.affected_stops),
        ),
        change_records=[record.inverted() for record in records],
        attempts=attempts,
    )
    student_records = {record.doc_id: record for record in records if record.collection == "students"}
    notifications = [
        Notification(
            recipient_id=student_id,
            title="Bus assignment restored",
            body=f"Your previous bus {student_records[student_id].before.get('bus_id')} has been restored.",
            data={**student_records[student_id].before, "reason": reason},
        )
        for student_id in students
    ]
    audit = AuditRecord(
        operation_id=restored.operation_id,
        action="rollback",
        actor=actor,
        reason=f"{reason} (of {result.operation_id})",
        timestamp=datetime.now(timezone.utc).isoformat(timespec="seconds"),
        moved_count=len(students),
        destination_buses=sorted({record.before.get("bus_id", "") for record in student_records.values()}),
        bus_loads={update.bus_id: update.to_dict() for update in updates},
        change_records=[record.to_dict() for record in restored.change_records],
    )
    dispatch_side_effects(
        restored,
        notifications=notifications,
        audit=audit,
        notifier=notifier,
        audit_sink=audit_sink,
    )
    return restored
