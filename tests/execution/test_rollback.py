from __future__ import annotations

from busreassign.allocation import plan_reassignment
from busreassign.execution import (
    ExecutionResult,
    InMemoryStore,
    SQLiteStore,
    check_rollback,
    execute_plan,
    rollback_execution,
)
from busreassign.fleet.contract import BusLoad
from busreassign.telemetry import InMemoryAuditSink, InMemoryNotifier


def _execute(snapshot, store):
    plan = plan_reassignment(snapshot.students_on("B1"), snapshot.buses, "B1")
    result = execute_plan(plan, store)
    assert result.success
    return result


def test_rollback_restores_previous_state(campus_snapshot):
    store = InMemoryStore.from_snapshot(campus_snapshot)
    executed = _execute(campus_snapshot, store)
    assert check_rollback(executed.change_records, store) == []

    audit, notifier = InMemoryAuditSink(), InMemoryNotifier()
    restored = rollback_execution(executed, store, actor="admin", audit_sink=audit, notifier=notifier)

    assert restored.success
    assert store.read_bus("B1").load.morning_count == 48
    assert store.read_bus("B2").load.morning_count == 10
    assert {store.read_student(sid).bus_id for sid in executed.updated_students} == {"B1"}
    assert sorted(restored.updated_students) == sorted(executed.updated_students)
    (entry,) = audit.entries
    assert entry.action == "rollback"
    assert executed.operation_id in entry.reason
    assert len(notifier.messages) == 12


def test_rollback_refuses_when_records_drifted(campus_snapshot):
    store = InMemoryStore.from_snapshot(campus_snapshot)
    executed = _execute(campus_snapshot, store)
    with store.transaction() as txn:
        txn.write_bus_load("B2", BusLoad(morning_count=23))

    conflicts = check_rollback(executed.change_records, store)
    assert conflicts == ["bus B2 changed since execution (morning_count)"]

    restored = rollback_execution(executed, store)
    assert not restored.success
    assert "bus B2 changed" in restored.error
    assert store.read_bus("B1").load.morning_count == 36
    assert store.read_student("U0001").bus_id == "B2"


def test_rollback_of_rollback_reapplies_execution(tmp_path, campus_snapshot):
    store = SQLiteStore(tmp_path / "fleet.sqlite")
    store.seed(campus_snapshot)
    executed = _execute(campus_snapshot, store)

    restored = rollback_execution(executed, store)
    assert restored.success
    assert store.read_bus("B2").load.morning_count == 10

    again = rollback_execution(restored, store)
    assert again.success
    assert store.read_bus("B2").load.morning_count == 22
    assert store.read_student("U0005").bus_id == "B2"


def test_failed_execution_cannot_be_rolled_back(campus_snapshot):
    store = InMemoryStore.from_snapshot(campus_snapshot)
    result = rollback_execution(ExecutionResult(success=False, error="boom"), store)
    assert not result.success
    assert "no committed changes" in result.error
