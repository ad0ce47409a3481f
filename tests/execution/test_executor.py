from __future__ import annotations

import sqlite3

import pytest

from busreassign.allocation import PlanOptions, plan_reassignment
from busreassign.core.errors import SinkWarning, StoreError
from busreassign.execution import (
    InMemoryStore,
    SQLiteStore,
    compute_bus_deltas,
    execute_plan,
)
from busreassign.fleet.contract import BusLoad, Shift
from busreassign.fleet.synthetic import SyntheticFleetConfig, generate_fleet
from busreassign.telemetry import InMemoryAuditSink, InMemoryNotifier, SQLiteAuditSink


class ConflictingStore(InMemoryStore):
    """Simulates another writer touching B1 right before each of the first ``conflicts`` commits."""

    def __init__(self, *args, conflicts: int = 1, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.conflicts = conflicts

    def _commit(self, txn) -> None:
        if self.conflicts > 0:
            self.conflicts -= 1
            bus, version = self._buses["B1"]
            self._buses["B1"] = (bus, version + 1)
        super()._commit(txn)


class FailingNotifier:
    def notify(self, messages) -> None:
        raise ConnectionError("push gateway unreachable")


class FailingAuditSink:
    def record(self, entry) -> None:
        raise OSError("disk full")


def _campus_plan(snapshot):
    return plan_reassignment(snapshot.students_on("B1"), snapshot.buses, "B1")


def test_execute_campus_plan(campus_snapshot):
    store = InMemoryStore.from_snapshot(campus_snapshot)
    notifier, audit = InMemoryNotifier(), InMemoryAuditSink()
    result = execute_plan(
        _campus_plan(campus_snapshot),
        store,
        reason="B1 in maintenance",
        actor="admin-7",
        notifier=notifier,
        audit_sink=audit,
    )

    assert result.success, result.error
    assert store.read_bus("B2").load.morning_count == 22
    assert store.read_bus("B1").load.morning_count == 36
    assert store.read_bus("B3").load.morning_count == 45
    for student_id in result.updated_students:
        student = store.read_student(student_id)
        assert (student.bus_id, student.route_id, student.stop_id) == ("B2", "R-B2", "S1")
    assert result.summary.moved_count == 12
    assert result.summary.affected_buses == ["B1", "B2"]
    assert result.summary.affected_stops == ["S1"]
    assert result.attempts == 1
    assert store.commits == 1

    assert len(notifier.messages) == 12
    assert notifier.messages[0].recipient_id == "U0001"
    assert "NO-B2" in notifier.messages[0].body
    (entry,) = audit.entries
    assert entry.operation_id == result.operation_id
    assert (entry.actor, entry.reason, entry.source_bus_id) == ("admin-7", "B1 in maintenance", "B1")
    assert entry.groups == [
        {
            "stop_id": "S1",
            "stop_name": "Stop S1",
            "shift": "Morning",
            "count": 12,
            "bus_id": "B2",
            "bus_number": "NO-B2",
        }
    ]
    assert entry.bus_loads["B2"]["load_after_pct"]["morning"] == 44.0


def test_empty_plan_is_rejected(campus_snapshot):
    store = InMemoryStore.from_snapshot(campus_snapshot)
    result = execute_plan([], store, source_bus_id="B1")
    assert not result.success
    assert result.error == "No assignment plan provided"

    no_coverage = plan_reassignment(campus_snapshot.students, campus_snapshot.buses[:1], "B1")
    assert execute_plan(no_coverage, store).error == "No assignment plan provided"
    assert store.commits == 0


def test_stale_plan_violating_capacity_changes_nothing(campus_snapshot):
    store = InMemoryStore.from_snapshot(campus_snapshot)
    plan = _campus_plan(campus_snapshot)
    # Another process fills B2 after planning.
    with store.transaction() as txn:
        txn.write_bus_load("B2", BusLoad(morning_count=45))
    notifier = InMemoryNotifier()

    result = execute_plan(plan, store, notifier=notifier)

    assert not result.success
    assert "would exceed morning capacity (57/50)" in result.error
    assert store.read_bus("B2").load.morning_count == 45
    assert store.read_bus("B1").load.morning_count == 48
    assert all(store.read_student(sid).bus_id == "B1" for sid in [s.id for s in campus_snapshot.students])
    assert notifier.messages == []


def test_missing_student_aborts_whole_commit(campus_snapshot):
    plan = _campus_plan(campus_snapshot)
    store = InMemoryStore(campus_snapshot.buses, campus_snapshot.students[1:])
    result = execute_plan(plan, store)
    assert not result.success
    assert "U0001" in result.error
    assert store.read_bus("B2").load.morning_count == 10
    assert store.commits == 0


def test_conflicts_are_retried(campus_snapshot):
    store = ConflictingStore(campus_snapshot.buses, campus_snapshot.students, conflicts=2)
    result = execute_plan(_campus_plan(campus_snapshot), store)
    assert result.success
    assert result.attempts == 3
    assert store.read_bus("B1").load.morning_count == 36


def test_conflicts_give_up_after_max_retries(campus_snapshot):
    store = ConflictingStore(campus_snapshot.buses, campus_snapshot.students, conflicts=10)
    result = execute_plan(_campus_plan(campus_snapshot), store, max_retries=2)
    assert not result.success
    assert result.attempts == 3
    assert "gave up" in result.error
    assert store.read_bus("B2").load.morning_count == 10


def test_source_decrement_clamps_at_zero(make_bus, make_students):
    buses = [make_bus("B1", stops=["S1"], morning=5), make_bus("B2", stops=["S1"])]
    students = make_students(12, stop="S1")
    store = InMemoryStore(buses, students)
    plan = plan_reassignment(students, buses, "B1")

    result = execute_plan(plan, store)
    assert result.success
    assert store.read_bus("B1").load.morning_count == 0
    assert store.read_bus("B2").load.morning_count == 12


def test_sink_failures_become_warnings(campus_snapshot):
    store = InMemoryStore.from_snapshot(campus_snapshot)
    with pytest.warns(SinkWarning):
        result = execute_plan(
            _campus_plan(campus_snapshot),
            store,
            notifier=FailingNotifier(),
            audit_sink=FailingAuditSink(),
        )
    assert result.success
    assert result.warnings == [
        "Notification delivery failed: push gateway unreachable",
        "Audit logging failed: disk full",
    ]
    assert store.read_bus("B2").load.morning_count == 22


def test_execute_against_sqlite_store(tmp_path, campus_snapshot):
    db = tmp_path / "fleet.sqlite"
    store = SQLiteStore(db)
    store.seed(campus_snapshot)
    audit = SQLiteAuditSink(db)

    result = execute_plan(_campus_plan(campus_snapshot), store, actor="ops", audit_sink=audit)

    assert result.success
    assert store.read_bus("B2").load.morning_count == 22
    assert store.read_student("U0012").bus_id == "B2"
    (entry,) = audit.entries()
    assert entry["operation_id"] == result.operation_id
    assert entry["groups"][0]["count"] == 12
    assert len(entry["change_records"]) == 14


def test_deltas_seed_source_bus(campus_snapshot):
    deltas = compute_bus_deltas([], "B1")
    assert list(deltas) == ["B1"] and deltas["B1"].is_zero

    deltas = compute_bus_deltas(_campus_plan(campus_snapshot).plan, "B1")
    assert (deltas["B1"].morning, deltas["B2"].morning) == (-12, 12)


@pytest.mark.parametrize("seed", range(15))
def test_execution_conserves_riders(seed):
    snapshot = generate_fleet(SyntheticFleetConfig(num_buses=(4, 8), roster_size=(10, 50)), seed=seed)
    plan = plan_reassignment(snapshot.students_on("B1"), snapshot.buses, "B1", PlanOptions(threshold=100))
    store = InMemoryStore.from_snapshot(snapshot)

    deltas = compute_bus_deltas(plan.plan, "B1")
    for shift in Shift:
        assert sum(delta.for_shift(shift) for delta in deltas.values()) == 0

    result = execute_plan(plan, store) if plan.plan else None
    after = {bus.id: bus for bus in store.buses()}
    for shift in Shift:
        assert sum(bus.count_for(shift) for bus in after.values()) == sum(
            bus.count_for(shift) for bus in snapshot.buses
        )
    for bus in snapshot.buses:
        if bus.id != "B1":
            for shift in Shift:
                grew = after[bus.id].count_for(shift) > bus.count_for(shift)
                assert not grew or after[bus.id].count_for(shift) <= bus.capacity
    if result is not None:
        assert result.success
        moved = {sid for sid in result.updated_students}
        assert all(store.read_student(sid).bus_id != "B1" for sid in moved)


def test_capacity_violation_on_later_bus_discards_earlier_increments(make_bus, make_students):
    buses = [
        make_bus("B1", stops=["S1", "S2"], morning=30),
        make_bus("B2", stops=["S1"]),
        make_bus("B3", stops=["S2"]),
    ]
    students = make_students(15, stop="S1") + make_students(15, stop="S2", start=16)
    store = InMemoryStore(buses, students)
    plan = plan_reassignment(students, buses, "B1")
    assert {(entry.stop_id, entry.bus_id) for entry in plan.plan} == {("S1", "B2"), ("S2", "B3")}
    with store.transaction() as txn:
        txn.write_bus_load("B3", BusLoad(morning_count=45))

    result = execute_plan(plan, store)

    assert not result.success
    assert "(60/50)" in result.error
    assert [store.read_bus(bus_id).load.morning_count for bus_id in ("B1", "B2", "B3")] == [30, 0, 45]
    assert all(student.bus_id == "B1" for student in store.students())
    assert store.commits == 1


def test_sqlite_read_errors_fail_the_execution(tmp_path, campus_snapshot):
    db = tmp_path / "fleet.sqlite"
    store = SQLiteStore(db)
    store.seed(campus_snapshot)
    plan = _campus_plan(campus_snapshot)
    conn = sqlite3.connect(db)
    conn.execute("DROP TABLE students")
    conn.commit()
    conn.close()

    result = execute_plan(plan, store)

    assert not result.success
    assert "no such table" in result.error
    assert store.read_bus("B2").load.morning_count == 10


def test_corrupt_sqlite_rows_fail_the_execution(tmp_path, campus_snapshot):
    db = tmp_path / "fleet.sqlite"
    store = SQLiteStore(db)
    store.seed(campus_snapshot)
    conn = sqlite3.connect(db)
    conn.execute("UPDATE buses SET route_stops_json = 'not json' WHERE id = 'B2'")
    conn.commit()
    conn.close()

    result = execute_plan(_campus_plan(campus_snapshot), store)

    assert not result.success
    assert "Corrupt record B2" in result.error
    with pytest.raises(StoreError):
        store.snapshot()
    assert store.read_bus("B1").load.morning_count == 48
