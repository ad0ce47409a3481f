from __future__ import annotations

from pathlib import Path
from random import Random

from busreassign import EngineConfig, EngineContext
from busreassign.execution import InMemoryStore
from busreassign.telemetry import InMemoryAuditSink, InMemoryNotifier, read_jsonl


def test_options_come_from_config_with_overrides(campus_snapshot):
    context = EngineContext(
        store=InMemoryStore.from_snapshot(campus_snapshot),
        config=EngineConfig(threshold=0, top_n=2, randomize=True),
    )
    options = context.options()
    assert options.threshold == 100.0
    assert (options.top_n, options.randomize) == (2, True)
    assert context.options(top_n=4, threshold=None).top_n == 4
    assert isinstance(context.rng, Random)


def test_reassign_and_rollback(campus_snapshot, tmp_path: Path):
    store = InMemoryStore.from_snapshot(campus_snapshot)
    notifier, audit = InMemoryNotifier(), InMemoryAuditSink()
    log_path = tmp_path / "runs.jsonl"
    context = EngineContext(store=store, notifier=notifier, audit_sink=audit, telemetry_log=log_path)

    plan, result = context.reassign(campus_snapshot, "B1", reason="breakdown", actor="ops")

    assert plan.summary.assigned_students == 12
    assert result is not None and result.success
    assert store.read_bus("B2").load.morning_count == 22
    assert [entry.action for entry in audit.entries] == ["reassign"]

    restored = context.rollback(result, actor="ops")
    assert restored.success
    assert store.read_bus("B2").load.morning_count == 10
    assert [entry.action for entry in audit.entries] == ["reassign", "rollback"]
    assert len(notifier.messages) == 24

    runs = read_jsonl(log_path)
    assert [run["operation"] for run in runs] == ["plan", "execute"]
    assert runs[1]["extra"]["operation_id"] == result.operation_id


def test_reassign_skips_execution_when_nothing_fits(make_bus, make_students):
    buses = [make_bus("B1", stops=["S1"], morning=3), make_bus("B2", stops=["S9"])]
    snapshot_store = InMemoryStore(buses, make_students(3, stop="S1"))
    context = EngineContext(store=snapshot_store)

    plan, result = context.reassign(snapshot_store.snapshot("tiny"), "B1")

    assert not plan.success
    assert plan.unassignable[0].category.value == "no_stop_coverage"
    assert result is None
    assert snapshot_store.commits == 0


def test_seeded_randomized_plans_repeat(campus_snapshot):
    config = EngineConfig(randomize=True, top_n=3, seed=9, threshold=100)
    first = EngineContext(store=InMemoryStore.from_snapshot(campus_snapshot), config=config)
    second = EngineContext(store=InMemoryStore.from_snapshot(campus_snapshot), config=config)
    assert [e.bus_id for e in first.plan(campus_snapshot, "B1").plan] == [
        e.bus_id for e in second.plan(campus_snapshot, "B1").plan
    ]


def test_zero_retries_give_up_on_first_conflict(campus_snapshot):
    class OneConflictStore(InMemoryStore):
        def _commit(self, txn) -> None:
            bus, version = self._buses["B1"]
            self._buses["B1"] = (bus, version + 1)
            super()._commit(txn)

    store = OneConflictStore(campus_snapshot.buses, campus_snapshot.students)
    context = EngineContext(store=store, config=EngineConfig(max_commit_retries=0))

    _, result = context.reassign(campus_snapshot, "B1")

    assert result is not None and not result.success
    assert result.attempts == 1
    assert "gave up after 1 attempts" in result.error


def test_reconcile_logs_a_run(campus_snapshot, tmp_path: Path):
    store = InMemoryStore.from_snapshot(campus_snapshot)
    log_path = tmp_path / "runs.jsonl"
    context = EngineContext(store=store, telemetry_log=log_path)

    report = context.reconcile(bus_ids=["B1"])

    assert report.committed
    assert store.read_bus("B1").load.morning_count == 12
    (run,) = read_jsonl(log_path)
    assert run["operation"] == "reconcile"
    assert run["metrics"]["buses_with_discrepancies"] == 1
    assert run["extra"] == {"committed": True}
