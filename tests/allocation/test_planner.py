from __future__ import annotations

from collections import defaultdict
from random import Random

import pytest

from busreassign.allocation import (
    BestCandidate,
    PlanOptions,
    UnassignableReason,
    plan_reassignment,
)
from busreassign.core.errors import ReassignValueError
from busreassign.fleet.contract import Shift
from busreassign.fleet.synthetic import SyntheticFleetConfig, generate_fleet
from busreassign.telemetry import RunTelemetryLogger, read_jsonl


def test_campus_plan_moves_group_to_roomiest_bus(campus_snapshot):
    roster = campus_snapshot.students_on("B1")
    result = plan_reassignment(roster, campus_snapshot.buses, "B1")

    assert result.success
    assert not result.unassignable
    (entry,) = result.plan
    assert entry.bus_id == "B2"
    assert entry.student_count == 12
    assert entry.stop_id == "S1"
    assert entry.stop_name == "Stop S1"
    assert entry.before_load.morning_count == 10
    assert entry.after_load.morning_count == 22
    assert entry.load_after_pct == pytest.approx(44.0)
    assert result.summary.assigned_students == 12
    assert result.summary.affected_buses == ["B2"]
    assert result.strategy == "deterministic"


def test_campus_plan_without_alternative_coverage(make_bus, make_students):
    fleet = [
        make_bus("B1", stops=["S1", "S2"], morning=48),
        make_bus("B2", stops=["S3"], morning=10),
        make_bus("B3", stops=["S4"], shift="Morning", morning=45),
    ]
    result = plan_reassignment(make_students(12, stop="S1"), fleet, "B1")

    assert not result.success
    assert result.plan == []
    (group,) = result.unassignable
    assert (group.stop_id, group.shift, group.count) == ("S1", Shift.MORNING, 12)
    assert group.category is UnassignableReason.NO_STOP_COVERAGE
    assert "no bus serves stop" in group.reason.lower()


def test_fleet_is_not_mutated(campus_snapshot):
    before = [bus.model_dump() for bus in campus_snapshot.buses]
    plan_reassignment(campus_snapshot.students, campus_snapshot.buses, "B1")
    assert [bus.model_dump() for bus in campus_snapshot.buses] == before


def test_later_groups_see_seats_taken_earlier(make_bus, make_students):
    fleet = [
        make_bus("B1", stops=["S1", "S2"]),
        make_bus("B2", stops=["S1", "S2"], capacity=20),
    ]
    roster = make_students(12, stop="S1") + make_students(12, stop="S2", start=13)
    result = plan_reassignment(roster, fleet, "B1", PlanOptions(threshold=100))

    assert [entry.stop_id for entry in result.plan] == ["S1"]
    (blocked,) = result.unassignable
    assert blocked.stop_id == "S2"
    assert blocked.category is UnassignableReason.CAPACITY_OR_THRESHOLD


def test_repeated_destination_chains_loads(make_bus, make_students):
    fleet = [
        make_bus("B1", stops=["S1", "S2"]),
        make_bus("B2", stops=["S1", "S2"], morning=30),
    ]
    roster = make_students(10, stop="S1") + make_students(8, stop="S2", start=11)
    result = plan_reassignment(roster, fleet, "B1", PlanOptions(threshold=100))

    first, second = result.plan
    assert first.after_load.morning_count == 40
    assert second.before_load.morning_count == 40
    assert second.after_load.morning_count == 48


def test_evening_group_never_lands_on_evening_only_bus(make_bus, make_students):
    fleet = [
        make_bus("B1", stops=["S1"], evening=30),
        make_bus("B2", stops=["S1"], shift="Evening", capacity=80),
        make_bus("B3", stops=["S1"], capacity=50, evening=35),
    ]
    roster = make_students(5, stop="S1", shift="Evening")
    result = plan_reassignment(roster, fleet, "B1", PlanOptions(threshold=100))
    assert [entry.bus_id for entry in result.plan] == ["B3"]

    without_both = [fleet[0], fleet[1]]
    result = plan_reassignment(roster, without_both, "B1")
    assert result.plan == []
    assert result.unassignable[0].category is UnassignableReason.SHIFT_MISMATCH


def test_threshold_zero_plans_like_hundred(make_bus, make_students):
    fleet = [make_bus("B1", stops=["S1"]), make_bus("B2", stops=["S1"], morning=40)]
    roster = make_students(10, stop="S1")
    zero = plan_reassignment(roster, fleet, "B1", PlanOptions(threshold=0))
    hundred = plan_reassignment(roster, fleet, "B1", PlanOptions(threshold=100))
    assert zero.options.threshold == 100.0
    assert [e.to_dict() for e in zero.plan] == [e.to_dict() for e in hundred.plan]
    assert zero.plan[0].after_load.morning_count == 50


def test_randomized_plan_is_reproducible(make_bus, make_students):
    fleet = [make_bus("B1", stops=["S1", "S2", "S3"])] + [
        make_bus(f"B{i}", stops=["S1", "S2", "S3"], morning=i) for i in range(2, 7)
    ]
    roster = (
        make_students(2, stop="S1") + make_students(2, stop="S2", start=3) + make_students(2, stop="S3", start=5)
    )
    options = PlanOptions(randomize=True, top_n=3)
    first = plan_reassignment(roster, fleet, "B1", options, rng=Random(42))
    second = plan_reassignment(roster, fleet, "B1", options, rng=Random(42))
    assert [e.bus_id for e in first.plan] == [e.bus_id for e in second.plan]
    assert first.strategy == "random-top-n"


def test_explicit_strategy_overrides_options(campus_snapshot):
    result = plan_reassignment(
        campus_snapshot.students,
        campus_snapshot.buses,
        "B1",
        PlanOptions(randomize=True),
        strategy=BestCandidate(),
    )
    assert result.strategy == "deterministic"


def test_blank_source_bus_is_rejected(campus_snapshot):
    with pytest.raises(ReassignValueError):
        plan_reassignment(campus_snapshot.students, campus_snapshot.buses, "  ")
    with pytest.raises(ReassignValueError):
        PlanOptions(top_n=0)


def test_empty_roster_yields_empty_plan(campus_snapshot):
    result = plan_reassignment([], campus_snapshot.buses, "B1")
    assert not result.success
    assert result.plan == [] and result.unassignable == []
    assert result.summary.total_groups == 0


@pytest.mark.parametrize("seed", range(25))
def test_capacity_invariant_on_synthetic_fleets(seed):
    snapshot = generate_fleet(SyntheticFleetConfig(num_buses=(4, 10), roster_size=(10, 60)), seed=seed)
    roster = snapshot.students_on("B1")
    threshold = [90.0, 100.0, 75.0][seed % 3]
    result = plan_reassignment(roster, snapshot.buses, "B1", PlanOptions(threshold=threshold))

    initial = {bus.id: bus for bus in snapshot.buses}
    added: dict[tuple[str, Shift], int] = defaultdict(int)
    for entry in result.plan:
        bus = initial[entry.bus_id]
        assert entry.bus_id != "B1"
        assert entry.after_load.count_for(entry.shift) <= bus.capacity
        assert entry.load_after_pct <= threshold + 1e-9
        added[(entry.bus_id, entry.shift)] += entry.student_count
        assert entry.after_load.count_for(entry.shift) == (
            bus.count_for(entry.shift) + added[(entry.bus_id, entry.shift)]
        )

    planned = [s.id for entry in result.plan for s in entry.students]
    assert len(planned) == len(set(planned))
    assert result.summary.assigned_students + result.summary.unassigned_students == len(roster)


def test_group_decisions_are_logged(tmp_path, campus_snapshot, make_students):
    roster = campus_snapshot.students + make_students(2, stop="S9", start=50)
    log_path = tmp_path / "runs.jsonl"
    with RunTelemetryLogger(log_path=log_path, operation="plan", source_bus_id="B1") as logger:
        plan_reassignment(roster, campus_snapshot.buses, "B1", telemetry=logger)
        groups_path = logger.groups_path

    records = read_jsonl(groups_path)
    assert [record["outcome"] for record in records] == ["assigned", "no_stop_coverage"]
    assert records[0]["bus_id"] == "B2"
    (run,) = read_jsonl(log_path)
    assert run["status"] == "ok"
    assert run["operation"] == "plan"
