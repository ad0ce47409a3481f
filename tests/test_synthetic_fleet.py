from __future__ import annotations

import pytest

from busreassign.fleet.contract import BusShift, Shift
from busreassign.fleet.synthetic import SyntheticFleetConfig, generate_fleet


def test_generation_is_reproducible():
    first = generate_fleet(seed=11)
    second = generate_fleet(seed=11)
    assert first.model_dump() == second.model_dump()
    assert generate_fleet(seed=12).model_dump() != first.model_dump()


@pytest.mark.parametrize("seed", range(10))
def test_source_bus_matches_its_roster(seed):
    snapshot = generate_fleet(SyntheticFleetConfig(roster_size=(30, 80), capacity=(20, 40)), seed=seed)
    source = snapshot.bus("B1")
    assert source.shift is BusShift.BOTH
    riders = snapshot.students_on("B1")
    assert len(riders) == len(snapshot.students)
    for shift in Shift:
        count = sum(1 for student in riders if student.shift is shift)
        assert source.count_for(shift) == count <= source.capacity
    route_stops = set(source.stop_keys())
    assert all(student.stop_id.lower() in route_stops for student in riders)


def test_fixed_sizes_are_respected():
    config = SyntheticFleetConfig(name="fixed", num_buses=6, roster_size=12, capacity=50, evening_share=0.0)
    snapshot = generate_fleet(config, seed=3)
    assert snapshot.name == "fixed"
    assert snapshot.bus_ids() == ["B1", "B2", "B3", "B4", "B5", "B6"]
    assert len(snapshot.students) == 12
    assert all(student.shift is Shift.MORNING for student in snapshot.students)
    for bus in snapshot.buses[1:]:
        assert bus.load.morning_count <= bus.capacity
        assert bus.load.evening_count <= bus.capacity
