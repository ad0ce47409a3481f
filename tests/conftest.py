from __future__ import annotations

from pathlib import Path

import pytest

from busreassign.fleet.contract import Bus, BusLoad, FleetSnapshot, Stop, Student

EXAMPLES_DIR = Path(__file__).resolve().parents[1] / "examples"


def build_bus(
    bus_id: str,
    *,
    stops: list[str],
    capacity: int = 50,
    shift: str = "Both",
    morning: int = 0,
    evening: int = 0,
    secondary: list[str] | None = None,
) -> Bus:
    return Bus(
        id=bus_id,
        bus_number=f"NO-{bus_id}",
        capacity=capacity,
        shift=shift,
        route_id=f"R-{bus_id}",
        route_name=f"Route {bus_id}",
        route_stops=[Stop(stop_id=stop, name=f"stop {stop}", sequence=i) for i, stop in enumerate(stops)],
        stops=[Stop(stop_id=stop, name=stop, sequence=i) for i, stop in enumerate(secondary or [])],
        load=BusLoad(morning_count=morning, evening_count=evening),
    )


def build_students(
    count: int,
    *,
    stop: str,
    shift: str = "Morning",
    bus_id: str = "B1",
    start: int = 1,
) -> list[Student]:
    return [
        Student(
            id=f"U{idx:04d}",
            full_name=f"Student {idx}",
            bus_id=bus_id,
            route_id=f"R-{bus_id}",
            stop_id=stop,
            shift=shift,
        )
        for idx in range(start, start + count)
    ]


@pytest.fixture
def make_bus():
    return build_bus


@pytest.fixture
def make_students():
    return build_students


@pytest.fixture
def campus_snapshot() -> FleetSnapshot:
    """Twelve morning riders at S1 leave B1; B2 has room, B3 is nearly full."""
    buses = [
        build_bus("B1", stops=["S1", "S2"], morning=48),
        build_bus("B2", stops=["S1", "S3"], morning=10),
        build_bus("B3", stops=["S1", "S4"], shift="Morning", morning=45),
    ]
    return FleetSnapshot(name="campus", buses=buses, students=build_students(12, stop="S1"))


@pytest.fixture
def campus_yaml() -> Path:
    return EXAMPLES_DIR / "campus" / "snapshot.yaml"
