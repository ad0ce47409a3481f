"""Synthetic fleet/roster generator used by property tests and CLI demos."""

from __future__ import annotations

import random
from dataclasses import dataclass, field

from busreassign.fleet.contract import Bus, BusLoad, BusShift, FleetSnapshot, Shift, Stop, Student


def _as_range(value: tuple[int, int] | int) -> tuple[int, int]:
    if isinstance(value, tuple):
        return value
    return (value, value)


def _sample_int(rng: random.Random, bounds: tuple[int, int] | int) -> int:
    low, high = _as_range(bounds)
    return rng.randint(int(low), int(high))


@dataclass
class SyntheticFleetConfig:
    """Configuration for generating random fleets around a single source bus.

    Attributes
    ----------
    num_buses:
        Number of buses including the source bus ``B1``.
    num_stops:
        Size of the stop pool (``S1``..``Sn``) routes draw from.
    stops_per_route:
        Number of stops each route covers.
    capacity:
        Seat capacity bounds per bus.
    roster_size:
        Students riding the source bus (capped by its capacity per shift).
    evening_share:
        Probability that a generated student rides the evening shift.
    shift_pool:
        Bus shifts sampled for non-source buses.
    """

    name: str = "synthetic"
    num_buses: tuple[int, int] | int = (3, 8)
    num_stops: tuple[int, int] | int = (4, 10)
    stops_per_route: tuple[int, int] | int = (2, 5)
    capacity: tuple[int, int] | int = (20, 60)
    roster_size: tuple[int, int] | int = (5, 40)
    evening_share: float = 0.3
    shift_pool: list[str] = field(default_factory=lambda: ["Morning", "Evening", "Both"])


def generate_fleet(config: SyntheticFleetConfig | None = None, *, seed: int = 123) -> FleetSnapshot:
    """Generate a random :class:`FleetSnapshot` whose roster rides bus ``B1``.

    The source bus always runs ``Both`` shifts and its load counters match its roster; other
    buses receive random occupancy within capacity.
    """

    config = config or SyntheticFleetConfig()
    rng = random.Random(seed)
    num_buses = max(2, _sample_int(rng, config.num_buses))
    stop_pool = [f"S{i + 1}" for i in range(max(1, _sample_int(rng, config.num_stops)))]

    buses: list[Bus] = []
    for idx in range(num_buses):
        per_route = min(len(stop_pool), max(1, _sample_int(rng, config.stops_per_route)))
        route_stops = [
            Stop(stop_id=stop_id, name=f"Stop {stop_id}", sequence=seq)
            for seq, stop_id in enumerate(rng.sample(stop_pool, per_route))
        ]
        capacity = max(1, _sample_int(rng, config.capacity))
        shift = BusShift.BOTH if idx == 0 else BusShift.parse(rng.choice(config.shift_pool))
        load = BusLoad(
            morning_count=0 if idx == 0 else rng.randint(0, capacity),
            evening_count=0 if idx == 0 else rng.randint(0, capacity),
        )
        buses.append(
            Bus(
                id=f"B{idx + 1}",
                bus_number=f"BUS-{idx + 1:03d}",
                capacity=capacity,
                shift=shift,
                route_id=f"R{idx + 1}",
                route_name=f"Route {idx + 1}",
                route_stops=route_stops,
                load=load,
            )
        )

    source = buses[0]
    source_stops = [stop.stop_id for stop in source.route_stops]
    roster_size = _sample_int(rng, config.roster_size)
    students: list[Student] = []
    counts = {Shift.MORNING: 0, Shift.EVENING: 0}
    for idx in range(roster_size):
        shift = Shift.EVENING if rng.random() < config.evening_share else Shift.MORNING
        if counts[shift] >= source.capacity:
            continue
        counts[shift] += 1
        students.append(
            Student(
                id=f"U{idx + 1:04d}",
                full_name=f"Student {idx + 1}",
                bus_id=source.id,
                route_id=source.route_id,
                stop_id=rng.choice(source_stops),
                shift=shift,
            )
        )
    buses[0] = source.model_copy(
        update={
            "load": BusLoad(
                morning_count=counts[Shift.MORNING], evening_count=counts[Shift.EVENING]
            )
        }
    )
    return FleetSnapshot(name=config.name, buses=buses, students=students)


__all__ = ["SyntheticFleetConfig", "generate_fleet"]
