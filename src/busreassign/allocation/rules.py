"""Compatibility rules and per-shift seat arithmetic."""

from __future__ import annotations

from dataclasses import dataclass

from busreassign.fleet.contract import Bus, BusShift, Shift

__all__ = [
    "OverloadInfo",
    "normalize_stop_id",
    "normalize_shift",
    "is_shift_compatible",
    "bus_has_stop",
    "free_seats",
    "load_percentage",
    "check_overload",
]


def normalize_stop_id(value: str | None) -> str:
    """Trim and lower-case a stop identifier (``None`` becomes ``""``)."""
    return (value or "").strip().lower()


def normalize_shift(value: object) -> Shift:
    """Title-case a student shift, defaulting to ``Morning``."""
    return Shift.parse(value)


def _shift_text(value: object, default: str) -> str:
    raw = value.value if isinstance(value, (Shift, BusShift)) else value
    return (str(raw or "").strip() or default).lower()


def is_shift_compatible(student_shift: Shift | str | None, bus_shift: BusShift | str | None) -> bool:
    """Return whether a bus operating ``bus_shift`` may carry a ``student_shift`` rider.

    Morning riders fit ``Morning`` and ``Both`` buses. Evening riders fit ``Both`` buses only:
    evening-only buses are treated as saturated and never receive reassigned students.
    """
    student = _shift_text(student_shift, "morning")
    bus = _shift_text(bus_shift, "morning")
    if student == "morning":
        return bus in ("morning", "both")
    if student == "evening":
        return bus == "both"
    return False


def bus_has_stop(bus: Bus, stop_id: str | None) -> bool:
    """Return whether ``stop_id`` appears in the bus's primary or secondary stop list."""
    key = normalize_stop_id(stop_id)
    if not key:
        return False
    if any(stop.key == key for stop in bus.route_stops):
        return True
    return any(stop.key == key for stop in bus.stops)


def free_seats(bus: Bus, shift: Shift | str) -> int:
    """Seats left on ``bus`` for ``shift`` (negative when the shift is overloaded)."""
    return bus.capacity - bus.count_for(Shift.parse(shift))


def load_percentage(bus: Bus, shift: Shift | str) -> float:
    return bus.count_for(Shift.parse(shift)) / bus.capacity * 100.0


@dataclass(frozen=True, slots=True)
class OverloadInfo:
    """Overloaded bus description; ``reason`` is ``morning``, ``evening`` or ``both``."""

    bus_id: str
    bus_number: str
    reason: str
    count: int
    capacity: int
    shift: BusShift


def check_overload(bus: Bus) -> OverloadInfo | None:
    """Return overload details when any shift the bus operates exceeds capacity."""
    morning = bus.load.morning_count
    evening = bus.load.evening_count
    morning_over = bus.shift in (BusShift.MORNING, BusShift.BOTH) and morning > bus.capacity
    evening_over = bus.shift in (BusShift.EVENING, BusShift.BOTH) and evening > bus.capacity
    if morning_over and evening_over:
        reason, count = "both", max(morning, evening)
    elif morning_over:
        reason, count = "morning", morning
    elif evening_over:
        reason, count = "evening", evening
    else:
        return None
    return OverloadInfo(
        bus_id=bus.id,
        bus_number=bus.bus_number,
        reason=reason,
        count=count,
        capacity=bus.capacity,
        shift=bus.shift,
    )
