"""Fleet contract models (Pydantic schemas, validators)."""

from .models import (
    Bus,
    BusLoad,
    BusShift,
    FleetSnapshot,
    Shift,
    Stop,
    Student,
    StudentStatus,
)

__all__ = [
    "Shift",
    "BusShift",
    "StudentStatus",
    "Stop",
    "BusLoad",
    "Bus",
    "Student",
    "FleetSnapshot",
]
