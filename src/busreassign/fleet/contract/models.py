"""Pydantic models describing the fleet and roster snapshot the engine reads."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator


class Shift(str, Enum):
    """Student travel shift."""

    MORNING = "Morning"
    EVENING = "Evening"

    @classmethod
    def parse(cls, value: object) -> Shift:
        """Title-case a raw shift label, defaulting to ``Morning`` when blank."""
        if isinstance(value, cls):
            return value
        text = str(value or "").strip()
        if not text:
            return cls.MORNING
        try:
            return cls(text[:1].upper() + text[1:].lower())
        except ValueError as exc:
            raise ValueError(f"Unknown student shift '{value}'") from exc


class BusShift(str, Enum):
    """Operating shift of a bus; ``Both`` buses run morning and evening trips."""

    MORNING = "Morning"
    EVENING = "Evening"
    BOTH = "Both"

    @classmethod
    def parse(cls, value: object) -> BusShift:
        if isinstance(value, cls):
            return value
        text = str(value or "").strip()
        if not text:
            return cls.MORNING
        try:
            return cls(text[:1].upper() + text[1:].lower())
        except ValueError as exc:
            raise ValueError(f"Unknown bus shift '{value}'") from exc


class StudentStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Stop(BaseModel):
    """Stop on a bus route.

    Attributes
    ----------
    stop_id:
        Identifier used for matching students to routes. Falls back to ``name`` when blank.
    name:
        Display name of the stop.
    sequence:
        Zero-based position of the stop within its route.
    """

    stop_id: str = ""
    name: str = ""
    sequence: int = 0

    @field_validator("sequence")
    @classmethod
    def _sequence_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("Stop.sequence must be non-negative")
        return value

    @model_validator(mode="after")
    def _resolve_identifier(self) -> Stop:
        if not self.stop_id.strip() and self.name.strip():
            object.__setattr__(self, "stop_id", self.name)
        if not self.stop_id.strip():
            raise ValueError("Stop requires a stop_id or a name")
        return self

    @property
    def key(self) -> str:
        """Normalised identifier (trimmed, lower-case) used for coverage checks."""
        return self.stop_id.strip().lower()


class BusLoad(BaseModel):
    """Per-shift occupancy counters; the single source of truth for remaining seats."""

    morning_count: int = 0
    evening_count: int = 0

    @field_validator("morning_count", "evening_count")
    @classmethod
    def _count_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("BusLoad counts must be non-negative")
        return value

    @property
    def total_count(self) -> int:
        return self.morning_count + self.evening_count

    def count_for(self, shift: Shift) -> int:
        return self.morning_count if Shift.parse(shift) is Shift.MORNING else self.evening_count

    def plus(self, shift: Shift, amount: int) -> BusLoad:
        """Return a copy with ``amount`` added to the counter for ``shift``."""
        if Shift.parse(shift) is Shift.MORNING:
            return BusLoad(morning_count=self.morning_count + amount, evening_count=self.evening_count)
        return BusLoad(morning_count=self.morning_count, evening_count=self.evening_count + amount)


class Bus(BaseModel):
    """Bus definition with route coverage and current occupancy.

    Attributes
    ----------
    id:
        Unique bus identifier referenced by students.
    bus_number:
        Display number (registration or fleet number).
    capacity:
        Seats available per trip. Applies to each shift independently.
    shift:
        Operating shift (:class:`BusShift`).
    route_id / route_name:
        Route the bus currently runs.
    route_stops:
        Primary ordered stop list taken from the route record.
    stops:
        Secondary stop list; some upstream records only populate this one.
    load:
        Current per-shift occupancy.

    Notes
    -----
    Snapshots are allowed to be overloaded (that is usually why a reassignment runs). Use
    :func:`busreassign.allocation.rules.check_overload` to detect it.
    """

    id: str
    bus_number: str = ""
    capacity: int
    shift: BusShift = BusShift.MORNING
    route_id: str = ""
    route_name: str = ""
    route_stops: list[Stop] = Field(default_factory=list)
    stops: list[Stop] = Field(default_factory=list)
    load: BusLoad = Field(default_factory=BusLoad)

    @field_validator("id")
    @classmethod
    def _id_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("Bus.id must be non-empty")
        return value.strip()

    @field_validator("capacity")
    @classmethod
    def _capacity_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("Bus.capacity must be > 0")
        return value

    @field_validator("shift", mode="before")
    @classmethod
    def _parse_shift(cls, value: object) -> BusShift:
        return BusShift.parse(value)

    @property
    def label(self) -> str:
        return self.bus_number or self.id

    def count_for(self, shift: Shift) -> int:
        return self.load.count_for(shift)

    def stop_keys(self) -> list[str]:
        """Distinct normalised stop identifiers across both stop lists, route order first."""
        keys: list[str] = []
        for stop in [*self.route_stops, *self.stops]:
            if stop.key and stop.key not in keys:
                keys.append(stop.key)
        return keys

    def find_stop(self, stop_id: str) -> Stop | None:
        key = (stop_id or "").strip().lower()
        for stop in [*self.route_stops, *self.stops]:
            if stop.key == key:
                return stop
        return None


class Student(BaseModel):
    """Student currently riding a bus.

    Attributes
    ----------
    id:
        Unique student identifier (user id).
    full_name:
        Display name.
    bus_id / route_id:
        Current bus and route references. Only the executor changes these.
    stop_id:
        Pickup stop identifier. Never changed by a reassignment.
    shift:
        :class:`Shift`; blank values default to ``Morning``.
    status:
        :class:`StudentStatus`.
    """

    id: str
    full_name: str = ""
    bus_id: str = ""
    route_id: str = ""
    stop_id: str = ""
    shift: Shift = Shift.MORNING
    status: StudentStatus = StudentStatus.ACTIVE

    @field_validator("id")
    @classmethod
    def _id_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("Student.id must be non-empty")
        return value.strip()

    @field_validator("shift", mode="before")
    @classmethod
    def _parse_shift(cls, value: object) -> Shift:
        return Shift.parse(value)

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value: object) -> StudentStatus:
        if isinstance(value, StudentStatus):
            return value
        text = str(value or "active").strip().lower()
        return StudentStatus(text)


class FleetSnapshot(BaseModel):
    """Point-in-time view of the fleet and roster handed to the planner.

    Attributes
    ----------
    name:
        Label surfaced in CLI output and telemetry.
    buses:
        All buses with current occupancy and stop coverage.
    students:
        Roster records. Planning usually considers the subset riding one source bus.
    """

    name: str = "snapshot"
    buses: list[Bus]
    students: list[Student] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_ids(self) -> FleetSnapshot:
        bus_ids = [bus.id for bus in self.buses]
        if len(bus_ids) != len(set(bus_ids)):
            raise ValueError("FleetSnapshot bus ids must be unique")
        student_ids = [student.id for student in self.students]
        if len(student_ids) != len(set(student_ids)):
            raise ValueError("FleetSnapshot student ids must be unique")
        return self

    def bus_ids(self) -> list[str]:
        return [bus.id for bus in self.buses]

    def bus(self, bus_id: str) -> Bus:
        try:
            return next(bus for bus in self.buses if bus.id == bus_id)
        except StopIteration as exc:
            raise KeyError(f"Bus '{bus_id}' is not part of the snapshot") from exc

    def students_on(self, bus_id: str, *, active_only: bool = True) -> list[Student]:
        return [
            student
            for student in self.students
            if student.bus_id == bus_id
            and (not active_only or student.status is StudentStatus.ACTIVE)
        ]


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
