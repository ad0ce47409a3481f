"""Candidate filtering for a single stop-group, with per-stage rejection diagnostics."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum

from busreassign.allocation.grouping import StopGroup
from busreassign.allocation.rules import bus_has_stop, free_seats, is_shift_compatible, load_percentage
from busreassign.core.errors import ReassignValueError
from busreassign.fleet.contract import Bus

__all__ = [
    "DEFAULT_THRESHOLD",
    "FilterStage",
    "UnassignableReason",
    "Rejection",
    "FilterOutcome",
    "normalize_threshold",
    "filter_candidates",
]

DEFAULT_THRESHOLD = 90.0
# Tolerance for float noise in load percentages (45/50*100 == 90.00000000000001).
_EPS = 1e-9


class FilterStage(str, Enum):
    STOP_COVERAGE = "stop_coverage"
    SHIFT = "shift"
    CURRENT_BUS = "current_bus"
    SEATS = "seats"
    THRESHOLD = "threshold"


class UnassignableReason(str, Enum):
    NO_STOP_COVERAGE = "no_stop_coverage"
    SHIFT_MISMATCH = "shift_mismatch"
    CAPACITY_OR_THRESHOLD = "capacity_or_threshold"


@dataclass(frozen=True, slots=True)
class Rejection:
    """A bus dropped by one filter stage and why."""

    bus_id: str
    bus_number: str
    stage: FilterStage
    detail: str

    def to_dict(self) -> dict[str, str]:
        return {
            "bus_id": self.bus_id,
            "bus_number": self.bus_number,
            "stage": self.stage.value,
            "detail": self.detail,
        }


@dataclass(slots=True)
class FilterOutcome:
    """Result of narrowing the fleet for one stop-group.

    ``failure``/``message`` are set when no candidate survives; ``rejections`` always lists every
    bus that covered the stop but was dropped later (buses that do not cover the stop are only
    counted in ``stage_counts`` to keep diagnostics readable on large fleets).
    """

    candidates: list[Bus] = field(default_factory=list)
    rejections: list[Rejection] = field(default_factory=list)
    stage_counts: dict[str, int] = field(default_factory=dict)
    failure: UnassignableReason | None = None
    message: str | None = None

    @property
    def feasible(self) -> bool:
        return self.failure is None and bool(self.candidates)


def normalize_threshold(value: float | None) -> float:
    """Return the effective load threshold.

    ``None`` selects the default (90). ``0`` means "no constraint" and becomes 100, since a literal
    zero would reject every bus.
    """
    if value is None:
        return DEFAULT_THRESHOLD
    threshold = float(value)
    if threshold < 0 or threshold > 100:
        raise ReassignValueError(f"threshold must be within [0, 100], got {value!r}")
    return 100.0 if threshold == 0 else threshold


def filter_candidates(
    group: StopGroup,
    fleet: Sequence[Bus],
    source_bus_id: str,
    threshold: float | None = DEFAULT_THRESHOLD,
) -> FilterOutcome:
    """Narrow ``fleet`` to buses that can absorb ``group`` as a whole.

    Stages, in order: stop coverage, shift compatibility, exclusion of the current bus, free seats
    for the group's shift, post-assignment load threshold.
    """
    limit = normalize_threshold(threshold)
    outcome = FilterOutcome()
    shift = group.shift

    current = {source_bus_id, *group.bus_ids()}
    covering = [bus for bus in fleet if bus_has_stop(bus, group.stop_key)]
    outcome.stage_counts[FilterStage.STOP_COVERAGE.value] = len(covering)
    alternatives = [bus for bus in covering if bus.id not in current]
    if not alternatives:
        outcome.failure = UnassignableReason.NO_STOP_COVERAGE
        outcome.message = f'No bus serves stop "{group.stop_key}"'
        if covering:
            outcome.message += " apart from the current bus"
        return outcome

    compatible: list[Bus] = []
    for bus in covering:
        if is_shift_compatible(shift, bus.shift):
            compatible.append(bus)
        else:
            outcome.rejections.append(
                Rejection(
                    bus.id,
                    bus.bus_number,
                    FilterStage.SHIFT,
                    f"bus shift {bus.shift.value} does not serve {shift.value} riders",
                )
            )
    outcome.stage_counts[FilterStage.SHIFT.value] = len(compatible)
    if all(bus.id in current for bus in compatible):
        found = ", ".join(f"{bus.label}:{bus.shift.value}" for bus in alternatives)
        outcome.failure = UnassignableReason.SHIFT_MISMATCH
        outcome.message = (
            f'Buses cover this stop but none match shift "{shift.value}" (found: {found})'
        )
        return outcome

    candidates: list[Bus] = []
    for bus in compatible:
        if bus.id in current:
            outcome.rejections.append(
                Rejection(bus.id, bus.bus_number, FilterStage.CURRENT_BUS, "group already rides this bus")
            )
        else:
            candidates.append(bus)
    outcome.stage_counts[FilterStage.CURRENT_BUS.value] = len(candidates)

    with_seats: list[Bus] = []
    for bus in candidates:
        seats = free_seats(bus, shift)
        if seats >= group.count:
            with_seats.append(bus)
        else:
            outcome.rejections.append(
                Rejection(
                    bus.id,
                    bus.bus_number,
                    FilterStage.SEATS,
                    f"not enough seats (free: {seats}, need: {group.count})",
                )
            )
    outcome.stage_counts[FilterStage.SEATS.value] = len(with_seats)

    within: list[Bus] = []
    for bus in with_seats:
        before = load_percentage(bus, shift)
        after = before + group.count / bus.capacity * 100.0
        if after <= limit + _EPS:
            within.append(bus)
        else:
            outcome.rejections.append(
                Rejection(
                    bus.id,
                    bus.bus_number,
                    FilterStage.THRESHOLD,
                    f"load {before:.1f}% -> {after:.1f}% exceeds {limit:g}%",
                )
            )
    outcome.stage_counts[FilterStage.THRESHOLD.value] = len(within)
    outcome.candidates = within

    if not within:
        outcome.failure = UnassignableReason.CAPACITY_OR_THRESHOLD
        if not with_seats:
            outcome.message = f"No alternative bus has {group.count} free {shift.value} seats"
        else:
            outcome.message = (
                f"No alternative bus stays within the {limit:g}% load threshold "
                f"after adding {group.count} students"
            )
    return outcome
