"""Plan builder: drive grouping, filtering and scoring for every stop-group.

The builder turns a roster (usually the riders of one source bus) and a fleet snapshot into an
inert :class:`PlanResult`. Nothing is written anywhere: the plan only becomes effective when it is
handed to :func:`busreassign.execution.execute_plan`.

Example
-------
>>> from busreassign.allocation import PlanOptions, plan_reassignment
>>> from busreassign.fleet.io import load_snapshot
>>> snapshot = load_snapshot("examples/campus/snapshot.yaml")
>>> result = plan_reassignment(snapshot.students_on("B1"), snapshot.buses, "B1")
>>> result.summary.assigned_students + result.summary.unassigned_students
12
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from random import Random
from typing import Any

from busreassign.allocation.filters import (
    FilterOutcome,
    Rejection,
    UnassignableReason,
    filter_candidates,
    normalize_threshold,
)
from busreassign.allocation.grouping import StopGroup, group_by_stop
from busreassign.allocation.scoring import SelectionStrategy, build_strategy, score_candidates
from busreassign.config import DEFAULT_CUSHION_STEPS, CushionStep, EngineConfig, ScoringWeights
from busreassign.core.errors import ReassignValueError
from busreassign.fleet.contract import Bus, BusLoad, Shift, Student
from busreassign.telemetry.run_logger import RunTelemetryLogger

__all__ = [
    "PlanOptions",
    "AssignmentPlanEntry",
    "UnassignableGroup",
    "PlanSummary",
    "PlanResult",
    "plan_reassignment",
]


@dataclass
class PlanOptions:
    """Caller-facing planning options.

    Parameters
    ----------
    randomize:
        Pick uniformly among the ``top_n`` best candidates instead of the single best one.
    top_n:
        Pool size for randomized selection.
    threshold:
        Maximum post-assignment load percentage. ``0`` is treated as ``100``.
    weights / cushion_steps / cushion_floor:
        Scoring model overrides (defaults 0.35/0.30/0.20/0.15 and 10/5/2-seat steps).
    """

    randomize: bool = False
    top_n: int = 3
    threshold: float = 90.0
    weights: ScoringWeights = field(default_factory=ScoringWeights)
    cushion_steps: Sequence[CushionStep] = DEFAULT_CUSHION_STEPS
    cushion_floor: float = 0.1

    def __post_init__(self) -> None:
        if self.top_n < 1:
            raise ReassignValueError("top_n must be >= 1")
        self.threshold = normalize_threshold(self.threshold)

    @classmethod
    def from_config(cls, config: EngineConfig) -> PlanOptions:
        return cls(
            randomize=config.randomize,
            top_n=config.top_n,
            threshold=config.threshold,
            weights=config.weights,
            cushion_steps=tuple(config.cushion_steps),
            cushion_floor=config.cushion_floor,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "randomize": self.randomize,
            "top_n": self.top_n,
            "threshold": self.threshold,
            "weights": self.weights.model_dump(),
            "cushion_steps": [step.model_dump() for step in self.cushion_steps],
            "cushion_floor": self.cushion_floor,
        }


def _load_dict(load: BusLoad) -> dict[str, int]:
    return {"morning": load.morning_count, "evening": load.evening_count}


@dataclass
class AssignmentPlanEntry:
    """One stop-group routed to one destination bus.

    Attributes
    ----------
    stop_id / stop_name:
        Pickup stop shared by the group (students keep it after the move).
    shift:
        Shared shift of the group.
    students:
        Members of the group.
    bus_id / bus_number / route_id:
        Destination bus and the route the students inherit.
    before_load / after_load:
        Destination occupancy before and after this entry, including entries accepted earlier
        in the same plan.
    load_before_pct / load_after_pct:
        Destination load percentage for ``shift``.
    score:
        Composite score of the chosen candidate.
    """

    stop_id: str
    stop_name: str
    shift: Shift
    students: list[Student]
    bus_id: str
    bus_number: str
    route_id: str
    before_load: BusLoad
    after_load: BusLoad
    load_before_pct: float
    load_after_pct: float
    score: float = 0.0

    @property
    def student_count(self) -> int:
        return len(self.students)

    def to_dict(self) -> dict[str, Any]:
        return {
            "stop_id": self.stop_id,
            "stop_name": self.stop_name,
            "shift": self.shift.value,
            "student_count": self.student_count,
            "student_ids": [student.id for student in self.students],
            "bus_id": self.bus_id,
            "bus_number": self.bus_number,
            "route_id": self.route_id,
            "before_load": _load_dict(self.before_load),
            "after_load": _load_dict(self.after_load),
            "load_before_pct": round(self.load_before_pct, 2),
            "load_after_pct": round(self.load_after_pct, 2),
            "score": round(self.score, 4),
        }


@dataclass
class UnassignableGroup:
    """A stop-group no bus can absorb, with a categorized and actionable reason."""

    stop_id: str
    stop_name: str
    shift: Shift
    count: int
    category: UnassignableReason
    reason: str
    rejections: list[Rejection] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "stop_id": self.stop_id,
            "stop_name": self.stop_name,
            "shift": self.shift.value,
            "count": self.count,
            "category": self.category.value,
            "reason": self.reason,
            "rejections": [rejection.to_dict() for rejection in self.rejections],
        }


@dataclass
class PlanSummary:
    total_groups: int = 0
    assigned_groups: int = 0
    unassigned_groups: int = 0
    total_students: int = 0
    assigned_students: int = 0
    unassigned_students: int = 0
    affected_buses: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_groups": self.total_groups,
            "assigned_groups": self.assigned_groups,
            "unassigned_groups": self.unassigned_groups,
            "total_students": self.total_students,
            "assigned_students": self.assigned_students,
            "unassigned_students": self.unassigned_students,
            "affected_buses": list(self.affected_buses),
        }


@dataclass
class PlanResult:
    """Planning outcome.

    ``success`` is ``True`` when *any* group could be placed; callers must inspect
    ``unassignable`` to learn whether every group was.
    """

    success: bool
    source_bus_id: str
    plan: list[AssignmentPlanEntry]
    unassignable: list[UnassignableGroup]
    summary: PlanSummary
    options: PlanOptions
    strategy: str = "deterministic"

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "source_bus_id": self.source_bus_id,
            "strategy": self.strategy,
            "options": self.options.to_dict(),
            "plan": [entry.to_dict() for entry in self.plan],
            "unassignable": [group.to_dict() for group in self.unassignable],
            "summary": self.summary.to_dict(),
        }


def _title(text: str) -> str:
    return " ".join(word[:1].upper() + word[1:] for word in text.lower().split(" "))


def _stop_name(stop_key: str, *buses: Bus | None) -> str:
    for bus in buses:
        if bus is None:
            continue
        stop = bus.find_stop(stop_key)
        if stop is not None and stop.name:
            return _title(stop.name)
    return _title(stop_key)


def _unassignable(group: StopGroup, outcome: FilterOutcome, source: Bus | None) -> UnassignableGroup:
    assert outcome.failure is not None
    return UnassignableGroup(
        stop_id=group.stop_id,
        stop_name=_stop_name(group.stop_key, source),
        shift=group.shift,
        count=group.count,
        category=outcome.failure,
        reason=outcome.message or outcome.failure.value,
        rejections=list(outcome.rejections),
    )


def plan_reassignment(
    roster: Iterable[Student],
    fleet: Sequence[Bus],
    source_bus_id: str,
    options: PlanOptions | None = None,
    *,
    strategy: SelectionStrategy | None = None,
    rng: Random | None = None,
    telemetry: RunTelemetryLogger | None = None,
) -> PlanResult:
    """Build an assignment plan moving ``roster`` off ``source_bus_id``.

    Parameters
    ----------
    roster:
        Students to consider, typically the current riders of the source bus.
    fleet:
        Snapshot of every bus. It is never mutated.
    source_bus_id:
        Bus the students are leaving; never a destination.
    options:
        :class:`PlanOptions`; defaults to deterministic selection with a 90% threshold.
    strategy:
        Explicit :class:`~busreassign.allocation.scoring.SelectionStrategy`. When omitted it is
        derived from ``options.randomize``/``options.top_n`` with ``rng``.
    rng:
        Random source for randomized selection (seed it for reproducible plans).
    telemetry:
        Optional run logger receiving one record per stop-group decision.

    Returns
    -------
    PlanResult
        Plan entries, unassignable groups with reasons, and aggregate totals.
    """
    if not source_bus_id or not source_bus_id.strip():
        raise ReassignValueError("source_bus_id must be non-empty")
    options = options or PlanOptions()
    selector = strategy or build_strategy(options.randomize, options.top_n, rng)

    students = list(roster)
    groups = group_by_stop(students)
    # Working copies carry occupancy added by entries accepted earlier in this run.
    working: dict[str, Bus] = {bus.id: bus for bus in fleet}
    source = working.get(source_bus_id)

    plan: list[AssignmentPlanEntry] = []
    unassignable: list[UnassignableGroup] = []
    for step, group in enumerate(groups):
        outcome = filter_candidates(group, list(working.values()), source_bus_id, options.threshold)
        if not outcome.feasible:
            entry = _unassignable(group, outcome, source)
            unassignable.append(entry)
            if telemetry is not None:
                telemetry.log_group(
                    step=step,
                    stop_id=group.stop_id,
                    shift=group.shift.value,
                    count=group.count,
                    outcome=entry.category.value,
                    reason=entry.reason,
                )
            continue

        ranked = score_candidates(
            outcome.candidates,
            group.shift,
            group.count,
            weights=options.weights,
            cushion_steps=options.cushion_steps,
            cushion_floor=options.cushion_floor,
        )
        chosen = selector.select(ranked)
        assert chosen is not None
        bus = chosen.bus
        after = bus.load.plus(group.shift, group.count)
        plan.append(
            AssignmentPlanEntry(
                stop_id=group.stop_id,
                stop_name=_stop_name(group.stop_key, bus, source),
                shift=group.shift,
                students=list(group.students),
                bus_id=bus.id,
                bus_number=bus.bus_number,
                route_id=bus.route_id,
                before_load=bus.load,
                after_load=after,
                load_before_pct=chosen.load_before,
                load_after_pct=chosen.load_after,
                score=chosen.score,
            )
        )
        working[bus.id] = bus.model_copy(update={"load": after})
        if telemetry is not None:
            telemetry.log_group(
                step=step,
                stop_id=group.stop_id,
                shift=group.shift.value,
                count=group.count,
                outcome="assigned",
                bus_id=bus.id,
                score=chosen.score,
                candidates=len(ranked),
                reason=chosen.reason,
            )

    assigned_students = sum(entry.student_count for entry in plan)
    unassigned_students = sum(group.count for group in unassignable)
    summary = PlanSummary(
        total_groups=len(groups),
        assigned_groups=len(plan),
        unassigned_groups=len(unassignable),
        total_students=len(students),
        assigned_students=assigned_students,
        unassigned_students=unassigned_students,
        affected_buses=sorted({entry.bus_id for entry in plan}),
    )
    return PlanResult(
        success=bool(plan),
        source_bus_id=source_bus_id,
        plan=plan,
        unassignable=unassignable,
        summary=summary,
        options=options,
        strategy=selector.name,
    )
