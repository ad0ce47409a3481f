"""Allocation engine: compatibility rules, grouping, candidate filtering, scoring and planning."""

from busreassign.allocation.filters import (
    DEFAULT_THRESHOLD,
    FilterOutcome,
    FilterStage,
    Rejection,
    UnassignableReason,
    filter_candidates,
    normalize_threshold,
)
from busreassign.allocation.grouping import StopGroup, group_by_stop
from busreassign.allocation.planner import (
    AssignmentPlanEntry,
    PlanOptions,
    PlanResult,
    PlanSummary,
    UnassignableGroup,
    plan_reassignment,
)
from busreassign.allocation.reporting import plan_dataframe, summarize_plan, unassignable_dataframe
from busreassign.allocation.rules import (
    OverloadInfo,
    bus_has_stop,
    check_overload,
    free_seats,
    is_shift_compatible,
    load_percentage,
    normalize_shift,
    normalize_stop_id,
)
from busreassign.allocation.scoring import (
    STRATEGIES,
    BestCandidate,
    CandidateBus,
    RandomTopN,
    SelectionStrategy,
    build_strategy,
    cushion_score,
    score_candidates,
)

__all__ = [
    "DEFAULT_THRESHOLD",
    "FilterOutcome",
    "FilterStage",
    "Rejection",
    "UnassignableReason",
    "filter_candidates",
    "normalize_threshold",
    "StopGroup",
    "group_by_stop",
    "AssignmentPlanEntry",
    "PlanOptions",
    "PlanResult",
    "PlanSummary",
    "UnassignableGroup",
    "plan_reassignment",
    "plan_dataframe",
    "summarize_plan",
    "unassignable_dataframe",
    "OverloadInfo",
    "bus_has_stop",
    "check_overload",
    "free_seats",
    "is_shift_compatible",
    "load_percentage",
    "normalize_shift",
    "normalize_stop_id",
    "STRATEGIES",
    "BestCandidate",
    "CandidateBus",
    "RandomTopN",
    "SelectionStrategy",
    "build_strategy",
    "cushion_score",
    "score_candidates",
]
