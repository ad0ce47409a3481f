"""Reporting helpers for reassignment plans."""

from __future__ import annotations

from typing import Any

import pandas as pd

from busreassign.allocation.planner import PlanResult

__all__ = ["plan_dataframe", "unassignable_dataframe", "summarize_plan"]

_PLAN_COLUMNS = [
    "student_id",
    "student_name",
    "from_bus_id",
    "from_route_id",
    "to_bus_id",
    "to_bus_number",
    "to_route_id",
    "stop_id",
    "stop_name",
    "shift",
    "load_before_pct",
    "load_after_pct",
]

_UNASSIGNABLE_COLUMNS = ["stop_id", "stop_name", "shift", "count", "category", "reason"]


def plan_dataframe(result: PlanResult) -> pd.DataFrame:
    """Return one row per planned student move."""
    rows = [
        {
            "student_id": student.id,
            "student_name": student.full_name,
            "from_bus_id": student.bus_id,
            "from_route_id": student.route_id,
            "to_bus_id": entry.bus_id,
            "to_bus_number": entry.bus_number,
            "to_route_id": entry.route_id,
            "stop_id": entry.stop_id,
            "stop_name": entry.stop_name,
            "shift": entry.shift.value,
            "load_before_pct": round(entry.load_before_pct, 2),
            "load_after_pct": round(entry.load_after_pct, 2),
        }
        for entry in result.plan
        for student in entry.students
    ]
    return pd.DataFrame(rows, columns=_PLAN_COLUMNS)


def unassignable_dataframe(result: PlanResult) -> pd.DataFrame:
    """Return one row per unassignable stop-group."""
    rows = [
        {
            "stop_id": group.stop_id,
            "stop_name": group.stop_name,
            "shift": group.shift.value,
            "count": group.count,
            "category": group.category.value,
            "reason": group.reason,
        }
        for group in result.unassignable
    ]
    return pd.DataFrame(rows, columns=_UNASSIGNABLE_COLUMNS)


def summarize_plan(result: PlanResult) -> dict[str, Any]:
    """Return a JSON-serialisable summary with per-bus occupancy projections.

    ``buses`` maps each destination bus to its load before the first entry and after the last
    entry targeting it, so repeated destinations are reported once.
    """
    buses: dict[str, dict[str, Any]] = {}
    for entry in result.plan:
        record = buses.setdefault(
            entry.bus_id,
            {
                "bus_number": entry.bus_number,
                "before": {
                    "morning": entry.before_load.morning_count,
                    "evening": entry.before_load.evening_count,
                },
                "groups": 0,
                "students": 0,
            },
        )
        record["after"] = {
            "morning": entry.after_load.morning_count,
            "evening": entry.after_load.evening_count,
        }
        record["groups"] += 1
        record["students"] += entry.student_count
    payload = result.to_dict()
    payload["buses"] = buses
    return payload
