"""Transactional execution of assignment plans."""

from .executor import (
    BusUpdate,
    ChangeRecord,
    ExecutionResult,
    ExecutionSummary,
    ShiftDelta,
    StudentMutation,
    build_student_mutations,
    commit_deltas,
    compute_bus_deltas,
    execute_plan,
)
from .reconcile import BusLoadReport, ReconciliationReport, count_active_riders, reconcile_loads
from .rollback import check_rollback, rollback_execution
from .store import InMemoryStore, SQLiteStore, Transaction, TransactionalStore

__all__ = [
    "BusUpdate",
    "ChangeRecord",
    "ExecutionResult",
    "ExecutionSummary",
    "ShiftDelta",
    "StudentMutation",
    "build_student_mutations",
    "commit_deltas",
    "compute_bus_deltas",
    "execute_plan",
    "check_rollback",
    "rollback_execution",
    "BusLoadReport",
    "ReconciliationReport",
    "count_active_riders",
    "reconcile_loads",
    "InMemoryStore",
    "SQLiteStore",
    "Transaction",
    "TransactionalStore",
]
