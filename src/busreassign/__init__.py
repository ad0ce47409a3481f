"""Capacity-aware bus reassignment engine."""

from busreassign.allocation import PlanOptions, PlanResult, plan_reassignment
from busreassign.config import EngineConfig, load_engine_config
from busreassign.context import EngineContext
from busreassign.execution import ExecutionResult, execute_plan, rollback_execution

__all__ = [
    "PlanOptions",
    "PlanResult",
    "plan_reassignment",
    "EngineConfig",
    "load_engine_config",
    "EngineContext",
    "ExecutionResult",
    "execute_plan",
    "rollback_execution",
]

__version__ = "0.1.0"
