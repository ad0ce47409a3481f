"""Request-scoped bundle of the collaborators a reassignment needs."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from random import Random

from busreassign.allocation.planner import PlanOptions, PlanResult, plan_reassignment
from busreassign.config import EngineConfig
from busreassign.execution.executor import ExecutionResult, execute_plan
from busreassign.execution.reconcile import ReconciliationReport, reconcile_loads
from busreassign.execution.rollback import rollback_execution
from busreassign.execution.store import TransactionalStore
from busreassign.fleet.contract import FleetSnapshot
from busreassign.telemetry.run_logger import RunTelemetryLogger
from busreassign.telemetry.sinks import AuditSink, Notifier

__all__ = ["EngineContext"]


@dataclass(slots=True)
class EngineContext:
    """Caller-owned engine context.

    Parameters
    ----------
    store:
        Transactional store receiving commits.
    notifier / audit_sink:
        Optional post-commit sinks.
    config:
        :class:`EngineConfig` supplying planning defaults and commit retries.
    rng:
        Random source for randomized selection. Defaults to ``Random(config.seed)``.
    telemetry_log:
        When set, each planning or execution run appends a JSONL record here.
    """

    store: TransactionalStore
    notifier: Notifier | None = None
    audit_sink: AuditSink | None = None
    config: EngineConfig = field(default_factory=EngineConfig)
    rng: Random | None = None
    telemetry_log: Path | None = None

    def __post_init__(self) -> None:
        if self.rng is None:
            self.rng = Random(self.config.seed)

    def options(self, **overrides) -> PlanOptions:
        """Planning options from ``config`` with non-``None`` ``overrides`` applied."""
        options = PlanOptions.from_config(self.config)
        return replace(options, **{key: value for key, value in overrides.items() if value is not None})

    def _logger(self, operation: str, snapshot: str | None, source_bus_id: str | None, config: dict):
        if self.telemetry_log is None:
            return None
        return RunTelemetryLogger(
            log_path=self.telemetry_log,
            operation=operation,
            snapshot=snapshot,
            source_bus_id=source_bus_id,
            seed=self.config.seed,
            config=config,
        )

    def plan(
        self,
        snapshot: FleetSnapshot,
        source_bus_id: str,
        options: PlanOptions | None = None,
    ) -> PlanResult:
        """Plan moving every active rider of ``source_bus_id`` within ``snapshot``."""
        options = options or self.options()
        roster = snapshot.students_on(source_bus_id)
        logger = self._logger("plan", snapshot.name, source_bus_id, options.to_dict())
        if logger is None:
            return plan_reassignment(roster, snapshot.buses, source_bus_id, options, rng=self.rng)
        with logger:
            result = plan_reassignment(
                roster, snapshot.buses, source_bus_id, options, rng=self.rng, telemetry=logger
            )
            logger.finalize(metrics=result.summary.to_dict())
        return result

    def execute(self, plan: PlanResult, *, reason: str = "", actor: str = "system") -> ExecutionResult:
        result = execute_plan(
            plan,
            self.store,
            source_bus_id=plan.source_bus_id,
            reason=reason,
            actor=actor,
            notifier=self.notifier,
            audit_sink=self.audit_sink,
            max_retries=self.config.max_commit_retries,
        )
        logger = self._logger("execute", None, plan.source_bus_id, {"actor": actor, "reason": reason})
        if logger is not None:
            with logger:
                logger.finalize(
                    status="ok" if result.success else "failed",
                    metrics=result.summary.to_dict(),
                    extra={"operation_id": result.operation_id, "warnings": result.warnings},
                    error=result.error,
                )
        return result

    def reassign(
        self,
        snapshot: FleetSnapshot,
        source_bus_id: str,
        *,
        reason: str = "",
        actor: str = "system",
        options: PlanOptions | None = None,
    ) -> tuple[PlanResult, ExecutionResult | None]:
        """Plan and, when any group is placeable, commit in one call."""
        plan = self.plan(snapshot, source_bus_id, options)
        if not plan.success:
            return plan, None
        return plan, self.execute(plan, reason=reason, actor=actor)

    def rollback(
        self, result: ExecutionResult, *, reason: str = "rollback", actor: str = "system"
    ) -> ExecutionResult:
        return rollback_execution(
            result,
            self.store,
            actor=actor,
            reason=reason,
            notifier=self.notifier,
            audit_sink=self.audit_sink,
            max_retries=self.config.max_commit_retries,
        )

    def reconcile(
        self, *, bus_ids: list[str] | None = None, dry_run: bool = False
    ) -> ReconciliationReport:
        """Recount loads from the store's roster; the store must expose ``snapshot()``."""
        report = reconcile_loads(
            self.store, bus_ids=bus_ids, dry_run=dry_run, max_retries=self.config.max_commit_retries
        )
        logger = self._logger("reconcile", None, None, {"bus_ids": bus_ids, "dry_run": dry_run})
        if logger is not None:
            with logger:
                logger.finalize(
                    metrics={
                        "total_buses": len(report.reports),
                        "buses_with_discrepancies": len(report.discrepancies),
                        "students_counted": report.students_counted,
                    },
                    extra={"committed": report.committed},
                )
        return report
