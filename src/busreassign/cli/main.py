from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any

import click
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from busreassign.allocation import (
    PlanResult,
    check_overload,
    plan_dataframe,
    summarize_plan,
)
from busreassign.cli._utils import format_presets, parse_weight_overrides, preset_help
from busreassign.config import EngineConfig, get_preset, load_engine_config
from busreassign.context import EngineContext
from busreassign.core.errors import ReassignmentError, ReassignValueError
from busreassign.execution import (
    ChangeRecord,
    ExecutionResult,
    InMemoryStore,
    SQLiteStore,
)
from busreassign.fleet.contract import FleetSnapshot
from busreassign.fleet.io import load_snapshot, write_snapshot_bundle
from busreassign.fleet.synthetic import SyntheticFleetConfig, generate_fleet
from busreassign.telemetry import JsonlAuditSink, JsonlNotifier, SQLiteAuditSink

app = typer.Typer(add_completion=False, no_args_is_help=True)
console = Console()
OUTPUT_FORMAT = click.Choice(["table", "json"], case_sensitive=False)


def _load(snapshot: Path) -> FleetSnapshot:
    try:
        return load_snapshot(snapshot)
    except (ReassignValueError, ValidationError, ValueError, OSError) as exc:
        raise typer.BadParameter(f"Could not load {snapshot}: {exc}") from exc


def _resolve_config(
    config_path: Path | None,
    preset: str | None,
    *,
    threshold: float | None,
    randomize: bool,
    top_n: int | None,
    seed: int | None,
    weights: list[str] | None,
) -> EngineConfig:
    try:
        if config_path is not None:
            base = load_engine_config(config_path, preset=preset)
        else:
            base = get_preset(preset or "default")
        payload: dict[str, Any] = base.model_dump()
        if threshold is not None:
            payload["threshold"] = threshold
        if randomize:
            payload["randomize"] = True
        if top_n is not None:
            payload["top_n"] = top_n
        if seed is not None:
            payload["seed"] = seed
        payload["weights"].update(parse_weight_overrides(weights))
        return EngineConfig(**payload)
    except (ReassignValueError, ValidationError, ValueError) as exc:
        raise typer.BadParameter(str(exc)) from exc


def _open_store(db: Path, *, seed_from: FleetSnapshot | None = None) -> SQLiteStore:
    try:
        store = SQLiteStore(db)
        if seed_from is not None and store.is_empty():
            store.seed(seed_from)
            console.print(f"[dim]Seeded {db} from snapshot {seed_from.name}[/dim]")
    except (ReassignmentError, sqlite3.Error) as exc:
        console.print(f"[red]Could not open {db}:[/red] {exc}")
        raise typer.Exit(1)
    return store


def _print_plan(result: PlanResult) -> None:
    table = Table(title=f"Reassignment plan for {result.source_bus_id} ({result.strategy})")
    table.add_column("Stop")
    table.add_column("Shift")
    table.add_column("Students", justify="right")
    table.add_column("Bus")
    table.add_column("Load")
    table.add_column("Score", justify="right")
    for entry in result.plan:
        table.add_row(
            entry.stop_name,
            entry.shift.value,
            str(entry.student_count),
            entry.bus_number or entry.bus_id,
            f"{entry.load_before_pct:.0f}% -> {entry.load_after_pct:.0f}%",
            f"{entry.score:.3f}",
        )
    console.print(table)
    if result.unassignable:
        console.print("[bold yellow]Unassignable groups[/bold yellow]")
        for group in result.unassignable:
            console.print(
                f"  [yellow]{group.stop_name} ({group.shift.value}, {group.count} students)[/yellow]: "
                f"{group.reason}"
            )
    summary = result.summary
    console.print(
        f"Assigned {summary.assigned_students}/{summary.total_students} students "
        f"in {summary.assigned_groups}/{summary.total_groups} groups."
    )


def _write_plan_outputs(result: PlanResult, out_json: Path | None, out_csv: Path | None) -> None:
    if out_json is not None:
        out_json.parent.mkdir(parents=True, exist_ok=True)
        out_json.write_text(json.dumps(summarize_plan(result), indent=2), encoding="utf-8")
        console.print(f"Plan written to {out_json}")
    if out_csv is not None:
        out_csv.parent.mkdir(parents=True, exist_ok=True)
        plan_dataframe(result).to_csv(out_csv, index=False)
        console.print(f"Plan rows written to {out_csv}")


def _print_execution(result: ExecutionResult) -> None:
    table = Table(title=f"Committed operation {result.operation_id}")
    table.add_column("Bus")
    table.add_column("Morning")
    table.add_column("Evening")
    for update in result.bus_updates:
        table.add_row(
            update.bus_number or update.bus_id,
            f"{update.before.morning_count} -> {update.after.morning_count}",
            f"{update.before.evening_count} -> {update.after.evening_count}",
        )
    console.print(table)
    console.print(
        f"[green]Moved {result.summary.moved_count} students across "
        f"{len(result.summary.affected_buses)} buses.[/green]"
    )
    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")


@app.command("plan")
def plan_cmd(
    snapshot: Path = typer.Argument(..., exists=True, dir_okay=False, help="Snapshot YAML or JSON."),
    source_bus: str = typer.Option(..., "--source-bus", help="Bus whose riders are reassigned."),
    threshold: float | None = typer.Option(
        None, "--threshold", help="Maximum post-assignment load percentage (0 means 100)."
    ),
    randomize: bool = typer.Option(
        False, "--randomize", help="Pick randomly among the top-N candidates."
    ),
    top_n: int | None = typer.Option(None, "--top-n", min=1, help="Pool size for --randomize."),
    seed: int | None = typer.Option(None, "--seed", help="RNG seed for --randomize."),
    config: Path | None = typer.Option(
        None, "--config", exists=True, dir_okay=False, help="Engine config YAML."
    ),
    preset: str | None = typer.Option(None, "--preset", help=f"Config preset ({preset_help()})."),
    weight: list[str] | None = typer.Option(
        None,
        "--weight",
        "-w",
        help="Override a scoring weight as name=value (e.g. --weight balance=0.4). Repeatable.",
    ),
    out_json: Path | None = typer.Option(None, "--out-json", help="Write the plan as JSON."),
    out_csv: Path | None = typer.Option(None, "--out-csv", help="Write one row per student move."),
    telemetry_log: Path | None = typer.Option(
        None,
        "--telemetry-log",
        help="Append run telemetry to a JSONL file; group decisions land in groups/.",
        writable=True,
        dir_okay=False,
    ),
    output: str = typer.Option(
        "table", "--format", help="Console output format.", show_choices=True, click_type=OUTPUT_FORMAT
    ),
):
    """Build a reassignment plan without writing anything."""
    fleet = _load(snapshot)
    engine_config = _resolve_config(
        config,
        preset,
        threshold=threshold,
        randomize=randomize,
        top_n=top_n,
        seed=seed,
        weights=weight,
    )
    context = EngineContext(
        store=InMemoryStore.from_snapshot(fleet),
        config=engine_config,
        telemetry_log=telemetry_log,
    )
    try:
        result = context.plan(fleet, source_bus)
    except ReassignValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    if output.lower() == "json":
        console.print_json(data=summarize_plan(result))
    else:
        _print_plan(result)
    _write_plan_outputs(result, out_json, out_csv)


@app.command("execute")
def execute_cmd(
    snapshot: Path = typer.Argument(..., exists=True, dir_okay=False, help="Snapshot YAML or JSON."),
    source_bus: str = typer.Option(..., "--source-bus", help="Bus whose riders are reassigned."),
    db: Path = typer.Option(..., "--db", dir_okay=False, help="SQLite store (seeded when empty)."),
    reason: str = typer.Option("", "--reason", help="Reason recorded in the audit log."),
    actor: str = typer.Option("cli", "--actor", help="Actor recorded in the audit log."),
    threshold: float | None = typer.Option(None, "--threshold"),
    randomize: bool = typer.Option(False, "--randomize"),
    top_n: int | None = typer.Option(None, "--top-n", min=1),
    seed: int | None = typer.Option(None, "--seed"),
    config: Path | None = typer.Option(None, "--config", exists=True, dir_okay=False),
    preset: str | None = typer.Option(None, "--preset", help=f"Config preset ({preset_help()})."),
    weight: list[str] | None = typer.Option(
        None, "--weight", "-w", help="Override a scoring weight as name=value. Repeatable."
    ),
    audit_log: Path | None = typer.Option(
        None, "--audit-log", help="Audit JSONL path (defaults to the audit_log table in --db)."
    ),
    notify_log: Path | None = typer.Option(
        None, "--notify-log", help="Notification outbox JSONL (defaults to notifications.jsonl beside --db)."
    ),
    out_json: Path | None = typer.Option(
        None, "--out-json", help="Write the execution result (with change records) as JSON."
    ),
    telemetry_log: Path | None = typer.Option(None, "--telemetry-log", dir_okay=False),
):
    """Plan against the store state and commit the plan atomically."""
    fleet = _load(snapshot)
    engine_config = _resolve_config(
        config,
        preset,
        threshold=threshold,
        randomize=randomize,
        top_n=top_n,
        seed=seed,
        weights=weight,
    )
    store = _open_store(db, seed_from=fleet)
    try:
        current = store.snapshot(name=fleet.name)
    except ReassignmentError as exc:
        console.print(f"[red]Could not read {db}:[/red] {exc}")
        raise typer.Exit(1)
    context = EngineContext(
        store=store,
        notifier=JsonlNotifier(notify_log or db.parent / "notifications.jsonl"),
        audit_sink=JsonlAuditSink(audit_log) if audit_log else SQLiteAuditSink(db),
        config=engine_config,
        telemetry_log=telemetry_log,
    )
    try:
        plan, result = context.reassign(current, source_bus, reason=reason, actor=actor)
    except ReassignValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    _print_plan(plan)
    if result is None:
        console.print("[red]No group could be placed; nothing was committed.[/red]")
        raise typer.Exit(1)
    if not result.success:
        console.print(f"[red]Execution failed:[/red] {result.error}")
        raise typer.Exit(1)
    _print_execution(result)
    if out_json is not None:
        out_json.parent.mkdir(parents=True, exist_ok=True)
        out_json.write_text(json.dumps(result.to_dict(), indent=2), encoding="utf-8")
        console.print(f"Execution result written to {out_json}")


@app.command("rollback")
def rollback_cmd(
    result_json: Path = typer.Argument(
        ..., exists=True, dir_okay=False, help="Execution result written by `execute --out-json`."
    ),
    db: Path = typer.Option(..., "--db", exists=True, dir_okay=False, help="SQLite store."),
    reason: str = typer.Option("rollback", "--reason"),
    actor: str = typer.Option("cli", "--actor"),
):
    """Restore the records changed by a previous execution."""
    try:
        payload = json.loads(result_json.read_text(encoding="utf-8"))
        records = [ChangeRecord(**item) for item in payload["change_records"]]
    except (json.JSONDecodeError, UnicodeDecodeError, KeyError, TypeError) as exc:
        raise typer.BadParameter(f"{result_json} is not an execution result: {exc}") from exc
    previous = ExecutionResult(
        success=bool(payload.get("success")),
        operation_id=payload.get("operation_id", ""),
        change_records=records,
    )
    context = EngineContext(store=_open_store(db), audit_sink=SQLiteAuditSink(db))
    result = context.rollback(previous, reason=reason, actor=actor)
    if not result.success:
        console.print(f"[red]Rollback failed:[/red] {result.error}")
        raise typer.Exit(1)
    console.print(
        f"[green]Rolled back {previous.operation_id}: restored {result.summary.moved_count} students.[/green]"
    )


@app.command("reconcile")
def reconcile_cmd(
    db: Path = typer.Option(..., "--db", exists=True, dir_okay=False, help="SQLite store."),
    bus: list[str] | None = typer.Option(
        None, "--bus", help="Only recount this bus id. Repeatable."
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Report discrepancies without writing corrected loads."
    ),
    out_json: Path | None = typer.Option(None, "--out-json", help="Write the report as JSON."),
    telemetry_log: Path | None = typer.Option(None, "--telemetry-log", dir_okay=False),
):
    """Recount bus loads from active students and repair drifted counters."""
    context = EngineContext(store=_open_store(db), telemetry_log=telemetry_log)
    try:
        report = context.reconcile(bus_ids=bus or None, dry_run=dry_run)
    except ReassignValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    except ReassignmentError as exc:
        console.print(f"[red]Reconciliation failed:[/red] {exc}")
        raise typer.Exit(1)
    table = Table(title=f"Load reconciliation{' (dry run)' if dry_run else ''}")
    table.add_column("Bus")
    table.add_column("Morning")
    table.add_column("Evening")
    table.add_column("Status")
    for item in report.reports:
        table.add_row(
            item.bus_number or item.bus_id,
            f"{item.before.morning_count} -> {item.after.morning_count}",
            f"{item.before.evening_count} -> {item.after.evening_count}",
            "[yellow]drifted[/yellow]" if item.has_discrepancy else "ok",
        )
    console.print(table)
    for student_id in report.unknown_bus_students:
        console.print(f"[yellow]Warning:[/yellow] student {student_id} is assigned to an unknown bus")
    verb = "Corrected" if report.committed else "Found"
    console.print(
        f"{verb} {len(report.discrepancies)} of {len(report.reports)} buses "
        f"({report.students_counted} active students counted)."
    )
    if out_json is not None:
        out_json.parent.mkdir(parents=True, exist_ok=True)
        out_json.write_text(json.dumps(report.to_dict(), indent=2), encoding="utf-8")
        console.print(f"Reconciliation report written to {out_json}")


@app.command("overloads")
def overloads_cmd(
    snapshot: Path = typer.Argument(..., exists=True, dir_okay=False, help="Snapshot YAML or JSON."),
):
    """List buses whose load exceeds capacity for a shift they operate."""
    fleet = _load(snapshot)
    overloaded = [info for info in (check_overload(bus) for bus in fleet.buses) if info]
    if not overloaded:
        console.print("[green]No overloaded buses.[/green]")
        return
    table = Table(title=f"Overloaded buses: {fleet.name}")
    table.add_column("Bus")
    table.add_column("Shift")
    table.add_column("Overloaded")
    table.add_column("Riders", justify="right")
    table.add_column("Capacity", justify="right")
    for info in overloaded:
        table.add_row(
            info.bus_number or info.bus_id,
            info.shift.value,
            info.reason,
            str(info.count),
            str(info.capacity),
        )
    console.print(table)


@app.command("synth")
def synth_cmd(
    out_dir: Path = typer.Argument(..., file_okay=False, help="Directory for the snapshot bundle."),
    seed: int = typer.Option(123, "--seed", help="Random seed."),
    buses: int | None = typer.Option(None, "--buses", min=2, help="Number of buses."),
    students: int | None = typer.Option(None, "--students", min=0, help="Riders on bus B1."),
    overwrite: bool = typer.Option(False, "--overwrite", help="Replace an existing bundle."),
):
    """Write a synthetic snapshot bundle (snapshot.yaml + CSV tables)."""
    target = out_dir / "snapshot.yaml"
    if target.exists() and not overwrite:
        console.print(f"[red]{target} already exists. Use --overwrite to replace.[/red]")
        raise typer.Exit(1)
    config = SyntheticFleetConfig(name=out_dir.name or "synthetic")
    if buses is not None:
        config.num_buses = buses
    if students is not None:
        config.roster_size = students
    fleet = generate_fleet(config, seed=seed)
    path = write_snapshot_bundle(fleet, out_dir)
    console.print(
        f"[green]Synthetic snapshot written to {path}[/green] "
        f"({len(fleet.buses)} buses, {len(fleet.students)} students)"
    )


@app.command("presets")
def presets_cmd():
    """Show available configuration presets."""
    console.print(format_presets())


if __name__ == "__main__":
    app()
