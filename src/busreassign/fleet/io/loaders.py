"""Snapshot loading utilities (YAML metadata + CSV tables, or a single JSON document)."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pandas as pd
import yaml

from busreassign.core.errors import ReassignValueError
from busreassign.fleet.contract.models import FleetSnapshot, Stop
from busreassign.fleet.io.adapters import adapt_snapshot

__all__ = ["load_snapshot", "read_csv", "write_snapshot_bundle"]


def read_csv(path: Path) -> pd.DataFrame:
    """Load a CSV file using pandas with UTF-8 defaults."""
    return pd.read_csv(path, dtype=str, keep_default_na=True)


def _resolve_path(root: Path, value: str | None) -> Path | None:
    if value is None:
        return None
    path = Path(value)
    if not path.is_absolute():
        path = root / path
    if not path.exists():
        raise FileNotFoundError(path)
    return path


def _records_from(root: Path, value: Any) -> list[dict[str, Any]]:
    if value is None:
        return []
    if isinstance(value, list):
        return [dict(item) for item in value]
    if isinstance(value, str):
        path = _resolve_path(root, value)
        assert path is not None
        if path.suffix.lower() == ".json":
            with path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
            if not isinstance(payload, list):
                raise ReassignValueError(f"{path} must contain a JSON array of records")
            return [dict(item) for item in payload]
        frame = read_csv(path)
        return frame.to_dict(orient="records")
    raise ReassignValueError(f"Unsupported table reference: {value!r}")


def load_snapshot(path: str | Path) -> FleetSnapshot:
    """Load a :class:`FleetSnapshot` from disk.

    Parameters
    ----------
    path:
        Either a ``.json`` document with ``buses``/``students`` arrays, or a ``snapshot.yaml`` whose
        ``data`` section references CSV/JSON tables (or lists records inline).

    Notes
    -----
    Every record passes through :mod:`busreassign.fleet.io.adapters`, so camelCase exports,
    nested ``route.stops``/``load`` mappings and flat CSV columns (``stops`` as ``S1|S2`` or a JSON array of stop objects,
    ``morning_count``) are all accepted.
    """
    base_path = Path(path).resolve()
    root = base_path.parent
    with base_path.open("r", encoding="utf-8") as handle:
        if base_path.suffix.lower() == ".json":
            meta = json.load(handle)
        else:
            meta = yaml.safe_load(handle)
    if not isinstance(meta, dict):
        raise ReassignValueError(f"{base_path} must contain a mapping at the top level")
    data_section = meta.get("data", meta)
    buses = _records_from(root, data_section.get("buses"))
    students = _records_from(root, data_section.get("students"))
    if not buses:
        raise ReassignValueError(f"{base_path} does not define any buses")
    return adapt_snapshot(buses, students, name=str(meta.get("name") or base_path.stem))


def _stops_cell(stops: list[Stop]) -> str:
    return json.dumps([stop.model_dump() for stop in stops], ensure_ascii=False)


def write_snapshot_bundle(snapshot: FleetSnapshot, out_dir: str | Path) -> Path:
    """Write ``snapshot.yaml`` + ``buses.csv`` + ``students.csv``; return the YAML path."""
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)
    bus_rows = [
        {
            "id": bus.id,
            "bus_number": bus.bus_number,
            "capacity": bus.capacity,
            "shift": bus.shift.value,
            "route_id": bus.route_id,
            "route_name": bus.route_name,
            "route_stops": _stops_cell(bus.route_stops),
            "stops": _stops_cell(bus.stops),
            "morning_count": bus.load.morning_count,
            "evening_count": bus.load.evening_count,
        }
        for bus in snapshot.buses
    ]
    student_rows = [
        {
            "id": student.id,
            "full_name": student.full_name,
            "bus_id": student.bus_id,
            "route_id": student.route_id,
            "stop_id": student.stop_id,
            "shift": student.shift.value,
            "status": student.status.value,
        }
        for student in snapshot.students
    ]
    pd.DataFrame(bus_rows).to_csv(out / "buses.csv", index=False)
    pd.DataFrame(
        student_rows,
        columns=["id", "full_name", "bus_id", "route_id", "stop_id", "shift", "status"],
    ).to_csv(out / "students.csv", index=False)
    meta = {
        "name": snapshot.name,
        "data": {"buses": "buses.csv", "students": "students.csv"},
    }
    yaml_path = out / "snapshot.yaml"
    yaml_path.write_text(yaml.safe_dump(meta, sort_keys=False), encoding="utf-8")
    return yaml_path
