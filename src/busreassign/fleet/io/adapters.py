"""Adapters that map heterogeneous upstream records onto the canonical fleet contract.

Upstream documents are inconsistent: stop identifiers live under ``stopId``, ``id``, ``stop_id``
or only ``name``; stop lists appear under ``route.stops`` and/or ``stops``; occupancy sits in a
nested ``load`` mapping or in flat ``morningCount``/``eveningCount`` fields; camelCase and
snake_case keys are mixed. Everything downstream of this module only sees
:mod:`busreassign.fleet.contract` models.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from typing import Any, cast

import pandas as pd

from busreassign.core.errors import ReassignValueError
from busreassign.fleet.contract.models import Bus, BusLoad, FleetSnapshot, Stop, Student

__all__ = ["adapt_stop", "adapt_stops", "adapt_bus", "adapt_student", "adapt_snapshot"]

_STOP_ID_KEYS = ("stopId", "stop_id", "id", "name")
_BUS_ID_KEYS = ("id", "busId", "bus_id")
_STUDENT_ID_KEYS = ("id", "uid", "studentId", "student_id")


def _as_optional_string(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    if isinstance(value, (list, dict)):
        return None
    if pd.isna(cast("Any", value)):
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _first(record: Mapping[str, Any], keys: Iterable[str]) -> str | None:
    for key in keys:
        value = _as_optional_string(record.get(key))
        if value is not None:
            return value
    return None


def _as_int(value: object, default: int = 0) -> int:
    if value is None:
        return default
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return default
    try:
        if pd.isna(cast("Any", value)):
            return default
    except (TypeError, ValueError):
        pass
    try:
        return int(float(cast("Any", value)))
    except (TypeError, ValueError) as exc:
        raise ReassignValueError(f"Expected an integer, got {value!r}") from exc


def adapt_stop(raw: Mapping[str, Any] | str, sequence: int = 0) -> Stop | None:
    """Build a :class:`Stop` from a raw record.

    The identifier is resolved with priority ``stopId`` → ``id`` → ``name`` (first non-empty wins).
    Returns ``None`` for records that carry neither an identifier nor a name.
    """
    if isinstance(raw, str):
        text = raw.strip()
        return Stop(stop_id=text, name=text, sequence=sequence) if text else None
    stop_id = _first(raw, _STOP_ID_KEYS)
    if stop_id is None:
        return None
    name = _as_optional_string(raw.get("name")) or stop_id
    return Stop(stop_id=stop_id, name=name, sequence=_as_int(raw.get("sequence"), sequence))


def adapt_stops(raw: object) -> list[Stop]:
    """Adapt a stop list.

    Accepts sequences of mappings/strings, a JSON array of stop objects (as written to CSV
    bundles), or ``|``/``,`` separated identifiers.
    """
    if raw is None:
        return []
    if isinstance(raw, str) and raw.lstrip().startswith("["):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ReassignValueError(f"Invalid stop list {raw!r}: {exc}") from exc
    if isinstance(raw, str):
        parts = [part.strip() for part in raw.replace("|", ",").split(",")]
        raw = [part for part in parts if part]
    if not isinstance(raw, Iterable):
        return []
    stops: list[Stop] = []
    for index, item in enumerate(cast("Iterable[Any]", raw)):
        if not isinstance(item, (Mapping, str)):
            continue
        stop = adapt_stop(item, sequence=index)
        if stop is not None:
            stops.append(stop)
    return stops


def _adapt_load(raw: Mapping[str, Any]) -> BusLoad:
    nested = raw.get("load")
    source: Mapping[str, Any] = nested if isinstance(nested, Mapping) else raw
    morning = source.get("morningCount", source.get("morning_count"))
    evening = source.get("eveningCount", source.get("evening_count"))
    return BusLoad(morning_count=max(0, _as_int(morning)), evening_count=max(0, _as_int(evening)))


def adapt_bus(raw: Mapping[str, Any]) -> Bus:
    """Build a :class:`Bus` from a raw bus document (nested or flat)."""
    bus_id = _first(raw, _BUS_ID_KEYS)
    if bus_id is None:
        raise ReassignValueError(f"Bus record is missing an identifier: {dict(raw)!r}")
    route = raw.get("route") if isinstance(raw.get("route"), Mapping) else {}
    route = cast("Mapping[str, Any]", route)
    shift = _first(raw, ("shift",)) or _first(route, ("shift",))
    capacity = _as_int(raw.get("capacity", raw.get("totalCapacity")))
    route_stops_raw = route.get("stops", raw.get("route_stops"))
    return Bus(
        id=bus_id,
        bus_number=_first(raw, ("busNumber", "bus_number", "registrationNumber")) or bus_id,
        capacity=capacity,
        shift=shift or "Morning",
        route_id=_first(raw, ("routeId", "route_id")) or _first(route, ("routeId", "route_id", "id"))
        or "",
        route_name=_first(raw, ("routeName", "route_name"))
        or _first(route, ("routeName", "route_name", "name"))
        or "",
        route_stops=adapt_stops(route_stops_raw),
        stops=adapt_stops(raw.get("stops")),
        load=_adapt_load(raw),
    )


def adapt_student(raw: Mapping[str, Any]) -> Student:
    """Build a :class:`Student` from a raw roster record."""
    student_id = _first(raw, _STUDENT_ID_KEYS)
    if student_id is None:
        raise ReassignValueError(f"Student record is missing an identifier: {dict(raw)!r}")
    return Student(
        id=student_id,
        full_name=_first(raw, ("fullName", "full_name", "name")) or "",
        bus_id=_first(raw, ("busId", "bus_id", "assignedBusId")) or "",
        route_id=_first(raw, ("routeId", "route_id")) or "",
        stop_id=_first(raw, ("stopId", "stop_id", "pickupStopId")) or "",
        shift=_first(raw, ("shift",)) or "Morning",
        status=_first(raw, ("status",)) or "active",
    )


def adapt_snapshot(
    buses: Iterable[Mapping[str, Any]],
    students: Iterable[Mapping[str, Any]] = (),
    *,
    name: str = "snapshot",
) -> FleetSnapshot:
    """Adapt raw bus and student records into a validated :class:`FleetSnapshot`."""
    return FleetSnapshot(
        name=name,
        buses=[adapt_bus(record) for record in buses],
        students=[adapt_student(record) for record in students],
    )
