"""Transactional repository interface plus in-memory and SQLite implementations.

Both stores use optimistic concurrency: every bus and student record carries a version number,
transactions remember the versions they read, buffer their writes, and the commit fails with
:class:`~busreassign.core.errors.ConflictError` when any touched record changed in between. No
application-level lock is held while a caller reads and validates.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Protocol, TypeVar

from busreassign.core.errors import ConflictError, StoreError
from busreassign.fleet.contract import Bus, BusLoad, FleetSnapshot, Stop, Student

__all__ = ["Transaction", "TransactionalStore", "InMemoryStore", "SQLiteStore"]


class Transaction(Protocol):
    """Unit of work spanning several bus and student records."""

    def read_bus(self, bus_id: str) -> Bus:
        """Return the current bus record, remembering its version."""

    def read_student(self, student_id: str) -> Student:
        """Return the current student record, remembering its version."""

    def write_bus_load(self, bus_id: str, load: BusLoad) -> None:
        """Buffer a new occupancy for ``bus_id``."""

    def write_student(self, student: Student) -> None:
        """Buffer a replacement student record."""


class TransactionalStore(Protocol):
    """Store contract consumed by the executor."""

    def read_bus(self, bus_id: str) -> Bus:
        ...

    def read_student(self, student_id: str) -> Student:
        ...

    def transaction(self) -> Iterator[Transaction]:
        """Context manager committing buffered writes atomically on clean exit."""


class _BufferedTransaction(ABC):
    """Shared bookkeeping: versions seen and writes pending."""

    def __init__(self) -> None:
        self.bus_versions: dict[str, int] = {}
        self.student_versions: dict[str, int] = {}
        self.bus_writes: dict[str, BusLoad] = {}
        self.student_writes: dict[str, Student] = {}

    @abstractmethod
    def _fetch_bus(self, bus_id: str) -> tuple[Bus, int]:
        """Return the committed bus record and its version."""

    @abstractmethod
    def _fetch_student(self, student_id: str) -> tuple[Student, int]:
        """Return the committed student record and its version."""

    def read_bus(self, bus_id: str) -> Bus:
        bus, version = self._fetch_bus(bus_id)
        self.bus_versions.setdefault(bus_id, version)
        pending = self.bus_writes.get(bus_id)
        return bus.model_copy(update={"load": pending}) if pending is not None else bus

    def read_student(self, student_id: str) -> Student:
        student, version = self._fetch_student(student_id)
        self.student_versions.setdefault(student_id, version)
        return self.student_writes.get(student_id, student)

    def write_bus_load(self, bus_id: str, load: BusLoad) -> None:
        if bus_id not in self.bus_versions:
            self.read_bus(bus_id)
        self.bus_writes[bus_id] = load

    def write_student(self, student: Student) -> None:
        if student.id not in self.student_versions:
            self.read_student(student.id)
        self.student_writes[student.id] = student


class _MemoryTransaction(_BufferedTransaction):
    def __init__(self, store: InMemoryStore) -> None:
        super().__init__()
        self._store = store

    def _fetch_bus(self, bus_id: str) -> tuple[Bus, int]:
        return self._store._get_bus(bus_id)

    def _fetch_student(self, student_id: str) -> tuple[Student, int]:
        return self._store._get_student(student_id)


class InMemoryStore:
    """Dictionary-backed store for tests and single-process callers."""

    def __init__(self, buses: Iterable[Bus] = (), students: Iterable[Student] = ()) -> None:
        self._buses: dict[str, tuple[Bus, int]] = {bus.id: (bus, 0) for bus in buses}
        self._students: dict[str, tuple[Student, int]] = {
            student.id: (student, 0) for student in students
        }
        self._lock = threading.Lock()
        self.commits = 0

    @classmethod
    def from_snapshot(cls, snapshot: FleetSnapshot) -> InMemoryStore:
        return cls(snapshot.buses, snapshot.students)

    def _get_bus(self, bus_id: str) -> tuple[Bus, int]:
        try:
            return self._buses[bus_id]
        except KeyError as exc:
            raise StoreError(f"Bus {bus_id} not found") from exc

    def _get_student(self, student_id: str) -> tuple[Student, int]:
        try:
            return self._students[student_id]
        except KeyError as exc:
            raise StoreError(f"Student {student_id} not found") from exc

    def read_bus(self, bus_id: str) -> Bus:
        return self._get_bus(bus_id)[0]

    def read_student(self, student_id: str) -> Student:
        return self._get_student(student_id)[0]

    def buses(self) -> list[Bus]:
        return [bus for bus, _ in self._buses.values()]

    def students(self) -> list[Student]:
        return [student for student, _ in self._students.values()]

    def snapshot(self, name: str = "store") -> FleetSnapshot:
        return FleetSnapshot(name=name, buses=self.buses(), students=self.students())

    @contextmanager
    def transaction(self) -> Iterator[_MemoryTransaction]:
        txn = _MemoryTransaction(self)
        yield txn
        self._commit(txn)

    def _commit(self, txn: _MemoryTransaction) -> None:
        with self._lock:
            for bus_id, version in txn.bus_versions.items():
                if self._get_bus(bus_id)[1] != version:
                    raise ConflictError(f"Bus {bus_id} was modified concurrently")
            for student_id, version in txn.student_versions.items():
                if self._get_student(student_id)[1] != version:
                    raise ConflictError(f"Student {student_id} was modified concurrently")
            for bus_id, load in txn.bus_writes.items():
                bus, version = self._buses[bus_id]
                self._buses[bus_id] = (bus.model_copy(update={"load": load}), version + 1)
            for student_id, student in txn.student_writes.items():
                _, version = self._students[student_id]
                self._students[student_id] = (student, version + 1)
            self.commits += 1


_SCHEMA = """
CREATE TABLE IF NOT EXISTS buses (
    id TEXT PRIMARY KEY,
    bus_number TEXT,
    capacity INTEGER NOT NULL,
    shift TEXT NOT NULL,
    route_id TEXT,
    route_name TEXT,
    route_stops_json TEXT,
    stops_json TEXT,
    morning_count INTEGER NOT NULL DEFAULT 0,
    evening_count INTEGER NOT NULL DEFAULT 0,
    version INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE IF NOT EXISTS students (
    id TEXT PRIMARY KEY,
    full_name TEXT,
    bus_id TEXT,
    route_id TEXT,
    stop_id TEXT,
    shift TEXT NOT NULL,
    status TEXT NOT NULL,
    version INTEGER NOT NULL DEFAULT 0
);
"""


def _stops_json(stops: list[Stop]) -> str:
    return json.dumps([stop.model_dump() for stop in stops], ensure_ascii=False)


def _bus_from_row(row: sqlite3.Row) -> Bus:
    return Bus(
        id=row["id"],
        bus_number=row["bus_number"] or "",
        capacity=row["capacity"],
        shift=row["shift"],
        route_id=row["route_id"] or "",
        route_name=row["route_name"] or "",
        route_stops=[Stop(**item) for item in json.loads(row["route_stops_json"] or "[]")],
        stops=[Stop(**item) for item in json.loads(row["stops_json"] or "[]")],
        load=BusLoad(morning_count=row["morning_count"], evening_count=row["evening_count"]),
    )


def _student_from_row(row: sqlite3.Row) -> Student:
    return Student(
        id=row["id"],
        full_name=row["full_name"] or "",
        bus_id=row["bus_id"] or "",
        route_id=row["route_id"] or "",
        stop_id=row["stop_id"] or "",
        shift=row["shift"],
        status=row["status"],
    )


_Record = TypeVar("_Record", Bus, Student)


def _decode(row: sqlite3.Row, build: Callable[[sqlite3.Row], _Record]) -> _Record:
    """Build a model from ``row``; unreadable stop JSON or invalid fields become StoreError."""
    try:
        return build(row)
    except (ValueError, TypeError) as exc:
        raise StoreError(f"Corrupt record {row['id']}: {exc}") from exc


def _select(conn: sqlite3.Connection, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
    try:
        return conn.execute(sql, params).fetchall()
    except sqlite3.Error as exc:
        raise StoreError(f"SQLite read failed: {exc}") from exc


class _SQLiteTransaction(_BufferedTransaction):
    def __init__(self, conn: sqlite3.Connection) -> None:
        super().__init__()
        self._conn = conn

    def _fetch_bus(self, bus_id: str) -> tuple[Bus, int]:
        rows = _select(self._conn, "SELECT * FROM buses WHERE id = ?", (bus_id,))
        if not rows:
            raise StoreError(f"Bus {bus_id} not found")
        return _decode(rows[0], _bus_from_row), rows[0]["version"]

    def _fetch_student(self, student_id: str) -> tuple[Student, int]:
        rows = _select(self._conn, "SELECT * FROM students WHERE id = ?", (student_id,))
        if not rows:
            raise StoreError(f"Student {student_id} not found")
        return _decode(rows[0], _student_from_row), rows[0]["version"]


class SQLiteStore:
    """SQLite-backed store using version columns for optimistic concurrency."""

    def __init__(self, sqlite_path: str | Path) -> None:
        self.path = Path(sqlite_path)
        if not self.path.parent.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            conn.executescript(_SCHEMA)
        finally:
            conn.close()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path, isolation_level=None, timeout=30.0)
        conn.row_factory = sqlite3.Row
        return conn

    def is_empty(self) -> bool:
        conn = self._connect()
        try:
            return _select(conn, "SELECT COUNT(*) FROM buses")[0][0] == 0
        finally:
            conn.close()

    def seed(self, snapshot: FleetSnapshot) -> None:
        """Insert or replace every bus and student of ``snapshot``."""
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            conn.executemany(
                """
                INSERT OR REPLACE INTO buses (
                    id, bus_number, capacity, shift, route_id, route_name,
                    route_stops_json, stops_json, morning_count, evening_count, version
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0)
                """,
                [
                    (
                        bus.id,
                        bus.bus_number,
                        bus.capacity,
                        bus.shift.value,
                        bus.route_id,
                        bus.route_name,
                        _stops_json(bus.route_stops),
                        _stops_json(bus.stops),
                        bus.load.morning_count,
                        bus.load.evening_count,
                    )
                    for bus in snapshot.buses
                ],
            )
            conn.executemany(
                """
                INSERT OR REPLACE INTO students (
                    id, full_name, bus_id, route_id, stop_id, shift, status, version
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, 0)
                """,
                [
                    (
                        student.id,
                        student.full_name,
                        student.bus_id,
                        student.route_id,
                        student.stop_id,
                        student.shift.value,
                        student.status.value,
                    )
                    for student in snapshot.students
                ],
            )
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            conn.execute("ROLLBACK")
            raise StoreError(f"Failed to seed {self.path}: {exc}") from exc
        finally:
            conn.close()

    def read_bus(self, bus_id: str) -> Bus:
        conn = self._connect()
        try:
            return _SQLiteTransaction(conn)._fetch_bus(bus_id)[0]
        finally:
            conn.close()

    def read_student(self, student_id: str) -> Student:
        conn = self._connect()
        try:
            return _SQLiteTransaction(conn)._fetch_student(student_id)[0]
        finally:
            conn.close()

    def snapshot(self, name: str = "store") -> FleetSnapshot:
        conn = self._connect()
        try:
            buses = [
                _decode(row, _bus_from_row)
                for row in _select(conn, "SELECT * FROM buses ORDER BY id")
            ]
            students = [
                _decode(row, _student_from_row)
                for row in _select(conn, "SELECT * FROM students ORDER BY id")
            ]
        finally:
            conn.close()
        return FleetSnapshot(name=name, buses=buses, students=students)

    @contextmanager
    def transaction(self) -> Iterator[_SQLiteTransaction]:
        conn = self._connect()
        try:
            txn = _SQLiteTransaction(conn)
            yield txn
            self._commit(conn, txn)
        finally:
            conn.close()

    def _commit(self, conn: sqlite3.Connection, txn: _SQLiteTransaction) -> None:
        try:
            conn.execute("BEGIN IMMEDIATE")
            for bus_id, version in txn.bus_versions.items():
                load = txn.bus_writes.get(bus_id)
                if load is None:
                    cursor = conn.execute(
                        "SELECT 1 FROM buses WHERE id = ? AND version = ?", (bus_id, version)
                    )
                    matched = cursor.fetchone() is not None
                else:
                    cursor = conn.execute(
                        """
                        UPDATE buses
                        SET morning_count = ?, evening_count = ?, version = version + 1
                        WHERE id = ? AND version = ?
                        """,
                        (load.morning_count, load.evening_count, bus_id, version),
                    )
                    matched = cursor.rowcount == 1
                if not matched:
                    raise ConflictError(f"Bus {bus_id} was modified concurrently")
            for student_id, version in txn.student_versions.items():
                student = txn.student_writes.get(student_id)
                if student is None:
                    cursor = conn.execute(
                        "SELECT 1 FROM students WHERE id = ? AND version = ?", (student_id, version)
                    )
                    matched = cursor.fetchone() is not None
                else:
                    cursor = conn.execute(
                        """
                        UPDATE students
                        SET bus_id = ?, route_id = ?, stop_id = ?, shift = ?, status = ?,
                            version = version + 1
                        WHERE id = ? AND version = ?
                        """,
                        (
                            student.bus_id,
                            student.route_id,
                            student.stop_id,
                            student.shift.value,
                            student.status.value,
                            student_id,
                            version,
                        ),
                    )
                    matched = cursor.rowcount == 1
                if not matched:
                    raise ConflictError(f"Student {student_id} was modified concurrently")
            conn.execute("COMMIT")
        except ConflictError:
            conn.execute("ROLLBACK")
            raise
        except sqlite3.Error as exc:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise StoreError(f"SQLite commit failed: {exc}") from exc
