"""Common busreassign-specific exceptions."""

from __future__ import annotations


class ReassignValueError(ValueError):
    """Raised when busreassign detects invalid user-provided data or options."""


class ReassignmentError(RuntimeError):
    """Base class for failures while committing a reassignment plan."""


class StoreError(ReassignmentError):
    """Raised when the backing store cannot serve or persist a record."""


class ConflictError(StoreError):
    """Raised when a concurrent writer touched a record between read and commit."""


class CapacityViolationError(ReassignmentError):
    """Raised when applying a plan would push a bus over capacity for a shift."""

    def __init__(self, bus_id: str, bus_number: str, shift: str, count: int, capacity: int) -> None:
        self.bus_id = bus_id
        self.bus_number = bus_number
        self.shift = shift
        self.count = count
        self.capacity = capacity
        super().__init__(
            f"Bus {bus_number or bus_id} would exceed {shift.lower()} capacity ({count}/{capacity})"
        )


class RollbackConflictError(ReassignmentError):
    """Raised when the store no longer matches the state left by an execution."""

    def __init__(self, conflicts: list[str]) -> None:
        self.conflicts = list(conflicts)
        super().__init__("Cannot roll back: " + "; ".join(self.conflicts))


class SinkWarning(UserWarning):
    """Emitted when a post-commit notifier or audit sink fails."""


__all__ = [
    "ReassignValueError",
    "ReassignmentError",
    "StoreError",
    "ConflictError",
    "CapacityViolationError",
    "RollbackConflictError",
    "SinkWarning",
]
