"""Core utilities shared across busreassign modules."""

from .errors import (
    CapacityViolationError,
    ConflictError,
    ReassignmentError,
    ReassignValueError,
    RollbackConflictError,
    SinkWarning,
    StoreError,
)

__all__ = [
    "ReassignValueError",
    "ReassignmentError",
    "StoreError",
    "ConflictError",
    "CapacityViolationError",
    "RollbackConflictError",
    "SinkWarning",
]
