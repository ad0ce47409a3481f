"""Partition a roster into stop-groups keyed by (pickup stop, shift)."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field

from busreassign.allocation.rules import normalize_shift, normalize_stop_id
from busreassign.fleet.contract import Shift, Student

__all__ = ["StopGroup", "group_by_stop"]


@dataclass(slots=True)
class StopGroup:
    """Students sharing one pickup stop and one shift; always moved together.

    Attributes
    ----------
    stop_key:
        Normalised stop identifier (trimmed, lower-case) used for matching.
    stop_id:
        Stop identifier as written on the first member's record, kept for display.
    shift:
        Shared :class:`Shift`.
    students:
        Members ordered by student id.
    """

    stop_key: str
    stop_id: str
    shift: Shift
    students: list[Student] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.students)

    @property
    def key(self) -> tuple[str, Shift]:
        return (self.stop_key, self.shift)

    def bus_ids(self) -> set[str]:
        return {student.bus_id for student in self.students}


def group_by_stop(students: Iterable[Student]) -> list[StopGroup]:
    """Group ``students`` by normalised (stop id, shift).

    Output groups are ordered by (stop key, shift) and members by id, so the result does not depend
    on the order of the input roster.
    """
    buckets: dict[tuple[str, Shift], list[Student]] = defaultdict(list)
    for student in students:
        key = (normalize_stop_id(student.stop_id), normalize_shift(student.shift))
        buckets[key].append(student)

    groups: list[StopGroup] = []
    for (stop_key, shift) in sorted(buckets, key=lambda item: (item[0], item[1].value)):
        members = sorted(buckets[(stop_key, shift)], key=lambda student: student.id)
        display_id = members[0].stop_id.strip() or stop_key
        groups.append(StopGroup(stop_key=stop_key, stop_id=display_id, shift=shift, students=members))
    return groups
