"""Candidate scoring and selection strategies."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from random import Random
from typing import Protocol

from busreassign.allocation.rules import free_seats, load_percentage
from busreassign.config import DEFAULT_CUSHION_STEPS, CushionStep, ScoringWeights
from busreassign.core.errors import ReassignValueError
from busreassign.fleet.contract import Bus, Shift

__all__ = [
    "CandidateBus",
    "cushion_score",
    "score_candidates",
    "SelectionStrategy",
    "BestCandidate",
    "RandomTopN",
    "STRATEGIES",
    "build_strategy",
]


@dataclass(slots=True)
class CandidateBus:
    """A filtered bus with its hypothetical post-assignment figures and composite score."""

    bus: Bus
    free_seats: int
    free_seats_after: int
    load_before: float
    load_after: float
    free_seats_score: float
    load_score: float
    balance_score: float
    cushion_score: float
    score: float

    @property
    def reason(self) -> str:
        return (
            f"Score: {self.score * 100:.0f}/100 | Load: {self.load_before:.0f}% -> "
            f"{self.load_after:.0f}% | Free: {self.free_seats} -> {self.free_seats_after} seats"
        )


def cushion_score(
    free_seats_after: int,
    steps: Sequence[CushionStep] = DEFAULT_CUSHION_STEPS,
    floor: float = 0.1,
) -> float:
    """Step-function reward for slack left after the assignment."""
    for step in sorted(steps, key=lambda item: item.min_free_seats, reverse=True):
        if free_seats_after >= step.min_free_seats:
            return step.score
    return floor


def score_candidates(
    buses: Sequence[Bus],
    shift: Shift,
    group_size: int,
    *,
    weights: ScoringWeights | None = None,
    cushion_steps: Sequence[CushionStep] = DEFAULT_CUSHION_STEPS,
    cushion_floor: float = 0.1,
) -> list[CandidateBus]:
    """Score ``buses`` for a group of ``group_size`` riders and sort best-first.

    The sort is stable, so equal scores keep the fleet order.
    """
    weights = weights or ScoringWeights()
    scored: list[CandidateBus] = []
    for bus in buses:
        seats = free_seats(bus, shift)
        before = load_percentage(bus, shift)
        after = before + group_size / bus.capacity * 100.0
        seats_after = seats - group_size
        free_component = max(0.0, seats_after / bus.capacity)
        load_component = max(0.0, 1.0 - after / 100.0)
        balance_component = max(0.0, 1.0 - before / 100.0)
        cushion_component = cushion_score(seats_after, cushion_steps, cushion_floor)
        score = (
            weights.free_seats * free_component
            + weights.load * load_component
            + weights.balance * balance_component
            + weights.cushion * cushion_component
        )
        scored.append(
            CandidateBus(
                bus=bus,
                free_seats=seats,
                free_seats_after=seats_after,
                load_before=before,
                load_after=after,
                free_seats_score=free_component,
                load_score=load_component,
                balance_score=balance_component,
                cushion_score=cushion_component,
                score=score,
            )
        )
    return sorted(scored, key=lambda candidate: candidate.score, reverse=True)


class SelectionStrategy(Protocol):
    """Interface for picking one candidate out of a best-first list."""

    name: str

    def select(self, candidates: Sequence[CandidateBus]) -> CandidateBus | None:
        """Return the chosen candidate or ``None`` when the list is empty."""


class BestCandidate:
    """Deterministic selection: always the top-ranked candidate."""

    name = "deterministic"

    def select(self, candidates: Sequence[CandidateBus]) -> CandidateBus | None:
        return candidates[0] if candidates else None


class RandomTopN:
    """Uniform pick among the ``top_n`` best candidates to spread load over repeated runs."""

    name = "random-top-n"

    def __init__(self, top_n: int = 3, rng: Random | None = None) -> None:
        if top_n < 1:
            raise ReassignValueError("top_n must be >= 1")
        self.top_n = top_n
        self.rng = rng or Random()

    def select(self, candidates: Sequence[CandidateBus]) -> CandidateBus | None:
        if not candidates:
            return None
        pool = candidates[: min(self.top_n, len(candidates))]
        return pool[self.rng.randrange(len(pool))]


STRATEGIES: dict[str, Callable[..., SelectionStrategy]] = {
    BestCandidate.name: lambda top_n=3, rng=None: BestCandidate(),
    RandomTopN.name: lambda top_n=3, rng=None: RandomTopN(top_n=top_n, rng=rng),
}


def build_strategy(
    randomize: bool = False, top_n: int = 3, rng: Random | None = None
) -> SelectionStrategy:
    """Return the strategy matching the ``randomize``/``top_n`` planning options."""
    name = RandomTopN.name if randomize else BestCandidate.name
    return STRATEGIES[name](top_n=top_n, rng=rng)
