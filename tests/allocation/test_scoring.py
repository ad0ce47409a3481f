from __future__ import annotations

from random import Random

import pytest

from busreassign.allocation import (
    BestCandidate,
    RandomTopN,
    build_strategy,
    cushion_score,
    score_candidates,
)
from busreassign.config import CushionStep, ScoringWeights
from busreassign.core.errors import ReassignValueError
from busreassign.fleet.contract import Shift


def test_composite_score_matches_weighted_components(make_bus):
    bus = make_bus("B2", stops=["S1"], morning=10)
    (candidate,) = score_candidates([bus], Shift.MORNING, 12)

    assert candidate.free_seats == 40
    assert candidate.free_seats_after == 28
    assert candidate.load_before == pytest.approx(20.0)
    assert candidate.load_after == pytest.approx(44.0)
    assert candidate.free_seats_score == pytest.approx(0.56)
    assert candidate.load_score == pytest.approx(0.56)
    assert candidate.balance_score == pytest.approx(0.8)
    assert candidate.cushion_score == 1.0
    assert candidate.score == pytest.approx(0.35 * 0.56 + 0.30 * 0.56 + 0.20 * 0.8 + 0.15 * 1.0)
    assert candidate.reason.startswith("Score: 67/100")


@pytest.mark.parametrize(
    ("seats_after", "expected"),
    [(15, 1.0), (10, 1.0), (9, 0.7), (5, 0.7), (4, 0.4), (2, 0.4), (1, 0.1), (0, 0.1)],
)
def test_cushion_steps(seats_after, expected):
    assert cushion_score(seats_after) == expected


def test_custom_cushion_steps_are_sorted():
    steps = [CushionStep(min_free_seats=1, score=0.5), CushionStep(min_free_seats=3, score=0.9)]
    assert cushion_score(4, steps, floor=0.0) == 0.9
    assert cushion_score(1, steps, floor=0.0) == 0.5
    assert cushion_score(0, steps, floor=0.0) == 0.0


def test_ranking_prefers_lighter_bus_and_is_stable(make_bus):
    light = make_bus("B2", stops=["S1"], morning=5)
    heavy = make_bus("B3", stops=["S1"], morning=30)
    twin = make_bus("B4", stops=["S1"], morning=5)
    ranked = score_candidates([heavy, light, twin], Shift.MORNING, 4)
    assert [candidate.bus.id for candidate in ranked] == ["B2", "B4", "B3"]


def test_custom_weights_change_ranking(make_bus):
    big = make_bus("B2", stops=["S1"], capacity=100, morning=60)
    small = make_bus("B3", stops=["S1"], capacity=20, morning=2)
    only_cushion = ScoringWeights(free_seats=0, load=0, balance=0, cushion=1)
    ranked = score_candidates([small, big], Shift.MORNING, 5, weights=only_cushion)
    # Both keep at least 10 spare seats, so the stable sort keeps input order.
    assert [candidate.bus.id for candidate in ranked] == ["B3", "B2"]
    ranked = score_candidates([big, small], Shift.MORNING, 5)
    assert ranked[0].bus.id == "B3"


def test_best_candidate_strategy(make_bus):
    ranked = score_candidates(
        [make_bus("B2", stops=["S1"], morning=30), make_bus("B3", stops=["S1"])], Shift.MORNING, 1
    )
    assert BestCandidate().select(ranked).bus.id == "B3"
    assert BestCandidate().select([]) is None


def test_random_top_n_only_draws_from_pool(make_bus):
    buses = [make_bus(f"B{i}", stops=["S1"], morning=i * 5) for i in range(2, 8)]
    ranked = score_candidates(buses, Shift.MORNING, 1)
    pool = {candidate.bus.id for candidate in ranked[:3]}
    strategy = RandomTopN(top_n=3, rng=Random(11))
    picks = {strategy.select(ranked).bus.id for _ in range(60)}
    assert picks <= pool
    assert len(picks) > 1


def test_random_top_n_is_reproducible_with_seed(make_bus):
    buses = [make_bus(f"B{i}", stops=["S1"], morning=i) for i in range(2, 8)]
    ranked = score_candidates(buses, Shift.MORNING, 1)
    strategy_a, strategy_b = RandomTopN(3, Random(99)), RandomTopN(3, Random(99))
    assert [strategy_a.select(ranked).bus.id for _ in range(20)] == [
        strategy_b.select(ranked).bus.id for _ in range(20)
    ]


def test_build_strategy_and_validation():
    assert build_strategy().name == "deterministic"
    assert build_strategy(randomize=True, top_n=2).name == "random-top-n"
    with pytest.raises(ReassignValueError):
        RandomTopN(top_n=0)
