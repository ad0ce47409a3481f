"""Engine configuration: scoring weights, cushion steps, planning defaults and presets."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from busreassign.core.errors import ReassignValueError

__all__ = [
    "ScoringWeights",
    "CushionStep",
    "EngineConfig",
    "DEFAULT_CUSHION_STEPS",
    "CONFIG_PRESETS",
    "get_preset",
    "load_engine_config",
]


class ScoringWeights(BaseModel):
    """Weights of the candidate desirability score.

    Attributes
    ----------
    free_seats:
        Weight of the free-seat ratio left after the assignment.
    load:
        Weight of the post-assignment load headroom.
    balance:
        Weight of the pre-assignment load headroom (prefers lightly loaded buses).
    cushion:
        Weight of the step-function cushion score.
    """

    free_seats: float = 0.35
    load: float = 0.30
    balance: float = 0.20
    cushion: float = 0.15

    @field_validator("free_seats", "load", "balance", "cushion")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("Scoring weight components must be non-negative")
        return value


class CushionStep(BaseModel):
    """Cushion score awarded when at least ``min_free_seats`` remain after assignment."""

    min_free_seats: int
    score: float

    @field_validator("score")
    @classmethod
    def _score_in_unit_interval(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("CushionStep.score must be within [0, 1]")
        return value


DEFAULT_CUSHION_STEPS: tuple[CushionStep, ...] = (
    CushionStep(min_free_seats=10, score=1.0),
    CushionStep(min_free_seats=5, score=0.7),
    CushionStep(min_free_seats=2, score=0.4),
)


class EngineConfig(BaseModel):
    """Tunable engine defaults.

    Attributes
    ----------
    threshold:
        Maximum post-assignment load percentage (0 means "no constraint" and becomes 100).
    top_n:
        Candidate pool size for randomized selection.
    randomize:
        Use randomized top-N selection instead of the deterministic best pick.
    seed:
        Optional RNG seed for randomized selection.
    weights / cushion_steps / cushion_floor:
        Scoring model. Steps are evaluated from the largest ``min_free_seats`` down; the floor
        applies when no step matches.
    max_commit_retries:
        Extra commit attempts after the store reports a write conflict (0 disables retries).
    """

    threshold: float = 90.0
    top_n: int = 3
    randomize: bool = False
    seed: int | None = None
    weights: ScoringWeights = Field(default_factory=ScoringWeights)
    cushion_steps: list[CushionStep] = Field(default_factory=lambda: list(DEFAULT_CUSHION_STEPS))
    cushion_floor: float = 0.1
    max_commit_retries: int = 3

    @field_validator("threshold")
    @classmethod
    def _threshold_range(cls, value: float) -> float:
        if not 0.0 <= value <= 100.0:
            raise ValueError("threshold must be within [0, 100]")
        return value

    @field_validator("top_n")
    @classmethod
    def _top_n_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("top_n must be >= 1")
        return value

    @field_validator("max_commit_retries")
    @classmethod
    def _retries_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("max_commit_retries must be >= 0")
        return value

    @field_validator("cushion_steps")
    @classmethod
    def _sort_steps(cls, value: list[CushionStep]) -> list[CushionStep]:
        return sorted(value, key=lambda step: step.min_free_seats, reverse=True)


CONFIG_PRESETS: dict[str, dict[str, Any]] = {
    "default": {},
    "spread": {"randomize": True, "top_n": 3},
    "strict": {"threshold": 80.0},
    "relaxed": {"threshold": 100.0},
}


def get_preset(name: str) -> EngineConfig:
    """Return the :class:`EngineConfig` for a named preset."""
    try:
        overrides = CONFIG_PRESETS[name.lower()]
    except KeyError as exc:
        available = ", ".join(sorted(CONFIG_PRESETS))
        raise ReassignValueError(f"Unknown preset '{name}'. Available: {available}") from exc
    return EngineConfig(**overrides)


def load_engine_config(path: str | Path, *, preset: str | None = None) -> EngineConfig:
    """Load an :class:`EngineConfig` from YAML, layered over an optional preset.

    The YAML may hold the fields at the top level or under an ``engine`` key.
    """
    config_path = Path(path)
    with config_path.open("r", encoding="utf-8") as handle:
        payload = yaml.safe_load(handle) or {}
    if not isinstance(payload, dict):
        raise ReassignValueError(f"{config_path} must contain a mapping")
    section = payload.get("engine", payload)
    base = get_preset(preset).model_dump() if preset else {}
    base.update(section)
    try:
        return EngineConfig(**base)
    except ValidationError as exc:
        raise ReassignValueError(f"Invalid engine config in {config_path}: {exc}") from exc
