"""CLI helper utilities for busreassign."""

from __future__ import annotations

from collections.abc import Sequence

from busreassign.config import CONFIG_PRESETS

PRESET_DESCRIPTIONS: dict[str, str] = {
    "default": "Deterministic best candidate with a 90% load threshold.",
    "spread": "Pick randomly among the top three candidates to spread riders across buses.",
    "strict": "Keep destination buses at or below 80% load.",
    "relaxed": "Allow destination buses to fill completely.",
}

_WEIGHT_ALIASES: dict[str, str] = {
    "free_seats": "free_seats",
    "free-seats": "free_seats",
    "free": "free_seats",
    "seats": "free_seats",
    "load": "load",
    "balance": "balance",
    "cushion": "cushion",
}


def parse_weight_overrides(weight_args: Sequence[str] | None) -> dict[str, float]:
    """Parse scoring weight overrides in ``name=value`` format."""
    overrides: dict[str, float] = {}
    if not weight_args:
        return overrides
    for arg in weight_args:
        if "=" not in arg:
            raise ValueError(f"Scoring weight must be in name=value format (got '{arg}')")
        raw_name, raw_value = arg.split("=", 1)
        canonical = _WEIGHT_ALIASES.get(raw_name.strip().lower())
        if canonical is None:
            allowed = ", ".join(sorted(set(_WEIGHT_ALIASES.values())))
            raise ValueError(f"Unknown scoring weight '{raw_name}'. Allowed keys: {allowed}.")
        try:
            value = float(raw_value)
        except ValueError as exc:
            raise ValueError(
                f"Scoring weight for '{raw_name}' must be numeric (got '{raw_value}')"
            ) from exc
        overrides[canonical] = value
    return overrides


def preset_help() -> str:
    """Return a short string describing available presets for Typer help."""
    return ", ".join(sorted(CONFIG_PRESETS))


def format_presets() -> str:
    lines = []
    for name in sorted(CONFIG_PRESETS):
        overrides = CONFIG_PRESETS[name]
        detail = ", ".join(f"{key}={value}" for key, value in overrides.items()) or "no overrides"
        lines.append(f"{name}: {PRESET_DESCRIPTIONS.get(name, '').strip()} [{detail}]")
    return "\n".join(lines)


__all__ = ["parse_weight_overrides", "preset_help", "format_presets", "PRESET_DESCRIPTIONS"]
