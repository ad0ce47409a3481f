"""Synthetic fleet generators."""

from .generator import SyntheticFleetConfig, generate_fleet

__all__ = ["SyntheticFleetConfig", "generate_fleet"]
