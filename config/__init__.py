"""Configuration package for the efficiency weighting engine."""

from .settings import SIGNIFICANCE_METHODS, Settings, get_settings

__all__ = [
    "SIGNIFICANCE_METHODS",
    "Settings",
    "get_settings",
]
