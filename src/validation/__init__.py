"""Calculation tracing and mathematical verification."""

from .diagnostics import ValidationResult
from .tracer import CalculationTracer
from .verifier import MathematicalVerifier

__all__ = [
    "CalculationTracer",
    "MathematicalVerifier",
    "ValidationResult",
]
