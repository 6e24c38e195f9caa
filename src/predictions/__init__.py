"""Predictions package."""

from .assembler import Prediction, PredictionAssembler
from .engine import PredictionEngine, TracedPrediction, WeightUpdateOutcome

__all__ = [
    "Prediction",
    "PredictionAssembler",
    "PredictionEngine",
    "TracedPrediction",
    "WeightUpdateOutcome",
]
