"""Prediction weights and their change history.

WeightManager lives in src.weights.manager; it depends on src.data and is
not re-exported here.
"""

from .history import WeightChange
from .prediction_weights import FALLBACK_WEIGHTS, PredictionWeights, validate_weights

__all__ = [
    "FALLBACK_WEIGHTS",
    "PredictionWeights",
    "WeightChange",
    "validate_weights",
]
