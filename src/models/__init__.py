"""Model components package.

- BaselineCalculator: What a team's opponents typically allow per game
- EfficiencyCalculator: Team production relative to that baseline
- RegressionEngine: Efficiency metrics vs points scored, and derived weights
"""

from .baseline import BaselineCalculator, OpponentBaseline
from .efficiency import EfficiencyCalculator, EfficiencyProfile
from .regression import (
    MultipleRegressionResult,
    RegressionAnalysis,
    RegressionEngine,
    RegressionResult,
)

__all__ = [
    "BaselineCalculator",
    "OpponentBaseline",
    "EfficiencyCalculator",
    "EfficiencyProfile",
    "MultipleRegressionResult",
    "RegressionAnalysis",
    "RegressionEngine",
    "RegressionResult",
]
