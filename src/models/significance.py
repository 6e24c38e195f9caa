"""Significance testing strategies for regression statistics.

ThresholdSignificance reproduces the lookup-table approximation the weight
history was built with. It is a coarse heuristic (p-values only take the
values in its tables) and should not be read as an exact test.
ExactSignificance uses the t and F distributions from scipy. Both share the
same interface so RegressionEngine callers never see which one is active.
"""

import logging
from typing import Protocol

logger = logging.getLogger(__name__)

# (|t| strictly greater than, p-value), checked in order
T_THRESHOLDS = (
    (2.576, 0.01),
    (1.96, 0.05),
    (1.645, 0.10),
    (1.282, 0.20),
)
T_DEFAULT_P = 0.5

F_THRESHOLDS = (
    (10.0, 0.001),
    (5.0, 0.01),
    (3.0, 0.05),
    (2.0, 0.10),
)
F_DEFAULT_P = 0.5


class SignificanceStrategy(Protocol):
    """Maps test statistics to p-values."""

    name: str

    def t_p_value(self, t_stat: float, df: int) -> float:
        ...

    def f_p_value(self, f_stat: float, df_model: int, df_resid: int) -> float:
        ...


class ThresholdSignificance:
    """Fixed-table p-value approximation (ignores degrees of freedom)."""

    name = "threshold"

    def t_p_value(self, t_stat: float, df: int) -> float:
        abs_t = abs(t_stat)
        for threshold, p_value in T_THRESHOLDS:
            if abs_t > threshold:
                return p_value
        return T_DEFAULT_P

    def f_p_value(self, f_stat: float, df_model: int, df_resid: int) -> float:
        for threshold, p_value in F_THRESHOLDS:
            if f_stat > threshold:
                return p_value
        return F_DEFAULT_P


class ExactSignificance:
    """Two-sided t-test and upper-tail F-test p-values from scipy."""

    name = "exact"

    def t_p_value(self, t_stat: float, df: int) -> float:
        from scipy.stats import t

        if df < 1:
            return 1.0
        return float(2 * t.sf(abs(t_stat), df))

    def f_p_value(self, f_stat: float, df_model: int, df_resid: int) -> float:
        from scipy.stats import f

        if df_model < 1 or df_resid < 1:
            return 1.0
        return float(f.sf(f_stat, df_model, df_resid))


def get_strategy(method: str) -> SignificanceStrategy:
    """Resolve a strategy by its settings name.

    Raises:
        ValueError: If the method is unknown
    """
    strategies = {
        ThresholdSignificance.name: ThresholdSignificance,
        ExactSignificance.name: ExactSignificance,
    }
    if method not in strategies:
        raise ValueError(
            f"Unknown significance method '{method}', expected one of {sorted(strategies)}"
        )
    logger.debug(f"Using {method} significance strategy")
    return strategies[method]()
