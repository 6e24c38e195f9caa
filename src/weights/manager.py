"""Season-keyed prediction weight lifecycle.

Every operation takes the season explicitly and returns the resulting state.
Nothing is cached on the manager: the WeightStore history is the single
source of truth, and each update is one atomic append to it.
"""

import logging
from datetime import datetime
from typing import Callable, Mapping, Optional

from src.data.weight_store import WeightStore
from src.models.regression import REGRESSION_METRICS, RegressionAnalysis
from src.weights.history import (
    SOURCE_FALLBACK,
    SOURCE_MANUAL,
    SOURCE_REGRESSION,
    RegressionMetrics,
    WeightChange,
    WeightSnapshot,
)
from src.weights.prediction_weights import (
    DEFAULT_MAX_WEIGHT,
    DEFAULT_SUM_BAND,
    DEFAULT_TARGET_SUM,
    FALLBACK_WEIGHTS,
    PredictionWeights,
    WeightValidationError,
    WeightValidationResult,
    validate_weights,
)

logger = logging.getLogger(__name__)

# Default per-metric share before regression evidence is applied
DEFAULT_METRIC_WEIGHT = 0.2

# Defensive categories reuse the offensive metric at a discount
DEFENSE_FACTOR = 0.8

# Home-field weight is not regression-derived
STATIC_HOME_FIELD_WEIGHT = 0.10

# Regression metric -> weight categories it drives
METRIC_CATEGORIES = {
    "scoring_efficiency": ("scoring_efficiency",),
    "passing_efficiency": ("passing_offense", "passing_defense"),
    "rushing_efficiency": ("rushing_offense", "rushing_defense"),
    "turnover_efficiency": ("turnover_margin",),
    "special_teams_efficiency": ("special_teams",),
}

NON_SIGNIFICANT_FACTOR = 0.5
STRONG_FIT_R_SQUARED = 0.6
STRONG_FIT_BOOST = {
    "scoring_efficiency": 1.3,
    "turnover_efficiency": 1.3,
    "passing_efficiency": 1.2,
    "rushing_efficiency": 1.2,
    "special_teams_efficiency": 1.2,
}


def recommended_metric_weights(analysis: RegressionAnalysis) -> dict[str, float]:
    """Per-metric shares summing to 1.

    Significant metrics use their derived weight; everything else keeps
    DEFAULT_METRIC_WEIGHT.
    """
    weights = {metric: DEFAULT_METRIC_WEIGHT for metric in REGRESSION_METRICS}
    for result in analysis.results:
        if result.is_significant:
            weights[result.metric] = result.weight

    total = sum(weights.values())
    return {metric: w / total for metric, w in weights.items()}


def map_regression_to_weights(analysis: RegressionAnalysis) -> dict[str, float]:
    """Translate a regression analysis into the fixed category schema.

    Args:
        analysis: Season regression analysis

    Returns:
        category -> weight (not yet validated or normalized)
    """
    metric_weights = recommended_metric_weights(analysis)
    weights = {
        "passing_offense": metric_weights["passing_efficiency"],
        "rushing_offense": metric_weights["rushing_efficiency"],
        "scoring_efficiency": metric_weights["scoring_efficiency"],
        "passing_defense": metric_weights["passing_efficiency"] * DEFENSE_FACTOR,
        "rushing_defense": metric_weights["rushing_efficiency"] * DEFENSE_FACTOR,
        "turnover_margin": metric_weights["turnover_efficiency"],
        "special_teams": metric_weights["special_teams_efficiency"],
        "home_field_advantage": STATIC_HOME_FIELD_WEIGHT,
    }

    for result in analysis.results:
        if not result.is_significant:
            factor = NON_SIGNIFICANT_FACTOR
        elif result.r_squared > STRONG_FIT_R_SQUARED:
            factor = STRONG_FIT_BOOST[result.metric]
        else:
            continue
        for category in METRIC_CATEGORIES[result.metric]:
            weights[category] *= factor

    return weights


class WeightManager:
    """Owns transitions between weight sets for each season."""

    def __init__(
        self,
        store: WeightStore,
        target_sum: float = DEFAULT_TARGET_SUM,
        sum_band: tuple[float, float] = DEFAULT_SUM_BAND,
        max_weight: float = DEFAULT_MAX_WEIGHT,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.target_sum = target_sum
        self.sum_band = sum_band
        self.max_weight = max_weight
        self.clock = clock

    @classmethod
    def from_settings(cls, settings) -> "WeightManager":
        return cls(
            store=WeightStore(settings.weight_store_dir),
            target_sum=settings.weight_target_sum,
            sum_band=(settings.weight_sum_min, settings.weight_sum_max),
            max_weight=settings.max_plausible_weight,
        )

    def validate_weights(self, weights: Mapping[str, object]) -> WeightValidationResult:
        """Validate (and if needed normalize) a complete weight set."""
        return validate_weights(
            weights,
            target_sum=self.target_sum,
            sum_band=self.sum_band,
            max_weight=self.max_weight,
        )

    def _validated(self, weights: Mapping[str, object], context: str) -> PredictionWeights:
        result = self.validate_weights(weights)
        if not result.is_valid:
            logger.warning(f"Rejected {context} weights: {result.errors}")
            raise WeightValidationError(
                f"Rejected {context} weights: {'; '.join(result.errors)}", result
            )
        for warning in result.warnings:
            logger.warning(f"{context} weights: {warning}")
        return result.weights

    def _entry(
        self,
        season: int,
        previous: Optional[WeightChange],
        weights: PredictionWeights,
        reason: str,
        source: str,
        metrics: Optional[RegressionMetrics] = None,
        actor_id: Optional[str] = None,
    ) -> WeightChange:
        return WeightChange(
            season=season,
            version=previous.version + 1 if previous else 1,
            timestamp=self.clock(),
            previous_weights=WeightSnapshot(previous.weights) if previous else None,
            new_weights=WeightSnapshot(weights),
            reason=reason,
            source=source,
            regression_metrics=metrics,
            actor_id=actor_id,
        )

    def get_current_weights(self, season: int) -> PredictionWeights:
        """Latest weights for a season.

        A season with no history is initialized with the fallback weights,
        recorded as its first history entry.
        """
        latest = self.store.latest(season)
        if latest is not None:
            return latest.weights

        def initialize(previous: Optional[WeightChange]) -> Optional[WeightChange]:
            if previous is not None:
                return None  # Another writer initialized first
            return self._entry(
                season, None, FALLBACK_WEIGHTS,
                reason="Initialized with fallback weights",
                source=SOURCE_FALLBACK,
            )

        entry = self.store.append(season, initialize)
        logger.info(f"{season}: initialized weights (version {entry.version})")
        return entry.weights

    def update_from_regression(
        self,
        season: int,
        analysis: RegressionAnalysis,
        actor_id: Optional[str] = None,
    ) -> WeightChange:
        """Derive, validate and record weights from a regression analysis.

        Raises:
            WeightValidationError: If the derived set is rejected (nothing is
                recorded and the previous weights stay current)
            WeightStoreError: If the history cannot be written
        """
        if analysis.season != season:
            raise ValueError(
                f"Analysis for season {analysis.season} applied to season {season}"
            )

        weights = self._validated(map_regression_to_weights(analysis), "regression")
        metrics = RegressionMetrics(
            r_squared=analysis.overall_r_squared,
            sample_size=analysis.sample_size,
            significant_metrics=tuple(analysis.significant_metrics),
        )
        reason = (
            f"Regression update: R²={analysis.overall_r_squared:.3f}, "
            f"n={analysis.sample_size}, significant={list(metrics.significant_metrics)}"
        )

        entry = self.store.append(
            season,
            lambda previous: self._entry(
                season, previous, weights, reason, SOURCE_REGRESSION, metrics, actor_id
            ),
        )
        logger.info(f"{season}: weights v{entry.version} from regression ({reason})")
        return entry

    def update_manually(
        self,
        season: int,
        partial_weights: Mapping[str, float],
        reason: str,
        actor_id: Optional[str] = None,
    ) -> WeightChange:
        """Merge a partial weight update onto the current set.

        Raises:
            ValueError: If no reason or no weights are given
            WeightValidationError: If the merged set is rejected, including
                unknown categories. Nothing is recorded in that case.
        """
        if not reason or not reason.strip():
            raise ValueError("A reason is required for manual weight changes")
        if not partial_weights:
            raise ValueError("No weights given for manual update")

        def build(previous: Optional[WeightChange]) -> WeightChange:
            current = previous.weights if previous else FALLBACK_WEIGHTS
            merged = {**current.to_dict(), **partial_weights}
            weights = self._validated(merged, "manual")
            return self._entry(
                season, previous, weights, reason.strip(), SOURCE_MANUAL, None, actor_id
            )

        entry = self.store.append(season, build)
        logger.info(
            f"{season}: manual weights v{entry.version} by {actor_id or 'unknown'} "
            f"({sorted(partial_weights)}): {reason.strip()}"
        )
        return entry

    def reset_to_fallback(
        self, season: int, reason: str, actor_id: Optional[str] = None
    ) -> WeightChange:
        """Record the static fallback weights as the newest entry."""
        if not reason or not reason.strip():
            raise ValueError("A reason is required to reset weights")

        entry = self.store.append(
            season,
            lambda previous: self._entry(
                season, previous, FALLBACK_WEIGHTS, reason.strip(),
                SOURCE_FALLBACK, None, actor_id,
            ),
        )
        logger.info(f"{season}: reset to fallback weights (v{entry.version}): {reason}")
        return entry

    def get_weight_history(
        self, season: int, limit: Optional[int] = 10
    ) -> list[WeightChange]:
        """History entries, newest first. limit=None returns everything."""
        if limit is not None and limit < 1:
            raise ValueError(f"limit must be positive, got {limit}")
        entries = list(reversed(self.store.history(season)))
        return entries if limit is None else entries[:limit]
