"""Regression of opponent-relative efficiency against points scored.

Two levels of fit:

1. Single-metric OLS per efficiency metric: slope, intercept, R², slope
   standard error, p-value and a z-based confidence interval.
2. Multiple regression on an intercept plus every significant metric, solved
   through the normal equations with Gaussian elimination (partial pivoting).

p-values come from a pluggable SignificanceStrategy (see significance.py).
A metric is significant when R² > r_squared_threshold AND
p < p_value_threshold. The derived per-metric weights feed WeightManager.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from src.models.significance import SignificanceStrategy, ThresholdSignificance, get_strategy
from src.validation.diagnostics import ValidationWarning

logger = logging.getLogger(__name__)

# Regression metric -> efficiency category it is drawn from
REGRESSION_METRICS = {
    "scoring_efficiency": "scoring_efficiency",
    "passing_efficiency": "passing_offense",
    "rushing_efficiency": "rushing_offense",
    "turnover_efficiency": "turnover_margin",
    "special_teams_efficiency": "special_teams",
}
OUTCOME_COLUMN = "points_scored"

PIVOT_TOLERANCE = 1e-10
DEGENERATE_VARIANCE = 1e-10

# Metric weight derivation
MIN_METRIC_WEIGHT = 0.05
MAX_METRIC_WEIGHT = 0.5
R_SQUARED_WEIGHT_SCALE = 0.5

# Model validation thresholds
LOW_MODEL_R_SQUARED = 0.3
HIGH_RESIDUAL_ERROR = 20.0
MODEL_F_P_VALUE = 0.05
COLLINEAR_RATIO = (0.7, 1.3)

# Relative error below which a fitted value counts as a hit
ACCURACY_TOLERANCE = 0.3


class InsufficientSampleSizeError(Exception):
    """Raised when there are too few observations to fit a model."""

    pass


class DegeneratePredictorError(Exception):
    """Raised when a predictor has (near) zero variance."""

    pass


@dataclass
class RegressionResult:
    """Single-metric OLS fit against points scored."""

    metric: str
    coefficient: float
    intercept: float
    r_squared: float
    p_value: float
    confidence_interval: tuple[float, float]
    standard_error: float
    t_statistic: float
    sample_size: int
    weight: float
    is_significant: bool

    def to_dict(self) -> dict:
        return {
            "metric": self.metric,
            "coefficient": self.coefficient,
            "intercept": self.intercept,
            "r_squared": self.r_squared,
            "p_value": self.p_value,
            "confidence_interval": list(self.confidence_interval),
            "standard_error": self.standard_error,
            "t_statistic": self.t_statistic,
            "sample_size": self.sample_size,
            "weight": self.weight,
            "is_significant": self.is_significant,
        }


@dataclass
class MultipleRegressionResult:
    """Overall model on the significant metrics.

    num_parameters counts the intercept.
    """

    metrics: list[str]
    coefficients: dict[str, float]
    r_squared: float
    adjusted_r_squared: float
    residual_standard_error: float
    f_statistic: float
    f_p_value: float
    sample_size: int
    num_parameters: int

    def predict(self, data: pd.DataFrame) -> np.ndarray:
        """Fitted values for rows carrying the model's metric columns."""
        predicted = np.full(len(data), self.coefficients.get("intercept", 0.0))
        for metric in self.metrics:
            predicted = predicted + self.coefficients[metric] * data[metric].to_numpy(float)
        return predicted

    def to_dict(self) -> dict:
        return {
            "metrics": list(self.metrics),
            "coefficients": dict(self.coefficients),
            "r_squared": self.r_squared,
            "adjusted_r_squared": self.adjusted_r_squared,
            "residual_standard_error": self.residual_standard_error,
            "f_statistic": self.f_statistic,
            "f_p_value": self.f_p_value,
            "sample_size": self.sample_size,
            "num_parameters": self.num_parameters,
        }


@dataclass
class ModelValidation:
    """Diagnostics on a fitted model. Never fatal."""

    is_valid: bool
    warnings: list[ValidationWarning] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "warnings": [w.to_dict() for w in self.warnings],
            "recommendations": list(self.recommendations),
        }


@dataclass
class RegressionAnalysis:
    """Everything one season-level analysis produced."""

    season: int
    results: list[RegressionResult]
    model: MultipleRegressionResult
    validation: ModelValidation
    sample_size: int
    predictive_accuracy: float
    significance_method: str

    @property
    def overall_r_squared(self) -> float:
        return self.model.r_squared

    @property
    def significant_metrics(self) -> list[str]:
        return [r.metric for r in self.results if r.is_significant]

    def result_for(self, metric: str) -> Optional[RegressionResult]:
        for result in self.results:
            if result.metric == metric:
                return result
        return None

    def to_dict(self) -> dict:
        return {
            "season": self.season,
            "results": [r.to_dict() for r in self.results],
            "model": self.model.to_dict(),
            "overall_r_squared": self.overall_r_squared,
            "validation": self.validation.to_dict(),
            "sample_size": self.sample_size,
            "predictive_accuracy": self.predictive_accuracy,
            "significance_method": self.significance_method,
        }


@dataclass
class AccuracyReport:
    """Hit rate and error metrics of predictions against final scores."""

    sample_size: int
    accuracy: float
    mean_absolute_error: float
    rmse: float
    calibration: float

    def to_dict(self) -> dict:
        return {
            "sample_size": self.sample_size,
            "accuracy": self.accuracy,
            "mean_absolute_error": self.mean_absolute_error,
            "rmse": self.rmse,
            "calibration": self.calibration,
        }


# =============================================================================
# LINEAR ALGEBRA
# =============================================================================

def gaussian_solve(
    a: np.ndarray, b: np.ndarray, pivot_tolerance: float = PIVOT_TOLERANCE
) -> np.ndarray:
    """Solve a @ x = b by Gaussian elimination with partial pivoting.

    A column whose best available pivot is below pivot_tolerance is treated
    as singular and its coefficient is set to 0 instead of raising.

    Args:
        a: Square coefficient matrix (n x n)
        b: Right-hand side (n,)
        pivot_tolerance: Smallest usable pivot magnitude

    Returns:
        Solution vector (n,)
    """
    m = np.array(a, dtype=float)
    rhs = np.array(b, dtype=float)
    n = m.shape[0]
    if m.shape != (n, n) or rhs.shape != (n,):
        raise ValueError(f"Shape mismatch: a={m.shape}, b={rhs.shape}")

    singular = np.zeros(n, dtype=bool)
    for col in range(n):
        pivot_row = col + int(np.argmax(np.abs(m[col:, col])))
        if abs(m[pivot_row, col]) < pivot_tolerance:
            singular[col] = True
            logger.debug(f"Near-singular pivot in column {col}, coefficient zeroed")
            continue

        if pivot_row != col:
            m[[col, pivot_row]] = m[[pivot_row, col]]
            rhs[[col, pivot_row]] = rhs[[pivot_row, col]]

        for row in range(col + 1, n):
            factor = m[row, col] / m[col, col]
            if factor != 0.0:
                m[row, col:] -= factor * m[col, col:]
                rhs[row] -= factor * rhs[col]

    x = np.zeros(n)
    for i in range(n - 1, -1, -1):
        if singular[i] or abs(m[i, i]) < pivot_tolerance:
            x[i] = 0.0
            continue
        x[i] = (rhs[i] - m[i, i + 1:] @ x[i + 1:]) / m[i, i]
    return x


def _checked_r_squared(ss_res: float, ss_tot: float) -> float:
    """R² = 1 - SSres/SStot, 0 when the outcome has no variance.

    Float noise just outside [0, 1] is clipped. Anything further out means
    the fit itself is broken.
    """
    if ss_tot <= 0:
        return 0.0
    r_squared = 1.0 - ss_res / ss_tot
    if r_squared < -1e-9 or r_squared > 1.0 + 1e-9:
        raise ValueError(f"R² of {r_squared:.6f} is outside [0, 1]; fit is invalid")
    return min(1.0, max(0.0, r_squared))


# =============================================================================
# WEIGHT DERIVATION
# =============================================================================

def derive_metric_weight(r_squared: float, p_value: float, is_significant: bool) -> float:
    """Per-metric weight from effect size and significance.

    Not significant -> floor weight. Otherwise R² * 0.5, boosted x1.3 for
    p < 0.01 or x1.1 for p < 0.05, clamped to [0.05, 0.5].
    """
    if not is_significant:
        return MIN_METRIC_WEIGHT

    weight = r_squared * R_SQUARED_WEIGHT_SCALE
    if p_value < 0.01:
        weight *= 1.3
    elif p_value < 0.05:
        weight *= 1.1
    return min(MAX_METRIC_WEIGHT, max(MIN_METRIC_WEIGHT, weight))


# =============================================================================
# ENGINE
# =============================================================================

class RegressionEngine:
    """Fit efficiency metrics against points scored for one season."""

    def __init__(
        self,
        strategy: Optional[SignificanceStrategy] = None,
        min_sample_size: int = 30,
        r_squared_threshold: float = 0.2,
        p_value_threshold: float = 0.1,
        confidence_z: float = 1.96,
    ):
        self.strategy = strategy or ThresholdSignificance()
        self.min_sample_size = min_sample_size
        self.r_squared_threshold = r_squared_threshold
        self.p_value_threshold = p_value_threshold
        self.confidence_z = confidence_z

    @classmethod
    def from_settings(cls, settings) -> "RegressionEngine":
        return cls(
            strategy=get_strategy(settings.significance_method),
            min_sample_size=settings.min_sample_size,
            r_squared_threshold=settings.r_squared_threshold,
            p_value_threshold=settings.p_value_threshold,
            confidence_z=settings.confidence_z,
        )

    def is_significant(self, r_squared: float, p_value: float) -> bool:
        return r_squared > self.r_squared_threshold and p_value < self.p_value_threshold

    def fit_simple(
        self, metric: str, x: Sequence[float], y: Sequence[float]
    ) -> RegressionResult:
        """Ordinary least squares of y on a single predictor.

        Raises:
            InsufficientSampleSizeError: Fewer than 3 paired observations
            DegeneratePredictorError: Predictor has (near) zero variance
        """
        x = np.asarray(x, dtype=float)
        y = np.asarray(y, dtype=float)
        if x.shape != y.shape:
            raise ValueError(f"{metric}: x and y lengths differ ({len(x)} vs {len(y)})")
        n = len(x)
        if n < 3:
            raise InsufficientSampleSizeError(
                f"{metric}: need at least 3 observations, got {n}"
            )

        x_mean = x.mean()
        y_mean = y.mean()
        sxx = float(np.sum((x - x_mean) ** 2))
        if sxx < DEGENERATE_VARIANCE:
            raise DegeneratePredictorError(f"{metric}: predictor has zero variance")

        slope = float(np.sum((x - x_mean) * (y - y_mean)) / sxx)
        intercept = float(y_mean - slope * x_mean)
        residuals = y - (slope * x + intercept)
        ss_res = float(np.sum(residuals ** 2))
        ss_tot = float(np.sum((y - y_mean) ** 2))
        r_squared = _checked_r_squared(ss_res, ss_tot)

        standard_error = float(np.sqrt(ss_res / (n - 2) / sxx))
        if standard_error == 0.0:
            # Perfect fit: the slope is exact
            t_stat = float("inf")
            p_value = 0.0
        else:
            t_stat = slope / standard_error
            p_value = self.strategy.t_p_value(t_stat, n - 2)

        margin = self.confidence_z * standard_error
        significant = self.is_significant(r_squared, p_value)
        return RegressionResult(
            metric=metric,
            coefficient=slope,
            intercept=intercept,
            r_squared=r_squared,
            p_value=p_value,
            confidence_interval=(slope - margin, slope + margin),
            standard_error=standard_error,
            t_statistic=t_stat,
            sample_size=n,
            weight=derive_metric_weight(r_squared, p_value, significant),
            is_significant=significant,
        )

    def fit_multiple(
        self,
        data: pd.DataFrame,
        metrics: Sequence[str],
        outcome: str = OUTCOME_COLUMN,
    ) -> MultipleRegressionResult:
        """Intercept + metrics regression via the normal equations.

        Raises:
            InsufficientSampleSizeError: Fewer than min_sample_size rows
        """
        n = len(data)
        if n < self.min_sample_size:
            raise InsufficientSampleSizeError(
                f"Multiple regression needs at least {self.min_sample_size} "
                f"observations, got {n}"
            )

        metrics = list(metrics)
        if not metrics:
            return MultipleRegressionResult(
                metrics=[],
                coefficients={},
                r_squared=0.0,
                adjusted_r_squared=0.0,
                residual_standard_error=0.0,
                f_statistic=0.0,
                f_p_value=1.0,
                sample_size=n,
                num_parameters=0,
            )

        y = data[outcome].to_numpy(float)
        x = np.column_stack([np.ones(n)] + [data[m].to_numpy(float) for m in metrics])
        beta = gaussian_solve(x.T @ x, x.T @ y)

        residuals = y - x @ beta
        ss_res = float(np.sum(residuals ** 2))
        ss_tot = float(np.sum((y - y.mean()) ** 2))
        r_squared = _checked_r_squared(ss_res, ss_tot)

        p = x.shape[1]
        if n <= p + 1:
            adjusted = 0.0
        else:
            adjusted = 1.0 - (1.0 - r_squared) * (n - 1) / (n - p - 1)

        rse = float(np.sqrt(ss_res / (n - p))) if n > p else 0.0

        if p < 2:
            f_stat, f_p_value = 0.0, 1.0
        elif ss_res == 0.0:
            f_stat = float("inf")
            f_p_value = self.strategy.f_p_value(f_stat, p - 1, n - p)
        else:
            ss_reg = ss_tot - ss_res
            f_stat = (ss_reg / (p - 1)) / (ss_res / (n - p))
            f_p_value = self.strategy.f_p_value(f_stat, p - 1, n - p)

        coefficients = {"intercept": float(beta[0])}
        coefficients.update({m: float(b) for m, b in zip(metrics, beta[1:])})
        return MultipleRegressionResult(
            metrics=metrics,
            coefficients=coefficients,
            r_squared=r_squared,
            adjusted_r_squared=float(adjusted),
            residual_standard_error=rse,
            f_statistic=float(f_stat),
            f_p_value=float(f_p_value),
            sample_size=n,
            num_parameters=p,
        )

    def validate_model(
        self,
        results: Sequence[RegressionResult],
        model: MultipleRegressionResult,
        sample_size: int,
    ) -> ModelValidation:
        """Flag weak or suspect models. Only ever returns diagnostics."""
        validation = ModelValidation(is_valid=True)

        def flag(code: str, message: str, recommendation: str, invalid: bool) -> None:
            validation.warnings.append(ValidationWarning(
                code=code,
                message=message,
                component="regression_engine",
                remediation=recommendation,
            ))
            validation.recommendations.append(recommendation)
            if invalid:
                validation.is_valid = False

        if sample_size < self.min_sample_size:
            flag(
                "SMALL_SAMPLE_SIZE",
                f"Sample size {sample_size} is below the minimum of {self.min_sample_size}",
                "Wait for more completed games before trusting regression weights",
                invalid=True,
            )

        if model.r_squared < LOW_MODEL_R_SQUARED:
            flag(
                "LOW_MODEL_R_SQUARED",
                f"Model R² of {model.r_squared:.3f} explains little scoring variance",
                "Consider additional efficiency metrics or a longer sample window",
                invalid=False,
            )

        significant = [r for r in results if r.is_significant]
        if not significant:
            flag(
                "NO_SIGNIFICANT_PREDICTORS",
                "No efficiency metric is statistically significant",
                "Keep the current weights; regression evidence is too weak to update them",
                invalid=True,
            )

        low, high = COLLINEAR_RATIO
        for i, first in enumerate(significant):
            for second in significant[i + 1:]:
                if second.coefficient == 0:
                    continue
                ratio = first.coefficient / second.coefficient
                if low <= ratio <= high:
                    flag(
                        "POSSIBLE_MULTICOLLINEARITY",
                        f"{first.metric} and {second.metric} have near-identical "
                        f"coefficients (ratio {ratio:.2f})",
                        f"Check whether {first.metric} and {second.metric} measure "
                        f"the same signal; consider dropping one",
                        invalid=False,
                    )

        if model.residual_standard_error > HIGH_RESIDUAL_ERROR:
            flag(
                "HIGH_RESIDUAL_ERROR",
                f"Residual standard error of {model.residual_standard_error:.1f} points",
                "Predictions carry wide error bands; communicate lower confidence",
                invalid=False,
            )

        if model.f_p_value > MODEL_F_P_VALUE:
            flag(
                "MODEL_NOT_SIGNIFICANT",
                f"Overall F-test p-value {model.f_p_value:.3f} exceeds {MODEL_F_P_VALUE}",
                "Treat the model as exploratory until the F-test is significant",
                invalid=True,
            )

        return validation

    def analyze(self, observations: pd.DataFrame, season: int) -> RegressionAnalysis:
        """Run every single-metric fit, the multiple regression and diagnostics.

        Args:
            observations: One row per team-game with a column per metric in
                REGRESSION_METRICS and the points_scored outcome
            season: Season year the observations come from

        Raises:
            InsufficientSampleSizeError: Fewer than min_sample_size rows
        """
        n = len(observations)
        if n < self.min_sample_size:
            raise InsufficientSampleSizeError(
                f"{season}: {n} observations, at least {self.min_sample_size} required"
            )
        if OUTCOME_COLUMN not in observations.columns:
            raise ValueError(f"Observations are missing the '{OUTCOME_COLUMN}' column")

        y = observations[OUTCOME_COLUMN].to_numpy(float)
        results = []
        for metric in REGRESSION_METRICS:
            if metric not in observations.columns:
                logger.warning(f"{season}: metric {metric} not in observations, skipping")
                continue
            try:
                results.append(self.fit_simple(metric, observations[metric], y))
            except DegeneratePredictorError as e:
                logger.warning(f"{season}: {e}, skipping")

        significant = [r.metric for r in results if r.is_significant]
        model = self.fit_multiple(observations, significant)
        validation = self.validate_model(results, model, n)

        if model.metrics:
            accuracy = self.predictive_accuracy(model.predict(observations), y)
        else:
            accuracy = 0.0

        logger.info(
            f"{season} regression: n={n}, significant={significant}, "
            f"R²={model.r_squared:.3f}, adj R²={model.adjusted_r_squared:.3f}, "
            f"F p={model.f_p_value:.3f}"
        )
        for w in validation.warnings:
            logger.warning(f"{season} model check {w.code}: {w.message}")

        return RegressionAnalysis(
            season=season,
            results=results,
            model=model,
            validation=validation,
            sample_size=n,
            predictive_accuracy=accuracy,
            significance_method=self.strategy.name,
        )

    @staticmethod
    def predictive_accuracy(predicted: Sequence[float], actual: Sequence[float]) -> float:
        """Share of predictions within 30% relative error of the actual score.

        Relative error uses max(actual, 1) so shutouts do not divide by zero.
        """
        predicted = np.asarray(predicted, dtype=float)
        actual = np.asarray(actual, dtype=float)
        if len(actual) == 0:
            return 0.0
        relative = np.abs(predicted - actual) / np.maximum(actual, 1.0)
        return float(np.mean(relative < ACCURACY_TOLERANCE))


def evaluate_predictions(
    predictions: Sequence[dict], actuals: Sequence[dict]
) -> AccuracyReport:
    """Score predictions against final results.

    Each prediction needs home_score, away_score, home_win_probability and
    confidence. Each actual needs home_score and away_score, in the same
    order.

    Calibration is 1 - mean |confidence - outcome|, where outcome is 1 when
    the predicted winner won.
    """
    if len(predictions) != len(actuals):
        raise ValueError(
            f"Got {len(predictions)} predictions but {len(actuals)} results"
        )
    if not predictions:
        return AccuracyReport(0, 0.0, 0.0, 0.0, 0.0)

    pred = pd.DataFrame(list(predictions))
    act = pd.DataFrame(list(actuals))

    picked_home = pred["home_win_probability"].to_numpy(float) >= 0.5
    home_won = act["home_score"].to_numpy(float) > act["away_score"].to_numpy(float)
    correct = (picked_home == home_won).astype(float)

    errors = np.concatenate([
        pred["home_score"].to_numpy(float) - act["home_score"].to_numpy(float),
        pred["away_score"].to_numpy(float) - act["away_score"].to_numpy(float),
    ])
    confidence = pred["confidence"].to_numpy(float)

    return AccuracyReport(
        sample_size=len(pred),
        accuracy=float(correct.mean()),
        mean_absolute_error=float(np.mean(np.abs(errors))),
        rmse=float(np.sqrt(np.mean(errors ** 2))),
        calibration=float(1.0 - np.mean(np.abs(confidence - correct))),
    )
