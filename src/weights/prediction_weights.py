"""Prediction weight sets and their validation rules."""

import logging
import math
from dataclasses import asdict, dataclass, fields, replace
from numbers import Real
from typing import Mapping, Optional

from src.validation.diagnostics import Severity, ValidationResult

logger = logging.getLogger(__name__)

DEFAULT_TARGET_SUM = 1.5
DEFAULT_SUM_BAND = (0.5, 3.0)
DEFAULT_MAX_WEIGHT = 2.0


@dataclass(frozen=True)
class PredictionWeights:
    """Weight applied to each efficiency category when composing a score.

    home_field_advantage is a static weight (not regression-derived) that the
    assembler scales into points for the home team.
    """

    passing_offense: float
    rushing_offense: float
    scoring_efficiency: float
    passing_defense: float
    rushing_defense: float
    turnover_margin: float
    special_teams: float
    home_field_advantage: float

    @classmethod
    def categories(cls) -> tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    @property
    def total(self) -> float:
        return sum(self.to_dict().values())

    def get(self, category: str) -> float:
        return getattr(self, category)

    def merged(self, partial: Mapping[str, float]) -> "PredictionWeights":
        """Copy with some categories replaced (keys must already be valid)."""
        return replace(self, **partial)

    def to_dict(self) -> dict[str, float]:
        return asdict(self)

    def to_storage(self) -> dict[str, str]:
        """Decimal strings; repr() of a float is its shortest round-trip form."""
        return {k: repr(float(v)) for k, v in self.to_dict().items()}

    @classmethod
    def from_storage(cls, data: Mapping[str, str]) -> "PredictionWeights":
        return cls(**{k: float(data[k]) for k in cls.categories()})


WEIGHT_CATEGORIES = PredictionWeights.categories()

FALLBACK_WEIGHTS = PredictionWeights(
    passing_offense=0.25,
    rushing_offense=0.20,
    scoring_efficiency=0.30,
    passing_defense=0.25,
    rushing_defense=0.20,
    turnover_margin=0.35,
    special_teams=0.15,
    home_field_advantage=0.10,
)


@dataclass
class WeightValidationResult:
    """Outcome of validate_weights.

    weights holds the accepted (possibly normalized) set when valid.
    """

    diagnostics: ValidationResult
    weights: Optional[PredictionWeights] = None
    normalized: bool = False

    @property
    def is_valid(self) -> bool:
        return self.diagnostics.is_valid

    @property
    def errors(self) -> list[str]:
        return [e.message for e in self.diagnostics.errors]

    @property
    def warnings(self) -> list[str]:
        return [w.message for w in self.diagnostics.warnings]


class WeightValidationError(Exception):
    """Raised when a weight set is rejected. Carries the validation result."""

    def __init__(self, message: str, result: WeightValidationResult):
        super().__init__(message)
        self.result = result


def _is_number(value) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool) and math.isfinite(value)


def validate_weights(
    weights: Mapping[str, object],
    target_sum: float = DEFAULT_TARGET_SUM,
    sum_band: tuple[float, float] = DEFAULT_SUM_BAND,
    max_weight: float = DEFAULT_MAX_WEIGHT,
) -> WeightValidationResult:
    """Check a complete weight set and normalize it if its sum is off.

    Rejected (never normalized): unknown or missing categories, non-numeric
    or non-finite values, negative values, a total of exactly zero.
    Warned: any single weight above max_weight.
    Normalized: when the total is outside sum_band every weight is scaled
    proportionally so the total equals target_sum.

    Args:
        weights: category -> weight
        target_sum: Total that out-of-band sets are rescaled to
        sum_band: (low, high) totals accepted as-is
        max_weight: Weights above this are flagged as implausible

    Returns:
        WeightValidationResult
    """
    diagnostics = ValidationResult()
    component = "weight_manager"

    unknown = sorted(set(weights) - set(WEIGHT_CATEGORIES))
    if unknown:
        diagnostics.add_error(
            "UNKNOWN_WEIGHT_CATEGORY",
            f"Unknown weight categories: {unknown}",
            component,
            details={"categories": unknown},
        )
    missing = [c for c in WEIGHT_CATEGORIES if c not in weights]
    if missing:
        diagnostics.add_error(
            "MISSING_WEIGHT_CATEGORY",
            f"Missing weight categories: {missing}",
            component,
            details={"categories": missing},
        )

    for category in WEIGHT_CATEGORIES:
        if category not in weights:
            continue
        value = weights[category]
        if not _is_number(value):
            diagnostics.add_error(
                "INVALID_WEIGHT_VALUE",
                f"Weight for {category} is not a finite number: {value!r}",
                component,
                details={"category": category},
            )
        elif value < 0:
            diagnostics.add_error(
                "NEGATIVE_WEIGHT",
                f"Weight for {category} is negative: {value}",
                component,
                details={"category": category, "value": value},
            )

    if not diagnostics.is_valid:
        return WeightValidationResult(diagnostics)

    values = {c: float(weights[c]) for c in WEIGHT_CATEGORIES}
    total = sum(values.values())
    if total == 0:
        diagnostics.add_error(
            "ZERO_WEIGHT_SUM",
            "Weights sum to zero; cannot normalize",
            component,
            severity=Severity.CRITICAL,
        )
        return WeightValidationResult(diagnostics)

    for category, value in values.items():
        if value > max_weight:
            diagnostics.add_warning(
                "LARGE_WEIGHT",
                f"Weight for {category} ({value:.3f}) exceeds {max_weight}",
                component,
                remediation="Confirm the value; weights this large dominate the prediction",
                details={"category": category, "value": value},
            )

    normalized = False
    low, high = sum_band
    if total < low or total > high:
        values = {c: v / total * target_sum for c, v in values.items()}
        normalized = True
        diagnostics.add_warning(
            "WEIGHTS_NORMALIZED",
            f"Weight total {total:.4f} outside [{low}, {high}]; "
            f"normalized to {target_sum}",
            component,
            details={"original_total": total, "target_sum": target_sum},
        )
        logger.info(f"Normalized weights from total {total:.4f} to {target_sum}")

    return WeightValidationResult(
        diagnostics=diagnostics,
        weights=PredictionWeights(**values),
        normalized=normalized,
    )
