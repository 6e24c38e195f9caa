"""Independent re-computation of every traced calculation step.

MathematicalVerifier never trusts the numbers a stage reports. For each
step type it recomputes the expected output from the recorded inputs and
compares within tolerance. Problems come back as a ValidationResult; the
verifier does not raise on bad values.

Recorded step payloads (dicts keyed by "home"/"away"):

    data_extraction        inputs:  {side: raw stats}
                           output:  {side: {"completeness": pct}}
    baseline_calculation   inputs:  {side: {"opponents": [raw stats, ...]}}
                           output:  {side: baseline}
    efficiency_calculation inputs:  {side: {"stats": raw, "baseline": baseline}}
                           output:  {side: {category: value}}
    weight_application     inputs:  {"weights", "points_per_unit", "efficiency": {side: ...}}
                           output:  {"contributions": {side: {category: value}},
                                     "net_advantage": x}
    prediction_assembly    inputs:  {"raw_score": {side: x}, "bounds": {...}}
                           output:  {"expected_score", "win_probability", "confidence"}
"""

import logging
import math
from typing import Any, Callable, Mapping

from src.validation.diagnostics import Severity, ValidationResult

logger = logging.getLogger(__name__)

SIDES = ("home", "away")

# Season-total plausibility bounds for extracted statistics
DATA_FIELD_BOUNDS = {
    "passing_yards": (0, 8000),
    "rushing_yards": (0, 5000),
    "total_yards": (0, 12000),
    "points_scored": (0, 1000),
    "points_allowed": (0, 1000),
    "turnovers_forced": (0, 100),
    "turnovers_committed": (0, 100),
    "games_played": (1, 20),
}
REQUIRED_DATA_FIELDS = (
    "passing_yards",
    "rushing_yards",
    "total_yards",
    "passing_yards_allowed",
    "rushing_yards_allowed",
    "points_scored",
    "points_allowed",
    "turnovers_forced",
    "turnovers_committed",
    "games_played",
)
TOTAL_YARDS_TOLERANCE = 10.0
MIN_COMPLETENESS = 90.0

# Per-game plausibility bounds for baseline averages
BASELINE_BOUNDS = {
    "passing_yards_allowed": (100, 500),
    "rushing_yards_allowed": (50, 300),
    "total_yards_allowed": (200, 700),
    "points_allowed": (10, 60),
    "turnovers_forced": (0.5, 4.0),
}
BASELINE_FIELDS = (
    "passing_yards_allowed",
    "rushing_yards_allowed",
    "total_yards_allowed",
    "points_allowed",
    "turnovers_forced",
    "sacks",
    "field_goals",
)

# category -> (team field or None for turnover margin, baseline field, defensive)
EFFICIENCY_FORMULAS = {
    "passing_offense": ("passing_yards", "passing_yards_allowed", False),
    "rushing_offense": ("rushing_yards", "rushing_yards_allowed", False),
    "scoring_efficiency": ("points_scored", "points_allowed", False),
    "passing_defense": ("passing_yards_allowed", "passing_yards_allowed", True),
    "rushing_defense": ("rushing_yards_allowed", "rushing_yards_allowed", True),
    "turnover_margin": (None, "turnovers_forced", False),
    "special_teams": ("field_goals", "field_goals", False),
}
EFFICIENCY_LIMIT = 50.0
EFFICIENCY_EXTREME = 40.0

WEIGHT_RANGE = (0.0, 2.0)
TOTAL_WEIGHT_RANGE = (0.5, 10.0)
WEIGHT_TOLERANCE = 0.001
PROBABILITY_TOLERANCE = 0.001


def tolerance_for(expected: float) -> float:
    """Absolute tolerance: 0.1% of the expected value, at least 0.01."""
    return max(0.01, abs(expected) * 0.001)


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


class MathematicalVerifier:
    """Recompute and check each calculation step type."""

    def __init__(self):
        self._checks: dict[str, Callable[[Mapping, Mapping], ValidationResult]] = {
            "data_extraction": self.verify_data_extraction,
            "baseline_calculation": self.verify_baseline_calculation,
            "efficiency_calculation": self.verify_efficiency_calculation,
            "weight_application": self.verify_weight_application,
            "prediction_assembly": self.verify_prediction_assembly,
        }

    @property
    def step_types(self) -> tuple[str, ...]:
        return tuple(self._checks)

    def verify(self, step_type: str, inputs: Mapping, output: Mapping) -> ValidationResult:
        """Dispatch to the check for a step type."""
        if step_type not in self._checks:
            raise ValueError(f"No verification defined for step type '{step_type}'")
        result = self._checks[step_type](inputs, output)
        if not result.is_valid:
            logger.warning(
                f"{step_type}: {len(result.errors)} verification error(s): "
                f"{[e.code for e in result.errors]}"
            )
        return result

    # -------------------------------------------------------------------------
    # Data extraction
    # -------------------------------------------------------------------------

    def verify_data_extraction(self, inputs: Mapping, output: Mapping) -> ValidationResult:
        result = ValidationResult()
        component = "data_extraction"

        for side in SIDES:
            stats = inputs.get(side)
            if not isinstance(stats, Mapping):
                result.add_error(
                    "MISSING_TEAM_DATA",
                    f"No statistics extracted for {side} team",
                    component,
                    Severity.CRITICAL,
                )
                continue
            team = stats.get("team", side)

            present = [f for f in REQUIRED_DATA_FIELDS if _is_number(stats.get(f))]
            completeness = len(present) / len(REQUIRED_DATA_FIELDS) * 100
            reported = output.get(side, {}).get("completeness")
            if reported is not None and abs(reported - completeness) > 0.01:
                result.add_error(
                    "CALCULATION_ERROR",
                    f"{team}: completeness reported {reported:.1f}%, "
                    f"recomputed {completeness:.1f}%",
                    component,
                    Severity.MEDIUM,
                    {"expected": completeness, "actual": reported},
                )
            if completeness < MIN_COMPLETENESS:
                missing = [f for f in REQUIRED_DATA_FIELDS if f not in present]
                result.add_warning(
                    "LOW_DATA_COMPLETENESS",
                    f"{team}: only {completeness:.1f}% of required fields present",
                    component,
                    remediation="Re-run ingestion for the missing statistics",
                    details={"missing_fields": missing},
                )

            for name, (low, high) in DATA_FIELD_BOUNDS.items():
                value = stats.get(name)
                if _is_number(value) and not low <= value <= high:
                    result.add_error(
                        "VALUE_OUT_OF_RANGE",
                        f"{team}: {name}={value} outside [{low}, {high}]",
                        component,
                        Severity.HIGH,
                        {"field": name, "value": value},
                    )

            if all(_is_number(stats.get(f)) for f in ("passing_yards", "rushing_yards", "total_yards")):
                gap = abs(stats["total_yards"] - (stats["passing_yards"] + stats["rushing_yards"]))
                if gap > TOTAL_YARDS_TOLERANCE:
                    result.add_error(
                        "TOTAL_YARDS_MISMATCH",
                        f"{team}: total yards differ from passing + rushing by {gap:.1f}",
                        component,
                        Severity.HIGH,
                        {"difference": gap},
                    )
                elif gap > 0:
                    result.add_warning(
                        "MINOR_TOTAL_YARDS_DIFFERENCE",
                        f"{team}: total yards differ from passing + rushing by {gap:.1f}",
                        component,
                        remediation="Usually rounding in the source feed; no action needed",
                        details={"difference": gap},
                    )
        return result

    # -------------------------------------------------------------------------
    # Baseline averaging
    # -------------------------------------------------------------------------

    def verify_baseline_calculation(self, inputs: Mapping, output: Mapping) -> ValidationResult:
        result = ValidationResult()
        component = "baseline_calculator"

        for side in SIDES:
            opponents = inputs.get(side, {}).get("opponents", [])
            baseline = output.get(side)
            if not opponents:
                result.add_error(
                    "INSUFFICIENT_OPPONENT_DATA",
                    f"{side}: no opponent records to average",
                    component,
                    Severity.CRITICAL,
                )
                continue
            if not isinstance(baseline, Mapping):
                result.add_error(
                    "MISSING_BASELINE",
                    f"{side}: no baseline recorded",
                    component,
                    Severity.CRITICAL,
                )
                continue

            if baseline.get("opponent_count") != len(opponents):
                result.add_error(
                    "CALCULATION_ERROR",
                    f"{side}: baseline reports {baseline.get('opponent_count')} "
                    f"opponents, {len(opponents)} recorded",
                    component,
                    Severity.HIGH,
                )

            for name in BASELINE_FIELDS:
                per_game = [o[name] / o["games_played"] for o in opponents]
                expected = sum(per_game) / len(per_game)
                actual = baseline.get(name)
                if not _is_number(actual) or abs(actual - expected) > tolerance_for(expected):
                    result.add_error(
                        "CALCULATION_ERROR",
                        f"{side}: baseline {name} is {actual}, expected {expected:.4f}",
                        component,
                        Severity.HIGH,
                        {"field": name, "expected": expected, "actual": actual},
                    )
                    continue

                if name in BASELINE_BOUNDS:
                    low, high = BASELINE_BOUNDS[name]
                    if not low <= actual <= high:
                        result.add_warning(
                            "VALUE_OUT_OF_BOUNDS",
                            f"{side}: baseline {name} {actual:.2f} outside typical "
                            f"range [{low}, {high}]",
                            component,
                            remediation="Check opponent records for partial seasons",
                            details={"field": name, "value": actual},
                        )
        return result

    # -------------------------------------------------------------------------
    # Efficiency differentials
    # -------------------------------------------------------------------------

    def verify_efficiency_calculation(self, inputs: Mapping, output: Mapping) -> ValidationResult:
        result = ValidationResult()
        component = "efficiency_calculator"

        for side in SIDES:
            stats = inputs.get(side, {}).get("stats")
            baseline = inputs.get(side, {}).get("baseline")
            values = output.get(side, {})
            if not stats or not baseline:
                result.add_error(
                    "MISSING_EFFICIENCY_INPUTS",
                    f"{side}: efficiency inputs not recorded",
                    component,
                    Severity.CRITICAL,
                )
                continue

            games = stats["games_played"]
            for category, (team_field, baseline_field, defensive) in EFFICIENCY_FORMULAS.items():
                if team_field is None:
                    raw = (stats["turnovers_forced"] - stats["turnovers_committed"]) / games
                else:
                    raw = stats[team_field] / games
                reference = baseline[baseline_field]
                expected = reference - raw if defensive else raw - reference

                actual = values.get(category)
                if not _is_number(actual) or abs(actual - expected) > tolerance_for(expected):
                    result.add_error(
                        "EFFICIENCY_CALCULATION_ERROR",
                        f"{side}: {category} is {actual}, expected {expected:.4f}",
                        component,
                        Severity.HIGH,
                        {"category": category, "expected": expected, "actual": actual},
                    )
                    continue

                if abs(actual) > EFFICIENCY_LIMIT:
                    result.add_error(
                        "EFFICIENCY_OUT_OF_BOUNDS",
                        f"{side}: {category} efficiency {actual:+.2f} beyond "
                        f"+/-{EFFICIENCY_LIMIT:g}",
                        component,
                        Severity.MEDIUM,
                        {"category": category, "value": actual},
                    )
                elif abs(actual) > EFFICIENCY_EXTREME:
                    result.add_warning(
                        "EFFICIENCY_EXTREME_VALUE",
                        f"{side}: {category} efficiency {actual:+.2f} is extreme",
                        component,
                        remediation="Confirm the opponent baseline covers enough games",
                        details={"category": category, "value": actual},
                    )
        return result

    # -------------------------------------------------------------------------
    # Weight application
    # -------------------------------------------------------------------------

    def verify_weight_application(self, inputs: Mapping, output: Mapping) -> ValidationResult:
        result = ValidationResult()
        component = "prediction_assembler"

        weights = inputs.get("weights", {})
        per_unit = inputs.get("points_per_unit", {})
        efficiency = inputs.get("efficiency", {})
        contributions = output.get("contributions", {})

        low, high = WEIGHT_RANGE
        for category, weight in weights.items():
            if not _is_number(weight) or not low <= weight <= high:
                result.add_error(
                    "INVALID_WEIGHT",
                    f"Weight for {category} ({weight}) outside [{low}, {high}]",
                    component,
                    Severity.HIGH,
                    {"category": category, "weight": weight},
                )

        totals = {}
        for side in SIDES:
            side_total = 0.0
            for category, factor in per_unit.items():
                expected = (
                    efficiency.get(side, {}).get(category, 0.0)
                    * weights.get(category, 0.0)
                    * factor
                )
                actual = contributions.get(side, {}).get(category)
                if not _is_number(actual) or abs(actual - expected) > WEIGHT_TOLERANCE:
                    result.add_error(
                        "WEIGHT_CALCULATION_ERROR",
                        f"{side}: {category} contribution is {actual}, expected {expected:.4f}",
                        component,
                        Severity.HIGH,
                        {"category": category, "expected": expected, "actual": actual},
                    )
                side_total += expected
            totals[side] = side_total

        expected_net = totals["home"] - totals["away"]
        actual_net = output.get("net_advantage")
        if not _is_number(actual_net) or abs(actual_net - expected_net) > WEIGHT_TOLERANCE:
            result.add_error(
                "NET_ADVANTAGE_ERROR",
                f"Net advantage is {actual_net}, expected {expected_net:.4f}",
                component,
                Severity.HIGH,
                {"expected": expected_net, "actual": actual_net},
            )

        total_weight = sum(w for w in weights.values() if _is_number(w))
        low, high = TOTAL_WEIGHT_RANGE
        if not low <= total_weight <= high:
            result.add_warning(
                "UNUSUAL_TOTAL_WEIGHT",
                f"Weights sum to {total_weight:.3f}, outside [{low}, {high}]",
                component,
                remediation="Review the current weight set before trusting predictions",
                details={"total_weight": total_weight},
            )
        return result

    # -------------------------------------------------------------------------
    # Prediction assembly
    # -------------------------------------------------------------------------

    def verify_prediction_assembly(self, inputs: Mapping, output: Mapping) -> ValidationResult:
        result = ValidationResult()
        component = "prediction_assembler"

        probabilities = output.get("win_probability", {})
        for side in SIDES:
            p = probabilities.get(side)
            if not _is_number(p) or not 0.0 <= p <= 1.0:
                result.add_error(
                    "INVALID_PROBABILITY",
                    f"{side} win probability {p} is not in [0, 1]",
                    component,
                    Severity.CRITICAL,
                )
        if all(_is_number(probabilities.get(s)) for s in SIDES):
            total = probabilities["home"] + probabilities["away"]
            if abs(total - 1.0) > PROBABILITY_TOLERANCE:
                result.add_error(
                    "PROBABILITY_SUM_ERROR",
                    f"Win probabilities sum to {total:.4f}",
                    component,
                    Severity.HIGH,
                    {"sum": total},
                )

        confidence = output.get("confidence")
        if not _is_number(confidence) or not 0.0 <= confidence <= 1.0:
            result.add_error(
                "INVALID_PREDICTION_VALUE",
                f"Confidence {confidence} is not in [0, 1]",
                component,
                Severity.HIGH,
            )

        scores = output.get("expected_score", {})
        if not all(_is_number(scores.get(s)) for s in SIDES):
            result.add_error(
                "INVALID_PREDICTION_VALUE",
                f"Expected score is not numeric: {scores}",
                component,
                Severity.CRITICAL,
            )
            return result

        bounds = inputs.get("bounds", {})
        score_min = bounds.get("score_min", 0.0)
        score_max = bounds.get("score_max", 100.0)
        max_diff = bounds.get("max_point_differential", 70.0)

        for side in SIDES:
            if not score_min - 1e-9 <= scores[side] <= score_max + 1e-9:
                result.add_error(
                    "INVALID_PREDICTION_VALUE",
                    f"{side} score {scores[side]:.2f} outside [{score_min}, {score_max}]",
                    component,
                    Severity.HIGH,
                )
        differential = abs(scores["home"] - scores["away"])
        if differential > max_diff + 1e-9:
            result.add_error(
                "BOUNDARY_VIOLATION",
                f"Point differential {differential:.2f} exceeds {max_diff}",
                component,
                Severity.HIGH,
            )

        raw = inputs.get("raw_score", {})
        if all(_is_number(raw.get(s)) for s in SIDES):
            home = min(score_max, max(score_min, raw["home"]))
            away = min(score_max, max(score_min, raw["away"]))
            if abs(home - away) > max_diff:
                mid = (home + away) / 2
                sign = 1 if home > away else -1
                home, away = mid + sign * max_diff / 2, mid - sign * max_diff / 2
            for side, expected in (("home", home), ("away", away)):
                if abs(scores[side] - expected) > tolerance_for(expected):
                    result.add_error(
                        "BOUNDARY_CALCULATION_ERROR",
                        f"{side} bounded score {scores[side]:.4f}, expected {expected:.4f}",
                        component,
                        Severity.HIGH,
                        {"expected": expected, "actual": scores[side]},
                    )
        return result
