"""Assemble a matchup prediction from weights and efficiency profiles.

Score for each side:

    score = base + own offensive contributions - opponent defensive contributions
            (+ home field points for a non-neutral home team)

where base is what the opponent typically allows per game and every
contribution is efficiency x weight x points-per-unit for its category.
Scores are then bounded, and confidence and win probability are derived
from the bounded differential.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Optional

from src.models.baseline import OpponentBaseline
from src.models.efficiency import DEFENSIVE_CATEGORIES, EFFICIENCY_CATEGORIES, EfficiencyProfile
from src.weights.prediction_weights import PredictionWeights

logger = logging.getLogger(__name__)

# Points per unit of efficiency (yards ~14 per point, turnover ~4 points, FG 3)
YARDS_TO_POINTS = 0.07
POINTS_PER_UNIT = {
    "passing_offense": YARDS_TO_POINTS,
    "rushing_offense": YARDS_TO_POINTS,
    "scoring_efficiency": 1.0,
    "passing_defense": YARDS_TO_POINTS,
    "rushing_defense": YARDS_TO_POINTS,
    "turnover_margin": 4.0,
    "special_teams": 3.0,
}

# Confidence factor weights
R_SQUARED_SHARE = 0.4
SAMPLE_SIZE_SHARE = 0.2
STABILITY_SHARE = 0.2
STRENGTH_SHARE = 0.2
FULL_SAMPLE_SIZE = 100
CLEAR_STRENGTH_GAP = 20.0
MIN_CONFIDENCE = 0.10
MAX_CONFIDENCE = 0.95

# Win probability
LOGISTIC_SCALE = 0.1
MIN_WIN_PROBABILITY = 0.05
MAX_WIN_PROBABILITY = 0.95


@dataclass(frozen=True)
class CategoryContribution:
    """Points one category adds for one team."""

    category: str
    efficiency: float
    weight: float
    points_per_unit: float
    contribution: float
    side: str  # "offense" adds to own score, "defense" subtracts from opponent's

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "efficiency": self.efficiency,
            "weight": self.weight,
            "points_per_unit": self.points_per_unit,
            "contribution": self.contribution,
            "side": self.side,
        }


@dataclass
class TeamBreakdown:
    """How one team's side of the prediction was built."""

    team: str
    opponent_baseline: OpponentBaseline
    base_score: float
    contributions: list[CategoryContribution]

    @property
    def total_contribution(self) -> float:
        return sum(c.contribution for c in self.contributions)

    @property
    def offense_contribution(self) -> float:
        return sum(c.contribution for c in self.contributions if c.side == "offense")

    @property
    def defense_contribution(self) -> float:
        return sum(c.contribution for c in self.contributions if c.side == "defense")

    def to_dict(self) -> dict:
        return {
            "team": self.team,
            "opponent_baseline": self.opponent_baseline.to_dict(),
            "base_score": self.base_score,
            "total_contribution": self.total_contribution,
            "contributions": [c.to_dict() for c in self.contributions],
        }


@dataclass(frozen=True)
class BoundaryAdjustment:
    """One clamp or differential pull applied to a raw score."""

    type: str
    side: str
    original: float
    adjusted: float
    reason: str

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "side": self.side,
            "original": self.original,
            "adjusted": self.adjusted,
            "reason": self.reason,
        }


@dataclass
class Prediction:
    """Final prediction for one matchup."""

    season: int
    home_team: str
    away_team: str
    raw_score: dict[str, float]
    expected_score: dict[str, float]
    confidence: float
    win_probability: dict[str, float]
    net_advantage: float
    home_field_points: float
    prediction_variance: float
    model_r_squared: float
    sample_size: int
    breakdown: dict[str, TeamBreakdown]
    weights: PredictionWeights
    adjustments: list[BoundaryAdjustment] = field(default_factory=list)
    fallback_reason: Optional[str] = None

    @property
    def spread(self) -> float:
        """Home margin (positive = home favored)."""
        return self.expected_score["home"] - self.expected_score["away"]

    @property
    def total(self) -> float:
        return self.expected_score["home"] + self.expected_score["away"]

    def to_dict(self) -> dict:
        return {
            "season": self.season,
            "home_team": self.home_team,
            "away_team": self.away_team,
            "raw_score": dict(self.raw_score),
            "expected_score": dict(self.expected_score),
            "spread": self.spread,
            "total": self.total,
            "confidence": self.confidence,
            "win_probability": dict(self.win_probability),
            "net_advantage": self.net_advantage,
            "home_field_points": self.home_field_points,
            "prediction_variance": self.prediction_variance,
            "model_r_squared": self.model_r_squared,
            "sample_size": self.sample_size,
            "breakdown": {side: b.to_dict() for side, b in self.breakdown.items()},
            "weights": self.weights.to_dict(),
            "adjustments": [a.to_dict() for a in self.adjustments],
            "fallback_reason": self.fallback_reason,
        }


def category_contributions(
    weights: PredictionWeights, profile: EfficiencyProfile
) -> list[CategoryContribution]:
    """efficiency x weight x points-per-unit for every category."""
    contributions = []
    for category in EFFICIENCY_CATEGORIES:
        efficiency = profile.get(category)
        weight = weights.get(category)
        per_unit = POINTS_PER_UNIT[category]
        contributions.append(CategoryContribution(
            category=category,
            efficiency=efficiency,
            weight=weight,
            points_per_unit=per_unit,
            contribution=efficiency * weight * per_unit,
            side="defense" if category in DEFENSIVE_CATEGORIES else "offense",
        ))
    return contributions


def prediction_variance(
    home: list[CategoryContribution], away: list[CategoryContribution]
) -> float:
    """Share of categories whose net edge disagrees with the overall edge.

    0 when every category points the same way, 1 when all contradict it.
    """
    net_by_category = [h.contribution - a.contribution for h, a in zip(home, away)]
    overall = sum(net_by_category)
    signed = [n for n in net_by_category if n != 0]
    if not signed or overall == 0:
        return 1.0 if signed else 0.0
    disagreeing = sum(1 for n in signed if (n > 0) != (overall > 0))
    return disagreeing / len(signed)


def calculate_confidence(
    model_r_squared: float,
    sample_size: int,
    variance: float,
    score_difference: float,
) -> float:
    """Blend model fit, sample adequacy, stability and strength gap.

    Returns:
        Confidence clamped to [0.10, 0.95]
    """
    raw = (
        model_r_squared * R_SQUARED_SHARE
        + min(sample_size / FULL_SAMPLE_SIZE, 1.0) * SAMPLE_SIZE_SHARE
        + max(0.0, 1.0 - variance) * STABILITY_SHARE
        + min(abs(score_difference) / CLEAR_STRENGTH_GAP, 1.0) * STRENGTH_SHARE
    )
    return max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, raw))


def calculate_win_probability(
    score_difference: float,
    confidence: float,
    historical_accuracy: float = 0.65,
) -> tuple[float, float]:
    """Home and away win probability from the home score differential.

    Logistic in the differential with slope 0.1 * confidence * accuracy,
    shrunk toward 0.5 in proportion to (1 - confidence), clamped to
    [0.05, 0.95]. The two values always sum to 1.
    """
    k = LOGISTIC_SCALE * confidence * historical_accuracy
    raw = 1.0 / (1.0 + math.exp(-k * score_difference))
    adjusted = 0.5 + (raw - 0.5) * confidence
    home = max(MIN_WIN_PROBABILITY, min(MAX_WIN_PROBABILITY, adjusted))
    return home, 1.0 - home


def apply_boundaries(
    home_score: float,
    away_score: float,
    score_min: float = 0.0,
    score_max: float = 100.0,
    max_point_differential: float = 70.0,
) -> tuple[float, float, list[BoundaryAdjustment]]:
    """Clamp scores to [score_min, score_max], then cap the differential.

    A differential above max_point_differential pulls both scores
    symmetrically toward their midpoint until it equals the cap.
    """
    adjustments = []
    scores = {"home": home_score, "away": away_score}

    for side, score in scores.items():
        if score < score_min:
            scores[side] = score_min
            adjustments.append(BoundaryAdjustment(
                "minimum_score", side, score, score_min,
                f"Score {score:.2f} below minimum {score_min:g}",
            ))
        elif score > score_max:
            scores[side] = score_max
            adjustments.append(BoundaryAdjustment(
                "maximum_score", side, score, score_max,
                f"Score {score:.2f} above maximum {score_max:g}",
            ))

    home, away = scores["home"], scores["away"]
    differential = home - away
    if abs(differential) > max_point_differential:
        midpoint = (home + away) / 2
        half = max_point_differential / 2
        new_home = midpoint + half if differential > 0 else midpoint - half
        new_away = midpoint - half if differential > 0 else midpoint + half
        reason = (
            f"Differential {abs(differential):.2f} exceeds maximum "
            f"{max_point_differential:g}; pulled toward midpoint {midpoint:.2f}"
        )
        adjustments.append(BoundaryAdjustment("point_differential", "home", home, new_home, reason))
        adjustments.append(BoundaryAdjustment("point_differential", "away", away, new_away, reason))
        home, away = new_home, new_away

    return home, away, adjustments


class PredictionAssembler:
    """Apply weights to two efficiency profiles and bound the result."""

    def __init__(
        self,
        score_min: float = 0.0,
        score_max: float = 100.0,
        max_point_differential: float = 70.0,
        historical_accuracy: float = 0.65,
        home_field_points_scale: float = 30.0,
    ):
        self.score_min = score_min
        self.score_max = score_max
        self.max_point_differential = max_point_differential
        self.historical_accuracy = historical_accuracy
        self.home_field_points_scale = home_field_points_scale

    @classmethod
    def from_settings(cls, settings) -> "PredictionAssembler":
        return cls(
            score_min=settings.score_min,
            score_max=settings.score_max,
            max_point_differential=settings.max_point_differential,
            historical_accuracy=settings.historical_accuracy,
            home_field_points_scale=settings.home_field_points_scale,
        )

    def assemble(
        self,
        season: int,
        weights: PredictionWeights,
        home: tuple[EfficiencyProfile, OpponentBaseline, float],
        away: tuple[EfficiencyProfile, OpponentBaseline, float],
        model_r_squared: float = 0.0,
        sample_size: int = 0,
        neutral_site: bool = False,
    ) -> Prediction:
        """Build the prediction for one matchup.

        Args:
            season: Season year
            weights: Current weights for the season
            home: (efficiency profile, opponent baseline used, base score)
                for the home team; base score is what the away team
                typically allows per game
            away: Same for the away team
            model_r_squared: R² of the regression behind the weights
            sample_size: Observations behind that regression
            neutral_site: Skip home field points when True

        Returns:
            Prediction
        """
        home_profile, home_baseline, home_base = home
        away_profile, away_baseline, away_base = away

        home_contribs = category_contributions(weights, home_profile)
        away_contribs = category_contributions(weights, away_profile)
        home_breakdown = TeamBreakdown(home_profile.team, home_baseline, home_base, home_contribs)
        away_breakdown = TeamBreakdown(away_profile.team, away_baseline, away_base, away_contribs)
        net_advantage = home_breakdown.total_contribution - away_breakdown.total_contribution

        hfa_points = 0.0 if neutral_site else (
            weights.home_field_advantage * self.home_field_points_scale
        )
        raw_home = (
            home_base + home_breakdown.offense_contribution
            - away_breakdown.defense_contribution + hfa_points
        )
        raw_away = (
            away_base + away_breakdown.offense_contribution
            - home_breakdown.defense_contribution
        )

        final_home, final_away, adjustments = apply_boundaries(
            raw_home, raw_away, self.score_min, self.score_max, self.max_point_differential
        )
        for adj in adjustments:
            logger.info(
                f"{home_profile.team} vs {away_profile.team}: {adj.type} "
                f"{adj.side} {adj.original:.1f} -> {adj.adjusted:.1f}"
            )

        differential = final_home - final_away
        variance = prediction_variance(home_contribs, away_contribs)
        confidence = calculate_confidence(model_r_squared, sample_size, variance, differential)
        home_prob, away_prob = calculate_win_probability(
            differential, confidence, self.historical_accuracy
        )

        logger.debug(
            f"{season} {away_profile.team} @ {home_profile.team}: "
            f"{final_home:.1f}-{final_away:.1f}, conf={confidence:.2f}, "
            f"P(home)={home_prob:.3f}"
        )

        return Prediction(
            season=season,
            home_team=home_profile.team,
            away_team=away_profile.team,
            raw_score={"home": raw_home, "away": raw_away},
            expected_score={"home": final_home, "away": final_away},
            confidence=confidence,
            win_probability={"home": home_prob, "away": away_prob},
            net_advantage=net_advantage,
            home_field_points=hfa_points,
            prediction_variance=variance,
            model_r_squared=model_r_squared,
            sample_size=sample_size,
            breakdown={"home": home_breakdown, "away": away_breakdown},
            weights=weights,
            adjustments=adjustments,
        )
