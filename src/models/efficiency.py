"""Opponent-relative efficiency profiles.

Efficiency compares a team's per-game production with what its opponents
typically allow. Sign convention: positive always means better than typical.

    Offense:  efficiency = team per-game value - opponent baseline
    Defense:  efficiency = opponent baseline - team per-game value allowed
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from src.data.team_stats import RawTeamGameStatistics
from src.models.baseline import OpponentBaseline
from src.validation.diagnostics import ValidationWarning

logger = logging.getLogger(__name__)

# category -> (team field, baseline field, is_defensive)
EFFICIENCY_DEFINITIONS = {
    "passing_offense": ("passing_yards", "passing_yards_allowed", False),
    "rushing_offense": ("rushing_yards", "rushing_yards_allowed", False),
    "scoring_efficiency": ("points_scored", "points_allowed", False),
    "passing_defense": ("passing_yards_allowed", "passing_yards_allowed", True),
    "rushing_defense": ("rushing_yards_allowed", "rushing_yards_allowed", True),
    "turnover_margin": (None, "turnovers_forced", False),  # forced - committed
    "special_teams": ("field_goals", "field_goals", False),
}

EFFICIENCY_CATEGORIES = tuple(EFFICIENCY_DEFINITIONS)
DEFENSIVE_CATEGORIES = tuple(
    c for c, (_, _, defensive) in EFFICIENCY_DEFINITIONS.items() if defensive
)

DEFAULT_EXTREME_THRESHOLD = 40.0


def team_value(stats: RawTeamGameStatistics, category: str) -> float:
    """Per-game raw value the team contributes to a category."""
    team_field = EFFICIENCY_DEFINITIONS[category][0]
    if team_field is None:
        return stats.per_game("turnovers_forced") - stats.per_game("turnovers_committed")
    return stats.per_game(team_field)


def efficiency_value(raw_value: float, baseline_value: float, defensive: bool) -> float:
    """Signed efficiency for one category."""
    if defensive:
        return baseline_value - raw_value
    return raw_value - baseline_value


@dataclass(frozen=True)
class EfficiencyProfile:
    """Per-category relative efficiency for one team-season (or game)."""

    team: str
    season: int
    values: Mapping[str, float]
    warnings: tuple[ValidationWarning, ...] = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def __getitem__(self, category: str) -> float:
        return self.values[category]

    def get(self, category: str, default: float = 0.0) -> float:
        return self.values.get(category, default)

    def to_dict(self) -> dict:
        return {
            "team": self.team,
            "season": self.season,
            "values": dict(self.values),
            "warnings": [w.to_dict() for w in self.warnings],
        }


class EfficiencyCalculator:
    """Compute opponent-relative efficiency from raw stats and a baseline."""

    def __init__(self, extreme_threshold: float = DEFAULT_EXTREME_THRESHOLD):
        self.extreme_threshold = extreme_threshold

    def calculate(
        self,
        team_stats: RawTeamGameStatistics,
        opponent_baseline: OpponentBaseline,
    ) -> EfficiencyProfile:
        """Build an efficiency profile.

        Args:
            team_stats: The team's raw statistics (game or season aggregate)
            opponent_baseline: Baseline built from the opponents the team
                faced, not from the team's own statistics

        Returns:
            EfficiencyProfile; values beyond +/- extreme_threshold carry a
            warning but are kept as computed
        """
        values = {}
        warnings = []
        for category, (_, baseline_field, defensive) in EFFICIENCY_DEFINITIONS.items():
            value = efficiency_value(
                team_value(team_stats, category),
                getattr(opponent_baseline, baseline_field),
                defensive,
            )
            values[category] = value

            if abs(value) > self.extreme_threshold:
                logger.debug(
                    f"{team_stats.team} {team_stats.season}: extreme {category} "
                    f"efficiency {value:+.1f}"
                )
                warnings.append(ValidationWarning(
                    code="EFFICIENCY_EXTREME_VALUE",
                    message=f"{category} efficiency {value:+.2f} exceeds "
                            f"+/-{self.extreme_threshold:g}",
                    component="efficiency_calculator",
                    remediation="Check the opponent baseline and raw statistics "
                                "for data entry errors or a small sample",
                    details={"category": category, "value": value},
                ))

        return EfficiencyProfile(
            team=team_stats.team,
            season=team_stats.season,
            values=values,
            warnings=tuple(warnings),
        )
