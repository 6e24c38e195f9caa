"""Opponent baselines: what a team's opponents typically allow or force."""

import logging
from dataclasses import asdict, dataclass
from typing import Optional

from src.data.team_stats import RawTeamGameStatistics

logger = logging.getLogger(__name__)

# Per-game opponent fields averaged into a baseline
BASELINE_FIELDS = (
    "passing_yards_allowed",
    "rushing_yards_allowed",
    "total_yards_allowed",
    "points_allowed",
    "turnovers_forced",
    "sacks",
    "field_goals",
)


@dataclass(frozen=True)
class OpponentBaseline:
    """Per-game averages across a team's opponents.

    Each field is sum(opponent per-game value) / opponent_count.
    """

    team: str
    season: int
    opponent_count: int
    passing_yards_allowed: float
    rushing_yards_allowed: float
    total_yards_allowed: float
    points_allowed: float
    turnovers_forced: float
    sacks: float
    field_goals: float

    def values(self) -> dict[str, float]:
        return {f: getattr(self, f) for f in BASELINE_FIELDS}

    def to_dict(self) -> dict:
        return asdict(self)


class BaselineCalculator:
    """Average opponents' allowed/forced statistics per category."""

    def calculate(
        self,
        team: str,
        season: int,
        opponent_stats: list[RawTeamGameStatistics],
    ) -> Optional[OpponentBaseline]:
        """Compute the opponent baseline for a team.

        Args:
            team: Team the baseline is for
            season: Season year
            opponent_stats: One record per opponent faced (game or season
                aggregate; values are normalized per game)

        Returns:
            OpponentBaseline, or None when there are no opponent records
        """
        if not opponent_stats:
            logger.warning(
                f"{team} {season}: no opponent records, baseline unavailable"
            )
            return None

        n = len(opponent_stats)
        averages = {
            f: sum(o.per_game(f) for o in opponent_stats) / n
            for f in BASELINE_FIELDS
        }
        baseline = OpponentBaseline(team=team, season=season, opponent_count=n, **averages)
        logger.debug(
            f"{team} {season}: baseline from {n} opponents "
            f"(pts allowed {baseline.points_allowed:.1f}/g)"
        )
        return baseline
