"""Team statistics and weight persistence."""

from .team_stats import InsufficientDataError, RawTeamGameStatistics, StatsRepository
from .weight_store import WeightStore, WeightStoreError

__all__ = [
    "InsufficientDataError",
    "RawTeamGameStatistics",
    "StatsRepository",
    "WeightStore",
    "WeightStoreError",
]
