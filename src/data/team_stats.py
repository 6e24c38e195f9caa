"""Team statistics records and the repository that serves them.

Ingestion is handled elsewhere. This module takes a team-game DataFrame
(one row per team per completed game) and exposes the season aggregates,
opponent lists and per-game records the efficiency pipeline needs.
"""

import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Optional

import pandas as pd

logger = logging.getLogger(__name__)

# Counting fields summed when aggregating games into a season record
STAT_FIELDS = (
    "passing_yards",
    "rushing_yards",
    "total_yards",
    "passing_yards_allowed",
    "rushing_yards_allowed",
    "total_yards_allowed",
    "points_scored",
    "points_allowed",
    "turnovers_forced",
    "turnovers_committed",
    "sacks",
    "field_goals",
)

# Columns a team-game frame must carry (total_yards* are derived if absent)
REQUIRED_COLUMNS = ("season", "team", "opponent") + tuple(
    f for f in STAT_FIELDS if f not in ("total_yards", "total_yards_allowed")
)


# Accepted spellings for is_home style flags
TRUE_FLAGS = {"true", "t", "yes", "y", "1", "1.0", "home"}
FALSE_FLAGS = {"false", "f", "no", "n", "0", "0.0", "away"}


class InsufficientDataError(Exception):
    """Raised when required statistics are missing for a computation."""

    pass


def parse_flag_column(values: pd.Series, name: str) -> pd.Series:
    """Parse a home/away style flag column into booleans.

    Accepts bools, 0/1 and true/false, yes/no or home/away strings.

    Raises:
        InsufficientDataError: If any value is missing or unrecognized
    """
    if values.dtype == bool:
        return values

    text = values.astype(str).str.strip().str.lower()
    parsed = text.map(lambda v: True if v in TRUE_FLAGS else False if v in FALSE_FLAGS else None)
    bad = values[parsed.isna()]
    if not bad.empty:
        raise InsufficientDataError(
            f"Column {name} has unrecognized flag values: {sorted(set(map(str, bad)))[:5]}"
        )
    return parsed.astype(bool)


@dataclass(frozen=True)
class RawTeamGameStatistics:
    """Raw box-score statistics for one team.

    Represents a single game (games_played=1) or a season aggregate.
    All counting fields are totals over games_played games.
    """

    team: str
    season: int
    games_played: int
    passing_yards: float
    rushing_yards: float
    total_yards: float
    passing_yards_allowed: float
    rushing_yards_allowed: float
    total_yards_allowed: float
    points_scored: float
    points_allowed: float
    turnovers_forced: float
    turnovers_committed: float
    sacks: float = 0.0
    field_goals: float = 0.0
    game_id: Optional[str] = None

    def __post_init__(self):
        if self.games_played < 1:
            raise ValueError(
                f"{self.team} {self.season}: games_played must be >= 1, "
                f"got {self.games_played}"
            )
        negative = [f for f in STAT_FIELDS if getattr(self, f) < 0]
        if negative:
            raise ValueError(
                f"{self.team} {self.season}: negative values for {negative}"
            )

    def per_game(self, name: str) -> float:
        """Per-game value of a counting field."""
        return getattr(self, name) / self.games_played

    @property
    def total_yards_gap(self) -> float:
        """Difference between reported total yards and passing + rushing."""
        return self.total_yards - (self.passing_yards + self.rushing_yards)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "RawTeamGameStatistics":
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})


def aggregate_season(records: list[RawTeamGameStatistics]) -> RawTeamGameStatistics:
    """Sum single-game records for one team into a season aggregate.

    Raises:
        InsufficientDataError: If no records are given
        ValueError: If records span more than one team or season
    """
    if not records:
        raise InsufficientDataError("Cannot aggregate an empty list of games")

    teams = {(r.team, r.season) for r in records}
    if len(teams) > 1:
        raise ValueError(f"Records span multiple team-seasons: {sorted(teams)}")

    first = records[0]
    totals = {f: float(sum(getattr(r, f) for r in records)) for f in STAT_FIELDS}
    return RawTeamGameStatistics(
        team=first.team,
        season=first.season,
        games_played=sum(r.games_played for r in records),
        **totals,
    )


@dataclass(frozen=True)
class GameContext:
    """A completed team-game and the season context that explains it.

    team_stats aggregates the team's other games. opponent_stats holds one
    aggregate per opponent faced in those games, built from that opponent's
    games against other opponents.
    """

    game: RawTeamGameStatistics
    opponent: str
    team_stats: RawTeamGameStatistics
    opponent_stats: tuple[RawTeamGameStatistics, ...]


class StatsRepository:
    """Serve team statistics from a team-game DataFrame.

    Expected columns: season, team, opponent plus the counting fields in
    STAT_FIELDS. Optional: game_id, week, is_home, total_yards,
    total_yards_allowed (derived from passing + rushing when absent).
    """

    def __init__(self, games: pd.DataFrame):
        missing = [c for c in REQUIRED_COLUMNS if c not in games.columns]
        if missing:
            raise InsufficientDataError(
                f"Team-game data is missing required columns: {missing}"
            )

        df = games.copy()
        if "total_yards" not in df.columns:
            df["total_yards"] = df["passing_yards"] + df["rushing_yards"]
        if "total_yards_allowed" not in df.columns:
            df["total_yards_allowed"] = (
                df["passing_yards_allowed"] + df["rushing_yards_allowed"]
            )
        if "game_id" not in df.columns:
            df["game_id"] = None
        if "week" not in df.columns:
            df["week"] = 0

        null_rows = df[list(STAT_FIELDS)].isna().any(axis=1)
        if null_rows.any():
            logger.warning(
                f"Dropping {int(null_rows.sum())} team-game rows with missing statistics"
            )
            df = df[~null_rows].copy()

        df["season"] = df["season"].astype(int)
        if "is_home" in df.columns:
            df["is_home"] = parse_flag_column(df["is_home"], "is_home")
        self._games = df.sort_values(["season", "week"], kind="stable").reset_index(
            drop=True
        )
        logger.debug(f"StatsRepository loaded {len(self._games)} team-game rows")

    @classmethod
    def from_csv(cls, path: str | Path) -> "StatsRepository":
        """Load a team-game CSV export."""
        path = Path(path)
        if not path.exists():
            raise InsufficientDataError(f"Team-game file not found: {path}")
        return cls(pd.read_csv(path))

    @property
    def games(self) -> pd.DataFrame:
        return self._games

    def seasons(self) -> list[int]:
        return sorted(self._games["season"].unique().tolist())

    def teams(self, season: int) -> list[str]:
        return sorted(self._games.loc[self._games["season"] == season, "team"].unique())

    def _team_rows(self, team: str, season: int) -> pd.DataFrame:
        mask = (self._games["season"] == season) & (self._games["team"] == team)
        return self._games[mask]

    @staticmethod
    def _record_from_row(row: pd.Series) -> RawTeamGameStatistics:
        game_id = row.get("game_id")
        return RawTeamGameStatistics(
            team=row["team"],
            season=int(row["season"]),
            games_played=1,
            game_id=None if pd.isna(game_id) else str(game_id),
            **{f: float(row[f]) for f in STAT_FIELDS},
        )

    def team_games(self, team: str, season: int) -> list[RawTeamGameStatistics]:
        """Single-game records for a team, in week order."""
        rows = self._team_rows(team, season)
        return [self._record_from_row(row) for _, row in rows.iterrows()]

    @staticmethod
    def _aggregate(team: str, season: int, rows: pd.DataFrame) -> RawTeamGameStatistics:
        totals = rows[list(STAT_FIELDS)].sum()
        return RawTeamGameStatistics(
            team=team,
            season=season,
            games_played=len(rows),
            **{f: float(totals[f]) for f in STAT_FIELDS},
        )

    def team_season_stats(
        self, team: str, season: int, excluding_opponent: Optional[str] = None
    ) -> RawTeamGameStatistics:
        """Season aggregate for a team.

        Args:
            team: Team to aggregate
            season: Season year
            excluding_opponent: Leave out every game against this opponent

        Raises:
            InsufficientDataError: If no games remain for the team
        """
        rows = self._team_rows(team, season)
        if excluding_opponent is not None:
            rows = rows[rows["opponent"] != excluding_opponent]
        if rows.empty:
            scope = f" outside games against {excluding_opponent}" if excluding_opponent else ""
            raise InsufficientDataError(f"No games found for {team} in {season}{scope}")
        return self._aggregate(team, season, rows)

    def opponents_faced(self, team: str, season: int) -> list[str]:
        """Distinct opponents a team played, in first-meeting order."""
        return list(dict.fromkeys(self._team_rows(team, season)["opponent"]))

    def _opponent_records(
        self,
        team: str,
        season: int,
        opponents: list[str],
        cache: dict[tuple[str, str], Optional[RawTeamGameStatistics]],
    ) -> list[RawTeamGameStatistics]:
        records = []
        for opponent in opponents:
            key = (opponent, team)
            if key not in cache:
                try:
                    cache[key] = self.team_season_stats(opponent, season, excluding_opponent=team)
                except InsufficientDataError:
                    logger.warning(
                        f"{team} {season}: no statistics for opponent {opponent} "
                        f"against other opponents, skipping"
                    )
                    cache[key] = None
            if cache[key] is not None:
                records.append(cache[key])
        return records

    def opponent_season_stats(
        self, team: str, season: int
    ) -> list[RawTeamGameStatistics]:
        """Season aggregates for every opponent the team faced.

        Each opponent's aggregate leaves out its games against `team`, so it
        reflects what that opponent allows against other opponents.
        Opponents with no such games (e.g. non-FBS teams absent from the
        frame) are skipped.
        """
        return self._opponent_records(team, season, self.opponents_faced(team, season), {})

    def game_contexts(self, season: int) -> list[GameContext]:
        """Leave-one-out context for every team-game of a season.

        The team aggregate and opponent list exclude the game itself, so a
        game's result never appears among the values used to explain it.
        Team-games with no other games or no usable opponents are skipped.
        """
        season_games = self._games[self._games["season"] == season]
        opponent_cache: dict[tuple[str, str], Optional[RawTeamGameStatistics]] = {}
        contexts = []
        for team, rows in season_games.groupby("team", sort=False):
            for index, row in rows.iterrows():
                others = rows.drop(index)
                if others.empty:
                    continue
                opponents = list(dict.fromkeys(others["opponent"]))
                opponent_stats = self._opponent_records(team, season, opponents, opponent_cache)
                if not opponent_stats:
                    continue
                contexts.append(GameContext(
                    game=self._record_from_row(row),
                    opponent=row["opponent"],
                    team_stats=self._aggregate(team, season, others),
                    opponent_stats=tuple(opponent_stats),
                ))

        skipped = len(season_games) - len(contexts)
        if skipped:
            logger.info(f"{season}: skipped {skipped} team-games without leave-one-out context")
        return contexts
