"""Tests for team statistics records and StatsRepository."""

import logging

import numpy as np
import pandas as pd
import pytest

from src.data.team_stats import (
    InsufficientDataError,
    RawTeamGameStatistics,
    StatsRepository,
    aggregate_season,
)
from src.models.baseline import BaselineCalculator


def _stats(team="Georgia", season=2024, games_played=1, **overrides):
    values = dict(
        passing_yards=250.0,
        rushing_yards=150.0,
        total_yards=400.0,
        passing_yards_allowed=220.0,
        rushing_yards_allowed=140.0,
        total_yards_allowed=360.0,
        points_scored=30.0,
        points_allowed=20.0,
        turnovers_forced=2.0,
        turnovers_committed=1.0,
        sacks=2.0,
        field_goals=1.0,
    )
    values.update(overrides)
    return RawTeamGameStatistics(team=team, season=season, games_played=games_played, **values)


def _row(team, opponent, week, pts, opp_pts, season=2024, **overrides):
    row = {
        "season": season,
        "week": week,
        "team": team,
        "opponent": opponent,
        "passing_yards": 240.0,
        "rushing_yards": 160.0,
        "passing_yards_allowed": 220.0,
        "rushing_yards_allowed": 130.0,
        "points_scored": pts,
        "points_allowed": opp_pts,
        "turnovers_forced": 1.0,
        "turnovers_committed": 2.0,
        "sacks": 3.0,
        "field_goals": 1.0,
    }
    row.update(overrides)
    return row


def _make_games():
    """Three teams, each pair meeting once, plus one game vs an unlisted FCS team."""
    return pd.DataFrame([
        _row("Alabama", "Auburn", 1, 31.0, 17.0),
        _row("Auburn", "Alabama", 1, 17.0, 31.0),
        _row("Auburn", "LSU", 2, 24.0, 21.0),
        _row("LSU", "Auburn", 2, 21.0, 24.0),
        _row("LSU", "Alabama", 3, 14.0, 28.0),
        _row("Alabama", "LSU", 3, 28.0, 14.0),
        _row("Alabama", "Mercer", 4, 56.0, 0.0),
    ])


def _army_navy():
    """Two teams that only played each other."""
    return pd.DataFrame([
        _row("Army", "Navy", 1, 17.0, 13.0),
        _row("Navy", "Army", 1, 13.0, 17.0),
    ])


class TestRawTeamGameStatistics:
    """Record invariants and per-game normalization."""

    def test_per_game_divides_by_games_played(self):
        """Counting fields are totals over games_played."""
        stats = _stats(games_played=4, passing_yards=1000.0)
        assert stats.per_game("passing_yards") == pytest.approx(250.0)

    def test_zero_games_rejected(self):
        """games_played must be at least 1."""
        with pytest.raises(ValueError, match="games_played"):
            _stats(games_played=0)

    def test_negative_counts_rejected(self):
        """Counting fields cannot be negative."""
        with pytest.raises(ValueError, match="negative"):
            _stats(rushing_yards=-5.0)

    def test_total_yards_gap(self):
        """Gap is reported total minus passing + rushing."""
        assert _stats(total_yards=410.0).total_yards_gap == pytest.approx(10.0)

    def test_dict_roundtrip_ignores_unknown_keys(self):
        """from_dict drops columns that are not record fields."""
        data = {**_stats().to_dict(), "opponent": "Auburn", "week": 3}
        assert RawTeamGameStatistics.from_dict(data) == _stats()


class TestAggregateSeason:
    """Summing game records into a season aggregate."""

    def test_sums_fields_and_games(self):
        """Totals and games_played add up."""
        season = aggregate_season([_stats(points_scored=21.0), _stats(points_scored=35.0)])
        assert season.games_played == 2
        assert season.points_scored == pytest.approx(56.0)
        assert season.per_game("points_scored") == pytest.approx(28.0)

    def test_empty_raises(self):
        with pytest.raises(InsufficientDataError):
            aggregate_season([])

    def test_mixed_teams_rejected(self):
        with pytest.raises(ValueError, match="multiple team-seasons"):
            aggregate_season([_stats(team="Georgia"), _stats(team="Texas")])


class TestStatsRepository:
    """Season aggregates and opponent aggregates from a team-game frame."""

    def test_missing_columns_raise(self):
        """A frame without required statistics cannot be used."""
        games = _make_games().drop(columns=["points_allowed"])
        with pytest.raises(InsufficientDataError, match="points_allowed"):
            StatsRepository(games)

    def test_total_yards_derived(self):
        """total_yards defaults to passing + rushing."""
        repo = StatsRepository(_make_games())
        assert (repo.games["total_yards"] == 400.0).all()
        assert (repo.games["total_yards_allowed"] == 350.0).all()

    def test_rows_with_missing_stats_dropped(self, caplog):
        """NaN statistics drop the row with a warning."""
        games = _make_games()
        games.loc[0, "rushing_yards"] = np.nan
        with caplog.at_level(logging.WARNING):
            repo = StatsRepository(games)
        assert len(repo.games) == len(games) - 1
        assert "Dropping 1 team-game rows" in caplog.text

    def test_team_season_stats(self):
        """Season aggregate sums every game the team played."""
        repo = StatsRepository(_make_games())
        stats = repo.team_season_stats("Alabama", 2024)
        assert stats.games_played == 3
        assert stats.points_scored == pytest.approx(31.0 + 28.0 + 56.0)

    def test_unknown_team_raises(self):
        repo = StatsRepository(_make_games())
        with pytest.raises(InsufficientDataError, match="Georgia"):
            repo.team_season_stats("Georgia", 2024)

    def test_team_games_single_records(self):
        """Per-game records in week order, one game each."""
        repo = StatsRepository(_make_games())
        games = repo.team_games("Alabama", 2024)
        assert [g.points_scored for g in games] == [31.0, 28.0, 56.0]
        assert all(g.games_played == 1 for g in games)

    def test_opponents_faced_in_order(self):
        repo = StatsRepository(_make_games())
        assert repo.opponents_faced("Alabama", 2024) == ["Auburn", "LSU", "Mercer"]

    def test_opponent_stats_skip_unknown(self, caplog):
        """Opponents without their own rows are skipped."""
        repo = StatsRepository(_make_games())
        with caplog.at_level(logging.WARNING):
            records = repo.opponent_season_stats("Alabama", 2024)
        assert [r.team for r in records] == ["Auburn", "LSU"]
        assert "Mercer" in caplog.text

    def test_opponent_stats_exclude_games_against_team(self):
        """An opponent's aggregate only covers its games against other teams."""
        repo = StatsRepository(pd.DataFrame([
            _row("Georgia", "Florida", 1, 40.0, 7.0),
            _row("Florida", "Georgia", 1, 7.0, 40.0),
            _row("Florida", "Kentucky", 2, 24.0, 10.0),
            _row("Kentucky", "Florida", 2, 10.0, 24.0),
        ]))
        (florida,) = repo.opponent_season_stats("Georgia", 2024)
        assert florida.team == "Florida"
        assert florida.games_played == 1
        assert florida.points_allowed == pytest.approx(10.0)

        baseline = BaselineCalculator().calculate("Georgia", 2024, [florida])
        assert baseline.points_allowed == pytest.approx(10.0)

    def test_opponent_with_no_other_games_skipped(self, caplog):
        repo = StatsRepository(_army_navy())
        with caplog.at_level(logging.WARNING):
            assert repo.opponent_season_stats("Army", 2024) == []
        assert "Navy" in caplog.text

    def test_team_season_stats_excluding_opponent(self):
        repo = StatsRepository(_make_games())
        stats = repo.team_season_stats("Alabama", 2024, excluding_opponent="Auburn")
        assert stats.games_played == 2
        assert stats.points_scored == pytest.approx(28.0 + 56.0)

    def test_no_games_outside_excluded_opponent(self):
        repo = StatsRepository(_army_navy())
        with pytest.raises(InsufficientDataError, match="outside games against Navy"):
            repo.team_season_stats("Army", 2024, excluding_opponent="Navy")

    def test_seasons_and_teams(self):
        repo = StatsRepository(_make_games())
        assert repo.seasons() == [2024]
        assert repo.teams(2024) == ["Alabama", "Auburn", "LSU"]

    def test_from_csv(self, tmp_path):
        path = tmp_path / "games.csv"
        _make_games().to_csv(path, index=False)
        repo = StatsRepository.from_csv(path)
        assert repo.team_season_stats("LSU", 2024).games_played == 2

    def test_from_csv_missing_file(self, tmp_path):
        with pytest.raises(InsufficientDataError, match="not found"):
            StatsRepository.from_csv(tmp_path / "missing.csv")


class TestGameContexts:
    """Leave-one-out context behind each team-game."""

    def test_every_game_with_context(self):
        """Each team-game is kept once some other game and opponent remain."""
        contexts = StatsRepository(_make_games()).game_contexts(2024)
        assert len(contexts) == 7

    def test_game_left_out_of_its_own_context(self):
        contexts = StatsRepository(_make_games()).game_contexts(2024)
        context = next(
            c for c in contexts if c.game.team == "Alabama" and c.opponent == "Auburn"
        )
        assert context.game.points_scored == 31.0
        assert context.team_stats.games_played == 2
        assert context.team_stats.points_scored == pytest.approx(28.0 + 56.0)

        # Mercer has no rows; LSU is measured on its game against Auburn
        (lsu,) = context.opponent_stats
        assert lsu.team == "LSU"
        assert lsu.games_played == 1
        assert lsu.points_allowed == pytest.approx(24.0)

    def test_single_game_teams_skipped(self):
        repo = StatsRepository(_army_navy())
        assert repo.game_contexts(2024) == []


class TestHomeFlags:
    """is_home parsing."""

    def test_string_flags_parsed(self):
        games = _make_games()
        games["is_home"] = ["True", "False", "false", "1", "0", "yes", "Away"]
        repo = StatsRepository(games)
        assert repo.games["is_home"].dtype == bool
        assert repo.games["is_home"].tolist() == [True, False, False, True, False, True, False]

    def test_csv_flags_parsed(self, tmp_path):
        games = _make_games()
        games["is_home"] = ["yes", "no", "yes", "no", "no", "yes", "yes"]
        path = tmp_path / "games.csv"
        games.to_csv(path, index=False)
        repo = StatsRepository.from_csv(path)
        assert repo.games["is_home"].sum() == 4

    def test_unrecognized_flag_raises(self):
        games = _make_games()
        games["is_home"] = ["True", "False", "maybe", "1", "0", "yes", "no"]
        with pytest.raises(InsufficientDataError, match="is_home"):
            StatsRepository(games)
