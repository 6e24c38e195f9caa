"""Public entry points of the efficiency weighting engine.

PredictionEngine wires the statistics repository, baseline and efficiency
calculators, regression engine, weight manager, assembler and tracer into
the operations external callers use:

    get_current_weights / get_weight_history
    perform_regression_analysis / update_weights_from_regression
    predict / trace_and_validate
    evaluate_season
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Optional

import pandas as pd

from config.settings import Settings, get_settings
from src.data.team_stats import (
    STAT_FIELDS,
    InsufficientDataError,
    RawTeamGameStatistics,
    StatsRepository,
)
from src.models.baseline import BaselineCalculator, OpponentBaseline
from src.models.efficiency import EfficiencyCalculator, EfficiencyProfile
from src.models.regression import (
    OUTCOME_COLUMN,
    REGRESSION_METRICS,
    AccuracyReport,
    InsufficientSampleSizeError,
    RegressionAnalysis,
    RegressionEngine,
    evaluate_predictions,
)
from src.predictions.assembler import POINTS_PER_UNIT, Prediction, PredictionAssembler
from src.validation.report import TraceReport, TraceReportLog, build_report
from src.validation.tracer import CalculationTrace, CalculationTracer
from src.weights.history import SOURCE_FALLBACK, WeightChange
from src.weights.manager import WeightManager
from src.weights.prediction_weights import PredictionWeights, WeightValidationError

logger = logging.getLogger(__name__)


@dataclass
class WeightUpdateOutcome:
    """Result of trying to refresh a season's weights from regression.

    When fallback_used is True the previous (last known-good) weights are
    still current and fallback_reason says why.
    """

    season: int
    weights: PredictionWeights
    applied: bool
    fallback_used: bool
    fallback_reason: Optional[str] = None
    analysis: Optional[RegressionAnalysis] = None
    change: Optional[WeightChange] = None

    def to_dict(self) -> dict:
        return {
            "season": self.season,
            "weights": self.weights.to_dict(),
            "applied": self.applied,
            "fallback_used": self.fallback_used,
            "fallback_reason": self.fallback_reason,
            "analysis": self.analysis.to_dict() if self.analysis else None,
            "version": self.change.version if self.change else None,
        }


@dataclass
class TracedPrediction:
    """A prediction together with its finalized trace and validation report."""

    prediction: Prediction
    trace: CalculationTrace
    report: TraceReport = field(repr=False)


@dataclass
class _MatchupInputs:
    stats: dict[str, RawTeamGameStatistics]
    opponents: dict[str, list[RawTeamGameStatistics]]
    baselines: dict[str, OpponentBaseline]
    profiles: dict[str, EfficiencyProfile]


def data_completeness(stats: RawTeamGameStatistics) -> float:
    """Percent of counting fields (plus games played) holding finite numbers."""
    names = STAT_FIELDS + ("games_played",)
    present = sum(1 for n in names if math.isfinite(getattr(stats, n)))
    return present / len(names) * 100


class PredictionEngine:
    """Season-level regression and per-matchup prediction."""

    def __init__(
        self,
        repository: StatsRepository,
        weight_manager: WeightManager,
        regression_engine: Optional[RegressionEngine] = None,
        assembler: Optional[PredictionAssembler] = None,
        tracer: Optional[CalculationTracer] = None,
        report_log: Optional[TraceReportLog] = None,
        baseline_calculator: Optional[BaselineCalculator] = None,
        efficiency_calculator: Optional[EfficiencyCalculator] = None,
    ):
        self.repository = repository
        self.weight_manager = weight_manager
        self.regression_engine = regression_engine or RegressionEngine()
        self.assembler = assembler or PredictionAssembler()
        self.tracer = tracer or CalculationTracer()
        self.report_log = report_log
        self.baseline_calculator = baseline_calculator or BaselineCalculator()
        self.efficiency_calculator = efficiency_calculator or EfficiencyCalculator()

    @classmethod
    def from_settings(
        cls, repository: StatsRepository, settings: Optional[Settings] = None
    ) -> "PredictionEngine":
        """Build an engine with every component configured from settings."""
        settings = settings or get_settings()
        errors = settings.validate()
        if errors:
            raise ValueError(f"Invalid settings: {'; '.join(errors)}")

        return cls(
            repository=repository,
            weight_manager=WeightManager.from_settings(settings),
            regression_engine=RegressionEngine.from_settings(settings),
            assembler=PredictionAssembler.from_settings(settings),
            tracer=CalculationTracer.from_settings(settings),
            report_log=TraceReportLog(settings.report_log_path),
            efficiency_calculator=EfficiencyCalculator(settings.extreme_efficiency_threshold),
        )

    # =========================================================================
    # Weights
    # =========================================================================

    def get_current_weights(self, season: int) -> PredictionWeights:
        return self.weight_manager.get_current_weights(season)

    def get_weight_history(self, season: int, limit: Optional[int] = 10) -> list[WeightChange]:
        return self.weight_manager.get_weight_history(season, limit)

    def _model_context(self, season: int) -> tuple[float, int, Optional[str]]:
        """(R², sample size, fallback reason) behind the current weights.

        Only the newest entry decides whether fallback weights are in force.
        Manual entries report the regression they were layered on, if any.
        """
        history = self.weight_manager.get_weight_history(season, limit=None)
        if history and history[0].source == SOURCE_FALLBACK:
            return 0.0, 0, f"Using fallback weights: {history[0].reason}"

        for entry in history:
            if entry.regression_metrics is not None:
                metrics = entry.regression_metrics
                return metrics.r_squared, metrics.sample_size, None
            if entry.source == SOURCE_FALLBACK:
                break
        return 0.0, 0, None

    # =========================================================================
    # Regression
    # =========================================================================

    def build_observations(self, season: int) -> pd.DataFrame:
        """One row per team-game: season efficiency metrics and points scored.

        The metrics come from the team's efficiency profile over its other
        games, against a baseline of what those opponents allowed to other
        opponents. The game being explained never feeds its own predictors.
        """
        rows = []
        for context in self.repository.game_contexts(season):
            team = context.game.team
            baseline = self.baseline_calculator.calculate(
                team, season, list(context.opponent_stats)
            )
            profile = self.efficiency_calculator.calculate(context.team_stats, baseline)
            row = {
                "season": season,
                "team": team,
                "opponent": context.opponent,
                "game_id": context.game.game_id,
                OUTCOME_COLUMN: context.game.points_scored,
            }
            row.update({
                metric: profile[category] for metric, category in REGRESSION_METRICS.items()
            })
            rows.append(row)

        columns = ["season", "team", "opponent", "game_id", OUTCOME_COLUMN]
        columns += list(REGRESSION_METRICS)
        return pd.DataFrame(rows, columns=columns)

    def perform_regression_analysis(self, season: int) -> RegressionAnalysis:
        """Fit the season's efficiency metrics against points scored.

        Raises:
            InsufficientSampleSizeError: Too few completed team-games
        """
        observations = self.build_observations(season)
        logger.info(f"{season}: {len(observations)} team-game observations for regression")
        return self.regression_engine.analyze(observations, season)

    def update_weights_from_regression(
        self, season: int, actor_id: Optional[str] = None
    ) -> WeightUpdateOutcome:
        """Run regression and record derived weights.

        Regression or validation failures keep the last known-good weights
        and report the fallback. Persistence failures propagate.
        """
        analysis = None
        try:
            analysis = self.perform_regression_analysis(season)
            change = self.weight_manager.update_from_regression(season, analysis, actor_id)
        except (InsufficientSampleSizeError, WeightValidationError, ValueError) as e:
            reason = f"Regression update failed ({type(e).__name__}: {e}); kept previous weights"
            logger.warning(f"{season}: {reason}")
            return WeightUpdateOutcome(
                season=season,
                weights=self.weight_manager.get_current_weights(season),
                applied=False,
                fallback_used=True,
                fallback_reason=reason,
                analysis=analysis,
            )

        return WeightUpdateOutcome(
            season=season,
            weights=change.weights,
            applied=True,
            fallback_used=False,
            analysis=analysis,
            change=change,
        )

    # =========================================================================
    # Prediction
    # =========================================================================

    def _gather(
        self, season: int, home_team: str, away_team: str, trace_id: Optional[str]
    ) -> _MatchupInputs:
        teams = {"home": home_team, "away": away_team}

        stats = {side: self.repository.team_season_stats(t, season) for side, t in teams.items()}
        if trace_id:
            self.tracer.add_step(
                trace_id,
                "data_extraction",
                "Extract season statistics for both teams",
                "completeness = present_fields / required_fields * 100",
                inputs={side: s.to_dict() for side, s in stats.items()},
                output={side: {"completeness": data_completeness(s)} for side, s in stats.items()},
            )

        opponents = {
            side: self.repository.opponent_season_stats(t, season) for side, t in teams.items()
        }
        baselines = {}
        for side, team in teams.items():
            baseline = self.baseline_calculator.calculate(team, season, opponents[side])
            if baseline is None:
                raise InsufficientDataError(
                    f"{team} {season}: no opponent statistics to build a baseline"
                )
            baselines[side] = baseline
        if trace_id:
            self.tracer.add_step(
                trace_id,
                "baseline_calculation",
                "Average what each team's opponents allow to other opponents",
                "baseline[f] = sum(opponent[f] / opponent.games_played) / opponent_count",
                inputs={
                    side: {"opponents": [o.to_dict() for o in opps]}
                    for side, opps in opponents.items()
                },
                output={side: b.to_dict() for side, b in baselines.items()},
            )

        profiles = {
            side: self.efficiency_calculator.calculate(stats[side], baselines[side])
            for side in teams
        }
        if trace_id:
            self.tracer.add_step(
                trace_id,
                "efficiency_calculation",
                "Compare per-game production with the opponent baseline",
                "offense: value - baseline; defense: baseline - value_allowed",
                inputs={
                    side: {"stats": stats[side].to_dict(), "baseline": baselines[side].to_dict()}
                    for side in teams
                },
                output={side: dict(p.values) for side, p in profiles.items()},
            )

        return _MatchupInputs(stats, opponents, baselines, profiles)

    def _predict(
        self,
        season: int,
        home_team: str,
        away_team: str,
        neutral_site: bool,
        trace_id: Optional[str] = None,
    ) -> Prediction:
        inputs = self._gather(season, home_team, away_team, trace_id)
        weights = self.weight_manager.get_current_weights(season)
        r_squared, sample_size, fallback_reason = self._model_context(season)

        prediction = self.assembler.assemble(
            season,
            weights,
            home=(
                inputs.profiles["home"],
                inputs.baselines["home"],
                inputs.stats["away"].per_game("points_allowed"),
            ),
            away=(
                inputs.profiles["away"],
                inputs.baselines["away"],
                inputs.stats["home"].per_game("points_allowed"),
            ),
            model_r_squared=r_squared,
            sample_size=sample_size,
            neutral_site=neutral_site,
        )
        prediction.fallback_reason = fallback_reason

        if trace_id:
            self.tracer.add_step(
                trace_id,
                "weight_application",
                "Apply current weights to each category's efficiency",
                "contribution = efficiency * weight * points_per_unit; "
                "net = sum(home) - sum(away)",
                inputs={
                    "weights": weights.to_dict(),
                    "points_per_unit": dict(POINTS_PER_UNIT),
                    "efficiency": {side: dict(p.values) for side, p in inputs.profiles.items()},
                },
                output={
                    "contributions": {
                        side: {c.category: c.contribution for c in b.contributions}
                        for side, b in prediction.breakdown.items()
                    },
                    "net_advantage": prediction.net_advantage,
                },
            )
            self.tracer.add_step(
                trace_id,
                "prediction_assembly",
                "Bound scores, then derive confidence and win probability",
                "score = base + offense - opponent defense (+ hfa); "
                "p_home = clamp(0.5 + (logistic(k * diff) - 0.5) * confidence)",
                inputs={
                    "raw_score": dict(prediction.raw_score),
                    "bounds": {
                        "score_min": self.assembler.score_min,
                        "score_max": self.assembler.score_max,
                        "max_point_differential": self.assembler.max_point_differential,
                    },
                },
                output={
                    "expected_score": dict(prediction.expected_score),
                    "win_probability": dict(prediction.win_probability),
                    "confidence": prediction.confidence,
                },
            )

        return prediction

    def predict(
        self,
        season: int,
        home_team: str,
        away_team: str,
        neutral_site: bool = False,
    ) -> Prediction:
        """Predict one matchup with the season's current weights.

        Raises:
            InsufficientDataError: Missing statistics for either team or
                their opponents
        """
        prediction = self._predict(season, home_team, away_team, neutral_site)
        logger.info(
            f"{season} {away_team} @ {home_team}: "
            f"{prediction.expected_score['home']:.1f}-{prediction.expected_score['away']:.1f} "
            f"(P(home)={prediction.win_probability['home']:.2f}, "
            f"conf={prediction.confidence:.2f})"
        )
        return prediction

    def trace_and_validate(
        self,
        season: int,
        home_team: str,
        away_team: str,
        game_id: Optional[str] = None,
        neutral_site: bool = False,
    ) -> TracedPrediction:
        """Predict with a full calculation trace and verification report.

        The finalized trace and report are appended to the report log when
        one is configured.
        """
        trace_id = self.tracer.start_trace(home_team, away_team, season, game_id)
        try:
            prediction = self._predict(season, home_team, away_team, neutral_site, trace_id)
        except Exception:
            self.tracer.discard_trace(trace_id)
            raise

        trace = self.tracer.complete_trace(trace_id, prediction.to_dict())
        report = build_report(trace)
        if self.report_log is not None:
            self.report_log.append(report, trace)

        log = logger.info if report.is_valid else logger.warning
        log(
            f"Trace {trace_id}: score {report.score}, {len(report.errors)} errors, "
            f"{len(report.warnings)} warnings"
        )
        return TracedPrediction(prediction=prediction, trace=trace, report=report)

    # =========================================================================
    # Evaluation
    # =========================================================================

    def evaluate_season(self, season: int) -> AccuracyReport:
        """Predict every completed game of a season and score the results.

        Uses end-of-season statistics, so this measures in-sample fit rather
        than out-of-sample accuracy.
        """
        games = self.repository.games
        games = games[games["season"] == season]
        # Without home/away flags every game is scored from both sides
        if "is_home" in games.columns:
            home_rows = games[games["is_home"]]
        else:
            home_rows = games

        predictions = []
        actuals = []
        for _, row in home_rows.iterrows():
            try:
                prediction = self._predict(season, row["team"], row["opponent"], neutral_site=False)
            except InsufficientDataError as e:
                logger.warning(f"{season}: skipping {row['opponent']} @ {row['team']}: {e}")
                continue
            predictions.append({
                "home_score": prediction.expected_score["home"],
                "away_score": prediction.expected_score["away"],
                "home_win_probability": prediction.win_probability["home"],
                "confidence": prediction.confidence,
            })
            actuals.append({"home_score": row["points_scored"], "away_score": row["points_allowed"]})

        report = evaluate_predictions(predictions, actuals)
        logger.info(
            f"{season} evaluation: {report.sample_size} games, accuracy {report.accuracy:.3f}, "
            f"MAE {report.mean_absolute_error:.2f}, calibration {report.calibration:.3f}"
        )
        return report
