"""Tests for calculation tracing, step verification and trace reports."""

import threading

import pytest

from src.data.team_stats import RawTeamGameStatistics
from src.models.baseline import BaselineCalculator
from src.models.efficiency import EfficiencyCalculator
from src.predictions.assembler import POINTS_PER_UNIT
from src.validation.diagnostics import Severity, ValidationResult
from src.validation.report import TraceReportLog, build_report
from src.validation.tracer import (
    STEP_TYPES,
    CalculationStep,
    CalculationTrace,
    CalculationTracer,
)
from src.validation.verifier import MathematicalVerifier
from src.weights.prediction_weights import FALLBACK_WEIGHTS


def _season(team="Georgia", **overrides):
    """Season totals over 12 games."""
    values = dict(
        team=team,
        season=2024,
        games_played=12,
        passing_yards=3000.0,
        rushing_yards=2000.0,
        total_yards=5000.0,
        passing_yards_allowed=2400.0,
        rushing_yards_allowed=1500.0,
        total_yards_allowed=3900.0,
        points_scored=400.0,
        points_allowed=250.0,
        turnovers_forced=20.0,
        turnovers_committed=14.0,
        sacks=30.0,
        field_goals=15.0,
    )
    values.update(overrides)
    return values


def _opponent(team, **overrides):
    """Opponent season totals over 10 games, per-game values in typical ranges."""
    values = _season(
        team,
        games_played=10,
        passing_yards=2300.0,
        rushing_yards=1500.0,
        total_yards=3800.0,
        passing_yards_allowed=2300.0,
        rushing_yards_allowed=1500.0,
        total_yards_allowed=3800.0,
        points_scored=260.0,
        points_allowed=260.0,
        turnovers_forced=15.0,
        turnovers_committed=15.0,
        sacks=22.0,
        field_goals=14.0,
    )
    values.update(overrides)
    return values


def _baseline_payload(opponents_by_side):
    inputs = {side: {"opponents": opps} for side, opps in opponents_by_side.items()}
    output = {}
    for side, opps in opponents_by_side.items():
        records = [RawTeamGameStatistics.from_dict(o) for o in opps]
        output[side] = BaselineCalculator().calculate(side, 2024, records).to_dict()
    return inputs, output


def _efficiency_payload(stats_by_side):
    opponents = [RawTeamGameStatistics.from_dict(_opponent("Texas"))]
    baseline = BaselineCalculator().calculate("Georgia", 2024, opponents)
    inputs = {}
    output = {}
    for side, stats in stats_by_side.items():
        profile = EfficiencyCalculator().calculate(RawTeamGameStatistics.from_dict(stats), baseline)
        inputs[side] = {"stats": stats, "baseline": baseline.to_dict()}
        output[side] = dict(profile.values)
    return inputs, output


def _weight_payload(weights, home_efficiency):
    efficiency = {
        "home": {c: home_efficiency.get(c, 0.0) for c in POINTS_PER_UNIT},
        "away": {c: 0.0 for c in POINTS_PER_UNIT},
    }
    contributions = {
        side: {c: values[c] * weights[c] * POINTS_PER_UNIT[c] for c in POINTS_PER_UNIT}
        for side, values in efficiency.items()
    }
    inputs = {
        "weights": weights,
        "points_per_unit": dict(POINTS_PER_UNIT),
        "efficiency": efficiency,
    }
    output = {
        "contributions": contributions,
        "net_advantage": sum(contributions["home"].values()) - sum(contributions["away"].values()),
    }
    return inputs, output


def _assembly_payload(raw, expected, probabilities=(0.6, 0.4), confidence=0.5):
    inputs = {
        "raw_score": {"home": raw[0], "away": raw[1]},
        "bounds": {"score_min": 0.0, "score_max": 100.0, "max_point_differential": 70.0},
    }
    output = {
        "expected_score": {"home": expected[0], "away": expected[1]},
        "win_probability": {"home": probabilities[0], "away": probabilities[1]},
        "confidence": confidence,
    }
    return inputs, output


def _codes(result):
    return [e.code for e in result.errors], [w.code for w in result.warnings]


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


# =============================================================================
# MathematicalVerifier
# =============================================================================


class TestVerifyDataExtraction:
    """Completeness, ranges and total yards consistency."""

    def test_clean_stats_pass(self):
        inputs = {"home": _season(), "away": _season("Alabama")}
        output = {"home": {"completeness": 100.0}, "away": {"completeness": 100.0}}
        result = MathematicalVerifier().verify("data_extraction", inputs, output)
        assert result.is_valid
        assert result.warnings == []

    def test_total_yards_mismatch_is_error(self):
        inputs = {"home": _season(total_yards=5050.0), "away": _season("Alabama")}
        errors, _ = _codes(MathematicalVerifier().verify_data_extraction(inputs, {}))
        assert errors == ["TOTAL_YARDS_MISMATCH"]

    def test_small_total_yards_gap_is_warning(self):
        inputs = {"home": _season(total_yards=5005.0), "away": _season("Alabama")}
        result = MathematicalVerifier().verify_data_extraction(inputs, {})
        assert result.is_valid
        assert _codes(result)[1] == ["MINOR_TOTAL_YARDS_DIFFERENCE"]

    def test_missing_side_is_critical(self):
        result = MathematicalVerifier().verify_data_extraction({"home": _season()}, {})
        assert _codes(result)[0] == ["MISSING_TEAM_DATA"]
        assert result.has_critical

    def test_value_out_of_range(self):
        inputs = {"home": _season(games_played=25), "away": _season("Alabama")}
        result = MathematicalVerifier().verify_data_extraction(inputs, {})
        assert _codes(result)[0] == ["VALUE_OUT_OF_RANGE"]
        assert result.errors[0].details["field"] == "games_played"

    def test_low_completeness_warns(self):
        stats = _season()
        del stats["points_scored"], stats["points_allowed"]
        result = MathematicalVerifier().verify_data_extraction(
            {"home": stats, "away": _season("Alabama")}, {}
        )
        assert result.is_valid
        assert _codes(result)[1] == ["LOW_DATA_COMPLETENESS"]
        assert result.warnings[0].details["missing_fields"] == ["points_scored", "points_allowed"]

    def test_misreported_completeness(self):
        inputs = {"home": _season(), "away": _season("Alabama")}
        output = {"home": {"completeness": 90.0}, "away": {"completeness": 100.0}}
        errors, _ = _codes(MathematicalVerifier().verify_data_extraction(inputs, output))
        assert errors == ["CALCULATION_ERROR"]


class TestVerifyBaseline:
    """Baselines are recomputed from the recorded opponents."""

    def test_consistent_baseline_passes(self):
        inputs, output = _baseline_payload({
            "home": [_opponent("Texas"), _opponent("Auburn", passing_yards_allowed=2500.0)],
            "away": [_opponent("LSU")],
        })
        result = MathematicalVerifier().verify_baseline_calculation(inputs, output)
        assert result.is_valid
        assert result.warnings == []

    def test_tampered_average_is_error(self):
        inputs, output = _baseline_payload({
            "home": [_opponent("Texas")],
            "away": [_opponent("LSU")],
        })
        output["home"]["passing_yards_allowed"] += 5.0
        result = MathematicalVerifier().verify_baseline_calculation(inputs, output)
        assert _codes(result)[0] == ["CALCULATION_ERROR"]
        assert result.errors[0].details["field"] == "passing_yards_allowed"

    def test_atypical_average_warns(self):
        """70 points allowed per game is outside the typical range."""
        inputs, output = _baseline_payload({
            "home": [_opponent("Texas", points_allowed=700.0)],
            "away": [_opponent("LSU")],
        })
        result = MathematicalVerifier().verify_baseline_calculation(inputs, output)
        assert result.is_valid
        assert _codes(result)[1] == ["VALUE_OUT_OF_BOUNDS"]

    def test_no_opponents_is_critical(self):
        inputs, output = _baseline_payload({"away": [_opponent("LSU")]})
        inputs["home"] = {"opponents": []}
        result = MathematicalVerifier().verify_baseline_calculation(inputs, output)
        assert _codes(result)[0] == ["INSUFFICIENT_OPPONENT_DATA"]
        assert result.has_critical


class TestVerifyEfficiency:
    """Differentials are recomputed from stats and baseline."""

    def test_consistent_profile_passes(self):
        inputs, output = _efficiency_payload({"home": _season(), "away": _season("Alabama")})
        result = MathematicalVerifier().verify_efficiency_calculation(inputs, output)
        assert result.is_valid
        assert result.warnings == []

    def test_tampered_value_is_error(self):
        inputs, output = _efficiency_payload({"home": _season(), "away": _season("Alabama")})
        output["away"]["turnover_margin"] = 3.0
        result = MathematicalVerifier().verify_efficiency_calculation(inputs, output)
        assert _codes(result)[0] == ["EFFICIENCY_CALCULATION_ERROR"]
        assert result.errors[0].details["category"] == "turnover_margin"

    def test_beyond_limit_is_error(self):
        """300 passing yards per game against a 230 baseline is +70."""
        inputs, output = _efficiency_payload({
            "home": _season(passing_yards=3600.0, total_yards=5600.0),
            "away": _season("Alabama"),
        })
        errors, _ = _codes(MathematicalVerifier().verify_efficiency_calculation(inputs, output))
        assert errors == ["EFFICIENCY_OUT_OF_BOUNDS"]

    def test_extreme_value_warns(self):
        inputs, output = _efficiency_payload({
            "home": _season(passing_yards=3300.0, total_yards=5300.0),
            "away": _season("Alabama"),
        })
        result = MathematicalVerifier().verify_efficiency_calculation(inputs, output)
        assert result.is_valid
        assert _codes(result)[1] == ["EFFICIENCY_EXTREME_VALUE"]

    def test_missing_inputs_is_critical(self):
        result = MathematicalVerifier().verify_efficiency_calculation({}, {})
        assert _codes(result)[0] == ["MISSING_EFFICIENCY_INPUTS", "MISSING_EFFICIENCY_INPUTS"]


class TestVerifyWeightApplication:
    """Contributions and net advantage are recomputed."""

    def test_consistent_contributions_pass(self):
        inputs, output = _weight_payload(
            FALLBACK_WEIGHTS.to_dict(), {"passing_offense": 10.0, "scoring_efficiency": 3.0}
        )
        result = MathematicalVerifier().verify_weight_application(inputs, output)
        assert result.is_valid
        assert result.warnings == []

    def test_wrong_net_advantage(self):
        inputs, output = _weight_payload(FALLBACK_WEIGHTS.to_dict(), {"passing_offense": 10.0})
        output["net_advantage"] += 1.0
        errors, _ = _codes(MathematicalVerifier().verify_weight_application(inputs, output))
        assert errors == ["NET_ADVANTAGE_ERROR"]

    def test_wrong_contribution(self):
        inputs, output = _weight_payload(FALLBACK_WEIGHTS.to_dict(), {"passing_offense": 10.0})
        output["contributions"]["home"]["passing_offense"] = 5.0
        errors, _ = _codes(MathematicalVerifier().verify_weight_application(inputs, output))
        assert "WEIGHT_CALCULATION_ERROR" in errors

    def test_invalid_weight(self):
        weights = {**FALLBACK_WEIGHTS.to_dict(), "special_teams": 2.5}
        inputs, output = _weight_payload(weights, {"special_teams": 0.2})
        result = MathematicalVerifier().verify_weight_application(inputs, output)
        assert _codes(result)[0] == ["INVALID_WEIGHT"]
        assert result.errors[0].details["category"] == "special_teams"

    def test_unusual_total_weight_warns(self):
        weights = {c: 0.01 for c in POINTS_PER_UNIT}
        inputs, output = _weight_payload(weights, {})
        result = MathematicalVerifier().verify_weight_application(inputs, output)
        assert result.is_valid
        assert _codes(result)[1] == ["UNUSUAL_TOTAL_WEIGHT"]


class TestVerifyPredictionAssembly:
    """Probabilities, score ranges and boundary logic."""

    def test_consistent_prediction_passes(self):
        inputs, output = _assembly_payload((27.0, 21.0), (27.0, 21.0))
        assert MathematicalVerifier().verify_prediction_assembly(inputs, output).is_valid

    def test_probabilities_must_sum_to_one(self):
        inputs, output = _assembly_payload((27.0, 21.0), (27.0, 21.0), probabilities=(0.6, 0.5))
        errors, _ = _codes(MathematicalVerifier().verify_prediction_assembly(inputs, output))
        assert errors == ["PROBABILITY_SUM_ERROR"]

    def test_differential_over_cap(self):
        inputs, output = _assembly_payload((95.0, 5.0), (95.0, 5.0))
        errors, _ = _codes(MathematicalVerifier().verify_prediction_assembly(inputs, output))
        assert "BOUNDARY_VIOLATION" in errors

    def test_correctly_capped_scores_pass(self):
        inputs, output = _assembly_payload((95.0, 5.0), (85.0, 15.0))
        assert MathematicalVerifier().verify_prediction_assembly(inputs, output).is_valid

    def test_wrong_boundary_result(self):
        inputs, output = _assembly_payload((105.0, 20.0), (90.0, 20.0))
        errors, _ = _codes(MathematicalVerifier().verify_prediction_assembly(inputs, output))
        assert set(errors) == {"BOUNDARY_CALCULATION_ERROR"}

    def test_confidence_out_of_range(self):
        inputs, output = _assembly_payload((27.0, 21.0), (27.0, 21.0), confidence=1.4)
        errors, _ = _codes(MathematicalVerifier().verify_prediction_assembly(inputs, output))
        assert errors == ["INVALID_PREDICTION_VALUE"]


class TestVerifierDispatch:
    """Step type routing."""

    def test_step_types_match_tracer(self):
        assert MathematicalVerifier().step_types == STEP_TYPES

    def test_unknown_step_type_raises(self):
        with pytest.raises(ValueError, match="No verification defined"):
            MathematicalVerifier().verify("travel_adjustment", {}, {})


# =============================================================================
# CalculationTracer
# =============================================================================


def _extraction_step(tracer, trace_id):
    return tracer.add_step(
        trace_id,
        "data_extraction",
        "Extract season statistics",
        "completeness = present / required * 100",
        inputs={"home": _season(), "away": _season("Alabama")},
        output={"home": {"completeness": 100.0}, "away": {"completeness": 100.0}},
    )


class TestCalculationTracer:
    """Trace lifecycle and registry housekeeping."""

    def test_steps_numbered_and_verified(self):
        tracer = CalculationTracer()
        trace_id = tracer.start_trace("Georgia", "Alabama", 2024)
        first = _extraction_step(tracer, trace_id)
        second = _extraction_step(tracer, trace_id)
        assert (first.step_number, second.step_number) == (1, 2)
        assert first.validation.is_valid
        assert tracer.get_trace(trace_id).step_types == ["data_extraction", "data_extraction"]

    def test_invalid_step_recorded_with_errors(self):
        """Bad values are reported on the step, not raised."""
        tracer = CalculationTracer()
        trace_id = tracer.start_trace("Georgia", "Alabama", 2024)
        step = tracer.add_step(
            trace_id, "data_extraction", "Extract", "",
            inputs={"home": _season(total_yards=6000.0), "away": _season("Alabama")},
            output={},
        )
        assert not step.validation.is_valid

    def test_complete_releases_trace(self):
        tracer = CalculationTracer()
        trace_id = tracer.start_trace("Georgia", "Alabama", 2024, game_id="401628374")
        _extraction_step(tracer, trace_id)
        trace = tracer.complete_trace(trace_id, {"spread": 6.0})
        assert trace.is_complete
        assert trace.final_prediction == {"spread": 6.0}
        assert trace.trace_id == "2024-Alabama-at-Georgia-401628374"
        assert tracer.active_count == 0
        with pytest.raises(ValueError, match="No open trace"):
            tracer.complete_trace(trace_id, {})

    def test_unknown_trace_raises(self):
        with pytest.raises(ValueError, match="No open trace"):
            _extraction_step(CalculationTracer(), "missing")

    def test_unknown_step_type_raises(self):
        tracer = CalculationTracer()
        trace_id = tracer.start_trace("Georgia", "Alabama", 2024)
        with pytest.raises(ValueError, match="Unknown step type"):
            tracer.add_step(trace_id, "weather", "", "", {}, {})

    def test_duplicate_game_id_rejected(self):
        tracer = CalculationTracer()
        tracer.start_trace("Georgia", "Alabama", 2024, game_id="g1")
        with pytest.raises(ValueError, match="already open"):
            tracer.start_trace("Georgia", "Alabama", 2024, game_id="g1")

    def test_discard(self):
        tracer = CalculationTracer()
        trace_id = tracer.start_trace("Georgia", "Alabama", 2024)
        tracer.discard_trace(trace_id)
        assert tracer.get_trace(trace_id) is None

    def test_abandoned_traces_expire(self):
        """Traces older than the TTL are evicted on the next start."""
        clock = _Clock()
        tracer = CalculationTracer(ttl_seconds=60.0, clock=clock)
        stale = tracer.start_trace("Georgia", "Alabama", 2024)
        clock.now = 61.0
        fresh = tracer.start_trace("Texas", "Oklahoma", 2024)
        assert tracer.get_trace(stale) is None
        assert tracer.get_trace(fresh) is not None
        assert tracer.active_count == 1

    def test_full_registry_evicts_oldest(self):
        clock = _Clock()
        tracer = CalculationTracer(max_active_traces=2, clock=clock)
        ids = []
        for i, home in enumerate(["Georgia", "Texas", "Oregon"]):
            clock.now = float(i)
            ids.append(tracer.start_trace(home, "Alabama", 2024))
        assert tracer.active_count == 2
        assert tracer.get_trace(ids[0]) is None
        assert tracer.get_trace(ids[2]) is not None

    def test_concurrent_traces(self):
        """Traces opened and completed from many threads never collide."""
        tracer = CalculationTracer()
        workers, per_worker = 8, 25
        start = threading.Barrier(workers)
        completed = [[] for _ in range(workers)]

        def run(n):
            start.wait()
            for i in range(per_worker):
                trace_id = tracer.start_trace(f"Team {n}", "Alabama", 2024)
                _extraction_step(tracer, trace_id)
                completed[n].append(tracer.complete_trace(trace_id, {"worker": n, "game": i}))

        threads = [threading.Thread(target=run, args=(n,)) for n in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        traces = [trace for batch in completed for trace in batch]
        assert len(traces) == workers * per_worker
        assert len({trace.trace_id for trace in traces}) == len(traces)
        assert all(trace.step_types == ["data_extraction"] for trace in traces)
        assert tracer.active_count == 0


# =============================================================================
# Reports
# =============================================================================


def _result(errors=0, warnings=0):
    result = ValidationResult()
    for i in range(errors):
        result.add_error("CALCULATION_ERROR", f"error {i}", "baseline_calculator")
    for i in range(warnings):
        result.add_warning("TOTAL_YARDS_MISMATCH", f"warning {i}", "data_extraction")
    return result


def _trace(results, trace_id="2024-Alabama-at-Georgia-1"):
    steps = [
        CalculationStep(
            step_number=i + 1,
            step_type=step_type,
            description="",
            formula="",
            inputs={},
            output={},
            validation=result,
        )
        for i, (step_type, result) in enumerate(zip(STEP_TYPES, results))
    ]
    return CalculationTrace(
        trace_id=trace_id, home_team="Georgia", away_team="Alabama", season=2024, steps=steps
    )


class TestBuildReport:
    """Scoring and recommendations from per-step results."""

    def test_clean_trace_scores_100(self):
        report = build_report(_trace([_result() for _ in STEP_TYPES]))
        assert report.is_valid
        assert report.score == 100
        assert report.recommendations == []

    def test_score_penalties(self):
        """4/5 valid steps, one warning step, one error: 80 - 5 - 10."""
        results = [_result(), _result(warnings=1), _result(errors=1), _result(), _result()]
        report = build_report(_trace(results))
        assert report.score == 65
        assert not report.is_valid
        assert (report.total_steps, report.valid_steps, report.steps_with_warnings) == (5, 4, 1)
        assert report.errors[0]["step_number"] == 3
        assert report.warnings[0]["step_number"] == 2

    def test_penalties_capped_and_floored(self):
        results = [_result(errors=3, warnings=2) for _ in STEP_TYPES]
        report = build_report(_trace(results))
        assert report.score == 0

    def test_recommendations(self):
        results = [_result(), _result(warnings=1), _result(errors=1), _result(), _result()]
        recommendations = build_report(_trace(results)).recommendations
        assert recommendations[0] == "1 calculation steps failed validation and need review"
        assert recommendations[1] == "1 steps have warnings that should be investigated"
        assert "Critical calculation errors detected - manual review required" in recommendations
        assert (
            "Reconcile total yards with passing + rushing in the source data" in recommendations
        )

    def test_errors_carry_severity(self):
        result = ValidationResult()
        result.add_error("MISSING_TEAM_DATA", "gone", "data_extraction", Severity.CRITICAL)
        report = build_report(_trace([result]))
        assert report.errors[0]["severity"] == "critical"


class TestTraceReportLog:
    """JSONL persistence of reports and traces."""

    def test_append_and_read(self, tmp_path):
        log = TraceReportLog(tmp_path / "outputs" / "reports.jsonl")
        for i in range(3):
            trace = _trace([_result() for _ in STEP_TYPES], trace_id=f"trace-{i}")
            log.append(build_report(trace), trace)

        records = log.read_all()
        assert len(records) == 3
        assert records[0]["report"]["score"] == 100
        assert len(records[0]["trace"]["steps"]) == len(STEP_TYPES)
        recent = log.read_recent(2)
        assert [r["report"]["trace_id"] for r in recent] == ["trace-1", "trace-2"]

    def test_missing_log_reads_empty(self, tmp_path):
        assert TraceReportLog(tmp_path / "none.jsonl").read_all() == []
