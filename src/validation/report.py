"""Trace validation reports and their JSONL sink."""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from src.validation.diagnostics import Severity
from src.validation.tracer import CalculationTrace

logger = logging.getLogger(__name__)

DEFAULT_REPORT_LOG_PATH = "data/outputs/trace_reports.jsonl"

WARNING_STEP_PENALTY = 5
MAX_WARNING_PENALTY = 30
ERROR_PENALTY = 10
MAX_ERROR_PENALTY = 50

# Follow-up advice keyed by diagnostic code
CODE_RECOMMENDATIONS = {
    "TOTAL_YARDS_MISMATCH": "Reconcile total yards with passing + rushing in the source data",
    "LOW_DATA_COMPLETENESS": "Backfill missing team statistics before relying on this prediction",
    "VALUE_OUT_OF_BOUNDS": "Review opponent baselines that fall outside typical ranges",
    "EFFICIENCY_OUT_OF_BOUNDS": "Inspect efficiency inputs; values beyond +/-50 usually mean bad data",
    "EFFICIENCY_EXTREME_VALUE": "Treat extreme efficiency values with caution on small samples",
    "UNUSUAL_TOTAL_WEIGHT": "Re-run regression or reset weights to the fallback set",
    "PROBABILITY_SUM_ERROR": "Investigate win probability computation",
}


@dataclass
class TraceReport:
    """Serializable validation summary of one trace."""

    trace_id: str
    is_valid: bool
    score: int
    errors: list[dict] = field(default_factory=list)
    warnings: list[dict] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)
    total_steps: int = 0
    valid_steps: int = 0
    steps_with_warnings: int = 0

    def to_dict(self) -> dict:
        return {
            "trace_id": self.trace_id,
            "is_valid": self.is_valid,
            "score": self.score,
            "errors": self.errors,
            "warnings": self.warnings,
            "recommendations": self.recommendations,
            "timestamp": self.timestamp.isoformat(),
            "metadata": {
                "total_steps": self.total_steps,
                "valid_steps": self.valid_steps,
                "steps_with_warnings": self.steps_with_warnings,
            },
        }


def build_report(trace: CalculationTrace) -> TraceReport:
    """Score a trace from its per-step verification results.

    score = valid_steps / total_steps * 100
            - min(steps_with_warnings * 5, 30)
            - min(errors * 10, 50), floored at 0
    """
    errors = []
    warnings = []
    valid_steps = 0
    steps_with_warnings = 0
    for step in trace.steps:
        if step.validation.is_valid:
            valid_steps += 1
        if step.validation.warnings:
            steps_with_warnings += 1
        errors.extend(
            {"step_number": step.step_number, **e.to_dict()} for e in step.validation.errors
        )
        warnings.extend(
            {"step_number": step.step_number, **w.to_dict()} for w in step.validation.warnings
        )

    total = len(trace.steps)
    validity = valid_steps / total * 100 if total else 0.0
    score = max(
        0.0,
        validity
        - min(steps_with_warnings * WARNING_STEP_PENALTY, MAX_WARNING_PENALTY)
        - min(len(errors) * ERROR_PENALTY, MAX_ERROR_PENALTY),
    )

    recommendations = []
    if valid_steps < total:
        recommendations.append(
            f"{total - valid_steps} calculation steps failed validation and need review"
        )
    if steps_with_warnings:
        recommendations.append(
            f"{steps_with_warnings} steps have warnings that should be investigated"
        )
    severe = (Severity.CRITICAL.value, Severity.HIGH.value)
    if any(e["severity"] in severe for e in errors):
        recommendations.append("Critical calculation errors detected - manual review required")
    for code in dict.fromkeys(d["code"] for d in errors + warnings):
        if code in CODE_RECOMMENDATIONS:
            recommendations.append(CODE_RECOMMENDATIONS[code])

    return TraceReport(
        trace_id=trace.trace_id,
        is_valid=not errors,
        score=round(score),
        errors=errors,
        warnings=warnings,
        recommendations=recommendations,
        total_steps=total,
        valid_steps=valid_steps,
        steps_with_warnings=steps_with_warnings,
    )


class TraceReportLog:
    """Append-only JSONL sink for trace reports."""

    def __init__(self, log_path: str | Path = DEFAULT_REPORT_LOG_PATH):
        self.log_path = Path(log_path)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def append(self, report: TraceReport, trace: CalculationTrace) -> None:
        """Append a report together with its finalized trace."""
        record = {"report": report.to_dict(), "trace": trace.to_dict()}
        with open(self.log_path, "a") as f:
            f.write(json.dumps(record, default=str) + "\n")
        logger.debug(f"Logged trace report: {report.trace_id} (score {report.score})")

    def read_all(self) -> list[dict]:
        """Read all logged records."""
        if not self.log_path.exists():
            return []

        records = []
        with open(self.log_path) as f:
            for line in f:
                line = line.strip()
                if line:
                    records.append(json.loads(line))
        return records

    def read_recent(self, n: int = 10) -> list[dict]:
        """Read most recent n records."""
        return self.read_all()[-n:]
