"""Step-by-step calculation traces for individual predictions.

A trace is opened per prediction, receives one CalculationStep per pipeline
stage in calculation order, and is removed from the registry when completed.
Each step is checked by MathematicalVerifier as it is recorded.

The registry is shared and protected by a lock. A trace's own step list is
only touched by the caller that opened it. Traces that are never completed
are evicted once they outlive the TTL (or when the registry is full).
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from src.validation.diagnostics import ValidationResult
from src.validation.verifier import MathematicalVerifier

logger = logging.getLogger(__name__)

# Pipeline stages in the order a prediction runs them
STEP_TYPES = (
    "data_extraction",
    "baseline_calculation",
    "efficiency_calculation",
    "weight_application",
    "prediction_assembly",
)


@dataclass
class CalculationStep:
    """One recorded stage of a calculation."""

    step_number: int
    step_type: str
    description: str
    formula: str
    inputs: dict[str, Any]
    output: dict[str, Any]
    validation: ValidationResult
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "step_number": self.step_number,
            "step_type": self.step_type,
            "description": self.description,
            "formula": self.formula,
            "inputs": self.inputs,
            "output": self.output,
            "validation": self.validation.to_dict(),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class CalculationTrace:
    """Ordered record of every step behind one prediction."""

    trace_id: str
    home_team: str
    away_team: str
    season: int
    game_id: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.now)
    steps: list[CalculationStep] = field(default_factory=list)
    final_prediction: Optional[dict] = None
    completed_at: Optional[datetime] = None

    @property
    def is_complete(self) -> bool:
        return self.completed_at is not None

    @property
    def step_types(self) -> list[str]:
        return [s.step_type for s in self.steps]

    def to_dict(self) -> dict:
        return {
            "trace_id": self.trace_id,
            "home_team": self.home_team,
            "away_team": self.away_team,
            "season": self.season,
            "game_id": self.game_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "steps": [s.to_dict() for s in self.steps],
            "final_prediction": self.final_prediction,
        }


class CalculationTracer:
    """Registry of in-flight traces."""

    def __init__(
        self,
        verifier: Optional[MathematicalVerifier] = None,
        ttl_seconds: float = 3600.0,
        max_active_traces: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.verifier = verifier or MathematicalVerifier()
        self.ttl_seconds = ttl_seconds
        self.max_active_traces = max_active_traces
        self.clock = clock
        self._lock = threading.Lock()
        self._traces: dict[str, tuple[CalculationTrace, float]] = {}

    @classmethod
    def from_settings(cls, settings) -> "CalculationTracer":
        return cls(
            ttl_seconds=settings.trace_ttl_seconds,
            max_active_traces=settings.max_active_traces,
        )

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._traces)

    def _evict_locked(self) -> None:
        """Drop expired traces, then the oldest ones if the registry is full."""
        now = self.clock()
        expired = [
            trace_id for trace_id, (_, opened) in self._traces.items()
            if now - opened > self.ttl_seconds
        ]
        for trace_id in expired:
            del self._traces[trace_id]
            logger.warning(f"Evicted abandoned trace {trace_id} after {self.ttl_seconds:g}s")

        overflow = len(self._traces) - self.max_active_traces + 1
        if overflow > 0:
            oldest = sorted(self._traces, key=lambda t: self._traces[t][1])[:overflow]
            for trace_id in oldest:
                del self._traces[trace_id]
                logger.warning(f"Evicted trace {trace_id}: registry full")

    def start_trace(
        self,
        home_team: str,
        away_team: str,
        season: int,
        game_id: Optional[str] = None,
    ) -> str:
        """Open a trace and return its id."""
        trace_id = f"{season}-{away_team}-at-{home_team}-{game_id or uuid.uuid4().hex[:8]}"
        trace = CalculationTrace(
            trace_id=trace_id,
            home_team=home_team,
            away_team=away_team,
            season=season,
            game_id=game_id,
        )
        with self._lock:
            self._evict_locked()
            if trace_id in self._traces:
                raise ValueError(f"Trace {trace_id} is already open")
            self._traces[trace_id] = (trace, self.clock())
        logger.debug(f"Started trace {trace_id}")
        return trace_id

    def _get_open(self, trace_id: str) -> CalculationTrace:
        with self._lock:
            entry = self._traces.get(trace_id)
        if entry is None:
            raise ValueError(f"No open trace with id {trace_id}")
        return entry[0]

    def get_trace(self, trace_id: str) -> Optional[CalculationTrace]:
        with self._lock:
            entry = self._traces.get(trace_id)
        return entry[0] if entry else None

    def add_step(
        self,
        trace_id: str,
        step_type: str,
        description: str,
        formula: str,
        inputs: dict[str, Any],
        output: dict[str, Any],
    ) -> CalculationStep:
        """Record and verify the next step of a trace.

        Raises:
            ValueError: Unknown trace id or step type
        """
        if step_type not in STEP_TYPES:
            raise ValueError(f"Unknown step type '{step_type}', expected one of {STEP_TYPES}")

        trace = self._get_open(trace_id)
        step = CalculationStep(
            step_number=len(trace.steps) + 1,
            step_type=step_type,
            description=description,
            formula=formula,
            inputs=inputs,
            output=output,
            validation=self.verifier.verify(step_type, inputs, output),
        )
        trace.steps.append(step)
        logger.debug(
            f"{trace_id} step {step.step_number} {step_type}: "
            f"{len(step.validation.errors)} errors, {len(step.validation.warnings)} warnings"
        )
        return step

    def discard_trace(self, trace_id: str) -> None:
        """Drop an open trace without finalizing it."""
        with self._lock:
            self._traces.pop(trace_id, None)
        logger.debug(f"Discarded trace {trace_id}")

    def complete_trace(self, trace_id: str, final_prediction: dict) -> CalculationTrace:
        """Finalize a trace and release it from the registry."""
        with self._lock:
            entry = self._traces.pop(trace_id, None)
        if entry is None:
            raise ValueError(f"No open trace with id {trace_id}")

        trace = entry[0]
        trace.final_prediction = final_prediction
        trace.completed_at = datetime.now()
        logger.debug(f"Completed trace {trace_id} with {len(trace.steps)} steps")
        return trace
