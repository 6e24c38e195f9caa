"""Weight change history entries and their storage form."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from src.weights.prediction_weights import PredictionWeights

SNAPSHOT_SCHEMA_VERSION = 1

SOURCE_REGRESSION = "regression"
SOURCE_MANUAL = "manual"
SOURCE_FALLBACK = "fallback"


@dataclass(frozen=True)
class WeightSnapshot:
    """Versioned copy of a weight set, kept inspectable in storage."""

    weights: PredictionWeights
    schema_version: int = SNAPSHOT_SCHEMA_VERSION

    def to_dict(self) -> dict:
        return {
            "schema_version": self.schema_version,
            "weights": self.weights.to_storage(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WeightSnapshot":
        version = data.get("schema_version")
        if version != SNAPSHOT_SCHEMA_VERSION:
            raise ValueError(f"Unsupported weight snapshot schema version: {version}")
        return cls(
            weights=PredictionWeights.from_storage(data["weights"]),
            schema_version=version,
        )


@dataclass(frozen=True)
class RegressionMetrics:
    """Summary of the regression run that produced a weight set."""

    r_squared: float
    sample_size: int
    significant_metrics: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "r_squared": self.r_squared,
            "sample_size": self.sample_size,
            "significant_metrics": list(self.significant_metrics),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RegressionMetrics":
        return cls(
            r_squared=float(data["r_squared"]),
            sample_size=int(data["sample_size"]),
            significant_metrics=tuple(data.get("significant_metrics", [])),
        )


@dataclass(frozen=True)
class WeightChange:
    """One immutable entry in a season's weight history.

    regression_metrics is None for manual changes and fallback resets.
    """

    season: int
    version: int
    timestamp: datetime
    previous_weights: Optional[WeightSnapshot]
    new_weights: WeightSnapshot
    reason: str
    source: str
    regression_metrics: Optional[RegressionMetrics] = None
    actor_id: Optional[str] = None

    @property
    def weights(self) -> PredictionWeights:
        return self.new_weights.weights

    def to_dict(self) -> dict:
        return {
            "season": self.season,
            "version": self.version,
            "timestamp": self.timestamp.isoformat(),
            "previous_weights": (
                self.previous_weights.to_dict() if self.previous_weights else None
            ),
            "new_weights": self.new_weights.to_dict(),
            "reason": self.reason,
            "source": self.source,
            "regression_metrics": (
                self.regression_metrics.to_dict() if self.regression_metrics else None
            ),
            "actor_id": self.actor_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WeightChange":
        previous = data.get("previous_weights")
        metrics = data.get("regression_metrics")
        return cls(
            season=int(data["season"]),
            version=int(data["version"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            previous_weights=WeightSnapshot.from_dict(previous) if previous else None,
            new_weights=WeightSnapshot.from_dict(data["new_weights"]),
            reason=data["reason"],
            source=data["source"],
            regression_metrics=RegressionMetrics.from_dict(metrics) if metrics else None,
            actor_id=data.get("actor_id"),
        )
