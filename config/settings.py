"""Application settings and configuration."""

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

SIGNIFICANCE_METHODS = ("threshold", "exact")


@dataclass
class Settings:
    """Application configuration settings."""

    # Storage
    team_games_path: str = field(
        default_factory=lambda: os.getenv("TEAM_GAMES_CSV", "data/team_games.csv")
    )
    weight_store_dir: str = field(
        default_factory=lambda: os.getenv("WEIGHT_STORE_DIR", "data/weights")
    )
    report_log_path: str = field(
        default_factory=lambda: os.getenv(
            "TRACE_REPORT_LOG", "data/outputs/trace_reports.jsonl"
        )
    )

    # Regression
    # "threshold" = fixed t/F lookup table, "exact" = scipy distribution tails
    significance_method: str = field(
        default_factory=lambda: os.getenv("SIGNIFICANCE_METHOD", "threshold")
    )
    min_sample_size: int = 30
    r_squared_threshold: float = 0.2  # Metric is significant above this R²...
    p_value_threshold: float = 0.1  # ...and below this p-value
    confidence_z: float = 1.96  # 95% CI on coefficients

    # Weights
    # Sum that out-of-band weight sets are rescaled to
    weight_target_sum: float = field(
        default_factory=lambda: float(os.getenv("WEIGHT_TARGET_SUM", "1.5"))
    )
    weight_sum_min: float = 0.5
    weight_sum_max: float = 3.0
    max_plausible_weight: float = 2.0

    # Prediction assembly
    score_min: float = 0.0
    score_max: float = 100.0
    max_point_differential: float = 70.0
    historical_accuracy: float = 0.65
    home_field_points_scale: float = 30.0  # HFA weight 0.10 -> 3 points
    extreme_efficiency_threshold: float = 40.0

    # Tracing
    trace_ttl_seconds: float = field(
        default_factory=lambda: float(os.getenv("TRACE_TTL_SECONDS", "3600"))
    )
    max_active_traces: int = 1000

    def validate(self) -> list[str]:
        """Validate settings. Returns list of errors."""
        errors = []
        if self.significance_method not in SIGNIFICANCE_METHODS:
            errors.append(
                f"SIGNIFICANCE_METHOD must be one of {SIGNIFICANCE_METHODS}, "
                f"got '{self.significance_method}'"
            )
        if self.weight_target_sum <= 0:
            errors.append("WEIGHT_TARGET_SUM must be positive.")
        if self.score_min >= self.score_max:
            errors.append("score_min must be below score_max.")
        if self.min_sample_size < 3:
            errors.append("min_sample_size must be at least 3.")
        if self.trace_ttl_seconds <= 0:
            errors.append("TRACE_TTL_SECONDS must be positive.")
        return errors


# Singleton instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the settings singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
