"""
Tunable thresholds for benchmarking suggestions and alert severity.

Provides centralized configuration for:
- Improvement-suggestion gap thresholds (when a gap is "high" priority)
- Review-count suggestion triggers
- Percentile rank label bands
- Alert severity deviation bands
"""
from typing import Optional
from pydantic import BaseModel, Field

from src.lib.logging import get_logger


logger = get_logger(__name__)


class BenchmarkConfig(BaseModel):
    """Thresholds used when diffing a provider against platform averages."""

    completion_rate_gap: float = Field(
        default=10.0,
        ge=0,
        le=100,
        description="Completion-rate points below average that make a suggestion high priority"
    )
    response_time_gap_minutes: float = Field(
        default=60.0,
        ge=0,
        description="Minutes slower than average that make a suggestion high priority"
    )
    rating_gap: float = Field(
        default=0.5,
        ge=0,
        le=5,
        description="Rating points below average that make a suggestion high priority"
    )
    cancellation_rate_gap: float = Field(
        default=5.0,
        ge=0,
        le=100,
        description="Cancellation-rate points above average that make a suggestion high priority"
    )

    # Standing "collect more reviews" suggestion
    review_count_minimum: int = Field(default=5, ge=0, description="Reviews below which the suggestion fires")
    review_count_request_floor: int = Field(default=10, ge=0, description="Requests above which the suggestion fires")
    review_count_target: int = Field(default=10, ge=1, description="Suggested review count")

    # Rank label bands, checked top-down
    top_10_band: int = Field(default=90, ge=0, le=100)
    top_25_band: int = Field(default=75, ge=0, le=100)
    above_average_band: int = Field(default=50, ge=0, le=100)
    below_average_band: int = Field(default=25, ge=0, le=100)

    class Config:
        json_schema_extra = {
            "example": {
                "completion_rate_gap": 10,
                "response_time_gap_minutes": 60,
                "rating_gap": 0.5,
                "cancellation_rate_gap": 5,
            }
        }


class AlertSeverityConfig(BaseModel):
    """Deviation bands (percent away from the threshold) that set alert severity."""

    lower_is_worse_critical: float = Field(
        default=30.0,
        ge=0,
        description="Deviation above which a 'below' alert on completion/rating/earnings/requests is critical"
    )
    lower_is_worse_warning: float = Field(default=15.0, ge=0)
    higher_is_worse_critical: float = Field(
        default=50.0,
        ge=0,
        description="Deviation above which an 'above' alert on response time/cancellations is critical"
    )
    higher_is_worse_warning: float = Field(default=25.0, ge=0)
    equals_tolerance: float = Field(
        default=0.01,
        gt=0,
        description="Absolute difference treated as equal for the 'equals' operator"
    )


# Global configuration instances (can be overridden)
_benchmark_config: Optional[BenchmarkConfig] = None
_alert_severity_config: Optional[AlertSeverityConfig] = None


def get_benchmark_config() -> BenchmarkConfig:
    """Get benchmarking thresholds, creating defaults on first use."""
    global _benchmark_config
    if _benchmark_config is None:
        _benchmark_config = BenchmarkConfig()
        logger.info("Initialized default benchmark configuration")
    return _benchmark_config


def set_benchmark_config(config: BenchmarkConfig) -> None:
    """Override benchmarking thresholds (admin tooling and tests)."""
    global _benchmark_config
    _benchmark_config = config
    logger.info(f"Updated benchmark configuration: {config.model_dump()}")


def get_alert_severity_config() -> AlertSeverityConfig:
    """Get alert severity bands, creating defaults on first use."""
    global _alert_severity_config
    if _alert_severity_config is None:
        _alert_severity_config = AlertSeverityConfig()
        logger.info("Initialized default alert severity configuration")
    return _alert_severity_config


def set_alert_severity_config(config: AlertSeverityConfig) -> None:
    global _alert_severity_config
    _alert_severity_config = config
    logger.info(f"Updated alert severity configuration: {config.model_dump()}")


def reset_all_configs() -> None:
    """Reset all configurations to defaults (for testing)."""
    global _benchmark_config, _alert_severity_config
    _benchmark_config = None
    _alert_severity_config = None
    logger.info("Reset analytics configurations to defaults")
