from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, SerializeAsAny

from eventmetrics.models.enums import DoraRating

# ---------------------------------------------------------------------------
# Per-calculator results
# ---------------------------------------------------------------------------


class DoraResult(BaseModel):
    """Fields every DORA calculator reports."""

    metric: str
    value: float = 0.0
    unit: str
    rating: DoraRating = DoraRating.unknown
    sample_size: int = 0
    period_days: float
    start_time: datetime
    end_time: datetime


class DeploymentFrequencyResult(DoraResult):
    """``value`` is successful deployments per day over the window."""

    metric: str = "deployment_frequency"
    unit: str = "deployments_per_day"
    total_deployments: int = 0
    days_with_deployments: int = 0
    deployments_per_week: float = 0.0


class StageBreakdown(BaseModel):
    """Mean duration of one lead-time stage and its share of the stage total."""

    hours: float
    percentage: float
    sample_size: int


class LeadTimeResult(DoraResult):
    metric: str = "lead_time"
    unit: str = "hours"
    statistic: str = "mean"
    percentile: float | None = None
    stages: dict[str, StageBreakdown] = Field(default_factory=dict)


class TimeToRestoreResult(DoraResult):
    metric: str = "time_to_restore"
    unit: str = "hours"
    statistic: str = "mean"
    percentile: float | None = None
    median_hours: float = 0.0
    p90_hours: float = 0.0


class ChangeFailureRateResult(DoraResult):
    metric: str = "change_failure_rate"
    unit: str = "percent"
    failed_deployments: int = 0
    total_deployments: int = 0


# ---------------------------------------------------------------------------
# Combined report
# ---------------------------------------------------------------------------


class DoraOverview(BaseModel):
    """All four indicators for one window plus the blended performance level."""

    deployment_frequency: DeploymentFrequencyResult
    lead_time: LeadTimeResult
    time_to_restore: TimeToRestoreResult
    change_failure_rate: ChangeFailureRateResult
    overall_rating: DoraRating
    overall_score: float


class DoraTrendPoint(BaseModel):
    start_time: datetime
    end_time: datetime
    result: SerializeAsAny[DoraResult]
