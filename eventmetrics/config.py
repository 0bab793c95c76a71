from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from eventmetrics.benchmarks.dora import CHANGE_FAILURE_RATE_THRESHOLDS


class Settings(BaseSettings):
    """Application settings loaded from environment variables or .env file."""

    DATABASE_URL: str = "sqlite+aiosqlite:///./eventmetrics.db"
    LOG_LEVEL: str = "INFO"

    # Upper bound on commits analysed individually for a single push event.
    MAX_COMMITS_PER_PUSH: int = 1000

    # Metric names aggregated in addition to every ``*.total`` metric.
    AGGREGATION_EXTRA_METRICS: list[str] = [
        "github.push.commits",
        "github.push.directory_changes",
        "github.push.filetype_changes",
        "github.push.commit_type",
        "github.push.breaking_change",
        "github.push.code_additions",
        "github.push.code_deletions",
    ]
    AGGREGATION_MAX_RETRIES: int = 3

    DORA_STANDARD_PERIODS: list[int] = [7, 30, 90]
    DORA_SNAPSHOT_SOURCE: str = "eventmetrics.dora"
    DORA_DEPLOYMENT_METRICS: list[str] = [
        "ci.deploy.completed",
        "github.deployment.success",
    ]
    DORA_FAILURE_METRICS: list[str] = [
        "ci.deploy.incident",
        "github.deployment.failure",
    ]
    DORA_LEAD_TIME_METRICS: list[str] = ["ci.lead_time", "github.ci.lead_time"]
    DORA_RESTORE_METRICS: list[str] = [
        "ci.incident.resolution_time",
        "incident.resolution_time",
    ]
    DORA_CHANGE_FAILURE_THRESHOLDS: dict[str, float] = Field(
        default_factory=lambda: dict(CHANGE_FAILURE_RATE_THRESHOLDS)
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )


settings = Settings()
