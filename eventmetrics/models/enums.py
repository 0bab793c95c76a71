from __future__ import annotations

from enum import Enum


class AggregationPeriod(str, Enum):
    """Time buckets the aggregation engine can roll raw metrics into."""

    five_min = "5min"
    hourly = "hourly"
    daily = "daily"
    monthly = "monthly"
    yearly = "yearly"


class DoraRating(str, Enum):
    """DORA performance bands, plus ``unknown`` when there was nothing to measure."""

    elite = "elite"
    high = "high"
    medium = "medium"
    low = "low"
    unknown = "unknown"


class Severity(str, Enum):
    """Alert severity levels, ordered from least to most urgent."""

    info = "info"
    warning = "warning"
    critical = "critical"


class AlertStatus(str, Enum):
    """Lifecycle states for an alert."""

    active = "active"
    acknowledged = "acknowledged"
    resolved = "resolved"


class TrendInterval(str, Enum):
    """Step size used when slicing a DORA trend into intervals."""

    day = "day"
    week = "week"
    month = "month"
