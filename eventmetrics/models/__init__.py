from __future__ import annotations

# Import Base first so all subclasses register against the same metadata.
from eventmetrics.models.base import Base, TimestampMixin, UUIDMixin

# Enums - no SQLAlchemy dependencies.
from eventmetrics.models.enums import (
    AggregationPeriod,
    AlertStatus,
    DoraRating,
    Severity,
    TrendInterval,
)
from eventmetrics.models.metric import MetricRecord

__all__ = [
    # Base classes
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    # Enums
    "AggregationPeriod",
    "AlertStatus",
    "DoraRating",
    "Severity",
    "TrendInterval",
    # Models
    "MetricRecord",
]
