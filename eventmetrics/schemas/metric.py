from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import UTC, date, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from eventmetrics.models.enums import AggregationPeriod

if TYPE_CHECKING:
    from eventmetrics.schemas.event import Event

PERIOD_SUFFIXES: frozenset[str] = frozenset(p.value for p in AggregationPeriod)

# ---------------------------------------------------------------------------
# Dimension normalisation
# ---------------------------------------------------------------------------


def normalize_dimension_value(value: Any) -> str | None:
    """Render a single dimension value as the canonical string form.

    Returns ``None`` for ``None`` so callers can drop the key entirely.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def normalize_dimensions(dimensions: Mapping[str, Any] | None) -> dict[str, str]:
    """Return a new ``{str: str}`` dict with ``None`` values removed."""
    if not dimensions:
        return {}
    normalized: dict[str, str] = {}
    for key, raw in dimensions.items():
        value = normalize_dimension_value(raw)
        if value is not None:
            normalized[str(key)] = value
    return normalized


def _ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


# ---------------------------------------------------------------------------
# Metric schemas
# ---------------------------------------------------------------------------


class MetricDefinition(BaseModel):
    """A metric produced by a classifier, not yet bound to a source or persisted."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    value: int | float
    dimensions: dict[str, str] = Field(default_factory=dict)
    timestamp: datetime | None = None

    @field_validator("dimensions", mode="before")
    @classmethod
    def _normalize(cls, value: Any) -> dict[str, str]:
        return normalize_dimensions(value)

    def to_metric(self, event: Event) -> Metric:
        """Materialise this definition as a :class:`Metric` for *event*."""
        return Metric(
            name=self.name,
            value=self.value,
            timestamp=self.timestamp or event.timestamp,
            source=event.source,
            dimensions=self.dimensions,
        )


class Metric(BaseModel):
    """A single measured value with its context.

    Metrics are immutable.  :meth:`with_value` is the only way to change a
    value and it preserves ``id``, which is how aggregate upserts replace the
    value of an existing record.
    """

    model_config = ConfigDict(frozen=True)

    id: UUID | None = None
    name: str = Field(min_length=1)
    value: int | float
    timestamp: datetime
    source: str = Field(min_length=1)
    dimensions: dict[str, str] = Field(default_factory=dict)

    @field_validator("dimensions", mode="before")
    @classmethod
    def _normalize(cls, value: Any) -> dict[str, str]:
        return normalize_dimensions(value)

    @field_validator("timestamp")
    @classmethod
    def _aware_timestamp(cls, value: datetime) -> datetime:
        return _ensure_aware(value)

    def with_value(self, value: int | float) -> Metric:
        """Return a copy with *value*, keeping this metric's identity."""
        return self.model_copy(update={"value": value})

    def with_id(self, metric_id: UUID) -> Metric:
        return self.model_copy(update={"id": metric_id})

    @property
    def is_aggregate(self) -> bool:
        """``True`` for period roll-ups written by the aggregation engine."""
        return (
            self.name.rsplit(".", 1)[-1] in PERIOD_SUFFIXES
            and "time_period" in self.dimensions
        )


# ---------------------------------------------------------------------------
# Metric query filter
# ---------------------------------------------------------------------------


def like_to_regex(pattern: str) -> re.Pattern[str]:
    """Compile a SQL ``LIKE`` pattern (``%`` and ``_`` wildcards) to a regex."""
    parts = []
    for char in pattern:
        if char == "%":
            parts.append(".*")
        elif char == "_":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("^" + "".join(parts) + "$", re.DOTALL)


class MetricFilter(BaseModel):
    """Criteria accepted by :meth:`MetricStore.list_metrics`.

    Every field is optional.  ``start_time`` is inclusive and ``end_time`` is
    exclusive.  ``dimensions`` is a subset match: a metric passes when it has
    every listed key with the listed value.  ``aggregates`` selects raw
    metrics (``False``), period aggregates (``True``) or both (``None``).
    """

    names: list[str] | None = None
    name_pattern: str | None = None
    source: str | None = None
    dimensions: dict[str, str] | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    aggregates: bool | None = None

    @field_validator("dimensions", mode="before")
    @classmethod
    def _normalize(cls, value: Any) -> dict[str, str] | None:
        if value is None:
            return None
        return normalize_dimensions(value)

    @field_validator("start_time", "end_time")
    @classmethod
    def _aware(cls, value: datetime | None) -> datetime | None:
        return _ensure_aware(value) if value is not None else None

    def matches_dimensions(self, metric: Metric) -> bool:
        if not self.dimensions:
            return True
        return all(metric.dimensions.get(k) == v for k, v in self.dimensions.items())

    def matches(self, metric: Metric) -> bool:
        """Evaluate every criterion against *metric* in memory."""
        if self.names is not None and metric.name not in self.names:
            return False
        if self.name_pattern is not None and not like_to_regex(self.name_pattern).match(
            metric.name
        ):
            return False
        if self.source is not None and metric.source != self.source:
            return False
        if self.start_time is not None and metric.timestamp < self.start_time:
            return False
        if self.end_time is not None and metric.timestamp >= self.end_time:
            return False
        if self.aggregates is not None and metric.is_aggregate != self.aggregates:
            return False
        return self.matches_dimensions(metric)
