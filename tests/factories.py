from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from eventmetrics.schemas.event import Event
from eventmetrics.schemas.metric import Metric


def utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime(year, month, day, hour, minute, tzinfo=UTC)


def make_metric(
    name: str = "github.push.total",
    value: float = 1,
    *,
    timestamp: datetime | None = None,
    source: str = "github",
    **dimensions: str,
) -> Metric:
    """Return an unsaved raw :class:`Metric` with sensible defaults."""
    return Metric(
        name=name,
        value=value,
        timestamp=timestamp or utc(2024, 1, 1, 12),
        source=source,
        dimensions=dimensions,
    )


def make_event(name: str, data: dict[str, Any] | None = None, *, source: str | None = None) -> Event:
    """Return an :class:`Event` whose source defaults to the name's first segment."""
    return Event(
        name=name,
        source=source or name.split(".", 1)[0],
        timestamp=utc(2024, 1, 1, 12),
        data=data or {},
    )
