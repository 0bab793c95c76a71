from __future__ import annotations

import functools
from collections.abc import Callable
from typing import Any, ClassVar, Protocol

from eventmetrics.extractors.dimensions import DimensionExtractor
from eventmetrics.schemas.event import Event
from eventmetrics.schemas.metric import MetricDefinition

Handler = Callable[[Event, dict[str, str]], list[MetricDefinition]]


class EventClassifier(Protocol):
    """Structural protocol that every source-specific classifier must satisfy."""

    source: str

    def classify(self, event: Event) -> list[MetricDefinition]:
        """Return the metric definitions derived from *event*."""
        ...


def metric(
    name: str,
    value: int | float,
    dimensions: dict[str, str],
    **extra: Any,
) -> MetricDefinition:
    """Build a :class:`MetricDefinition` from base *dimensions* plus *extra* ones."""
    dims: dict[str, Any] = dict(dimensions)
    dims.update(extra)
    return MetricDefinition(name=name, value=value, dimensions=dims)


class BaseClassifier:
    """Shared dispatch machinery for the source classifiers.

    Subclasses set ``source`` and implement :meth:`_build_handlers`, returning
    a ``{handler_key: handler}`` table.  The table is built once per instance
    and cached.  :meth:`_handler_key` maps an event onto a table key; the
    default is everything after the source prefix (``"jira.issue_created"``
    -> ``"issue_created"``).  Events with no matching handler produce the
    generic ``"{event.name}.total"`` metric with the source dimensions.
    """

    source: ClassVar[str] = ""

    def __init__(self, extractor: DimensionExtractor | None = None) -> None:
        self._extractor = extractor or DimensionExtractor()

    @functools.cached_property
    def _handlers(self) -> dict[str, Handler]:
        return self._build_handlers()

    def _build_handlers(self) -> dict[str, Handler]:
        return {}

    def handler_keys(self) -> list[str]:
        """Return the event subtypes this classifier has a dedicated handler for."""
        return sorted(self._handlers)

    @staticmethod
    def subtype(event: Event) -> str:
        _, _, rest = event.name.partition(".")
        return rest

    def _handler_key(self, event: Event) -> str:
        return self.subtype(event)

    def classify(self, event: Event) -> list[MetricDefinition]:
        dims = self._extractor.extract(event)
        handler = self._handlers.get(self._handler_key(event))
        if handler is None:
            return self._fallback(event, dims)
        return handler(event, dims)

    @staticmethod
    def _fallback(event: Event, dims: dict[str, str]) -> list[MetricDefinition]:
        return [metric(f"{event.name}.total", 1, dims)]
