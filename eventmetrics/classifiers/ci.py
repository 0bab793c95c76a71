from __future__ import annotations

import logging

from eventmetrics.benchmarks.dora import LEAD_TIME_STAGES
from eventmetrics.classifiers.base import BaseClassifier, Handler, metric
from eventmetrics.extractors.dimensions import (
    UNKNOWN,
    dig,
    dig_str,
    extract_ci_duration,
    seconds_between,
)
from eventmetrics.schemas.event import Event
from eventmetrics.schemas.metric import MetricDefinition

logger = logging.getLogger(__name__)


def _as_float(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None


class CIClassifier(BaseClassifier):
    """Metrics for CI/CD pipeline events.

    Names follow ``ci.{operation}.{status}`` (``ci.build.completed``,
    ``ci.deploy.failed``) or are the catch-all ``ci.event`` with
    ``operation`` and ``status`` carried in the payload.  Both routes share
    :meth:`_operation`, which is also where the DORA inputs come from:

    * ``ci.deploy.completed`` feeds deployment frequency,
    * ``ci.lead_time`` feeds lead time for changes,
    * ``ci.deploy.incident`` feeds change failure rate,
    * ``ci.incident.resolution_time`` feeds time to restore.
    """

    source = "ci"

    def _build_handlers(self) -> dict[str, Handler]:
        return {"event": self._from_payload}

    def classify(self, event: Event) -> list[MetricDefinition]:
        dims = self._extractor.extract(event)
        subtype = self.subtype(event)
        handler = self._handlers.get(subtype)
        if handler is not None:
            return handler(event, dims)
        operation, _, status = subtype.partition(".")
        if operation and status and "." not in status:
            return self._operation(event, dims, operation, status)
        return self._fallback(event, dims)

    def _from_payload(self, event: Event, dims: dict[str, str]) -> list[MetricDefinition]:
        operation = dig_str(event.data, "operation")
        status = dig_str(event.data, "status")
        if UNKNOWN in (operation, status):
            return self._fallback(event, dims)
        return self._operation(event, dims, operation, status)

    def _operation(
        self,
        event: Event,
        dims: dict[str, str],
        operation: str,
        status: str,
    ) -> list[MetricDefinition]:
        operation = operation.lower()
        status = status.lower()
        data = event.data

        # The status metric for a completed deploy is ci.deploy.completed itself.
        metrics = [metric(f"ci.{operation}.total", 1, dims, status=status)]
        if status != "total":
            metrics.append(metric(f"ci.{operation}.{status}", 1, dims))

        if status == "completed":
            metrics.append(metric(f"ci.{operation}.duration", extract_ci_duration(data), dims))
            if operation == "deploy":
                metrics.extend(self._lead_time(event, dims))
        elif status == "failed" and operation == "deploy":
            metrics.append(metric("ci.deploy.incident", 1, dims))

        if operation == "incident" and status == "resolved":
            metrics.extend(self._resolution_time(event, dims))

        return metrics

    @staticmethod
    def _lead_time(event: Event, dims: dict[str, str]) -> list[MetricDefinition]:
        raw = dig(event.data, "lead_time")
        if raw is None:
            return []
        seconds = _as_float(raw)
        if seconds is None:
            logger.warning("classify: ignoring non-numeric lead_time %r on %s", raw, event.name)
            return []
        stages = {}
        for stage in LEAD_TIME_STAGES:
            hours = _as_float(dig(event.data, stage))
            if hours is not None:
                stages[stage] = hours
        return [metric("ci.lead_time", seconds, dims, **stages)]

    @staticmethod
    def _resolution_time(event: Event, dims: dict[str, str]) -> list[MetricDefinition]:
        seconds = seconds_between(dig(event.data, "start_time"), dig(event.data, "end_time"))
        if seconds is None:
            seconds = _as_float(dig(event.data, "resolution_time"))
        if seconds is None:
            return []
        return [metric("ci.incident.resolution_time", seconds, dims)]
