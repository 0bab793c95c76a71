from __future__ import annotations

import functools

from eventmetrics.classifiers.base import BaseClassifier, Handler, metric
from eventmetrics.schemas.event import Event
from eventmetrics.schemas.metric import MetricDefinition

_TASK_ACTIONS = ("created", "completed", "moved")


class TaskClassifier(BaseClassifier):
    """Metrics for internal task tracker events (``task.created`` etc.)."""

    source = "task"

    def _build_handlers(self) -> dict[str, Handler]:
        return {
            action: functools.partial(self._task, action=action) for action in _TASK_ACTIONS
        }

    @staticmethod
    def _task(event: Event, dims: dict[str, str], *, action: str) -> list[MetricDefinition]:
        return [
            metric("task.total", 1, dims, action=action),
            metric(f"task.{action}", 1, dims),
        ]
