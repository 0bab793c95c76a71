from __future__ import annotations

import functools

from eventmetrics.classifiers.base import BaseClassifier, Handler, metric
from eventmetrics.extractors.dimensions import extract_jira_issue_type
from eventmetrics.schemas.event import Event
from eventmetrics.schemas.metric import MetricDefinition

_ISSUE_ACTIONS = ("created", "updated", "resolved", "deleted")
_SPRINT_ACTIONS = ("started", "closed")


class JiraClassifier(BaseClassifier):
    """Metrics for Jira issue and sprint webhooks (``jira.issue_created`` etc.)."""

    source = "jira"

    def _build_handlers(self) -> dict[str, Handler]:
        handlers: dict[str, Handler] = {}
        for action in _ISSUE_ACTIONS:
            handlers[f"issue_{action}"] = functools.partial(self._issue, action=action)
        for action in _SPRINT_ACTIONS:
            handlers[f"sprint_{action}"] = functools.partial(self._sprint, action=action)
        return handlers

    @staticmethod
    def _issue(event: Event, dims: dict[str, str], *, action: str) -> list[MetricDefinition]:
        return [
            metric("jira.issue.total", 1, dims, action=action),
            metric(f"jira.issue.{action}", 1, dims),
            metric(
                "jira.issue.by_type",
                1,
                dims,
                issue_type=extract_jira_issue_type(event.data),
                action=action,
            ),
        ]

    @staticmethod
    def _sprint(event: Event, dims: dict[str, str], *, action: str) -> list[MetricDefinition]:
        return [metric(f"jira.sprint.{action}", 1, dims)]
