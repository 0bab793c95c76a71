from __future__ import annotations

import functools

from eventmetrics.classifiers.base import BaseClassifier, Handler, metric
from eventmetrics.extractors.dimensions import extract_gitlab_commit_count
from eventmetrics.schemas.event import Event
from eventmetrics.schemas.metric import MetricDefinition

_MERGE_REQUEST_ACTIONS = ("opened", "closed", "merged")


class GitLabClassifier(BaseClassifier):
    """Metrics for GitLab push and merge request webhooks."""

    source = "gitlab"

    def _build_handlers(self) -> dict[str, Handler]:
        handlers: dict[str, Handler] = {"push": self._push}
        for action in _MERGE_REQUEST_ACTIONS:
            handlers[f"merge_request.{action}"] = functools.partial(
                self._merge_request, action=action
            )
        return handlers

    @staticmethod
    def _push(event: Event, dims: dict[str, str]) -> list[MetricDefinition]:
        return [
            metric("gitlab.push.total", 1, dims),
            metric("gitlab.push.commits", extract_gitlab_commit_count(event.data), dims),
        ]

    @staticmethod
    def _merge_request(
        event: Event, dims: dict[str, str], *, action: str
    ) -> list[MetricDefinition]:
        return [
            metric("gitlab.merge_request.total", 1, dims, action=action),
            metric(f"gitlab.merge_request.{action}", 1, dims),
        ]
