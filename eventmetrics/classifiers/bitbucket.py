from __future__ import annotations

import functools

from eventmetrics.classifiers.base import BaseClassifier, Handler, metric
from eventmetrics.extractors.dimensions import extract_bitbucket_commit_count
from eventmetrics.schemas.event import Event
from eventmetrics.schemas.metric import MetricDefinition

_PULL_REQUEST_ACTIONS = ("created", "approved", "merged", "rejected")


class BitbucketClassifier(BaseClassifier):
    """Metrics for Bitbucket webhooks, whose event keys look like ``repo:push``."""

    source = "bitbucket"

    def _build_handlers(self) -> dict[str, Handler]:
        handlers: dict[str, Handler] = {"repo:push": self._push}
        for action in _PULL_REQUEST_ACTIONS:
            handlers[f"pullrequest:{action}"] = functools.partial(
                self._pull_request, action=action
            )
        return handlers

    @staticmethod
    def _push(event: Event, dims: dict[str, str]) -> list[MetricDefinition]:
        return [
            metric("bitbucket.push.total", 1, dims),
            metric("bitbucket.push.commits", extract_bitbucket_commit_count(event.data), dims),
        ]

    @staticmethod
    def _pull_request(
        event: Event, dims: dict[str, str], *, action: str
    ) -> list[MetricDefinition]:
        return [
            metric("bitbucket.pullrequest.total", 1, dims, action=action),
            metric(f"bitbucket.pullrequest.{action}", 1, dims),
        ]
