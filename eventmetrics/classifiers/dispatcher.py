from __future__ import annotations

import logging
from collections.abc import Mapping

from eventmetrics.classifiers.base import EventClassifier, metric
from eventmetrics.classifiers.bitbucket import BitbucketClassifier
from eventmetrics.classifiers.ci import CIClassifier
from eventmetrics.classifiers.github import GitHubClassifier
from eventmetrics.classifiers.gitlab import GitLabClassifier
from eventmetrics.classifiers.jira import JiraClassifier
from eventmetrics.classifiers.task import TaskClassifier
from eventmetrics.extractors.dimensions import DimensionExtractor
from eventmetrics.schemas.event import Event
from eventmetrics.schemas.metric import MetricDefinition

logger = logging.getLogger(__name__)


def default_classifiers(
    extractor: DimensionExtractor,
    *,
    max_commits: int | None = None,
) -> dict[str, EventClassifier]:
    """Build one classifier per supported source, all sharing *extractor*."""
    classifiers: list[EventClassifier] = [
        GitHubClassifier(extractor, max_commits=max_commits),
        JiraClassifier(extractor),
        GitLabClassifier(extractor),
        BitbucketClassifier(extractor),
        CIClassifier(extractor),
        TaskClassifier(extractor),
    ]
    return {c.source: c for c in classifiers}


class MetricClassifier:
    """Route events to the classifier registered for their source prefix.

    Collaborators are passed in explicitly; when omitted a default
    :class:`DimensionExtractor` and the standard set of source classifiers are
    built.  ``classify`` never raises:

    * events whose ``data`` is not a mapping yield no metrics,
    * unregistered prefixes yield the generic ``"{name}.total"`` metric,
    * a handler that fails is logged and replaced by the generic metric.

    Usage::

        classifier = MetricClassifier()
        definitions = classifier.classify(event)
    """

    def __init__(
        self,
        extractor: DimensionExtractor | None = None,
        classifiers: Mapping[str, EventClassifier] | None = None,
        *,
        max_commits: int | None = None,
    ) -> None:
        self._extractor = extractor or DimensionExtractor()
        if classifiers is None:
            classifiers = default_classifiers(self._extractor, max_commits=max_commits)
        self._classifiers: dict[str, EventClassifier] = dict(classifiers)

    @property
    def sources(self) -> list[str]:
        return sorted(self._classifiers)

    def classify(self, event: Event) -> list[MetricDefinition]:
        if not isinstance(event.data, Mapping):
            logger.warning(
                "classify: dropping %s, payload is %s not a mapping",
                event.name,
                type(event.data).__name__,
            )
            return []

        prefix = event.name.split(".", 1)[0]
        classifier = self._classifiers.get(prefix)
        if classifier is None:
            return [self._generic(event)]

        try:
            return classifier.classify(event)
        except Exception:  # noqa: BLE001
            logger.exception(
                "classify: %s classifier failed on %s; emitting generic metric",
                prefix,
                event.name,
            )
            return [self._generic(event)]

    @staticmethod
    def _generic(event: Event) -> MetricDefinition:
        return metric(f"{event.name}.total", 1, {"source": event.source})
