from __future__ import annotations

import logging

from eventmetrics.classifiers.dispatcher import MetricClassifier
from eventmetrics.schemas.event import Event
from eventmetrics.schemas.metric import Metric
from eventmetrics.storage.ports import MetricStore

logger = logging.getLogger(__name__)


class MetricService:
    """Per-event unit of work: classify an event and persist its metrics.

    Usage::

        service = MetricService(store)
        saved = await service.record_event(event)
    """

    def __init__(self, store: MetricStore, classifier: MetricClassifier | None = None) -> None:
        self._store = store
        self._classifier = classifier or MetricClassifier()

    def build_metrics(self, event: Event) -> list[Metric]:
        """Classify *event* into unsaved :class:`Metric` records."""
        return [d.to_metric(event) for d in self._classifier.classify(event)]

    async def record_event(self, event: Event) -> list[Metric]:
        """Classify *event* and save every resulting metric in one transaction.

        Store errors propagate so the caller's queue can redeliver the event.
        """
        metrics = self.build_metrics(event)
        if not metrics:
            logger.info("record_event: %s produced no metrics", event.name)
            return []

        async with self._store.transaction() as tx:
            saved = [await tx.save_metric(m) for m in metrics]

        logger.debug("record_event: %s -> %d metrics", event.name, len(saved))
        return saved
