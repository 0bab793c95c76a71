from __future__ import annotations

import logging

import pytest

from eventmetrics.classifiers.dispatcher import MetricClassifier
from eventmetrics.errors import MetricStoreError
from eventmetrics.schemas.event import Event
from eventmetrics.schemas.metric import Metric
from eventmetrics.services.metric_service import MetricService
from eventmetrics.storage.memory import InMemoryMetricStore
from eventmetrics.storage.ports import MetricStore
from tests.factories import make_event, utc


class _BrokenStore(InMemoryMetricStore):
    """Accepts one metric per transaction, then fails."""

    def __init__(self) -> None:
        super().__init__()
        self.calls = 0

    def _save(self, metric: Metric) -> Metric:
        self.calls += 1
        if self.calls > 1:
            raise MetricStoreError("connection reset")
        return super()._save(metric)


class _Silent:
    """A classifier that never produces metrics."""

    source = "task"

    def classify(self, event: Event) -> list:
        return []


class TestMetricService:
    def test_build_metrics_binds_event_context(self) -> None:
        """Built metrics carry the event's source and timestamp but no id."""
        service = MetricService(InMemoryMetricStore())
        metrics = service.build_metrics(make_event("task.created", {"project": "infra"}))
        assert {m.name for m in metrics} == {"task.total", "task.created"}
        assert all(m.source == "task" for m in metrics)
        assert all(m.timestamp == utc(2024, 1, 1, 12) for m in metrics)
        assert all(m.id is None for m in metrics)

    @pytest.mark.asyncio
    async def test_record_event_saves_every_metric(self, store: MetricStore) -> None:
        service = MetricService(store)
        saved = await service.record_event(make_event("gitlab.merge_request.merged"))
        assert {m.name for m in saved} == {
            "gitlab.merge_request.total",
            "gitlab.merge_request.merged",
        }
        assert all(m.id is not None for m in saved)
        assert len(await store.list_metrics()) == 2

    @pytest.mark.asyncio
    async def test_unknown_source_records_generic_metric(self, store: MetricStore) -> None:
        event = Event(name="pagerduty.incident.triggered", source="pagerduty", timestamp=utc(2024, 1, 1))
        saved = await MetricService(store).record_event(event)
        assert [(m.name, m.dimensions) for m in saved] == [
            ("pagerduty.incident.triggered.total", {"source": "pagerduty"})
        ]

    @pytest.mark.asyncio
    async def test_no_metrics_is_logged(
        self, memory_store: InMemoryMetricStore, caplog: pytest.LogCaptureFixture
    ) -> None:
        """An event that yields nothing is logged and nothing is written."""
        service = MetricService(memory_store, MetricClassifier(classifiers={"task": _Silent()}))
        with caplog.at_level(logging.INFO, logger="eventmetrics.services.metric_service"):
            saved = await service.record_event(make_event("task.created"))
        assert saved == []
        assert len(memory_store) == 0
        assert "produced no metrics" in caplog.text

    @pytest.mark.asyncio
    async def test_store_failure_propagates_and_rolls_back(self) -> None:
        """A failed save propagates and discards the metrics already written for the event."""
        store = _BrokenStore()
        with pytest.raises(MetricStoreError):
            await MetricService(store).record_event(make_event("task.completed"))
        assert len(store) == 0
