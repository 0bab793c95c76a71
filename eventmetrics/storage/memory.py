from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager

from eventmetrics.errors import AggregateConflictError, MetricStoreError
from eventmetrics.schemas.metric import Metric, MetricFilter
from eventmetrics.storage.ports import aggregate_fingerprint


class InMemoryMetricStore:
    """Process-local :class:`~eventmetrics.storage.ports.MetricStore`.

    Intended for tests and single-process pipelines.  Top-level calls and
    transactions are serialised by one ``asyncio.Lock``; a transaction takes
    a snapshot on entry and restores it if the block raises, so a failed
    aggregation run leaves nothing behind.
    """

    def __init__(self) -> None:
        self._metrics: dict[uuid.UUID, Metric] = {}
        self._aggregates: dict[str, uuid.UUID] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._metrics)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def save_metric(self, metric: Metric) -> Metric:
        async with self._lock:
            return self._save(metric)

    async def list_metrics(self, metric_filter: MetricFilter | None = None) -> list[Metric]:
        async with self._lock:
            return self._list(metric_filter)

    async def find_aggregate(self, name: str, dimensions: Mapping[str, str]) -> Metric | None:
        async with self._lock:
            return self._find_aggregate(name, dimensions)

    async def update_metric(self, metric: Metric) -> Metric:
        async with self._lock:
            return self._update(metric)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[_InMemoryTransaction]:
        async with self._lock:
            metrics = dict(self._metrics)
            aggregates = dict(self._aggregates)
            try:
                yield _InMemoryTransaction(self)
            except BaseException:
                self._metrics = metrics
                self._aggregates = aggregates
                raise

    # ------------------------------------------------------------------
    # Unlocked operations shared with transactions
    # ------------------------------------------------------------------

    def _save(self, metric: Metric) -> Metric:
        saved = metric.with_id(metric.id or uuid.uuid4())
        if saved.is_aggregate:
            key = aggregate_fingerprint(saved.name, saved.dimensions)
            if key in self._aggregates:
                raise AggregateConflictError(
                    f"aggregate {saved.name} {saved.dimensions} already exists"
                )
            self._aggregates[key] = saved.id  # type: ignore[assignment]
        self._metrics[saved.id] = saved  # type: ignore[index]
        return saved

    def _list(self, metric_filter: MetricFilter | None) -> list[Metric]:
        matches = [
            m for m in self._metrics.values() if metric_filter is None or metric_filter.matches(m)
        ]
        return sorted(matches, key=lambda m: (m.timestamp, m.name))

    def _find_aggregate(self, name: str, dimensions: Mapping[str, str]) -> Metric | None:
        metric_id = self._aggregates.get(aggregate_fingerprint(name, dimensions))
        return self._metrics.get(metric_id) if metric_id is not None else None

    def _update(self, metric: Metric) -> Metric:
        current = self._metrics.get(metric.id) if metric.id is not None else None
        if current is None:
            raise MetricStoreError(f"metric {metric.id} does not exist")
        key = aggregate_fingerprint(metric.name, metric.dimensions) if metric.is_aggregate else None
        if key is not None and self._aggregates.get(key, metric.id) != metric.id:
            raise AggregateConflictError(
                f"aggregate {metric.name} {metric.dimensions} already exists"
            )
        if current.is_aggregate:
            self._aggregates.pop(aggregate_fingerprint(current.name, current.dimensions), None)
        if key is not None:
            self._aggregates[key] = metric.id  # type: ignore[assignment]
        self._metrics[metric.id] = metric  # type: ignore[index]
        return metric


class _InMemoryTransaction:
    """Store view handed out by :meth:`InMemoryMetricStore.transaction`.

    The owning store's lock is already held, so these calls go straight to
    the unlocked operations.
    """

    def __init__(self, store: InMemoryMetricStore) -> None:
        self._store = store

    async def save_metric(self, metric: Metric) -> Metric:
        return self._store._save(metric)

    async def list_metrics(self, metric_filter: MetricFilter | None = None) -> list[Metric]:
        return self._store._list(metric_filter)

    async def find_aggregate(self, name: str, dimensions: Mapping[str, str]) -> Metric | None:
        return self._store._find_aggregate(name, dimensions)

    async def update_metric(self, metric: Metric) -> Metric:
        return self._store._update(metric)

    def transaction(self) -> _NestedTransaction:
        return _NestedTransaction(self)


class _NestedTransaction:
    """Re-entering ``transaction()`` inside a transaction joins the outer one."""

    def __init__(self, tx: _InMemoryTransaction) -> None:
        self._tx = tx

    async def __aenter__(self) -> _InMemoryTransaction:
        return self._tx

    async def __aexit__(self, *exc_info: object) -> None:
        return None
