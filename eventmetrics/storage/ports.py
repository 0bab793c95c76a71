from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from contextlib import AbstractAsyncContextManager
from typing import Protocol, runtime_checkable

from eventmetrics.schemas.metric import Metric, MetricFilter


def aggregate_fingerprint(name: str, dimensions: Mapping[str, str]) -> str:
    """Deterministic identity of an aggregate: sha256 of name + sorted dimensions.

    Dimension insertion order does not affect the result.
    """
    payload = json.dumps(
        {"name": name, "dimensions": dict(sorted(dimensions.items()))},
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


@runtime_checkable
class MetricStore(Protocol):
    """Structural interface for metric persistence.

    The aggregation engine and DORA calculators depend only on this port.
    Every method is ``async``.  Adapters raise
    :class:`~eventmetrics.errors.MetricStoreError` when storage is
    unavailable and :class:`~eventmetrics.errors.AggregateConflictError`
    when two writers create the same aggregate concurrently.
    """

    async def save_metric(self, metric: Metric) -> Metric:
        """Persist *metric* and return it with its assigned ``id``.

        Aggregates (see :attr:`Metric.is_aggregate`) are unique by
        :func:`aggregate_fingerprint`; saving a second aggregate with the same
        fingerprint raises ``AggregateConflictError``.
        """
        ...

    async def list_metrics(self, metric_filter: MetricFilter | None = None) -> list[Metric]:
        """Return matching metrics ordered by timestamp, then name."""
        ...

    async def find_aggregate(self, name: str, dimensions: Mapping[str, str]) -> Metric | None:
        """Return the aggregate with exactly this name and dimension set, if any."""
        ...

    async def update_metric(self, metric: Metric) -> Metric:
        """Replace the metric identified by ``metric.id``.

        An aggregate is re-keyed on its new name and dimensions; moving it
        onto the identity of another aggregate raises
        ``AggregateConflictError``.

        Raises:
            MetricStoreError: if no metric with that id exists.
        """
        ...

    def transaction(self) -> AbstractAsyncContextManager[MetricStore]:
        """Open an atomic unit of work.

        Usage::

            async with store.transaction() as tx:
                existing = await tx.find_aggregate(name, dims)
                ...

        Every call made on ``tx`` commits together when the block exits
        normally and is discarded when it raises.
        """
        ...
