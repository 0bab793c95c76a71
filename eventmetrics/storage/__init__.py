from __future__ import annotations

from eventmetrics.storage.memory import InMemoryMetricStore
from eventmetrics.storage.ports import MetricStore, aggregate_fingerprint
from eventmetrics.storage.sqlalchemy_store import SqlAlchemyMetricStore

__all__ = [
    "InMemoryMetricStore",
    "MetricStore",
    "SqlAlchemyMetricStore",
    "aggregate_fingerprint",
]
