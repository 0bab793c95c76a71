from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from eventmetrics.errors import AggregateConflictError, MetricStoreError
from eventmetrics.models.metric import MetricRecord
from eventmetrics.schemas.metric import Metric, MetricFilter
from eventmetrics.storage.ports import aggregate_fingerprint

logger = logging.getLogger(__name__)


def _to_utc(value: datetime) -> datetime:
    return value.astimezone(UTC)


def _from_db(value: datetime) -> datetime:
    # SQLite drops the offset; everything is written in UTC.
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


def record_to_metric(record: MetricRecord) -> Metric:
    return Metric(
        id=record.id,
        name=record.name,
        value=record.value,
        timestamp=_from_db(record.recorded_at),
        source=record.source,
        dimensions=record.dimensions or {},
    )


class SessionMetricStore:
    """:class:`~eventmetrics.storage.ports.MetricStore` bound to one ``AsyncSession``.

    Writes are flushed but never committed; the owner of the session decides
    when the unit of work ends.  :class:`SqlAlchemyMetricStore` hands these
    out from :meth:`~SqlAlchemyMetricStore.transaction`, and callers that
    already manage a session can wrap it directly.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def save_metric(self, metric: Metric) -> Metric:
        record = MetricRecord(
            id=metric.id or uuid.uuid4(),
            name=metric.name,
            value=float(metric.value),
            source=metric.source,
            dimensions=dict(metric.dimensions),
            recorded_at=_to_utc(metric.timestamp),
            aggregate_key=(
                aggregate_fingerprint(metric.name, metric.dimensions)
                if metric.is_aggregate
                else None
            ),
        )
        self._session.add(record)
        try:
            await self._session.flush()
        except IntegrityError as exc:
            raise AggregateConflictError(
                f"aggregate {metric.name} {metric.dimensions} already exists"
            ) from exc
        return record_to_metric(record)

    async def list_metrics(self, metric_filter: MetricFilter | None = None) -> list[Metric]:
        stmt = select(MetricRecord)
        f = metric_filter
        if f is not None:
            if f.names is not None:
                stmt = stmt.where(MetricRecord.name.in_(f.names))
            if f.name_pattern is not None:
                stmt = stmt.where(MetricRecord.name.like(f.name_pattern))
            if f.source is not None:
                stmt = stmt.where(MetricRecord.source == f.source)
            if f.start_time is not None:
                stmt = stmt.where(MetricRecord.recorded_at >= _to_utc(f.start_time))
            if f.end_time is not None:
                stmt = stmt.where(MetricRecord.recorded_at < _to_utc(f.end_time))
            if f.aggregates is True:
                stmt = stmt.where(MetricRecord.aggregate_key.is_not(None))
            elif f.aggregates is False:
                stmt = stmt.where(MetricRecord.aggregate_key.is_(None))
        stmt = stmt.order_by(MetricRecord.recorded_at, MetricRecord.name)

        result = await self._session.execute(stmt)
        metrics = [record_to_metric(r) for r in result.scalars().all()]
        # JSON containment is dialect specific; dimensions are matched here.
        if f is not None and f.dimensions:
            metrics = [m for m in metrics if f.matches_dimensions(m)]
        return metrics

    async def find_aggregate(self, name: str, dimensions: Mapping[str, str]) -> Metric | None:
        result = await self._session.execute(
            select(MetricRecord).where(
                MetricRecord.aggregate_key == aggregate_fingerprint(name, dimensions)
            )
        )
        record = result.scalar_one_or_none()
        return record_to_metric(record) if record is not None else None

    async def update_metric(self, metric: Metric) -> Metric:
        record = await self._session.get(MetricRecord, metric.id) if metric.id else None
        if record is None:
            raise MetricStoreError(f"metric {metric.id} does not exist")
        record.name = metric.name
        record.value = float(metric.value)
        record.source = metric.source
        record.dimensions = dict(metric.dimensions)
        record.recorded_at = _to_utc(metric.timestamp)
        record.aggregate_key = (
            aggregate_fingerprint(metric.name, metric.dimensions)
            if metric.is_aggregate
            else None
        )
        try:
            await self._session.flush()
        except IntegrityError as exc:
            raise AggregateConflictError(
                f"aggregate {metric.name} {metric.dimensions} already exists"
            ) from exc
        return record_to_metric(record)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SessionMetricStore]:
        # Joins the transaction already open on the session.
        yield self


class SqlAlchemyMetricStore:
    """:class:`~eventmetrics.storage.ports.MetricStore` backed by SQLAlchemy 2.0 async.

    Each top-level call runs in its own short transaction.  Use
    :meth:`transaction` to group several calls into one atomic unit.  Driver
    errors surface as :class:`~eventmetrics.errors.MetricStoreError`, and
    unique-key violations on aggregates as
    :class:`~eventmetrics.errors.AggregateConflictError`.

    Usage::

        store = SqlAlchemyMetricStore(AsyncSessionLocal)
        async with store.transaction() as tx:
            await tx.save_metric(metric)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def save_metric(self, metric: Metric) -> Metric:
        async with self.transaction() as tx:
            return await tx.save_metric(metric)

    async def list_metrics(self, metric_filter: MetricFilter | None = None) -> list[Metric]:
        async with self.transaction() as tx:
            return await tx.list_metrics(metric_filter)

    async def find_aggregate(self, name: str, dimensions: Mapping[str, str]) -> Metric | None:
        async with self.transaction() as tx:
            return await tx.find_aggregate(name, dimensions)

    async def update_metric(self, metric: Metric) -> Metric:
        async with self.transaction() as tx:
            return await tx.update_metric(metric)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SessionMetricStore]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield SessionMetricStore(session)
        except IntegrityError as exc:
            raise AggregateConflictError(str(exc.orig)) from exc
        except DBAPIError as exc:
            logger.error("transaction: metric store unavailable: %s", exc)
            raise MetricStoreError(str(exc)) from exc
