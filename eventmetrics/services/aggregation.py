from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from eventmetrics.config import settings
from eventmetrics.errors import AggregateConflictError
from eventmetrics.models.enums import AggregationPeriod
from eventmetrics.schemas.metric import Metric, MetricFilter
from eventmetrics.storage.ports import MetricStore

logger = logging.getLogger(__name__)

_LABEL_FORMATS: dict[AggregationPeriod, str] = {
    AggregationPeriod.five_min: "%Y-%m-%d-%H-%M",
    AggregationPeriod.hourly: "%Y-%m-%d-%H",
    AggregationPeriod.daily: "%Y-%m-%d",
    AggregationPeriod.monthly: "%Y-%m",
    AggregationPeriod.yearly: "%Y",
}

# Metric name -> dimension kept as an extra grouping discriminator.
DISCRIMINATORS: dict[str, str] = {
    "github.push.directory_changes": "directory",
    "github.push.filetype_changes": "filetype",
    "github.push.commit_type": "type",
}

# ---------------------------------------------------------------------------
# Time buckets
# ---------------------------------------------------------------------------


def bucket_start(period: AggregationPeriod | str, moment: datetime) -> datetime:
    """Truncate *moment* (converted to UTC) to the start of its *period* bucket."""
    period = AggregationPeriod(period)
    moment = moment.astimezone(UTC) if moment.tzinfo else moment.replace(tzinfo=UTC)
    if period is AggregationPeriod.five_min:
        return moment.replace(minute=moment.minute - moment.minute % 5, second=0, microsecond=0)
    if period is AggregationPeriod.hourly:
        return moment.replace(minute=0, second=0, microsecond=0)
    if period is AggregationPeriod.daily:
        return moment.replace(hour=0, minute=0, second=0, microsecond=0)
    if period is AggregationPeriod.monthly:
        return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return moment.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0)


def bucket_label(period: AggregationPeriod | str, moment: datetime) -> str:
    """Format the ``time_period`` label of the bucket containing *moment*.

    Examples:
        >>> bucket_label("5min", datetime(2024, 1, 1, 10, 7, tzinfo=UTC))
        '2024-01-01-10-05'
        >>> bucket_label("monthly", datetime(2024, 1, 31, tzinfo=UTC))
        '2024-01'
    """
    period = AggregationPeriod(period)
    return bucket_start(period, moment).strftime(_LABEL_FORMATS[period])


def bucket_window(period: AggregationPeriod | str, reference: datetime) -> tuple[datetime, datetime]:
    """Return the calendar ``[start, end)`` of the *period* bucket containing *reference*."""
    period = AggregationPeriod(period)
    start = bucket_start(period, reference)
    if period is AggregationPeriod.five_min:
        return start, start + timedelta(minutes=5)
    if period is AggregationPeriod.hourly:
        return start, start + timedelta(hours=1)
    if period is AggregationPeriod.daily:
        return start, start + timedelta(days=1)
    if period is AggregationPeriod.monthly:
        if start.month == 12:
            return start, start.replace(year=start.year + 1, month=1)
        return start, start.replace(month=start.month + 1)
    return start, start.replace(year=start.year + 1)


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GroupKey:
    """Identity of one aggregation group within a window."""

    base_name: str
    source: str
    repository: str | None = None
    discriminator: str | None = None
    discriminator_value: str | None = None

    def aggregate_name(self, period: AggregationPeriod) -> str:
        return f"{self.base_name}.{period.value}"

    def aggregate_dimensions(self, label: str) -> dict[str, str]:
        dims = {"source": self.source, "time_period": label}
        if self.repository is not None:
            dims["repository"] = self.repository
        if self.discriminator is not None and self.discriminator_value is not None:
            dims[self.discriminator] = self.discriminator_value
        return dims


class AggregationEngine:
    """Roll raw metrics in a time window into idempotent period aggregates.

    A run reads every raw ``*.total`` metric plus the allow-listed metric
    names in ``[start, end)``, groups them by :class:`GroupKey`, sums each
    group and writes one aggregate per group.  The aggregate for a group is
    found by exact name and dimension set and has its value *replaced*, so
    re-running a window never duplicates or double counts.

    The whole run happens inside one store transaction.  A store failure
    propagates and leaves nothing behind; a concurrent writer creating the
    same aggregate first (``AggregateConflictError``) triggers a rerun of the
    window, up to ``max_retries`` times.

    Usage::

        engine = AggregationEngine(store)
        aggregates = await engine.aggregate("daily", start, end)
    """

    def __init__(
        self,
        store: MetricStore,
        *,
        extra_metric_names: Sequence[str] | None = None,
        max_retries: int | None = None,
    ) -> None:
        self._store = store
        self._extra_names: tuple[str, ...] = tuple(
            extra_metric_names
            if extra_metric_names is not None
            else settings.AGGREGATION_EXTRA_METRICS
        )
        self._max_retries = max_retries if max_retries is not None else settings.AGGREGATION_MAX_RETRIES

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def aggregate(
        self,
        period: AggregationPeriod | str,
        start: datetime,
        end: datetime,
    ) -> list[Metric]:
        """Aggregate ``[start, end)`` into *period* buckets labelled from *start*.

        Returns:
            The aggregate metrics as stored after this run.

        Raises:
            ValueError: if *period* is unknown or the window is empty.
            MetricStoreError: if the store fails; nothing from this run is kept.
        """
        period = AggregationPeriod(period)
        if end <= start:
            raise ValueError(f"aggregate: empty window {start.isoformat()} .. {end.isoformat()}")
        label = bucket_label(period, start)

        attempt = 0
        while True:
            try:
                return await self._run(period, start, end, label)
            except AggregateConflictError:
                attempt += 1
                if attempt > self._max_retries:
                    logger.error(
                        "aggregate: %s %s still conflicting after %d retries",
                        period.value,
                        label,
                        self._max_retries,
                    )
                    raise
                logger.warning(
                    "aggregate: concurrent write on %s %s, retrying (%d/%d)",
                    period.value,
                    label,
                    attempt,
                    self._max_retries,
                )

    def group(self, metrics: Iterable[Metric]) -> dict[GroupKey, float]:
        """Sum *metrics* per :class:`GroupKey`."""
        totals: dict[GroupKey, float] = defaultdict(float)
        for metric in metrics:
            totals[self.group_key(metric)] += metric.value
        return dict(totals)

    def group_key(self, metric: Metric) -> GroupKey:
        allow_listed = metric.name in self._extra_names
        base_name = metric.name if allow_listed else ".".join(metric.name.split(".")[:2])
        discriminator = DISCRIMINATORS.get(metric.name)
        return GroupKey(
            base_name=base_name,
            source=metric.source,
            repository=metric.dimensions.get("repository"),
            discriminator=discriminator,
            discriminator_value=(
                metric.dimensions.get(discriminator, "unknown") if discriminator else None
            ),
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _run(
        self,
        period: AggregationPeriod,
        start: datetime,
        end: datetime,
        label: str,
    ) -> list[Metric]:
        timestamp = bucket_start(period, start)
        results: list[Metric] = []

        async with self._store.transaction() as tx:
            raw = await self._fetch(tx, start, end)
            groups = self.group(raw)
            for key, total in sorted(groups.items(), key=lambda item: repr(item[0])):
                results.append(await self._upsert(tx, key, total, period, label, timestamp))

        logger.info(
            "aggregate: %s %s rolled %d raw metrics into %d aggregates",
            period.value,
            label,
            len(raw),
            len(results),
        )
        return results

    async def _fetch(self, tx: MetricStore, start: datetime, end: datetime) -> list[Metric]:
        totals = await tx.list_metrics(
            MetricFilter(name_pattern="%.total", start_time=start, end_time=end, aggregates=False)
        )
        extras: list[Metric] = []
        if self._extra_names:
            extras = await tx.list_metrics(
                MetricFilter(
                    names=list(self._extra_names),
                    start_time=start,
                    end_time=end,
                    aggregates=False,
                )
            )
        seen = {m.id for m in totals}
        return totals + [m for m in extras if m.id not in seen]

    @staticmethod
    async def _upsert(
        tx: MetricStore,
        key: GroupKey,
        total: float,
        period: AggregationPeriod,
        label: str,
        timestamp: datetime,
    ) -> Metric:
        name = key.aggregate_name(period)
        dims = key.aggregate_dimensions(label)
        existing = await tx.find_aggregate(name, dims)
        if existing is not None:
            if existing.value == total:
                return existing
            return await tx.update_metric(existing.with_value(total))
        return await tx.save_metric(
            Metric(name=name, value=total, timestamp=timestamp, source=key.source, dimensions=dims)
        )
