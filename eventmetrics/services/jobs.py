from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

from eventmetrics.config import settings
from eventmetrics.models.enums import AggregationPeriod
from eventmetrics.schemas.metric import Metric
from eventmetrics.services.aggregation import (
    AggregationEngine,
    bucket_label,
    bucket_start,
    bucket_window,
)
from eventmetrics.services.dora_service import DoraReportService
from eventmetrics.storage.ports import MetricStore

logger = logging.getLogger(__name__)

# Periods coarse enough to be worth a DORA snapshot after aggregating.
_SNAPSHOT_PERIODS = frozenset(
    {AggregationPeriod.daily, AggregationPeriod.monthly, AggregationPeriod.yearly}
)


@dataclass
class AggregationJobResult:
    """Outcome of one :func:`run_aggregation_job` invocation."""

    period: AggregationPeriod
    start: datetime
    end: datetime
    aggregates: list[Metric] = field(default_factory=list)
    dora_snapshot: list[Metric] = field(default_factory=list)


async def record_dora_snapshot(
    store: MetricStore,
    *,
    report: DoraReportService | None = None,
    periods: Sequence[int] | None = None,
    now: datetime | None = None,
) -> list[Metric]:
    """Persist the current DORA indicators as daily ``dora.*`` metrics.

    One metric per indicator and trailing period (``period_days`` dimension),
    plus ``dora.overall_score.daily``.  Snapshots are stored as daily
    aggregates keyed by the day of *now*, so re-running on the same day
    replaces the earlier values instead of adding rows.
    """
    now = now or datetime.now(UTC)
    report = report or DoraReportService(store)
    label = bucket_label(AggregationPeriod.daily, now)
    timestamp = bucket_start(AggregationPeriod.daily, now)
    source = settings.DORA_SNAPSHOT_SOURCE

    snapshot: list[Metric] = []
    for days in periods or settings.DORA_STANDARD_PERIODS:
        overview = await report.overall(days, now=now)
        values = {
            "deployment_frequency": overview.deployment_frequency.value,
            "lead_time": overview.lead_time.value,
            "time_to_restore": overview.time_to_restore.value,
            "change_failure_rate": overview.change_failure_rate.value,
            "overall_score": overview.overall_score,
        }
        for indicator, value in values.items():
            snapshot.append(
                Metric(
                    name=f"dora.{indicator}.daily",
                    value=value,
                    timestamp=timestamp,
                    source=source,
                    dimensions={"source": source, "time_period": label, "period_days": days},
                )
            )

    saved: list[Metric] = []
    async with store.transaction() as tx:
        for metric in snapshot:
            existing = await tx.find_aggregate(metric.name, metric.dimensions)
            if existing is None:
                saved.append(await tx.save_metric(metric))
            else:
                saved.append(await tx.update_metric(existing.with_value(metric.value)))

    logger.info("record_dora_snapshot: stored %d DORA metrics for %s", len(saved), label)
    return saved


async def run_aggregation_job(
    store: MetricStore,
    period: AggregationPeriod | str,
    reference: datetime | None = None,
    *,
    engine: AggregationEngine | None = None,
    record_dora: bool = True,
) -> AggregationJobResult:
    """Aggregate the calendar *period* bucket containing *reference*.

    For daily and coarser periods a DORA snapshot is recorded afterwards,
    evaluated at the end of the bucket.  Errors from the engine propagate so
    the scheduler can retry the job.
    """
    period = AggregationPeriod(period)
    start, end = bucket_window(period, reference or datetime.now(UTC))
    engine = engine or AggregationEngine(store)

    logger.info("run_aggregation_job: %s window %s .. %s", period.value, start, end)
    result = AggregationJobResult(period=period, start=start, end=end)
    result.aggregates = await engine.aggregate(period, start, end)

    if record_dora and period in _SNAPSHOT_PERIODS:
        result.dora_snapshot = await record_dora_snapshot(store, now=end)
    return result
