from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime, timedelta
from typing import Literal

from eventmetrics.benchmarks.dora import (
    DEPLOYMENT_FREQUENCY_THRESHOLDS,
    LEAD_TIME_STAGES,
    LEAD_TIME_THRESHOLDS,
    TIME_TO_RESTORE_THRESHOLDS,
    classify_dora_level,
    rate_at_least,
    rate_below,
)
from eventmetrics.config import settings
from eventmetrics.models.enums import TrendInterval
from eventmetrics.schemas.dora import (
    ChangeFailureRateResult,
    DeploymentFrequencyResult,
    DoraOverview,
    DoraResult,
    DoraTrendPoint,
    LeadTimeResult,
    StageBreakdown,
    TimeToRestoreResult,
)
from eventmetrics.schemas.metric import Metric, MetricFilter
from eventmetrics.storage.ports import MetricStore

logger = logging.getLogger(__name__)

Statistic = Literal["mean", "median", "percentile"]

_SECONDS_PER_HOUR = 3600.0
_SECONDS_PER_DAY = 86400.0
_STATISTICS = ("mean", "median", "percentile")

# ---------------------------------------------------------------------------
# Numeric helpers
# ---------------------------------------------------------------------------


def percentile(values: Sequence[float], pct: float) -> float:
    """Linear-interpolated percentile of *values*.

    Uses rank ``k = pct / 100 * (n - 1)`` and interpolates between the
    neighbouring sorted samples.  Returns ``0.0`` for an empty sequence.

    Raises:
        ValueError: if *pct* is outside ``[0, 100]``.

    Examples:
        >>> percentile([1, 2, 3, 4], 50)
        2.5
        >>> percentile([], 95)
        0.0
    """
    if not 0 <= pct <= 100:
        raise ValueError(f"percentile must be between 0 and 100, got {pct}")
    if not values:
        return 0.0
    ordered = sorted(values)
    k = pct / 100 * (len(ordered) - 1)
    lower = math.floor(k)
    upper = math.ceil(k)
    if lower == upper:
        return float(ordered[lower])
    return ordered[lower] + (ordered[upper] - ordered[lower]) * (k - lower)


def mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _as_float(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Calculators
# ---------------------------------------------------------------------------


class DoraCalculator:
    """Shared window handling for the four DORA calculators.

    Subclasses implement :meth:`calculate_window`.  Calculators only read
    from the store; persisting a result is up to the caller.
    """

    name: str = ""

    def __init__(self, store: MetricStore) -> None:
        self._store = store

    async def calculate(
        self,
        time_period_days: int = 30,
        filters: Mapping[str, str] | None = None,
        now: datetime | None = None,
    ) -> DoraResult:
        """Compute the metric over the trailing *time_period_days* ending at *now*.

        Args:
            time_period_days: Length of the trailing window in days.
            filters: Dimension subset every sample must match, e.g.
                ``{"repository": "acme/api"}``.
            now: End of the window (exclusive).  Defaults to the current UTC time.
        """
        if time_period_days <= 0:
            raise ValueError(f"time_period_days must be positive, got {time_period_days}")
        end = now or datetime.now(UTC)
        start = end - timedelta(days=time_period_days)
        return await self.calculate_window(start, end, filters)

    async def calculate_window(
        self,
        start: datetime,
        end: datetime,
        filters: Mapping[str, str] | None = None,
    ) -> DoraResult:
        raise NotImplementedError

    async def _samples(
        self,
        names: Sequence[str],
        start: datetime,
        end: datetime,
        filters: Mapping[str, str] | None,
    ) -> list[Metric]:
        return await self._store.list_metrics(
            MetricFilter(
                names=list(names),
                start_time=start,
                end_time=end,
                dimensions=dict(filters) if filters else None,
                aggregates=False,
            )
        )

    @staticmethod
    def _window_days(start: datetime, end: datetime) -> float:
        return (end - start).total_seconds() / _SECONDS_PER_DAY


class DeploymentFrequencyCalculator(DoraCalculator):
    """Successful deployments per day over the window."""

    name = "deployment_frequency"

    def __init__(
        self,
        store: MetricStore,
        *,
        metric_names: Sequence[str] | None = None,
        thresholds: Mapping[str, float] | None = None,
    ) -> None:
        super().__init__(store)
        self._metric_names = list(metric_names or settings.DORA_DEPLOYMENT_METRICS)
        self._thresholds = dict(thresholds or DEPLOYMENT_FREQUENCY_THRESHOLDS)

    async def calculate_window(
        self,
        start: datetime,
        end: datetime,
        filters: Mapping[str, str] | None = None,
    ) -> DeploymentFrequencyResult:
        samples = await self._samples(self._metric_names, start, end, filters)
        days = self._window_days(start, end)
        result = DeploymentFrequencyResult(
            period_days=days,
            start_time=start,
            end_time=end,
            sample_size=len(samples),
        )
        if not samples:
            return result

        total = int(sum(m.value for m in samples))
        per_day = total / days
        return result.model_copy(
            update={
                "value": per_day,
                "rating": rate_at_least(per_day, self._thresholds),
                "total_deployments": total,
                "days_with_deployments": len({m.timestamp.date() for m in samples if m.value > 0}),
                "deployments_per_week": per_day * 7,
            }
        )


class LeadTimeCalculator(DoraCalculator):
    """Lead time for changes in hours.

    Samples are stored in seconds.  ``statistic`` selects the mean (default),
    the median or an arbitrary ``percentile`` (50, 75 and 95 are the usual
    choices).  When samples carry stage dimensions (``code_review_hours`` and
    friends) the result also reports each stage's mean and share.
    """

    name = "lead_time"

    def __init__(
        self,
        store: MetricStore,
        *,
        statistic: Statistic = "mean",
        percentile: float = 50.0,
        metric_names: Sequence[str] | None = None,
        thresholds: Mapping[str, float] | None = None,
    ) -> None:
        super().__init__(store)
        if statistic not in _STATISTICS:
            raise ValueError(f"unknown statistic {statistic!r}")
        if not 0 <= percentile <= 100:
            raise ValueError(f"percentile must be between 0 and 100, got {percentile}")
        self._statistic = statistic
        self._percentile = percentile
        self._metric_names = list(metric_names or settings.DORA_LEAD_TIME_METRICS)
        self._thresholds = dict(thresholds or LEAD_TIME_THRESHOLDS)

    async def calculate_window(
        self,
        start: datetime,
        end: datetime,
        filters: Mapping[str, str] | None = None,
    ) -> LeadTimeResult:
        samples = await self._samples(self._metric_names, start, end, filters)
        result = LeadTimeResult(
            period_days=self._window_days(start, end),
            start_time=start,
            end_time=end,
            sample_size=len(samples),
            statistic=self._statistic,
            percentile=self._percentile if self._statistic == "percentile" else None,
        )
        if not samples:
            return result

        hours = [m.value / _SECONDS_PER_HOUR for m in samples]
        value = _summarise(hours, self._statistic, self._percentile)
        return result.model_copy(
            update={
                "value": value,
                "rating": rate_below(value, self._thresholds),
                "stages": self.stage_breakdown(samples),
            }
        )

    @staticmethod
    def stage_breakdown(samples: Sequence[Metric]) -> dict[str, StageBreakdown]:
        """Mean hours per lead-time stage and its percentage of the stage total."""
        stage_means: dict[str, tuple[float, int]] = {}
        for stage in LEAD_TIME_STAGES:
            values = [
                v for v in (_as_float(m.dimensions.get(stage)) for m in samples) if v is not None
            ]
            if values:
                stage_means[stage] = (mean(values), len(values))

        total = sum(hours for hours, _ in stage_means.values())
        return {
            stage: StageBreakdown(
                hours=hours,
                percentage=(hours / total * 100) if total > 0 else 0.0,
                sample_size=count,
            )
            for stage, (hours, count) in stage_means.items()
        }


class TimeToRestoreCalculator(DoraCalculator):
    """Hours to resolve production incidents."""

    name = "time_to_restore"

    def __init__(
        self,
        store: MetricStore,
        *,
        statistic: Statistic = "mean",
        percentile: float = 50.0,
        metric_names: Sequence[str] | None = None,
        thresholds: Mapping[str, float] | None = None,
    ) -> None:
        super().__init__(store)
        if statistic not in _STATISTICS:
            raise ValueError(f"unknown statistic {statistic!r}")
        if not 0 <= percentile <= 100:
            raise ValueError(f"percentile must be between 0 and 100, got {percentile}")
        self._statistic = statistic
        self._percentile = percentile
        self._metric_names = list(metric_names or settings.DORA_RESTORE_METRICS)
        self._thresholds = dict(thresholds or TIME_TO_RESTORE_THRESHOLDS)

    async def calculate_window(
        self,
        start: datetime,
        end: datetime,
        filters: Mapping[str, str] | None = None,
    ) -> TimeToRestoreResult:
        samples = await self._samples(self._metric_names, start, end, filters)
        result = TimeToRestoreResult(
            period_days=self._window_days(start, end),
            start_time=start,
            end_time=end,
            sample_size=len(samples),
            statistic=self._statistic,
            percentile=self._percentile if self._statistic == "percentile" else None,
        )
        if not samples:
            return result

        hours = [m.value / _SECONDS_PER_HOUR for m in samples]
        value = _summarise(hours, self._statistic, self._percentile)
        return result.model_copy(
            update={
                "value": value,
                "rating": rate_below(value, self._thresholds),
                "median_hours": percentile(hours, 50),
                "p90_hours": percentile(hours, 90),
            }
        )


class ChangeFailureRateCalculator(DoraCalculator):
    """Percentage of deployments in the window that failed.

    Failed deployments are the failure metrics; successful ones are the
    deployment-frequency metrics.  The rate is ``failed / (failed +
    successful) * 100`` and ``0`` when there were no deployments at all.
    """

    name = "change_failure_rate"

    def __init__(
        self,
        store: MetricStore,
        *,
        deployment_metric_names: Sequence[str] | None = None,
        failure_metric_names: Sequence[str] | None = None,
        thresholds: Mapping[str, float] | None = None,
    ) -> None:
        super().__init__(store)
        self._deployment_names = list(deployment_metric_names or settings.DORA_DEPLOYMENT_METRICS)
        self._failure_names = list(failure_metric_names or settings.DORA_FAILURE_METRICS)
        self._thresholds = dict(thresholds or settings.DORA_CHANGE_FAILURE_THRESHOLDS)

    async def calculate_window(
        self,
        start: datetime,
        end: datetime,
        filters: Mapping[str, str] | None = None,
    ) -> ChangeFailureRateResult:
        samples = await self._samples(
            [*self._deployment_names, *self._failure_names], start, end, filters
        )
        failures = int(sum(m.value for m in samples if m.name in self._failure_names))
        successes = int(sum(m.value for m in samples if m.name in self._deployment_names))
        total = failures + successes

        result = ChangeFailureRateResult(
            period_days=self._window_days(start, end),
            start_time=start,
            end_time=end,
            sample_size=total,
            failed_deployments=failures,
            total_deployments=total,
        )
        if total == 0:
            return result

        rate = failures / total * 100
        return result.model_copy(update={"value": rate, "rating": rate_below(rate, self._thresholds)})


def _summarise(values: Sequence[float], statistic: Statistic, pct: float) -> float:
    if statistic == "mean":
        return mean(values)
    if statistic == "median":
        return percentile(values, 50)
    if statistic == "percentile":
        return percentile(values, pct)
    raise ValueError(f"unknown statistic {statistic!r}")


# ---------------------------------------------------------------------------
# Combined reporting
# ---------------------------------------------------------------------------


def _add_months(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    return moment.replace(year=year, month=month, day=1)


class DoraReportService:
    """Run all four calculators together and derive trends.

    Usage::

        report = DoraReportService(store)
        overview = await report.overall(time_period_days=30)
    """

    def __init__(
        self,
        store: MetricStore,
        *,
        deployment_frequency: DeploymentFrequencyCalculator | None = None,
        lead_time: LeadTimeCalculator | None = None,
        time_to_restore: TimeToRestoreCalculator | None = None,
        change_failure_rate: ChangeFailureRateCalculator | None = None,
    ) -> None:
        self.deployment_frequency = deployment_frequency or DeploymentFrequencyCalculator(store)
        self.lead_time = lead_time or LeadTimeCalculator(store)
        self.time_to_restore = time_to_restore or TimeToRestoreCalculator(store)
        self.change_failure_rate = change_failure_rate or ChangeFailureRateCalculator(store)

    async def overall(
        self,
        time_period_days: int = 30,
        filters: Mapping[str, str] | None = None,
        now: datetime | None = None,
    ) -> DoraOverview:
        """Compute every indicator over the same trailing window.

        ``overall_rating`` averages the known ratings (elite 4 .. low 1);
        indicators without samples do not count towards it.
        """
        now = now or datetime.now(UTC)
        deployment_frequency = await self.deployment_frequency.calculate(time_period_days, filters, now)
        lead_time = await self.lead_time.calculate(time_period_days, filters, now)
        time_to_restore = await self.time_to_restore.calculate(time_period_days, filters, now)
        change_failure_rate = await self.change_failure_rate.calculate(time_period_days, filters, now)

        rating, score = classify_dora_level(
            [
                deployment_frequency.rating,
                lead_time.rating,
                time_to_restore.rating,
                change_failure_rate.rating,
            ]
        )
        logger.info(
            "overall: %d-day DORA level %s (score %.2f)", time_period_days, rating.value, score
        )
        return DoraOverview(
            deployment_frequency=deployment_frequency,
            lead_time=lead_time,
            time_to_restore=time_to_restore,
            change_failure_rate=change_failure_rate,
            overall_rating=rating,
            overall_score=score,
        )

    @staticmethod
    async def trend(
        calculator: DoraCalculator,
        start: datetime,
        end: datetime,
        interval: TrendInterval | str = TrendInterval.week,
        filters: Mapping[str, str] | None = None,
    ) -> list[DoraTrendPoint]:
        """Evaluate *calculator* over consecutive *interval* slices of ``[start, end)``.

        Month slices end on the first of the next calendar month; the last
        slice is clipped to *end*.
        """
        interval = TrendInterval(interval)
        if end <= start:
            raise ValueError("trend: end must be after start")

        points: list[DoraTrendPoint] = []
        cursor = start
        while cursor < end:
            if interval is TrendInterval.day:
                next_cursor = cursor + timedelta(days=1)
            elif interval is TrendInterval.week:
                next_cursor = cursor + timedelta(weeks=1)
            else:
                next_cursor = _add_months(cursor, 1)
            slice_end = min(next_cursor, end)
            result = await calculator.calculate_window(cursor, slice_end, filters)
            points.append(DoraTrendPoint(start_time=cursor, end_time=slice_end, result=result))
            cursor = next_cursor
        return points

