from __future__ import annotations

import pytest

from eventmetrics.config import settings
from eventmetrics.models.enums import AggregationPeriod
from eventmetrics.schemas.metric import MetricFilter
from eventmetrics.services.jobs import record_dora_snapshot, run_aggregation_job
from eventmetrics.storage.ports import MetricStore
from tests.factories import make_metric, utc

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _deployments(store: MetricStore) -> None:
    for hour in (9, 15):
        await store.save_metric(
            make_metric("ci.deploy.completed", 1, timestamp=utc(2024, 1, 1, hour), source="ci")
        )
        await store.save_metric(
            make_metric("ci.deploy.total", 1, timestamp=utc(2024, 1, 1, hour), source="ci")
        )


class TestRecordDoraSnapshot:
    @pytest.mark.asyncio
    async def test_snapshot_per_indicator_and_period(self, store: MetricStore) -> None:
        """Every indicator is stored once per configured trailing period."""
        await _deployments(store)
        saved = await record_dora_snapshot(store, periods=[1, 7], now=utc(2024, 1, 2))

        assert len(saved) == 10
        frequency = {
            m.dimensions["period_days"]: m.value
            for m in saved
            if m.name == "dora.deployment_frequency.daily"
        }
        assert frequency == {"1": pytest.approx(2.0), "7": pytest.approx(2 / 7)}
        assert all(m.source == settings.DORA_SNAPSHOT_SOURCE for m in saved)
        assert all(m.dimensions["time_period"] == "2024-01-02" for m in saved)
        assert all(m.is_aggregate for m in saved)

    @pytest.mark.asyncio
    async def test_rerun_same_day_replaces_values(self, store: MetricStore) -> None:
        """Recording twice on one day updates the snapshot in place."""
        await record_dora_snapshot(store, periods=[1], now=utc(2024, 1, 2))
        await _deployments(store)
        await record_dora_snapshot(store, periods=[1], now=utc(2024, 1, 2, 6))

        stored = await store.list_metrics(MetricFilter(names=["dora.deployment_frequency.daily"]))
        assert len(stored) == 1
        assert stored[0].value == pytest.approx(2.0)

    @pytest.mark.asyncio
    async def test_default_periods(self, memory_store: MetricStore) -> None:
        saved = await record_dora_snapshot(memory_store, now=utc(2024, 1, 2))
        periods = {m.dimensions["period_days"] for m in saved}
        assert periods == {str(days) for days in settings.DORA_STANDARD_PERIODS}


class TestRunAggregationJob:
    @pytest.mark.asyncio
    async def test_daily_job_aggregates_and_snapshots(self, store: MetricStore) -> None:
        """A daily job rolls up the reference day and records DORA at its end."""
        await _deployments(store)
        result = await run_aggregation_job(store, "daily", utc(2024, 1, 1, 18))

        assert result.period is AggregationPeriod.daily
        assert (result.start, result.end) == (utc(2024, 1, 1), utc(2024, 1, 2))
        assert [(m.name, m.value) for m in result.aggregates] == [("ci.deploy.daily", 2)]
        assert len(result.dora_snapshot) == 5 * len(settings.DORA_STANDARD_PERIODS)
        assert all(m.dimensions["time_period"] == "2024-01-02" for m in result.dora_snapshot)

    @pytest.mark.asyncio
    async def test_hourly_job_skips_snapshot(self, store: MetricStore) -> None:
        await _deployments(store)
        result = await run_aggregation_job(store, AggregationPeriod.hourly, utc(2024, 1, 1, 9, 30))
        assert [(m.name, m.value) for m in result.aggregates] == [("ci.deploy.hourly", 1)]
        assert result.dora_snapshot == []

    @pytest.mark.asyncio
    async def test_snapshot_can_be_disabled(self, store: MetricStore) -> None:
        result = await run_aggregation_job(store, "monthly", utc(2024, 1, 15), record_dora=False)
        assert (result.start, result.end) == (utc(2024, 1, 1), utc(2024, 2, 1))
        assert result.dora_snapshot == []

    @pytest.mark.asyncio
    async def test_rerunning_job_is_idempotent(self, store: MetricStore) -> None:
        await _deployments(store)
        await run_aggregation_job(store, "daily", utc(2024, 1, 1, 18))
        await run_aggregation_job(store, "daily", utc(2024, 1, 1, 20))
        aggregates = await store.list_metrics(MetricFilter(aggregates=True))
        names = [m.name for m in aggregates]
        assert names.count("ci.deploy.daily") == 1
        assert len(aggregates) == 1 + 5 * len(settings.DORA_STANDARD_PERIODS)
