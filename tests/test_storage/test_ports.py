from __future__ import annotations

import pytest

from eventmetrics.errors import AggregateConflictError, MetricStoreError
from eventmetrics.schemas.metric import MetricFilter
from eventmetrics.storage.memory import InMemoryMetricStore
from eventmetrics.storage.ports import MetricStore, aggregate_fingerprint
from eventmetrics.storage.sqlalchemy_store import SqlAlchemyMetricStore
from tests.factories import make_metric, utc


def _aggregate(value: float = 3, **dims: str):
    return make_metric(
        "github.push.daily",
        value,
        timestamp=utc(2024, 1, 1),
        repository="acme/api",
        time_period="2024-01-01",
        **dims,
    )


class TestAggregateFingerprint:
    def test_dimension_order_is_irrelevant(self) -> None:
        a = aggregate_fingerprint("x.daily", {"a": "1", "b": "2"})
        b = aggregate_fingerprint("x.daily", {"b": "2", "a": "1"})
        assert a == b
        assert len(a) == 64

    def test_name_and_values_matter(self) -> None:
        base = aggregate_fingerprint("x.daily", {"a": "1"})
        assert base != aggregate_fingerprint("y.daily", {"a": "1"})
        assert base != aggregate_fingerprint("x.daily", {"a": "2"})
        assert base != aggregate_fingerprint("x.daily", {"a": "1", "b": "1"})


class TestStoreContract:
    """Behaviour shared by every :class:`MetricStore` adapter."""

    @pytest.mark.asyncio
    async def test_adapters_satisfy_protocol(self, store: MetricStore) -> None:
        assert isinstance(store, MetricStore)

    @pytest.mark.asyncio
    async def test_save_assigns_id(self, store: MetricStore) -> None:
        saved = await store.save_metric(make_metric(repository="acme/api"))
        assert saved.id is not None
        assert saved.dimensions == {"repository": "acme/api"}
        assert saved.timestamp == utc(2024, 1, 1, 12)

    @pytest.mark.asyncio
    async def test_list_is_ordered_and_filtered(self, store: MetricStore) -> None:
        """Results come back by timestamp then name, honouring every criterion."""
        await store.save_metric(make_metric("b.total", timestamp=utc(2024, 1, 2)))
        await store.save_metric(make_metric("a.total", timestamp=utc(2024, 1, 2)))
        await store.save_metric(make_metric("c.total", timestamp=utc(2024, 1, 1), source="ci"))
        await store.save_metric(make_metric("c.count", timestamp=utc(2024, 1, 3)))

        names = [m.name for m in await store.list_metrics()]
        assert names == ["c.total", "a.total", "b.total", "c.count"]

        totals = await store.list_metrics(MetricFilter(name_pattern="%.total", source="github"))
        assert [m.name for m in totals] == ["a.total", "b.total"]

        window = await store.list_metrics(
            MetricFilter(start_time=utc(2024, 1, 2), end_time=utc(2024, 1, 3))
        )
        assert [m.name for m in window] == ["a.total", "b.total"]

        named = await store.list_metrics(MetricFilter(names=["c.count", "c.total"]))
        assert [m.name for m in named] == ["c.total", "c.count"]

    @pytest.mark.asyncio
    async def test_dimension_filter(self, store: MetricStore) -> None:
        await store.save_metric(make_metric(repository="acme/api", branch="main"))
        await store.save_metric(make_metric(repository="acme/web", branch="main"))
        found = await store.list_metrics(MetricFilter(dimensions={"repository": "acme/web"}))
        assert [m.dimensions["repository"] for m in found] == ["acme/web"]

    @pytest.mark.asyncio
    async def test_raw_and_aggregate_selection(self, store: MetricStore) -> None:
        await store.save_metric(make_metric())
        await store.save_metric(_aggregate())
        raw = await store.list_metrics(MetricFilter(aggregates=False))
        rolled = await store.list_metrics(MetricFilter(aggregates=True))
        assert [m.name for m in raw] == ["github.push.total"]
        assert [m.name for m in rolled] == ["github.push.daily"]

    @pytest.mark.asyncio
    async def test_find_aggregate_by_exact_dimensions(self, store: MetricStore) -> None:
        saved = await store.save_metric(_aggregate())
        found = await store.find_aggregate(
            "github.push.daily", {"time_period": "2024-01-01", "repository": "acme/api"}
        )
        assert found is not None
        assert found.id == saved.id
        assert found.value == 3
        assert await store.find_aggregate("github.push.daily", {"repository": "acme/api"}) is None

    @pytest.mark.asyncio
    async def test_duplicate_aggregate_conflicts(self, store: MetricStore) -> None:
        """A second aggregate with the same fingerprint is rejected."""
        await store.save_metric(_aggregate())
        with pytest.raises(AggregateConflictError):
            await store.save_metric(_aggregate(value=4))
        assert len(await store.list_metrics(MetricFilter(aggregates=True))) == 1

    @pytest.mark.asyncio
    async def test_duplicate_raw_metrics_are_fine(self, store: MetricStore) -> None:
        await store.save_metric(make_metric())
        await store.save_metric(make_metric())
        assert len(await store.list_metrics()) == 2

    @pytest.mark.asyncio
    async def test_update_replaces_value(self, store: MetricStore) -> None:
        saved = await store.save_metric(_aggregate())
        await store.update_metric(saved.with_value(7))
        found = await store.find_aggregate("github.push.daily", saved.dimensions)
        assert found is not None
        assert found.value == 7
        assert found.id == saved.id

    @pytest.mark.asyncio
    async def test_update_rekeys_changed_dimensions(self, store: MetricStore) -> None:
        """An aggregate is found under its new dimensions after an update."""
        saved = await store.save_metric(_aggregate())
        moved_dims = {**saved.dimensions, "time_period": "2024-01-02"}
        await store.update_metric(saved.model_copy(update={"dimensions": moved_dims}))

        assert await store.find_aggregate("github.push.daily", saved.dimensions) is None
        found = await store.find_aggregate("github.push.daily", moved_dims)
        assert found is not None
        assert found.id == saved.id

    @pytest.mark.asyncio
    async def test_update_onto_existing_aggregate_conflicts(self, store: MetricStore) -> None:
        first = await store.save_metric(_aggregate())
        second = await store.save_metric(_aggregate(branch="main"))
        with pytest.raises(AggregateConflictError):
            await store.update_metric(
                second.model_copy(update={"dimensions": dict(first.dimensions)})
            )

    @pytest.mark.asyncio
    async def test_update_unknown_metric(self, store: MetricStore) -> None:
        with pytest.raises(MetricStoreError):
            await store.update_metric(make_metric())

    @pytest.mark.asyncio
    async def test_transaction_commits(self, store: MetricStore) -> None:
        async with store.transaction() as tx:
            await tx.save_metric(make_metric())
            await tx.save_metric(_aggregate())
        assert len(await store.list_metrics()) == 2

    @pytest.mark.asyncio
    async def test_transaction_rolls_back_on_error(self, store: MetricStore) -> None:
        """Nothing written inside a failed transaction survives."""
        existing = await store.save_metric(_aggregate())
        with pytest.raises(RuntimeError):
            async with store.transaction() as tx:
                await tx.save_metric(make_metric())
                await tx.update_metric(existing.with_value(99))
                raise RuntimeError("boom")

        assert [m.id for m in await store.list_metrics()] == [existing.id]
        found = await store.find_aggregate("github.push.daily", existing.dimensions)
        assert found is not None
        assert found.value == 3

    @pytest.mark.asyncio
    async def test_nested_transaction_joins_outer(self, store: MetricStore) -> None:
        async with store.transaction() as tx:
            async with tx.transaction() as inner:
                await inner.save_metric(make_metric())
            assert len(await tx.list_metrics()) == 1
        assert len(await store.list_metrics()) == 1


class TestInMemoryMetricStore:
    @pytest.mark.asyncio
    async def test_len(self, memory_store: InMemoryMetricStore) -> None:
        await memory_store.save_metric(make_metric())
        assert len(memory_store) == 1

    @pytest.mark.asyncio
    async def test_conflict_inside_transaction_restores_state(
        self, memory_store: InMemoryMetricStore
    ) -> None:
        """A conflict mid-transaction discards the writes made before it."""
        await memory_store.save_metric(_aggregate())
        with pytest.raises(AggregateConflictError):
            async with memory_store.transaction() as tx:
                await tx.save_metric(make_metric())
                await tx.save_metric(_aggregate(value=5))
        assert len(memory_store) == 1


class TestSqlAlchemyMetricStore:
    @pytest.mark.asyncio
    async def test_values_come_back_as_numbers(self, sql_store: SqlAlchemyMetricStore) -> None:
        await sql_store.save_metric(make_metric(value=2))
        (metric,) = await sql_store.list_metrics()
        assert metric.value == 2.0
        assert metric.timestamp.tzinfo is not None

    @pytest.mark.asyncio
    async def test_aggregate_conflict_across_transactions(
        self, sql_store: SqlAlchemyMetricStore
    ) -> None:
        """The unique aggregate_key column maps to AggregateConflictError."""
        async with sql_store.transaction() as tx:
            await tx.save_metric(_aggregate())
        with pytest.raises(AggregateConflictError):
            async with sql_store.transaction() as tx:
                await tx.save_metric(_aggregate(value=9))
        assert len(await sql_store.list_metrics()) == 1
