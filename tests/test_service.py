"""
End-to-end tests for MetricsService.

These tests drive the full path (builder, cache, batch coordinator,
executor, aggregator, health scoring) against in-memory services:
- A cached result is returned by reference until its TTL passes
- Concurrent identical requests execute once
- Failures come back as MetricResult.error, never raised
- Invalidating an entity drops results derived from it
"""

import asyncio

import pytest

from conftest import FakeEntitySearch, FakeTimeSeries, entity, row
from kafka_query.batch import BatchCoordinator
from kafka_query.cache import ResultCache
from kafka_query.exceptions import (
    AggregationError,
    InvalidDescriptorError,
    PermissionDeniedError,
    ServiceUnavailableError,
)
from kafka_query.execution import QueryExecutor, RetryConfig
from kafka_query.query import Aggregation, AggregationKind, Filter, FilterOperator, QueryDescriptor
from kafka_query.service import MetricRequest, MetricsService
from kafka_query.types import AggregatedResult, EntityKind, HealthStatus, MetricError

HEALTHY_CLUSTER = {
    "active_controller": 1.0,
    "offline_partitions": 0.0,
    "under_replicated_partitions": 0.0,
    "isr_shrinks_per_sec": 0.0,
    "request_latency_ms": 50.0,
    "request_handler_idle_percent": 80.0,
    "cpu_percent": 50.0,
    "disk_used_percent": 50.0,
}


def healthy_rows(query):
    return [row(HEALTHY_CLUSTER, (), 60.0), row(HEALTHY_CLUSTER, (), 120.0)]


def health_request(cluster="prod-kafka", **kwargs):
    return MetricRequest(
        entity_kind=EntityKind.CLUSTER,
        filters={"clusterName": cluster},
        include_health=True,
        **kwargs,
    )


@pytest.fixture
def timeseries():
    return FakeTimeSeries(healthy_rows)


@pytest.fixture
def entity_search():
    return FakeEntitySearch([entity("guid-1", "broker-1"), entity("guid-2", "broker-2")])


@pytest.fixture
def service(timeseries, entity_search, clock, sleep):
    """Service wired to fakes, a fake clock and a short batching window."""
    executor = QueryExecutor(
        timeseries=timeseries,
        entity_search=entity_search,
        retry=RetryConfig(max_attempts=3, base_delay_seconds=0.25),
        sleep=sleep,
    )
    return MetricsService(
        executor=executor,
        cache=ResultCache(capacity=50, clock=clock),
        coordinator=BatchCoordinator(window_seconds=0.005),
        metric_ttl_seconds=30.0,
        topology_ttl_seconds=300.0,
    )


# =============================================================================
# Caching
# =============================================================================


class TestCachedHealth:
    """Tests for the cluster health flow."""

    @pytest.mark.asyncio
    async def test_healthy_cluster(self, service, timeseries):
        result = await service.fetch_metrics(health_request())

        assert result.ok
        assert isinstance(result.data, AggregatedResult)
        assert result.data.health.overall == 100.0
        assert result.data.health.status is HealthStatus.EXCELLENT
        assert result.data.metrics["cpu_percent"] == 50.0
        assert timeseries.call_count == 1
        assert "clusterName = 'prod-kafka'" in timeseries.queries[0]

    @pytest.mark.asyncio
    async def test_repeat_within_ttl_is_served_from_cache(self, service, timeseries, clock):
        """A second call within the TTL returns the identical object without a query."""
        first = await service.fetch_metrics(health_request())
        clock.advance(29)

        second = await service.fetch_metrics(health_request())

        assert second.data is first.data
        assert timeseries.call_count == 1

    @pytest.mark.asyncio
    async def test_call_after_ttl_executes_again(self, service, timeseries, clock):
        first = await service.fetch_metrics(health_request())
        clock.advance(31)

        third = await service.fetch_metrics(health_request())

        assert third.ok
        assert third.data is not first.data
        assert timeseries.call_count == 2

    @pytest.mark.asyncio
    async def test_request_ttl_override(self, service, timeseries, clock):
        await service.fetch_metrics(health_request(ttl_seconds=5))
        clock.advance(6)

        await service.fetch_metrics(health_request(ttl_seconds=5))

        assert timeseries.call_count == 2

    @pytest.mark.asyncio
    async def test_cache_key_is_stable(self, service):
        assert service.cache_key(health_request()) == service.cache_key(health_request())
        assert service.cache_key(health_request()) != service.cache_key(health_request("staging"))

    @pytest.mark.asyncio
    async def test_unhealthy_cluster(self, service, timeseries):
        timeseries.responder = lambda q: [row({**HEALTHY_CLUSTER, "active_controller": 0.0})]

        result = await service.fetch_metrics(health_request())

        assert result.data.health.overall == 0.0
        assert result.data.health.status is HealthStatus.CRITICAL


# =============================================================================
# Deduplication and batching
# =============================================================================


class TestConcurrency:
    """Tests for concurrent requests."""

    @pytest.mark.asyncio
    async def test_concurrent_identical_requests_execute_once(self, service, timeseries):
        results = await asyncio.gather(*(service.fetch_metrics(health_request()) for _ in range(10)))

        assert timeseries.call_count == 1
        assert all(r.data is results[0].data for r in results)

    @pytest.mark.asyncio
    async def test_compatible_requests_share_one_call(self, service, timeseries):
        prod, staging = await asyncio.gather(
            service.fetch_metrics(health_request("prod-kafka")),
            service.fetch_metrics(health_request("staging-kafka")),
        )

        assert prod.ok and staging.ok
        assert len(timeseries.combined_calls) == 1
        assert timeseries.call_count == 2

    @pytest.mark.asyncio
    async def test_batched_failing_query_respects_max_attempts(self, service, timeseries, sleep):
        """The combined call is the failing query's first attempt."""
        timeseries.responder = (
            lambda q: ServiceUnavailableError("down") if "'bad'" in q else healthy_rows(q)
        )

        ok, bad = await asyncio.gather(
            service.fetch_metrics(health_request("ok")),
            service.fetch_metrics(health_request("bad")),
        )

        assert ok.ok
        assert isinstance(bad.error, ServiceUnavailableError)
        assert len(timeseries.combined_calls) == 1
        assert sum("'bad'" in q for q in timeseries.queries) == 3
        assert len(sleep.delays) == 2

    @pytest.mark.asyncio
    async def test_filter_on_nested_alias_does_not_fail_the_batch(self, service, timeseries):
        """A request with no entity search form still caches, and so do its neighbours."""
        timeseries.responder = lambda q: [row({"cpu": 40.0, "peak": 70.0}, (), 60.0)]
        inner = QueryDescriptor(
            entity_kind=EntityKind.BROKER,
            aggregations=(Aggregation(AggregationKind.AVERAGE, "cpuPercent", alias="v1"),),
            group_by=("entityName",),
        )
        nested = MetricRequest(
            entity_kind=EntityKind.BROKER,
            metrics=(Aggregation(AggregationKind.MAX, "v1", alias="peak", source=inner),),
            filters=(Filter("v1", FilterOperator.GT, 50.0),),
        )
        plain = MetricRequest(
            entity_kind=EntityKind.BROKER,
            metrics=(Aggregation(AggregationKind.AVERAGE, "cpuPercent", alias="cpu"),),
        )

        plain_result, nested_result = await asyncio.gather(
            service.fetch_metrics(plain), service.fetch_metrics(nested)
        )

        assert plain_result.ok and nested_result.ok
        assert plain_result.data.metrics["cpu"] == 40.0
        assert nested_result.data.metrics["peak"] == 70.0
        assert service.cache_key(nested) in service.cache
        assert len(timeseries.combined_calls) == 1

    @pytest.mark.asyncio
    async def test_health_without_data_fails_only_its_own_request(self, service, timeseries):
        timeseries.responder = lambda q: [] if "'typo'" in q else healthy_rows(q)

        prod, typo = await asyncio.gather(
            service.fetch_metrics(health_request("prod-kafka")),
            service.fetch_metrics(health_request("typo")),
        )

        assert prod.data.health.overall == 100.0
        assert isinstance(typo.error, AggregationError)
        assert typo.data is None

    @pytest.mark.asyncio
    async def test_snapshot_states(self, service):
        request = health_request()
        assert service.snapshot(request).data is None
        assert not service.snapshot(request).loading

        task = asyncio.create_task(service.fetch_metrics(request))
        await asyncio.sleep(0)
        assert service.snapshot(request).loading

        result = await task
        assert service.snapshot(request).data is result.data


# =============================================================================
# Errors
# =============================================================================


class TestErrors:
    """Tests for error reporting."""

    @pytest.mark.asyncio
    async def test_execution_error_is_returned(self, service, timeseries):
        error = PermissionDeniedError("forbidden")
        timeseries.responder = lambda q: error

        result = await service.fetch_metrics(health_request())

        assert result.error is error
        assert result.data is None
        assert not result.ok

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self, service, timeseries):
        outcomes = [PermissionDeniedError("forbidden"), healthy_rows("")]
        timeseries.responder = lambda q: outcomes.pop(0)

        assert (await service.fetch_metrics(health_request())).error is not None
        assert (await service.fetch_metrics(health_request())).ok

    @pytest.mark.asyncio
    async def test_retryable_error_surfaces_after_retries(self, service, timeseries, sleep):
        timeseries.responder = lambda q: ServiceUnavailableError("down", status_code=503)

        result = await service.fetch_metrics(health_request())

        assert isinstance(result.error, ServiceUnavailableError)
        assert timeseries.call_count == 3
        assert len(sleep.delays) == 2

    @pytest.mark.asyncio
    async def test_build_error_is_returned(self, service, timeseries):
        request = MetricRequest(
            entity_kind=EntityKind.CLUSTER,
            metrics=(Aggregation(AggregationKind.AVERAGE, "cpuPercent"),),
            filters={"noSuchField": "x"},
        )

        result = await service.fetch_metrics(request)

        assert isinstance(result.error, InvalidDescriptorError)
        assert timeseries.call_count == 0

    @pytest.mark.asyncio
    async def test_empty_request_is_rejected(self, service):
        result = await service.fetch_metrics(MetricRequest(entity_kind=EntityKind.BROKER))
        assert isinstance(result.error, InvalidDescriptorError)

    @pytest.mark.asyncio
    async def test_one_failed_metric_keeps_the_others(self, service, timeseries):
        """A metric with no data becomes a MetricError marker, not a failed request."""
        timeseries.responder = lambda q: [row({"cpu": 40.0}, (), 60.0)]
        request = MetricRequest(
            entity_kind=EntityKind.BROKER,
            metrics=(
                Aggregation(AggregationKind.AVERAGE, "cpuPercent", alias="cpu"),
                Aggregation(AggregationKind.AVERAGE, "diskUsedPercent", alias="disk"),
            ),
        )

        result = await service.fetch_metrics(request)

        assert result.ok
        assert result.data.metrics["cpu"] == 40.0
        assert isinstance(result.data.metrics["disk"], MetricError)

    @pytest.mark.asyncio
    async def test_health_without_data_is_an_error(self, service, timeseries):
        """No rows must not score as a perfectly healthy cluster."""
        timeseries.responder = lambda q: []

        result = await service.fetch_metrics(health_request("typo"))

        assert isinstance(result.error, AggregationError)
        assert result.data is None

    @pytest.mark.asyncio
    async def test_health_with_only_null_values_is_an_error(self, service, timeseries):
        timeseries.responder = lambda q: [row({}, (), 60.0)]

        result = await service.fetch_metrics(health_request())

        assert isinstance(result.error, AggregationError)

    @pytest.mark.asyncio
    async def test_health_without_data_is_not_cached(self, service, timeseries):
        timeseries.responder = lambda q: []

        await service.fetch_metrics(health_request())
        await service.fetch_metrics(health_request())

        assert timeseries.call_count == 2


# =============================================================================
# Topology and invalidation
# =============================================================================


class TestTopology:
    """Tests for entity lookups and tag invalidation."""

    @pytest.mark.asyncio
    async def test_fetch_entities(self, service, entity_search):
        result = await service.fetch_entities(EntityKind.BROKER, {"clusterName": "prod-kafka"})

        assert [e.guid for e in result.data] == ["guid-1", "guid-2"]
        assert entity_search.expressions == [
            "domain IN ('INFRA') AND type = 'KAFKABROKER' AND tags.clusterName = 'prod-kafka'"
        ]

    @pytest.mark.asyncio
    async def test_entities_are_cached(self, service, entity_search, clock):
        await service.fetch_entities(EntityKind.BROKER, {"clusterName": "prod-kafka"})
        clock.advance(299)
        await service.fetch_entities(EntityKind.BROKER, {"clusterName": "prod-kafka"})

        assert len(entity_search.expressions) == 1

    @pytest.mark.asyncio
    async def test_entity_search_error_is_returned(self, timeseries, clock, sleep):
        error = PermissionDeniedError("forbidden")
        executor = QueryExecutor(
            timeseries=timeseries,
            entity_search=FakeEntitySearch(error=error),
            sleep=sleep,
        )
        service = MetricsService(executor=executor, cache=ResultCache(clock=clock))

        result = await service.fetch_entities(EntityKind.TOPIC)

        assert result.error is error

    @pytest.mark.asyncio
    async def test_invalidating_entity_drops_dependent_metrics(self, service, timeseries):
        """Metrics written after a topology lookup depend on it."""
        await service.fetch_entities(EntityKind.CLUSTER, {"clusterName": "prod-kafka"})
        await service.fetch_metrics(health_request())

        assert service.invalidate_by_tag("guid-2") == 2

        await service.fetch_metrics(health_request())
        assert timeseries.call_count == 2

    @pytest.mark.asyncio
    async def test_request_guids_tag_the_result(self, service, timeseries):
        await service.fetch_metrics(health_request(entity_guids=("guid-9",)))

        assert service.invalidate_by_tag("guid-9") == 1
        assert service.invalidate_by_tag("guid-9") == 0

    @pytest.mark.asyncio
    async def test_unlinked_metrics_survive_invalidation(self, service, timeseries):
        """Without entity_guids or a prior lookup a result is not linked to any entity."""
        await service.fetch_metrics(health_request())

        assert service.invalidate_by_tag("guid-1") == 0
        assert service.cache_key(health_request()) in service.cache
