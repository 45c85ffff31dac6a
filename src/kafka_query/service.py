"""
Orchestration facade: the single entry point for metric requests.

fetch_metrics() turns a MetricRequest into a time-series query, answers it
from the cache when possible, and otherwise hands it to the batch
coordinator. Concurrent requests for the same cache key share one
execution; compatible requests (same dialect and entity kind) that arrive
within the batching window are executed through one combined call.

The flow for one request:

    MetricRequest -> QueryDescriptor -> build_query() -> cache.get()
        hit:  return the cached AggregatedResult (same object every time)
        miss: coordinator.schedule_batched() -> batch run:
                cache re-check -> executor.execute_many()
                -> aggregate_samples() [-> score_health()]
                -> cache.set(ttl, depends_on, tags)

Cache writes happen inside the batch run, so a result is cached even if
every caller waiting for it was cancelled.

fetch_metrics() never raises. Every failure, whether a build error, an
execution error or anything else, is returned as MetricResult.error, with
the original exception object so callers can tell causes apart.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Mapping, Sequence, Union

from kafka_query.aggregation import aggregate_samples, score_health
from kafka_query.aggregation.health import HealthPolicy
from kafka_query.aggregation.policies import DEFAULT_POLICIES, HEALTH_INPUTS
from kafka_query.batch import BatchCoordinator, BatchGroup
from kafka_query.cache import ResultCache
from kafka_query.clients.types import Entity
from kafka_query.exceptions import AggregationError, QueryBuildError
from kafka_query.execution import QueryExecutor, RawResult
from kafka_query.query import (
    Aggregation,
    AggregationKind,
    BuiltQuery,
    Dialect,
    Filter,
    FilterOperator,
    QueryDescriptor,
    TimeWindow,
    build_query,
)
from kafka_query.types import AggregatedResult, EntityGuid, EntityKind, MetricResult

logger = logging.getLogger(__name__)

FilterSpec = Union[Mapping[str, Any], Iterable[Filter]]


def _normalize_filters(filters: FilterSpec) -> tuple[Filter, ...]:
    """Accept {"field": value} mappings as well as Filter objects."""
    if isinstance(filters, Mapping):
        normalized = []
        for name, value in filters.items():
            if isinstance(value, (list, tuple, set, frozenset)):
                normalized.append(Filter(name, FilterOperator.IN, tuple(value)))
            else:
                normalized.append(Filter(name, FilterOperator.EQ, value))
        return tuple(normalized)
    return tuple(filters)


@dataclass(frozen=True)
class MetricRequest:
    """
    A declarative metric request from a caller.

    Attributes:
        entity_kind: Kind of entity queried
        metrics: Aggregations to compute
        filters: Filter objects, or a {"field": value} mapping where list
            values mean IN
        group_by: Facet fields
        time_range: Window to aggregate over
        limit: Optional maximum number of facet groups
        include_health: Also compute the default health inputs for the kind
            and attach a HealthScore
        entity_guids: GUIDs the result is derived from, used as cache tags
        ttl_seconds: Cache TTL override (None uses the metric TTL)
    """

    entity_kind: EntityKind
    metrics: tuple[Aggregation, ...] = ()
    filters: tuple[Filter, ...] = ()
    group_by: tuple[str, ...] = ()
    time_range: TimeWindow = field(default_factory=lambda: TimeWindow.last(minutes=30))
    limit: int | None = None
    include_health: bool = False
    entity_guids: tuple[EntityGuid, ...] = ()
    ttl_seconds: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "entity_kind", EntityKind(self.entity_kind))
        object.__setattr__(self, "metrics", tuple(self.metrics))
        object.__setattr__(self, "filters", _normalize_filters(self.filters))
        object.__setattr__(self, "group_by", tuple(self.group_by))
        object.__setattr__(self, "entity_guids", tuple(self.entity_guids))

    def to_descriptor(self) -> QueryDescriptor:
        aggregations = list(self.metrics)
        if self.include_health:
            present = {a.name for a in aggregations}
            aggregations.extend(
                a for a in HEALTH_INPUTS[self.entity_kind] if a.name not in present
            )
        return QueryDescriptor(
            entity_kind=self.entity_kind,
            aggregations=tuple(aggregations),
            group_by=self.group_by,
            time_window=self.time_range,
            limit=self.limit,
            filters=self.filters,
        )


@dataclass(frozen=True)
class _MetricJob:
    built: BuiltQuery
    request: MetricRequest
    topology_key: str | None = None


@dataclass(frozen=True)
class _TopologyJob:
    built: BuiltQuery


class MetricsService:
    """
    Facade over builder, cache, batch coordinator, executor and aggregator.

    Holds no state of its own between calls other than the injected cache
    and coordinator.

    Args:
        executor: Executes built queries
        cache: Result cache (a fresh ResultCache if not given)
        coordinator: Batch coordinator (a fresh BatchCoordinator if not given)
        metric_ttl_seconds: TTL for aggregated metric results
        topology_ttl_seconds: TTL for entity lookups
        histogram_buckets: Default bucket count for histogram aggregations
        policies: Health policy per entity kind (defaults to DEFAULT_POLICIES)

    Example:
        service = MetricsService(executor=executor, cache=ResultCache())
        result = await service.fetch_metrics(
            MetricRequest(
                entity_kind=EntityKind.CLUSTER,
                filters={"clusterName": "prod-kafka"},
                include_health=True,
            )
        )
        if result.ok:
            print(result.data.health.status)
    """

    def __init__(
        self,
        executor: QueryExecutor,
        cache: ResultCache | None = None,
        coordinator: BatchCoordinator | None = None,
        metric_ttl_seconds: float = 30.0,
        topology_ttl_seconds: float = 300.0,
        histogram_buckets: int = 10,
        policies: Mapping[EntityKind, HealthPolicy] | None = None,
    ) -> None:
        self.executor = executor
        self.cache = cache if cache is not None else ResultCache()
        self.coordinator = coordinator if coordinator is not None else BatchCoordinator()
        self.metric_ttl_seconds = metric_ttl_seconds
        self.topology_ttl_seconds = topology_ttl_seconds
        self.histogram_buckets = histogram_buckets
        self.policies = dict(policies) if policies is not None else dict(DEFAULT_POLICIES)
        self._groups: dict[tuple[Dialect, EntityKind], BatchGroup] = {}

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def fetch_metrics(self, request: MetricRequest) -> MetricResult:
        """
        Fetch aggregated metrics for a request.

        Returns:
            MetricResult with data set to an AggregatedResult, or error set
            to the exception that prevented it. Never raises.
        """
        try:
            built = build_query(request.to_descriptor(), Dialect.TIMESERIES)
        except Exception as e:
            logger.info("Rejected metric request for %s: %s", request.entity_kind.value, e)
            return MetricResult(error=e)

        entry = self.cache.get(built.cache_key)
        if entry is not None:
            logger.debug("Cache hit for %s", built.cache_key[:12])
            return MetricResult(data=entry.value)

        logger.debug("Cache miss for %s", built.cache_key[:12])
        job = _MetricJob(built=built, request=request, topology_key=self._topology_key(request))
        group = self._group(Dialect.TIMESERIES, request.entity_kind)
        try:
            data = await self.coordinator.schedule_batched(built.cache_key, job, group)
        except Exception as e:
            logger.info("Metric request %s failed: %s: %s", built.cache_key[:12], type(e).__name__, e)
            return MetricResult(error=e)
        return MetricResult(data=data)

    async def fetch_entities(
        self, kind: EntityKind, filters: FilterSpec = ()
    ) -> MetricResult:
        """
        Look up the entities of a kind through entity search.

        Results are cached with the topology TTL and tagged with every
        returned entity GUID. Metric results for the same kind and filters
        written afterwards depend on this entry, so invalidating one of
        the GUIDs drops them too.

        Returns:
            MetricResult with data set to a tuple of Entity
        """
        try:
            built = self._topology_query(EntityKind(kind), _normalize_filters(filters))
        except Exception as e:
            logger.info("Rejected entity lookup for %s: %s", kind, e)
            return MetricResult(error=e)

        entry = self.cache.get(built.cache_key)
        if entry is not None:
            return MetricResult(data=entry.value)

        group = self._group(Dialect.ENTITY_SEARCH, built.descriptor.entity_kind)
        try:
            data = await self.coordinator.schedule_batched(
                built.cache_key, _TopologyJob(built=built), group
            )
        except Exception as e:
            logger.info("Entity lookup %s failed: %s: %s", built.cache_key[:12], type(e).__name__, e)
            return MetricResult(error=e)
        return MetricResult(data=data)

    def snapshot(self, request: MetricRequest) -> MetricResult:
        """
        Current state of a request without starting any work.

        Returns:
            data if a valid cache entry exists, loading=True if the request
            is in flight, otherwise an empty result
        """
        try:
            built = build_query(request.to_descriptor(), Dialect.TIMESERIES)
        except Exception as e:
            return MetricResult(error=e)

        key = built.cache_key
        if key in self.cache:
            entry = self.cache.get(key)
            if entry is not None:
                return MetricResult(data=entry.value)
        if self.coordinator.is_in_flight(key):
            return MetricResult(loading=True)
        return MetricResult()

    def invalidate_by_tag(self, entity_guid: EntityGuid) -> int:
        """
        Drop every cached result derived from an entity.

        Called on topology change notifications. A metric result is only
        known to derive from an entity when its request listed the GUID in
        entity_guids, or when fetch_entities() for the same kind and
        filters was cached before the metric result was written. Metric
        results with neither link are left in place and expire with their
        TTL.

        Returns:
            Number of cache entries removed
        """
        removed = self.cache.invalidate_by_tag(entity_guid)
        logger.info("Invalidated %d cache entries for entity %s", removed, entity_guid)
        return removed

    def cache_key(self, request: MetricRequest) -> str:
        """Cache key a request is stored under."""
        return build_query(request.to_descriptor(), Dialect.TIMESERIES).cache_key

    # -------------------------------------------------------------------------
    # Batch runners
    # -------------------------------------------------------------------------

    def _group(self, dialect: Dialect, kind: EntityKind) -> BatchGroup:
        group = self._groups.get((dialect, kind))
        if group is None:
            run = self._run_metrics if dialect is Dialect.TIMESERIES else self._run_topology
            group = BatchGroup(name=f"{dialect.value}:{kind.value}", run=run)
            self._groups[(dialect, kind)] = group
        return group

    async def _run_metrics(self, jobs: dict[str, _MetricJob]) -> dict[str, Any]:
        results, pending = self._split_cached(jobs)
        if not pending:
            return results

        raw = await self.executor.execute_many([job.built for job in pending.values()])
        for key, job in pending.items():
            outcome = raw.get(key)
            if isinstance(outcome, RawResult):
                try:
                    results[key] = self._store_metrics(job, outcome)
                except Exception as e:
                    logger.warning("Could not process result %s: %s: %s", key[:12], type(e).__name__, e)
                    results[key] = e
            elif outcome is not None:
                results[key] = outcome
        return results

    async def _run_topology(self, jobs: dict[str, _TopologyJob]) -> dict[str, Any]:
        results, pending = self._split_cached(jobs)
        if not pending:
            return results

        raw = await self.executor.execute_many([job.built for job in pending.values()])
        for key in pending:
            outcome = raw.get(key)
            if isinstance(outcome, RawResult):
                entities: tuple[Entity, ...] = outcome.entities
                self.cache.set(
                    key,
                    entities,
                    ttl_seconds=self.topology_ttl_seconds,
                    tags=[e.guid for e in entities],
                )
                results[key] = entities
            elif outcome is not None:
                results[key] = outcome
        return results

    def _split_cached(self, jobs: Mapping[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
        # Another batch may have written a key since the caller's lookup
        results: dict[str, Any] = {}
        pending: dict[str, Any] = {}
        for key, job in jobs.items():
            entry = self.cache.get(key) if key in self.cache else None
            if entry is not None:
                results[key] = entry.value
            else:
                pending[key] = job
        return results, pending

    def _store_metrics(self, job: _MetricJob, raw: RawResult) -> AggregatedResult:
        descriptor = job.built.descriptor
        samples = raw.to_samples(descriptor)

        # Rows carry one value per alias; fold those values over time
        client_side = [
            replace(agg, field=agg.name, alias=agg.name, source=None)
            for agg in descriptor.aggregations
        ]
        result = aggregate_samples(
            samples, client_side, descriptor.group_by, self.histogram_buckets
        )

        request = job.request
        if request.include_health:
            policy = self.policies[request.entity_kind]
            inputs = {
                name: value
                for name, value in result.metrics.items()
                if name in policy.metrics and isinstance(value, float)
            }
            if not inputs:
                raise AggregationError("health", "no data for any health input")
            result = replace(result, health=score_health(inputs, policy=policy))

        depends_on = []
        if job.topology_key is not None and job.topology_key in self.cache:
            depends_on.append(job.topology_key)

        self.cache.set(
            job.built.cache_key,
            result,
            ttl_seconds=request.ttl_seconds or self.metric_ttl_seconds,
            depends_on=depends_on,
            tags=request.entity_guids,
        )
        return result

    def _topology_query(self, kind: EntityKind, filters: Sequence[Filter]) -> BuiltQuery:
        descriptor = QueryDescriptor(
            entity_kind=kind,
            aggregations=(Aggregation(AggregationKind.COUNT, "entityGuid", alias="entities"),),
            filters=tuple(filters),
        )
        return build_query(descriptor, Dialect.ENTITY_SEARCH)

    def _topology_key(self, request: MetricRequest) -> str | None:
        # Filters on nested aggregation aliases have no entity search form
        try:
            return self._topology_query(request.entity_kind, request.filters).cache_key
        except QueryBuildError as e:
            logger.debug("No topology dependency for %s: %s", request.entity_kind.value, e)
            return None
