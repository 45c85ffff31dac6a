"""
Query execution with per-attempt timeouts and retry.

QueryExecutor runs BuiltQuery objects against the external services:
- TIMESERIES queries go to a TimeSeriesProtocol implementation
- ENTITY_SEARCH queries go to an EntitySearchProtocol implementation

Every attempt is bounded by timeout_seconds; an attempt that runs over is
treated as ExecutionTimeoutError. Retryable errors (timeout, rate limited,
service unavailable) are retried with exponential backoff up to
retry.max_attempts. Fatal errors (invalid query, permission denied) are
raised immediately. After the last attempt the last error is raised as-is,
so callers can tell what went wrong.

execute_many() sends all time-series queries of a batch in one combined
call and reports results per query. Queries whose individual result is a
retryable error are retried on their own; the combined call counts as
their first attempt, so no query is sent more than retry.max_attempts
times.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence, TypeVar

from kafka_query import metrics
from kafka_query.clients.types import Entity, TimeSeriesRow
from kafka_query.exceptions import ExecutionError, ExecutionTimeoutError
from kafka_query.execution.retry import RetryConfig
from kafka_query.protocols import EntitySearchProtocol, TimeSeriesProtocol
from kafka_query.query import BuiltQuery, Dialect, QueryDescriptor
from kafka_query.query.fields import TAG_PREFIX
from kafka_query.types import EntitySample

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RawResult:
    """
    Unaggregated result of one executed query.

    Attributes:
        dialect: Dialect of the executed query
        rows: Time-series rows (TIMESERIES)
        entities: Matching entities (ENTITY_SEARCH)
        total_count: Total matches reported by entity search
    """

    dialect: Dialect
    rows: tuple[TimeSeriesRow, ...] = ()
    entities: tuple[Entity, ...] = ()
    total_count: int = 0

    def to_samples(self, descriptor: QueryDescriptor) -> list[EntitySample]:
        """
        Convert the raw result into EntitySamples for the aggregator.

        Time-series rows become one sample per row, keyed by facet values.
        Entities become one sample each with a "count" metric of 1 plus any
        numeric tags, so entity counts can be aggregated like any metric.
        """
        if self.dialect is Dialect.TIMESERIES:
            return [self._row_sample(row, descriptor) for row in self.rows]
        return [self._entity_sample(entity, descriptor) for entity in self.entities]

    @staticmethod
    def _row_sample(row: TimeSeriesRow, descriptor: QueryDescriptor) -> EntitySample:
        facets = dict(zip(descriptor.group_by, row.facet_values))
        return EntitySample(
            entity="|".join(row.facet_values) or "*",
            timestamp=row.timestamp if row.timestamp is not None else 0.0,
            metrics={k: v for k, v in row.metric_values.items() if v is not None},
            facets=facets,
        )

    @staticmethod
    def _entity_sample(entity: Entity, descriptor: QueryDescriptor) -> EntitySample:
        values: dict[str, float] = {"count": 1.0}
        for key, tag_values in entity.tags.items():
            try:
                values[key] = float(tag_values[0])
            except (IndexError, ValueError):
                continue

        facets: dict[str, str] = {}
        for field in descriptor.group_by:
            if field in ("entityName", "name"):
                facets[field] = entity.name
            else:
                value = entity.tag(field.removeprefix(TAG_PREFIX))
                if value is not None:
                    facets[field] = value

        return EntitySample(entity=entity.guid, timestamp=0.0, metrics=values, facets=facets)


class QueryExecutor:
    """
    Executes built queries with timeout and retry.

    Args:
        timeseries: Time-series service implementation
        entity_search: Entity search implementation
        retry: Retry policy (defaults to RetryConfig())
        timeout_seconds: Per-attempt timeout
        account_id: Account passed to time-series queries (None uses the client's)
        sleep: Backoff sleep function; injectable for tests

    Example:
        executor = QueryExecutor(timeseries=ts_client, entity_search=search_client)
        raw = await executor.execute(build_query(descriptor, Dialect.TIMESERIES))
    """

    def __init__(
        self,
        timeseries: TimeSeriesProtocol,
        entity_search: EntitySearchProtocol,
        retry: RetryConfig | None = None,
        timeout_seconds: float = 10.0,
        account_id: int | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.timeseries = timeseries
        self.entity_search = entity_search
        self.retry = retry or RetryConfig()
        self.timeout_seconds = timeout_seconds
        self.account_id = account_id
        self._sleep = sleep

    async def execute(
        self, built: BuiltQuery, failed: ExecutionError | None = None
    ) -> RawResult:
        """
        Execute one query.

        Args:
            built: Query to run
            failed: Error of an attempt already made elsewhere (a combined
                call); it counts as the first attempt

        Raises:
            ExecutionError subclass: The fatal error, or the last retryable
                error once attempts are exhausted
        """
        if built.dialect is Dialect.ENTITY_SEARCH:
            result = await self._with_retry(
                built.dialect, lambda: self.entity_search.search(built.query), failed
            )
            return RawResult(
                dialect=built.dialect,
                entities=tuple(result.entities),
                total_count=result.count,
            )

        rows = await self._with_retry(
            built.dialect,
            lambda: self.timeseries.query(built.query, account_id=self.account_id),
            failed,
        )
        return RawResult(dialect=built.dialect, rows=tuple(rows))

    async def execute_many(
        self, queries: Sequence[BuiltQuery]
    ) -> dict[str, RawResult | ExecutionError]:
        """
        Execute several queries, combining time-series queries into one call.

        Returns:
            cache_key to RawResult, or to the ExecutionError for that query.
            Only a failure of the combined call itself is raised.
        """
        outcome: dict[str, RawResult | ExecutionError] = {}
        series = {q.cache_key: q for q in queries if q.dialect is Dialect.TIMESERIES}
        searches = [q for q in queries if q.dialect is Dialect.ENTITY_SEARCH]

        if searches:
            settled = await asyncio.gather(
                *(self.execute(q) for q in searches), return_exceptions=True
            )
            for built, result in zip(searches, settled):
                if isinstance(result, (ExecutionError, RawResult)):
                    outcome[built.cache_key] = result
                else:
                    raise result

        if len(series) == 1:
            built = next(iter(series.values()))
            try:
                outcome[built.cache_key] = await self.execute(built)
            except ExecutionError as e:
                outcome[built.cache_key] = e
        elif series:
            combined = await self._with_retry(
                Dialect.TIMESERIES,
                lambda: self.timeseries.query_many(
                    {k: q.query for k, q in series.items()}, account_id=self.account_id
                ),
            )
            for key, built in series.items():
                result = combined.get(key)
                if isinstance(result, ExecutionError) and result.retryable:
                    logger.info("Retrying query %s on its own after %s", key[:12], type(result).__name__)
                    try:
                        outcome[key] = await self.execute(built, failed=result)
                    except ExecutionError as e:
                        outcome[key] = e
                elif isinstance(result, ExecutionError):
                    outcome[key] = result
                elif result is None:
                    outcome[key] = await self._execute_missing(built)
                else:
                    outcome[key] = RawResult(dialect=built.dialect, rows=tuple(result))
        return outcome

    async def _execute_missing(self, built: BuiltQuery) -> RawResult | ExecutionError:
        try:
            return await self.execute(built)
        except ExecutionError as e:
            return e

    async def _with_retry(
        self,
        dialect: Dialect,
        call: Callable[[], Awaitable[T]],
        failed: ExecutionError | None = None,
    ) -> T:
        attempts = 0
        if failed is not None:
            attempts = 1
            if not self.retry.should_retry(attempts, failed):
                raise failed
            await self._backoff(dialect, attempts, failed)

        while True:
            attempts += 1
            started = time.perf_counter()
            try:
                result = await asyncio.wait_for(call(), timeout=self.timeout_seconds)
            except asyncio.TimeoutError:
                error: ExecutionError = ExecutionTimeoutError(self.timeout_seconds)
            except ExecutionError as e:
                error = e
            else:
                metrics.QUERY_LATENCY.observe(time.perf_counter() - started)
                metrics.record_execution(dialect.value, "success")
                return result

            metrics.QUERY_LATENCY.observe(time.perf_counter() - started)
            metrics.record_execution(dialect.value, type(error).__name__)

            if not self.retry.should_retry(attempts, error):
                if error.retryable:
                    logger.info(
                        "Giving up on %s query after %d attempt(s): %s",
                        dialect.value, attempts, error,
                    )
                raise error

            await self._backoff(dialect, attempts, error)

    async def _backoff(self, dialect: Dialect, attempts: int, error: ExecutionError) -> None:
        delay = self.retry.calculate_delay(attempts - 1, error)
        logger.warning(
            "Attempt %d/%d of %s query failed with %s, retrying in %.2fs",
            attempts, self.retry.max_attempts, dialect.value, type(error).__name__, delay,
        )
        metrics.record_retry(type(error).__name__)
        await self._sleep(delay)
