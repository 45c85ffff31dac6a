"""
Query orchestration and caching engine for Kafka infrastructure metrics.

This package turns declarative metric requests into provider-specific
queries, executes them under concurrency with deduplication and batching,
caches the aggregated results, and folds raw samples into health scores.
It includes:

- MetricsService: the facade callers use (fetch_metrics, fetch_entities)
- Query descriptors and the dialect-specific builder
- ResultCache: TTL, dependency invalidation, tags and LRU eviction
- BatchCoordinator: in-flight deduplication and opportunistic batching
- QueryExecutor: per-attempt timeouts and retry with backoff
- Aggregation and weighted multi-factor health scoring
- GraphQL clients for entity search and time-series queries
"""

from kafka_query.aggregation import (
    HealthCheck,
    HealthFactor,
    HealthPolicy,
    ThresholdRule,
    aggregate,
    aggregate_samples,
    score_health,
)
from kafka_query.batch import BatchCoordinator, BatchGroup
from kafka_query.cache import CacheEntry, CacheStats, ResultCache
from kafka_query.config import Settings
from kafka_query.exceptions import (
    AggregationError,
    CacheInconsistencyError,
    ExecutionError,
    ExecutionTimeoutError,
    InvalidDescriptorError,
    InvalidQueryError,
    PermissionDeniedError,
    QueryBuildError,
    QueryTooComplexError,
    RateLimitedError,
    ServiceUnavailableError,
)
from kafka_query.execution import QueryExecutor, RawResult, RetryConfig
from kafka_query.factory import create_http_client, create_metrics_service
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
from kafka_query.service import MetricRequest, MetricsService
from kafka_query.types import (
    AggregatedResult,
    EntityKind,
    EntitySample,
    HealthScore,
    HealthStatus,
    Issue,
    MetricError,
    MetricResult,
)

__all__ = [
    # Facade
    "MetricsService",
    "MetricRequest",
    "MetricResult",
    "create_metrics_service",
    "create_http_client",
    "Settings",
    # Query building
    "Aggregation",
    "AggregationKind",
    "BuiltQuery",
    "Dialect",
    "Filter",
    "FilterOperator",
    "QueryDescriptor",
    "TimeWindow",
    "build_query",
    # Cache and batching
    "CacheEntry",
    "CacheStats",
    "ResultCache",
    "BatchCoordinator",
    "BatchGroup",
    # Execution
    "QueryExecutor",
    "RawResult",
    "RetryConfig",
    # Aggregation and health
    "aggregate",
    "aggregate_samples",
    "score_health",
    "HealthPolicy",
    "HealthFactor",
    "HealthCheck",
    "ThresholdRule",
    # Types
    "AggregatedResult",
    "EntityKind",
    "EntitySample",
    "HealthScore",
    "HealthStatus",
    "Issue",
    "MetricError",
    # Errors
    "QueryBuildError",
    "InvalidDescriptorError",
    "QueryTooComplexError",
    "ExecutionError",
    "ExecutionTimeoutError",
    "RateLimitedError",
    "ServiceUnavailableError",
    "InvalidQueryError",
    "PermissionDeniedError",
    "CacheInconsistencyError",
    "AggregationError",
]
