"""Prometheus metrics for the query engine."""

from prometheus_client import Counter, Gauge, Histogram

# Cache metrics
CACHE_LOOKUPS = Counter(
    "kafka_query_cache_lookups_total",
    "Result cache lookups",
    ["result"],  # "hit" or "miss"
)

CACHE_EVICTIONS = Counter(
    "kafka_query_cache_evictions_total",
    "Result cache evictions",
    ["reason"],  # "expired", "dependency", "lru", "invalidated", "tag", "inconsistent"
)

CACHE_SIZE = Gauge(
    "kafka_query_cache_entries",
    "Number of entries currently held by the result cache",
)

# Execution metrics
QUERY_EXECUTIONS = Counter(
    "kafka_query_executions_total",
    "Query executions against the external service",
    ["dialect", "outcome"],  # outcome: "success" or the error class name
)

QUERY_RETRIES = Counter(
    "kafka_query_retries_total",
    "Retried execution attempts",
    ["error"],
)

QUERY_LATENCY = Histogram(
    "kafka_query_execution_duration_seconds",
    "Latency of a single execution attempt in seconds",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# Batching metrics
BATCH_SIZE = Histogram(
    "kafka_query_batch_size",
    "Number of distinct keys executed per batch",
    buckets=[1, 2, 3, 5, 10, 20, 50],
)

DEDUPLICATED_REQUESTS = Counter(
    "kafka_query_deduplicated_requests_total",
    "Requests that joined an existing in-flight request",
)


def record_cache_lookup(hit: bool) -> None:
    """Record a cache hit or miss."""
    CACHE_LOOKUPS.labels(result="hit" if hit else "miss").inc()


def record_eviction(reason: str, count: int = 1) -> None:
    """Record cache evictions for a reason."""
    if count > 0:
        CACHE_EVICTIONS.labels(reason=reason).inc(count)


def set_cache_size(size: int) -> None:
    """Set current cache size."""
    CACHE_SIZE.set(size)


def record_execution(dialect: str, outcome: str) -> None:
    """Record one finished query execution."""
    QUERY_EXECUTIONS.labels(dialect=dialect, outcome=outcome).inc()


def record_retry(error: str) -> None:
    """Record a retry caused by an error class."""
    QUERY_RETRIES.labels(error=error).inc()


def record_batch(size: int) -> None:
    """Record the size of a closed batch."""
    BATCH_SIZE.observe(size)


def record_deduplicated() -> None:
    """Record a request that was folded into an in-flight request."""
    DEDUPLICATED_REQUESTS.inc()
