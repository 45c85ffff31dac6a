"""
Exception classes for query building, execution and caching.

The taxonomy has four families:
- QueryBuildError: caller errors raised while building a query
  (InvalidDescriptorError, QueryTooComplexError). Fatal, never retried.
- ExecutionError: failures reported by the external query service. Each
  subclass declares whether it is retryable:
    - ExecutionTimeoutError, RateLimitedError, ServiceUnavailableError: retryable
    - InvalidQueryError, PermissionDeniedError: fatal
- CacheInconsistencyError: internal cache error. The cache drops the
  offending entry and reports a miss; it never reaches callers.
- AggregationError: one metric could not be computed. The aggregator turns
  it into a MetricError marker for that metric only.

Every exception stores its context in attributes and builds a descriptive
message in __init__.
"""


class QueryBuildError(Exception):
    """Base class for errors raised while building a query."""


class InvalidDescriptorError(QueryBuildError):
    """
    Raised when a QueryDescriptor cannot be turned into a query.

    Attributes:
        reason: Why the descriptor was rejected
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Invalid query descriptor: {reason}")


class QueryTooComplexError(QueryBuildError):
    """
    Raised when nested aggregations exceed the maximum nesting depth.

    Attributes:
        depth: Nesting depth that was reached
        max_depth: Maximum allowed depth
    """

    def __init__(self, depth: int, max_depth: int) -> None:
        self.depth = depth
        self.max_depth = max_depth
        super().__init__(
            f"Query nesting depth {depth} exceeds maximum of {max_depth}"
        )


class ExecutionError(Exception):
    """
    Base class for failures reported by the query execution service.

    Attributes:
        message: Description of the failure
        retryable: Whether the retry policy may attempt the query again
    """

    retryable: bool = False

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ExecutionTimeoutError(ExecutionError):
    """
    Raised when a single execution attempt exceeds its timeout.

    Raised locally when the per-attempt timeout fires, or when the query
    service reports that it gave up on the query.

    Attributes:
        timeout_seconds: The per-attempt timeout that was exceeded, if local
    """

    retryable = True

    def __init__(self, timeout_seconds: float | None = None, message: str | None = None) -> None:
        self.timeout_seconds = timeout_seconds
        if message is None:
            if timeout_seconds is None:
                message = "Query timed out"
            else:
                message = f"Query timed out after {timeout_seconds:.1f}s"
        super().__init__(message)


class RateLimitedError(ExecutionError):
    """
    Raised when the query service rejects a request due to rate limiting.

    Attributes:
        retry_after: Seconds the service asked us to wait, if it said so
    """

    retryable = True

    def __init__(self, message: str = "Rate limited", retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        super().__init__(message)


class ServiceUnavailableError(ExecutionError):
    """
    Raised when the query service is unreachable or returns a 5xx response.

    Attributes:
        status_code: HTTP status code, None for transport failures
    """

    retryable = True

    def __init__(self, message: str = "Service unavailable", status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class InvalidQueryError(ExecutionError):
    """Raised when the query service rejects the query string itself."""

    retryable = False


class PermissionDeniedError(ExecutionError):
    """Raised when the credentials are not allowed to run the query."""

    retryable = False


class CacheInconsistencyError(Exception):
    """
    Raised inside the cache when an entry's dependencies are inconsistent.

    Attributes:
        key: The cache key whose dependency chain is broken
        reason: What inconsistency was found (e.g. a cycle)
    """

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        self.reason = reason
        super().__init__(f"Cache entry {key!r} is inconsistent: {reason}")


class AggregationError(Exception):
    """
    Raised when one metric cannot be aggregated from the available samples.

    The aggregator converts this into a MetricError marker for that metric
    and keeps going with the others.

    Attributes:
        field: The input field being aggregated
        reason: Why aggregation failed
    """

    def __init__(self, field: str, reason: str) -> None:
        self.field = field
        self.reason = reason
        super().__init__(f"Cannot aggregate {field!r}: {reason}")
