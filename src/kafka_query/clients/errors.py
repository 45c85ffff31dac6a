"""
Mapping of HTTP and GraphQL failures onto the execution error taxonomy.

- 429                      -> RateLimitedError (Retry-After honoured)
- 5xx, transport failures  -> ServiceUnavailableError
- 401, 403                 -> PermissionDeniedError
- other 4xx                -> InvalidQueryError
- client-side timeouts     -> ExecutionTimeoutError
GraphQL errors are classified by their extensions.errorClass.
"""

import httpx

from kafka_query.clients.types import GraphQLError
from kafka_query.exceptions import (
    ExecutionError,
    ExecutionTimeoutError,
    InvalidQueryError,
    PermissionDeniedError,
    RateLimitedError,
    ServiceUnavailableError,
)

_TIMEOUT_CLASSES = {"TIMEOUT", "NRDB_TIMEOUT", "QUERY_TIMEOUT"}
_RATE_LIMIT_CLASSES = {"RATE_LIMITED", "TOO_MANY_REQUESTS", "LIMIT_EXCEEDED"}
_UNAVAILABLE_CLASSES = {"SERVER_ERROR", "SERVICE_UNAVAILABLE", "INTERNAL_SERVER_ERROR"}
_PERMISSION_CLASSES = {"FORBIDDEN", "UNAUTHORIZED", "ACCESS_DENIED"}


def error_for_status(response: httpx.Response) -> ExecutionError | None:
    """
    Classify an HTTP response.

    Returns:
        The matching ExecutionError, or None for a successful response
    """
    status = response.status_code
    if status < 400:
        return None

    detail = f"HTTP {status} from query service"
    if status == 429:
        return RateLimitedError(detail, retry_after=_retry_after(response))
    if status in (401, 403):
        return PermissionDeniedError(detail)
    if status >= 500:
        return ServiceUnavailableError(detail, status_code=status)
    return InvalidQueryError(detail)


def raise_for_status(response: httpx.Response) -> None:
    """Raise the classified ExecutionError for an unsuccessful response."""
    error = error_for_status(response)
    if error is not None:
        raise error


def error_for_transport(exc: httpx.HTTPError) -> ExecutionError:
    """Classify an httpx exception raised before a response arrived."""
    if isinstance(exc, httpx.TimeoutException):
        return ExecutionTimeoutError(message=f"Request timed out: {exc}")
    return ServiceUnavailableError(f"Transport error: {exc}")


def error_for_graphql(error: GraphQLError) -> ExecutionError:
    """Classify a GraphQL error by its errorClass extension."""
    error_class = error.error_class
    if error_class in _TIMEOUT_CLASSES:
        return ExecutionTimeoutError(message=error.message)
    if error_class in _RATE_LIMIT_CLASSES:
        return RateLimitedError(error.message)
    if error_class in _UNAVAILABLE_CLASSES:
        return ServiceUnavailableError(error.message)
    if error_class in _PERMISSION_CLASSES:
        return PermissionDeniedError(error.message)
    return InvalidQueryError(error.message)


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None
