"""
Execution layer: runs built queries against the external services.

- QueryExecutor: per-attempt timeout, retry with exponential backoff
- RetryConfig: backoff policy
- RawResult: unaggregated rows or entities, convertible to EntitySamples
"""

from kafka_query.execution.executor import QueryExecutor, RawResult
from kafka_query.execution.retry import RetryConfig

__all__ = [
    "QueryExecutor",
    "RawResult",
    "RetryConfig",
]
