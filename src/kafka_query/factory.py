"""
Factory functions for wiring a MetricsService from Settings.

Used by the CLI and by applications embedding the engine, so callers do not
need to assemble clients, executor, cache and coordinator themselves.
"""

import httpx

from kafka_query.batch import BatchCoordinator
from kafka_query.cache import ResultCache
from kafka_query.clients import EntitySearchClient, TimeSeriesClient
from kafka_query.config import Settings
from kafka_query.execution import QueryExecutor, RetryConfig
from kafka_query.service import MetricsService


def create_http_client(settings: Settings) -> httpx.AsyncClient:
    """
    Create an httpx client for the query service.

    The client carries the base URL and API key header. The caller owns it
    and should close it (or use it as an async context manager).
    """
    return httpx.AsyncClient(
        base_url=settings.graphql_url,
        headers={"API-Key": settings.api_key, "Content-Type": "application/json"},
        timeout=settings.request_timeout_seconds,
    )


def create_metrics_service(
    settings: Settings | None = None,
    *,
    http: httpx.AsyncClient,
) -> MetricsService:
    """
    Create a MetricsService with every collaborator configured from settings.

    Args:
        settings: Configuration (defaults to Settings() read from the
            environment)
        http: httpx client for the query service, usually from
            create_http_client(). The caller owns it and closes it.

    Returns:
        MetricsService ready for use

    Example:
        settings = Settings()
        async with create_http_client(settings) as http:
            service = create_metrics_service(settings, http=http)
            result = await service.fetch_metrics(request)
    """
    if settings is None:
        settings = Settings()

    executor = QueryExecutor(
        timeseries=TimeSeriesClient(http=http, account_id=settings.account_id),
        entity_search=EntitySearchClient(http=http),
        retry=RetryConfig(
            max_attempts=settings.retry_max_attempts,
            base_delay_seconds=settings.retry_base_delay_seconds,
            max_delay_seconds=settings.retry_max_delay_seconds,
        ),
        timeout_seconds=settings.request_timeout_seconds,
        account_id=settings.account_id,
    )

    return MetricsService(
        executor=executor,
        cache=ResultCache(capacity=settings.cache_capacity),
        coordinator=BatchCoordinator(
            window_seconds=settings.batch_window_seconds,
            max_batch_size=settings.max_batch_size,
        ),
        metric_ttl_seconds=settings.metric_ttl_seconds,
        topology_ttl_seconds=settings.topology_ttl_seconds,
        histogram_buckets=settings.histogram_buckets,
    )
