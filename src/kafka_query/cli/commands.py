"""Query CLI commands.

This module provides the CLI commands for querying Kafka entities:
- health: Health score for a cluster (or its brokers, topics, consumer groups)
- entities: List entities of a kind via entity search
- metrics: Run an ad-hoc aggregation query

Each command:
- builds a MetricsService from Settings (KAFKA_QUERY_* environment)
- uses asyncio.run() to execute the async request in a sync CLI command
- prints a Rich table, or JSON with --json
"""

import asyncio

import typer

from kafka_query.cli.output import (
    console,
    entity_to_dict,
    health_to_dict,
    print_entities,
    print_error,
    print_health,
    print_json,
    print_metrics,
    result_to_dict,
)
from kafka_query.cli.parsing import parse_filter, parse_kind, parse_metric
from kafka_query.config import Settings
from kafka_query.factory import create_http_client, create_metrics_service
from kafka_query.query import TimeWindow
from kafka_query.service import MetricRequest
from kafka_query.types import MetricResult


def _run(request: MetricRequest) -> MetricResult:
    async def _fetch() -> MetricResult:
        settings = Settings()
        async with create_http_client(settings) as http:
            service = create_metrics_service(settings, http=http)
            return await service.fetch_metrics(request)

    return asyncio.run(_fetch())


def _exit_on_error(result: MetricResult) -> None:
    if result.error is not None:
        print_error(result.error)
        raise typer.Exit(1)


def health(
    cluster: str = typer.Option(..., "--cluster", "-c", help="Cluster name"),
    kind: str = typer.Option(
        "cluster", "--kind", "-k", help="Entity kind to score (cluster, broker, topic, consumer_group)"
    ),
    since: int = typer.Option(1800, "--since", help="Window in seconds"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Show the health score of a cluster."""
    entity_kind = parse_kind(kind)
    request = MetricRequest(
        entity_kind=entity_kind,
        filters={"clusterName": cluster},
        time_range=TimeWindow.last(seconds=since),
        include_health=True,
    )
    result = _run(request)
    _exit_on_error(result)

    health_score = result.data.health
    if json_output:
        print_json(health_to_dict(health_score))
        return
    print_health(f"{cluster} ({entity_kind.value})", health_score)


def entities(
    kind: str = typer.Option(..., "--kind", "-k", help="Entity kind (cluster, broker, topic, consumer_group)"),
    cluster: str = typer.Option(None, "--cluster", "-c", help="Only entities of this cluster"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """List entities of a kind."""
    entity_kind = parse_kind(kind)
    filters = {"clusterName": cluster} if cluster else {}

    async def _fetch() -> MetricResult:
        settings = Settings()
        async with create_http_client(settings) as http:
            service = create_metrics_service(settings, http=http)
            return await service.fetch_entities(entity_kind, filters)

    result = asyncio.run(_fetch())
    _exit_on_error(result)

    if json_output:
        print_json([entity_to_dict(e) for e in result.data])
        return
    print_entities(result.data)


def metrics(
    kind: str = typer.Option(..., "--kind", "-k", help="Entity kind (cluster, broker, topic, consumer_group)"),
    metric: list[str] = typer.Option(
        ..., "--metric", "-m", help="Aggregation as op:field[:alias], e.g. average:cpuPercent or p95:requestLatencyMs"
    ),
    filter_: list[str] = typer.Option(
        [], "--filter", "-f", help="Filter as field=value, field!=value or field=a,b"
    ),
    group_by: list[str] = typer.Option([], "--group-by", "-g", help="Facet field"),
    since: int = typer.Option(1800, "--since", help="Window in seconds"),
    limit: int = typer.Option(None, "--limit", help="Maximum number of facet groups"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Run an aggregation query."""
    request = MetricRequest(
        entity_kind=parse_kind(kind),
        metrics=tuple(parse_metric(m) for m in metric),
        filters=tuple(parse_filter(f) for f in filter_),
        group_by=tuple(group_by),
        time_range=TimeWindow.last(seconds=since),
        limit=limit,
    )
    result = _run(request)
    _exit_on_error(result)

    if json_output:
        print_json(result_to_dict(result.data))
        return
    print_metrics(result.data, request.group_by)
    for alias, error in result.data.errors.items():
        console.print(f"[yellow]{alias}: {error.message}[/yellow]")
