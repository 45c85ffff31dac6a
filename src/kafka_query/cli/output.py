"""Shared rendering helpers for CLI commands: rich tables and JSON output."""

import json
from typing import Any

from rich.console import Console
from rich.table import Table

from kafka_query.clients.types import Entity
from kafka_query.types import AggregatedResult, HealthScore, HealthStatus, Histogram, MetricError

console = Console()

STATUS_STYLES = {
    HealthStatus.EXCELLENT: "bold green",
    HealthStatus.GOOD: "green",
    HealthStatus.FAIR: "yellow",
    HealthStatus.POOR: "red",
    HealthStatus.CRITICAL: "bold red",
}

SEVERITY_STYLES = {"critical": "red", "warning": "yellow", "info": "dim"}


def format_value(value: Any) -> str:
    """Render one metric value for a table cell."""
    if isinstance(value, MetricError):
        return f"[red]error: {value.message}[/red]"
    if isinstance(value, Histogram):
        return " ".join(str(c) for c in value.counts)
    if isinstance(value, float):
        return f"{value:,.2f}"
    return str(value)


def value_to_json(value: Any) -> Any:
    if isinstance(value, MetricError):
        return {"error": value.message, "type": value.error_type}
    if isinstance(value, Histogram):
        return {"edges": list(value.edges), "counts": list(value.counts)}
    return value


def health_to_dict(health: HealthScore) -> dict[str, Any]:
    return {
        "overall": health.overall,
        "status": health.status.value,
        "components": dict(health.components),
        "issues": [
            {
                "factor": i.factor,
                "metric": i.metric,
                "severity": i.severity,
                "message": i.message,
                "value": i.value,
            }
            for i in health.issues
        ],
    }


def result_to_dict(result: AggregatedResult) -> dict[str, Any]:
    """Convert an AggregatedResult to JSON-serializable data."""
    data: dict[str, Any] = {
        "metrics": {k: value_to_json(v) for k, v in result.metrics.items()},
        "groups": [
            {"facets": list(key), "metrics": {k: value_to_json(v) for k, v in values.items()}}
            for key, values in result.groups.items()
        ],
        "sample_count": result.sample_count,
        "computed_at": result.computed_at.isoformat(),
    }
    if result.health is not None:
        data["health"] = health_to_dict(result.health)
    return data


def entity_to_dict(entity: Entity) -> dict[str, Any]:
    return entity.model_dump()


def print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def print_error(error: Exception) -> None:
    console.print(f"[red]Error ({type(error).__name__}): {error}[/red]")


def print_health(title: str, health: HealthScore) -> None:
    """Render a health score as a factor table followed by its issues."""
    style = STATUS_STYLES[health.status]
    console.print(
        f"{title}: [{style}]{health.status.value.upper()}[/{style}] ({health.overall:.1f}/100)"
    )

    table = Table(title="Health factors")
    table.add_column("Factor", style="cyan")
    table.add_column("Score", justify="right")
    for name, score in health.components.items():
        table.add_row(name, f"{score:.1f}")
    console.print(table)

    if not health.issues:
        console.print("[green]No issues found[/green]")
        return

    issues = Table(title="Issues")
    issues.add_column("Severity")
    issues.add_column("Factor", style="cyan")
    issues.add_column("Message")
    for issue in health.issues:
        severity_style = SEVERITY_STYLES.get(issue.severity, "")
        issues.add_row(
            f"[{severity_style}]{issue.severity}[/{severity_style}]" if severity_style else issue.severity,
            issue.factor,
            issue.message,
        )
    console.print(issues)


def print_metrics(result: AggregatedResult, group_by: tuple[str, ...] = ()) -> None:
    """Render overall metrics and, when grouped, one row per group."""
    aliases = list(result.metrics)

    table = Table(title=f"Metrics ({result.sample_count} samples)")
    for field in group_by:
        table.add_column(field, style="cyan")
    for alias in aliases:
        table.add_column(alias, justify="right")

    for key, values in result.groups.items():
        table.add_row(*key, *(format_value(values.get(a, "-")) for a in aliases))
    table.add_row(
        *(["[bold]all[/bold]"] + [""] * (len(group_by) - 1) if group_by else []),
        *(format_value(result.metrics[a]) for a in aliases),
    )
    console.print(table)


def print_entities(entities: tuple[Entity, ...]) -> None:
    table = Table(title=f"Entities ({len(entities)})")
    table.add_column("GUID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Type")
    table.add_column("Cluster")
    for entity in entities:
        table.add_row(entity.guid, entity.name, entity.type, entity.tag("clusterName") or "-")
    console.print(table)
