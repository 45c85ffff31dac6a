"""Parsing of CLI option values into query types."""

import re

import typer

from kafka_query.query import Aggregation, AggregationKind, Filter, FilterOperator
from kafka_query.types import EntityKind

_PERCENTILE = re.compile(r"^p(\d+(?:\.\d+)?)$")


def parse_kind(value: str) -> EntityKind:
    """Parse an entity kind, accepting "consumer-group" as well as "consumer_group"."""
    try:
        return EntityKind(value.strip().lower().replace("-", "_"))
    except ValueError:
        choices = ", ".join(k.value for k in EntityKind)
        raise typer.BadParameter(f"unknown kind {value!r} (choose from {choices})")


def parse_metric(value: str) -> Aggregation:
    """
    Parse "op:field[:alias]" into an Aggregation.

    op is an aggregation kind (sum, average, min, max, count, rate,
    histogram, trend) or pNN for a percentile, e.g. "p95:requestLatencyMs".
    """
    parts = value.split(":")
    if len(parts) not in (2, 3) or not all(parts):
        raise typer.BadParameter(f"expected op:field[:alias], got {value!r}")

    op, field = parts[0].lower(), parts[1]
    alias = parts[2] if len(parts) == 3 else None

    match = _PERCENTILE.match(op)
    if match:
        return Aggregation(
            AggregationKind.PERCENTILE, field, alias=alias, percentile=float(match.group(1))
        )
    try:
        kind = AggregationKind(op)
    except ValueError:
        choices = ", ".join(k.value for k in AggregationKind if k is not AggregationKind.PERCENTILE)
        raise typer.BadParameter(f"unknown aggregation {op!r} (choose from {choices}, or pNN)")
    return Aggregation(kind, field, alias=alias)


def parse_filter(value: str) -> Filter:
    """
    Parse "field=value", "field!=value" or "field=a,b,c" into a Filter.

    Comma-separated values become IN (or NOT IN) filters.
    """
    negate = "!=" in value
    field, sep, raw = value.partition("!=" if negate else "=")
    if not sep or not field or not raw:
        raise typer.BadParameter(f"expected field=value, got {value!r}")

    if "," in raw:
        values = tuple(v.strip() for v in raw.split(",") if v.strip())
        operator = FilterOperator.NOT_IN if negate else FilterOperator.IN
        return Filter(field.strip(), operator, values)
    operator = FilterOperator.NE if negate else FilterOperator.EQ
    return Filter(field.strip(), operator, raw.strip())
