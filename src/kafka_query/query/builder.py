"""
Dialect-specific query builder.

build_query() turns a QueryDescriptor into a BuiltQuery for one of two
provider dialects:
- Dialect.ENTITY_SEARCH: tag/attribute filter expression for entity search,
  e.g. "domain IN ('INFRA') AND type = 'KAFKABROKER' AND tags.clusterName = 'prod'"
- Dialect.TIMESERIES: aggregation query for the time-series service,
  e.g. "SELECT average(cpuPercent) AS 'cpu' FROM KafkaBrokerSample
        WHERE clusterName = 'prod' FACET entityName SINCE 30 minutes ago TIMESERIES"

Building is a pure function: no I/O and no shared state. The descriptor is
canonicalised first, so the cache key only depends on what is asked for and
not on the order the caller listed filters or aggregations in.

All filter values are rendered as escaped literals; field names that are not
plain identifiers are backtick-quoted. Nothing from a descriptor reaches the
query string unescaped.
"""

from __future__ import annotations

import hashlib
import json
import math
import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable

from kafka_query.exceptions import InvalidDescriptorError, QueryTooComplexError
from kafka_query.query.descriptor import (
    Aggregation,
    AggregationKind,
    Filter,
    QueryDescriptor,
    TimeWindow,
)
from kafka_query.query.fields import TAG_PREFIX, schema_for

MAX_NESTING_DEPTH = 3
"""Deepest sub-query nesting that still yields an executable query."""

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_.]*$")

# Server-side function used to produce per-bucket values for each kind.
# Kinds folded client-side (rate, histogram, trend) need a value per bucket,
# not a server-side result.
_SERVER_FUNCTIONS: dict[AggregationKind, str] = {
    AggregationKind.SUM: "sum",
    AggregationKind.AVERAGE: "average",
    AggregationKind.MIN: "min",
    AggregationKind.MAX: "max",
    AggregationKind.COUNT: "count",
    AggregationKind.PERCENTILE: "percentile",
    AggregationKind.RATE: "latest",
    AggregationKind.HISTOGRAM: "average",
    AggregationKind.TREND: "average",
}


class Dialect(str, Enum):
    """
    Query dialects, one per provider.

    Each member dispatches to its own builder function via render(); the
    mapping is checked for completeness at import time, so a dialect without
    a builder cannot exist.
    """

    ENTITY_SEARCH = "entity_search"
    TIMESERIES = "timeseries"

    def render(self, descriptor: QueryDescriptor) -> str:
        return _RENDERERS[self](descriptor, 1)


@dataclass(frozen=True)
class BuiltQuery:
    """
    A rendered query ready for execution.

    Attributes:
        query: Dialect-specific query string
        descriptor: Canonical descriptor the query was built from
        dialect: Dialect the query string is written in
        cache_key: Stable hash of the canonical descriptor plus dialect
    """

    query: str
    descriptor: QueryDescriptor
    dialect: Dialect
    cache_key: str


def build_query(descriptor: QueryDescriptor, dialect: Dialect | str) -> BuiltQuery:
    """
    Build an executable query for a dialect.

    Args:
        descriptor: What data is wanted
        dialect: Target dialect (a Dialect or its string value)

    Returns:
        BuiltQuery with the rendered string and its cache key

    Raises:
        InvalidDescriptorError: Empty aggregations, unknown fields,
            non-positive time window, or otherwise unusable descriptor
        QueryTooComplexError: Sub-queries nested deeper than MAX_NESTING_DEPTH
        ValueError: Unknown dialect name
    """
    dialect = Dialect(dialect)
    canonical = descriptor.canonical()
    return BuiltQuery(
        query=dialect.render(canonical),
        descriptor=canonical,
        dialect=dialect,
        cache_key=compute_cache_key(canonical, dialect),
    )


def compute_cache_key(descriptor: QueryDescriptor, dialect: Dialect) -> str:
    """Stable SHA-256 hash of the canonical descriptor and dialect."""
    payload = json.dumps(
        {"dialect": Dialect(dialect).value, "descriptor": descriptor.to_canonical()},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


# -------------------------------------------------------------------------
# Literal and identifier rendering
# -------------------------------------------------------------------------


def quote_string(value: str) -> str:
    """Quote a string literal, escaping backslashes and single quotes."""
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def render_literal(value: object) -> str:
    """
    Render a filter value as a query literal.

    Strings are quoted, booleans become true/false, numbers are rendered
    as-is, tuples become a parenthesised comma-separated list.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return quote_string(value)
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            raise InvalidDescriptorError(f"non-finite filter value {value!r}")
        return repr(value)
    if isinstance(value, tuple):
        if not value:
            raise InvalidDescriptorError("value set must not be empty")
        return "(" + ", ".join(render_literal(v) for v in value) + ")"
    raise InvalidDescriptorError(f"unsupported filter value type {type(value).__name__}")


def render_identifier(name: str) -> str:
    """Render a field name, backtick-quoting anything that is not a plain identifier."""
    if _IDENTIFIER.match(name):
        return name
    return "`" + name.replace("`", "``") + "`"


def _render_condition(field: str, flt: Filter) -> str:
    if flt.operator.is_set and not isinstance(flt.value, tuple):
        values: tuple = (flt.value,)
    else:
        values = flt.value  # type: ignore[assignment]
    if not flt.operator.is_set and isinstance(values, tuple):
        raise InvalidDescriptorError(
            f"operator {flt.operator.value} on {flt.field!r} needs a single value"
        )
    return f"{render_identifier(field)} {flt.operator.value} {render_literal(values)}"


# -------------------------------------------------------------------------
# Validation
# -------------------------------------------------------------------------


def _validate(descriptor: QueryDescriptor, depth: int, allow_tags: bool) -> None:
    total_depth = depth - 1 + descriptor.depth
    if total_depth > MAX_NESTING_DEPTH:
        raise QueryTooComplexError(total_depth, MAX_NESTING_DEPTH)

    if not descriptor.aggregations:
        raise InvalidDescriptorError("aggregation list is empty")

    if descriptor.time_window.duration_seconds <= 0:
        raise InvalidDescriptorError("time window must be positive")

    if descriptor.limit is not None and descriptor.limit <= 0:
        raise InvalidDescriptorError(f"limit must be positive, got {descriptor.limit}")

    schema = schema_for(descriptor.entity_kind)
    allowed = set(schema.fields)
    sources = {a.source for a in descriptor.aggregations if a.source is not None}
    if len(sources) > 1:
        raise InvalidDescriptorError("nested aggregations must share a single source")
    if sources:
        inner = next(iter(sources))
        allowed |= {a.name for a in inner.aggregations} | set(inner.group_by)

    for flt in descriptor.filters:
        if not (flt.field in allowed or schema.is_known(flt.field, allow_tags=allow_tags)):
            raise InvalidDescriptorError(
                f"unknown field {flt.field!r} for {descriptor.entity_kind.value}"
            )
    for name in descriptor.group_by:
        if name not in allowed:
            raise InvalidDescriptorError(
                f"unknown group-by field {name!r} for {descriptor.entity_kind.value}"
            )

    for agg in descriptor.aggregations:
        _validate_aggregation(agg)


def _validate_aggregation(agg: Aggregation) -> None:
    if not agg.field:
        raise InvalidDescriptorError(f"{agg.kind.value} aggregation needs a field")
    if agg.kind is AggregationKind.PERCENTILE:
        if agg.percentile is None or not 0 < agg.percentile <= 100:
            raise InvalidDescriptorError(
                f"percentile must be in (0, 100], got {agg.percentile!r}"
            )
    if agg.buckets is not None and agg.buckets <= 0:
        raise InvalidDescriptorError(f"histogram bucket count must be positive, got {agg.buckets}")


# -------------------------------------------------------------------------
# Entity search dialect
# -------------------------------------------------------------------------


def _render_entity_search(descriptor: QueryDescriptor, depth: int) -> str:
    _validate(descriptor, depth, allow_tags=True)
    if descriptor.source is not None:
        raise InvalidDescriptorError("entity search does not support nested aggregations")

    schema = schema_for(descriptor.entity_kind)
    domains = render_literal(tuple(schema.domains))
    clauses = [f"domain IN {domains}", f"type = {quote_string(schema.entity_type)}"]
    for flt in descriptor.filters:
        clauses.append(_render_condition(_entity_search_field(flt.field), flt))
    return " AND ".join(clauses)


def _entity_search_field(field: str) -> str:
    # Entity attributes are addressed directly, everything else lives in tags
    if field.startswith(TAG_PREFIX) or field in ("name", "guid"):
        return field
    if field == "entityName":
        return "name"
    if field == "entityGuid":
        return "guid"
    return f"{TAG_PREFIX}{field}"


# -------------------------------------------------------------------------
# Time-series dialect
# -------------------------------------------------------------------------


def _render_timeseries(descriptor: QueryDescriptor, depth: int) -> str:
    _validate(descriptor, depth, allow_tags=False)

    schema = schema_for(descriptor.entity_kind)
    select = ", ".join(_render_aggregation(a) for a in descriptor.aggregations)

    source = descriptor.source
    if source is not None:
        from_clause = f"({_render_timeseries(source, depth + 1)})"
    else:
        from_clause = schema.event_type

    parts = [f"SELECT {select}", f"FROM {from_clause}"]
    if descriptor.filters:
        conditions = " AND ".join(_render_condition(f.field, f) for f in descriptor.filters)
        parts.append(f"WHERE {conditions}")
    if descriptor.group_by:
        parts.append("FACET " + ", ".join(render_identifier(g) for g in descriptor.group_by))
    parts.append(render_window(descriptor.time_window))
    if descriptor.limit is not None:
        parts.append(f"LIMIT {int(descriptor.limit)}")
    # Sub-queries cannot be bucketed; only the outermost query is a time series
    if depth == 1:
        parts.append("TIMESERIES")
    return " ".join(parts)


def _render_aggregation(agg: Aggregation) -> str:
    function = _SERVER_FUNCTIONS[agg.kind]
    field = render_identifier(agg.field)
    if agg.kind is AggregationKind.PERCENTILE:
        call = f"{function}({field}, {agg.percentile:g})"
    else:
        call = f"{function}({field})"
    return f"{call} AS {quote_string(agg.name)}"


def render_window(window: TimeWindow) -> str:
    if window.is_absolute:
        return f"SINCE {_epoch_millis(window.start)} UNTIL {_epoch_millis(window.end)}"
    seconds = window.duration_seconds
    if seconds % 3600 == 0:
        return f"SINCE {int(seconds // 3600)} hours ago"
    if seconds % 60 == 0:
        return f"SINCE {int(seconds // 60)} minutes ago"
    return f"SINCE {math.ceil(seconds)} seconds ago"


def _epoch_millis(moment: datetime | None) -> int:
    if moment is None:
        raise InvalidDescriptorError("absolute time window needs both start and end")
    return int(moment.timestamp() * 1000)


_RENDERERS: dict[Dialect, Callable[[QueryDescriptor, int], str]] = {
    Dialect.ENTITY_SEARCH: _render_entity_search,
    Dialect.TIMESERIES: _render_timeseries,
}

if set(_RENDERERS) != set(Dialect):
    raise RuntimeError("every Dialect needs a renderer")
