"""
Provider-agnostic query descriptors.

A QueryDescriptor says *what* data is wanted - entity kind, aggregations,
grouping, time window, limit and filters - without committing to a query
dialect. Descriptors are immutable; canonical() returns an equivalent
descriptor with filters and aggregations in a fixed order so that requests
built from differently ordered inputs compare and hash equal.

Example:
    descriptor = QueryDescriptor(
        entity_kind=EntityKind.BROKER,
        aggregations=(
            Aggregation(AggregationKind.AVERAGE, "cpuPercent", alias="cpu"),
            Aggregation(AggregationKind.PERCENTILE, "produceRequestLatencyMs", percentile=99),
        ),
        filters=(Filter("clusterName", FilterOperator.EQ, "prod-kafka"),),
        group_by=("entityName",),
        time_window=TimeWindow.last(minutes=30),
    )
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Union

from kafka_query.types import EntityKind

Scalar = Union[str, int, float, bool]
FilterValue = Union[Scalar, tuple[Scalar, ...]]


class AggregationKind(str, Enum):
    """Supported aggregation operations."""

    SUM = "sum"
    AVERAGE = "average"
    MIN = "min"
    MAX = "max"
    COUNT = "count"
    PERCENTILE = "percentile"
    RATE = "rate"
    HISTOGRAM = "histogram"
    TREND = "trend"


class FilterOperator(str, Enum):
    """Equality and inclusion operators for filter conditions."""

    EQ = "="
    NE = "!="
    IN = "IN"
    NOT_IN = "NOT IN"

    @property
    def is_set(self) -> bool:
        return self in (FilterOperator.IN, FilterOperator.NOT_IN)


@dataclass(frozen=True)
class TimeWindow:
    """
    Relative or absolute time window.

    Exactly one form is used: since_seconds for "the last N seconds", or
    start/end for an absolute range.
    """

    since_seconds: float | None = None
    start: datetime | None = None
    end: datetime | None = None

    @classmethod
    def last(cls, seconds: float = 0, minutes: float = 0, hours: float = 0) -> TimeWindow:
        return cls(since_seconds=seconds + minutes * 60 + hours * 3600)

    @classmethod
    def between(cls, start: datetime, end: datetime) -> TimeWindow:
        return cls(start=start, end=end)

    @property
    def is_absolute(self) -> bool:
        return self.start is not None or self.end is not None

    @property
    def duration_seconds(self) -> float:
        """Length of the window; zero or negative means the window is empty."""
        if self.is_absolute:
            if self.start is None or self.end is None:
                return 0.0
            return (self.end - self.start).total_seconds()
        return float(self.since_seconds or 0.0)

    def to_canonical(self) -> dict[str, Any]:
        if self.is_absolute:
            return {
                "start": self.start.isoformat() if self.start else None,
                "end": self.end.isoformat() if self.end else None,
            }
        return {"since_seconds": self.duration_seconds}


@dataclass(frozen=True)
class Filter:
    """
    A single filter condition: field, operator and value (or value set).

    List values are stored as tuples. For IN / NOT IN the values form a set,
    so canonical() sorts and de-duplicates them.
    """

    field: str
    operator: FilterOperator = FilterOperator.EQ
    value: FilterValue = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "operator", FilterOperator(self.operator))
        if isinstance(self.value, (list, set, frozenset)):
            object.__setattr__(self, "value", tuple(self.value))

    def canonical(self) -> Filter:
        if self.operator.is_set and isinstance(self.value, tuple):
            values = tuple(sorted(set(self.value), key=_sort_token))
            return replace(self, value=values)
        return self

    def sort_key(self) -> tuple[str, str, str]:
        return (self.field, self.operator.value, _sort_token(self.value))

    def to_canonical(self) -> dict[str, Any]:
        return {"field": self.field, "operator": self.operator.value, "value": _jsonable(self.value)}


@dataclass(frozen=True)
class Aggregation:
    """
    One aggregation: operation, input field and optional alias.

    Attributes:
        kind: Aggregation operation
        field: Input field (a sample attribute, or a source alias when nested)
        alias: Output name; defaults to "<kind>_<field>"
        percentile: Percentile in (0, 100], required for PERCENTILE
        buckets: Bucket count for HISTOGRAM (None uses the configured default)
        source: Sub-query whose output this aggregation reads from
    """

    kind: AggregationKind
    field: str
    alias: str | None = None
    percentile: float | None = None
    buckets: int | None = None
    source: QueryDescriptor | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", AggregationKind(self.kind))

    @property
    def name(self) -> str:
        """Output name of this aggregation."""
        if self.alias:
            return self.alias
        if self.kind is AggregationKind.PERCENTILE and self.percentile is not None:
            return f"p{self.percentile:g}_{self.field}"
        return f"{self.kind.value}_{self.field}"

    def canonical(self) -> Aggregation:
        if self.source is None:
            return self
        return replace(self, source=self.source.canonical())

    def sort_key(self) -> tuple[str, ...]:
        return (
            self.kind.value,
            self.field,
            self.alias or "",
            _sort_token(self.percentile),
            _sort_token(self.buckets),
            _sort_token(self.source.to_canonical() if self.source else None),
        )

    def to_canonical(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "field": self.field,
            "alias": self.alias,
            "percentile": self.percentile,
            "buckets": self.buckets,
            "source": self.source.to_canonical() if self.source else None,
        }


@dataclass(frozen=True)
class QueryDescriptor:
    """
    Immutable description of a metric query, independent of dialect.

    Attributes:
        entity_kind: Kind of entity the query targets
        aggregations: Aggregations to compute (at least one)
        group_by: Fields to group (facet) results by, order significant
        time_window: Window the samples are drawn from
        limit: Optional maximum number of result groups
        filters: Equality / inclusion conditions
    """

    entity_kind: EntityKind
    aggregations: tuple[Aggregation, ...]
    group_by: tuple[str, ...] = ()
    time_window: TimeWindow = field(default_factory=lambda: TimeWindow.last(minutes=30))
    limit: int | None = None
    filters: tuple[Filter, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "entity_kind", EntityKind(self.entity_kind))
        object.__setattr__(self, "aggregations", tuple(self.aggregations))
        object.__setattr__(self, "group_by", tuple(self.group_by))
        object.__setattr__(self, "filters", tuple(self.filters))

    def canonical(self) -> QueryDescriptor:
        """Return an equivalent descriptor with filters and aggregations sorted."""
        filters = tuple(sorted((f.canonical() for f in self.filters), key=Filter.sort_key))
        aggregations = tuple(
            sorted((a.canonical() for a in self.aggregations), key=Aggregation.sort_key)
        )
        return replace(self, filters=filters, aggregations=aggregations)

    def equivalent(self, other: QueryDescriptor) -> bool:
        """True if both descriptors are equal after canonical ordering."""
        return self.canonical() == other.canonical()

    @property
    def depth(self) -> int:
        """Nesting depth: 1 for a flat query, +1 per level of sub-query."""
        inner = [a.source.depth for a in self.aggregations if a.source is not None]
        return 1 + max(inner, default=0)

    @property
    def source(self) -> QueryDescriptor | None:
        """The sub-query this descriptor reads from, if any aggregation is nested."""
        for agg in self.aggregations:
            if agg.source is not None:
                return agg.source
        return None

    def to_canonical(self) -> dict[str, Any]:
        canon = self.canonical()
        return {
            "entity_kind": canon.entity_kind.value,
            "aggregations": [a.to_canonical() for a in canon.aggregations],
            "group_by": list(canon.group_by),
            "time_window": canon.time_window.to_canonical(),
            "limit": canon.limit,
            "filters": [f.to_canonical() for f in canon.filters],
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, tuple):
        return [_jsonable(v) for v in value]
    return value


def _sort_token(value: Any) -> str:
    """Type-tagged string so mixed-type values sort deterministically."""
    return f"{type(value).__name__}:{value!r}"
