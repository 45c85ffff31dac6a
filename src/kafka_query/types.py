"""
Shared data types for the query engine.

This module defines the value types that flow between the builder, the
execution layer, the aggregator and the facade. These are internal types -
not API models. Responses from the external services are parsed with the
Pydantic models in kafka_query.clients.types and converted into these.

All types use @dataclass. Types that are cached or shared between
subscribers are frozen so a reader can never observe a half-updated value.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union

EntityGuid = str
"""Globally unique identifier of an entity in the observability platform."""


class EntityKind(str, Enum):
    """Kafka entity kinds that can be queried."""

    CLUSTER = "cluster"
    BROKER = "broker"
    TOPIC = "topic"
    CONSUMER_GROUP = "consumer_group"


class HealthStatus(str, Enum):
    """
    Health status bands derived from an overall score.

    Bands are inclusive on their lower bound:
    excellent >= 90, good >= 80, fair >= 70, poor >= 50, critical < 50.
    """

    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    CRITICAL = "critical"

    @classmethod
    def from_score(cls, overall: float) -> HealthStatus:
        if overall >= 90:
            return cls.EXCELLENT
        if overall >= 80:
            return cls.GOOD
        if overall >= 70:
            return cls.FAIR
        if overall >= 50:
            return cls.POOR
        return cls.CRITICAL


@dataclass(frozen=True)
class EntitySample:
    """
    One raw observation of an entity.

    Samples are produced by the execution layer and consumed immediately by
    the aggregator. They are never cached in raw form.

    Attributes:
        entity: Entity identifier (facet value or entity GUID)
        timestamp: Observation time in seconds since the epoch
        metrics: Metric name to numeric value
        facets: Facet (group-by) field to value for this sample
    """

    entity: str
    timestamp: float
    metrics: dict[str, float]
    facets: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Histogram:
    """
    Fixed-bucket histogram over an observed value range.

    Attributes:
        edges: Bucket boundaries, len(counts) + 1 values in ascending order
        counts: Number of values falling in each bucket
    """

    edges: tuple[float, ...]
    counts: tuple[int, ...]


@dataclass(frozen=True)
class MetricError:
    """
    Marker for a metric that could not be computed.

    Used in place of a value when one metric of a multi-metric request
    fails, so the other metrics can still be returned.
    """

    alias: str
    message: str
    error_type: str = "AggregationError"


MetricValue = Union[float, Histogram, MetricError]


@dataclass(frozen=True)
class Issue:
    """
    A problem found while scoring health.

    Attributes:
        factor: Health factor the check belongs to (e.g. "availability")
        metric: Input that triggered the issue (e.g. "offline_partitions")
        severity: "critical", "warning" or "info"
        message: Human-readable description
        value: The offending input value, if numeric
    """

    factor: str
    metric: str
    severity: str
    message: str
    value: float | None = None


@dataclass(frozen=True)
class HealthScore:
    """
    Weighted multi-factor health score.

    Always built as a complete unit by score_health() and never updated in
    place - a new aggregation pass produces a new HealthScore.

    Attributes:
        overall: Weighted score in 0..100
        components: Factor name to factor score in 0..100
        status: Band derived from overall
        issues: Every check that applied a penalty
    """

    overall: float
    components: dict[str, float]
    status: HealthStatus
    issues: tuple[Issue, ...] = ()


@dataclass(frozen=True)
class AggregatedResult:
    """
    Aggregated metrics for one query.

    Attributes:
        metrics: Alias to value across all samples
        groups: Facet values (in group-by order) to per-group alias values
        sample_count: Number of samples folded into the result
        health: Health score, when the request asked for one
        computed_at: When the aggregation ran
    """

    metrics: dict[str, MetricValue]
    groups: dict[tuple[str, ...], dict[str, MetricValue]] = field(default_factory=dict)
    sample_count: int = 0
    health: HealthScore | None = None
    computed_at: datetime = field(default_factory=datetime.now)

    @property
    def errors(self) -> dict[str, MetricError]:
        """Metrics that failed to aggregate."""
        return {k: v for k, v in self.metrics.items() if isinstance(v, MetricError)}

    def value(self, alias: str) -> Any:
        """Get a single metric value, raising KeyError if missing."""
        return self.metrics[alias]


@dataclass(frozen=True)
class MetricResult:
    """
    Tri-state result returned by the facade.

    Exactly one of the following holds after settlement:
    - data is set and error is None
    - error is set and data is None
    loading is True only for snapshots taken while a request is in flight.
    """

    loading: bool = False
    error: Exception | None = None
    data: Any = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.data is not None
