"""
Metric aggregation over raw entity samples.

aggregate() folds samples into a single value for one Aggregation:
- sum, average, min, max, count
- percentile(p): linear interpolation between closest ranks
- rate: per-second change between chronologically adjacent samples of the
  same entity, summed across entities. Fewer than two samples -> 0.0
- histogram: fixed bucket count over the observed value range
- trend: least-squares slope in units per second per entity, summed across
  entities. Fewer than two samples -> 0.0

aggregate_samples() applies several aggregations at once, overall and per
group. A metric that cannot be computed becomes a MetricError marker while
the other metrics are still returned.

Samples are never mutated.
"""

import logging
import math
from collections import defaultdict
from enum import Enum
from typing import Sequence

from kafka_query.exceptions import AggregationError
from kafka_query.query.descriptor import Aggregation, AggregationKind
from kafka_query.types import AggregatedResult, EntitySample, Histogram, MetricError, MetricValue

logger = logging.getLogger(__name__)

DEFAULT_HISTOGRAM_BUCKETS = 10


class Trend(str, Enum):
    """Direction of a metric over time."""

    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


def aggregate(
    samples: Sequence[EntitySample],
    spec: Aggregation,
    histogram_buckets: int = DEFAULT_HISTOGRAM_BUCKETS,
) -> float | Histogram:
    """
    Aggregate samples for one aggregation.

    Args:
        samples: Raw samples; samples without spec.field are ignored
        spec: Which operation to apply to which field
        histogram_buckets: Bucket count when spec.buckets is not set

    Returns:
        A float, or a Histogram for HISTOGRAM

    Raises:
        AggregationError: No usable values for an operation that needs them
    """
    kind = spec.kind

    if kind is AggregationKind.RATE:
        return _rate(samples, spec.field)
    if kind is AggregationKind.TREND:
        return _slope(samples, spec.field)

    values = [s.metrics[spec.field] for s in samples if spec.field in s.metrics]
    values = [v for v in values if not math.isnan(v)]

    if kind is AggregationKind.COUNT:
        return float(len(values))
    if kind is AggregationKind.SUM:
        return float(math.fsum(values))

    if not values:
        raise AggregationError(spec.field, "no samples")

    if kind is AggregationKind.AVERAGE:
        return math.fsum(values) / len(values)
    if kind is AggregationKind.MIN:
        return float(min(values))
    if kind is AggregationKind.MAX:
        return float(max(values))
    if kind is AggregationKind.PERCENTILE:
        if spec.percentile is None:
            raise AggregationError(spec.field, "percentile not set")
        return percentile(values, spec.percentile)
    if kind is AggregationKind.HISTOGRAM:
        return histogram(values, spec.buckets or histogram_buckets)

    raise AggregationError(spec.field, f"unsupported aggregation {kind.value}")


def aggregate_samples(
    samples: Sequence[EntitySample],
    aggregations: Sequence[Aggregation],
    group_by: Sequence[str] = (),
    histogram_buckets: int = DEFAULT_HISTOGRAM_BUCKETS,
) -> AggregatedResult:
    """
    Apply several aggregations, overall and per facet group.

    Args:
        samples: Raw samples
        aggregations: Aggregations to compute; results keyed by Aggregation.name
        group_by: Facet fields; each distinct tuple of values forms a group

    Returns:
        AggregatedResult with MetricError markers for failed metrics
    """
    overall = {
        agg.name: _aggregate_or_error(samples, agg, histogram_buckets) for agg in aggregations
    }

    groups: dict[tuple[str, ...], dict[str, MetricValue]] = {}
    if group_by:
        members: dict[tuple[str, ...], list[EntitySample]] = defaultdict(list)
        for sample in samples:
            members[tuple(sample.facets.get(f, "") for f in group_by)].append(sample)
        for key in sorted(members):
            groups[key] = {
                agg.name: _aggregate_or_error(members[key], agg, histogram_buckets)
                for agg in aggregations
            }

    return AggregatedResult(metrics=overall, groups=groups, sample_count=len(samples))


def percentile(values: Sequence[float], p: float) -> float:
    """Percentile with linear interpolation, p in [0, 100]."""
    if not values:
        raise ValueError("percentile of empty sequence")
    ordered = sorted(values)
    rank = (len(ordered) - 1) * (p / 100.0)
    lower = math.floor(rank)
    upper = math.ceil(rank)
    if lower == upper:
        return float(ordered[int(rank)])
    fraction = rank - lower
    return ordered[lower] + (ordered[upper] - ordered[lower]) * fraction


def histogram(values: Sequence[float], buckets: int) -> Histogram:
    """Histogram with a fixed number of equal-width buckets over [min, max]."""
    if buckets <= 0:
        raise ValueError(f"bucket count must be positive, got {buckets}")
    low, high = min(values), max(values)
    if high == low:
        high = low + 1.0
    width = (high - low) / buckets

    counts = [0] * buckets
    for value in values:
        counts[min(int((value - low) / width), buckets - 1)] += 1
    edges = tuple(low + width * i for i in range(buckets)) + (high,)
    return Histogram(edges=edges, counts=tuple(counts))


def trend(
    samples: Sequence[EntitySample], field: str, tolerance: float = 0.01
) -> Trend:
    """
    Classify the direction of a metric over time.

    Args:
        samples: Samples carrying field
        field: Metric to inspect
        tolerance: Slopes within +/- tolerance (units per second) are stable
    """
    slope = _slope(samples, field)
    if slope > tolerance:
        return Trend.INCREASING
    if slope < -tolerance:
        return Trend.DECREASING
    return Trend.STABLE


def _aggregate_or_error(
    samples: Sequence[EntitySample], agg: Aggregation, histogram_buckets: int
) -> MetricValue:
    try:
        return aggregate(samples, agg, histogram_buckets)
    except (AggregationError, ArithmeticError, ValueError) as e:
        logger.debug("Aggregation %s failed: %s", agg.name, e)
        return MetricError(alias=agg.name, message=str(e), error_type=type(e).__name__)


def _series_by_entity(
    samples: Sequence[EntitySample], field: str
) -> dict[str, list[tuple[float, float]]]:
    series: dict[str, list[tuple[float, float]]] = defaultdict(list)
    for sample in samples:
        value = sample.metrics.get(field)
        if value is not None and not math.isnan(value):
            series[sample.entity].append((sample.timestamp, value))
    for points in series.values():
        points.sort()
    return series


def _rate(samples: Sequence[EntitySample], field: str) -> float:
    total = 0.0
    for points in _series_by_entity(samples, field).values():
        rates = []
        for (t0, v0), (t1, v1) in zip(points, points[1:]):
            elapsed = t1 - t0
            delta = v1 - v0
            # Skip duplicate timestamps and counter resets
            if elapsed <= 0 or delta < 0:
                continue
            rates.append(delta / elapsed)
        if rates:
            total += math.fsum(rates) / len(rates)
    return total


def _slope(samples: Sequence[EntitySample], field: str) -> float:
    # Slope of the summed series: sum of per-entity slopes
    return math.fsum(
        _least_squares_slope(points)
        for points in _series_by_entity(samples, field).values()
    )


def _least_squares_slope(points: Sequence[tuple[float, float]]) -> float:
    if len(points) < 2:
        return 0.0
    mean_t = math.fsum(t for t, _ in points) / len(points)
    mean_v = math.fsum(v for _, v in points) / len(points)
    variance = math.fsum((t - mean_t) ** 2 for t, _ in points)
    if variance == 0:
        return 0.0
    covariance = math.fsum((t - mean_t) * (v - mean_v) for t, v in points)
    return covariance / variance
