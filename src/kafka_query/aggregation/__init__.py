"""
Aggregation and health scoring.

- aggregate / aggregate_samples: fold EntitySamples into metric values
- score_health: weighted multi-factor HealthScore from factor inputs
- DEFAULT_POLICIES / HEALTH_INPUTS: per-kind health policies and the
  aggregations that feed them
"""

from kafka_query.aggregation.aggregator import (
    DEFAULT_HISTOGRAM_BUCKETS,
    Trend,
    aggregate,
    aggregate_samples,
    histogram,
    percentile,
    trend,
)
from kafka_query.aggregation.health import (
    Comparison,
    HealthCheck,
    HealthFactor,
    HealthPolicy,
    ThresholdRule,
    score_health,
)
from kafka_query.aggregation.policies import (
    DEFAULT_POLICIES,
    HEALTH_INPUTS,
    default_policy,
    health_inputs,
)

__all__ = [
    "DEFAULT_HISTOGRAM_BUCKETS",
    "DEFAULT_POLICIES",
    "HEALTH_INPUTS",
    "Comparison",
    "HealthCheck",
    "HealthFactor",
    "HealthPolicy",
    "ThresholdRule",
    "Trend",
    "aggregate",
    "aggregate_samples",
    "default_policy",
    "health_inputs",
    "histogram",
    "percentile",
    "score_health",
    "trend",
]
