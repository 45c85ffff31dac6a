"""
Default health policies and the metrics that feed them.

DEFAULT_POLICIES holds one HealthPolicy per entity kind. HEALTH_INPUTS maps
each policy input name to the Aggregation that produces it from the kind's
time-series event type, so a metric request with include_health can fetch
the inputs alongside the caller's own metrics.
"""

from kafka_query.aggregation.health import (
    Comparison,
    HealthCheck,
    HealthFactor,
    HealthPolicy,
    ThresholdRule,
)
from kafka_query.query.descriptor import Aggregation, AggregationKind
from kafka_query.types import EntityKind

GT = Comparison.GT
LT = Comparison.LT


def _rule(comparison: Comparison, threshold: float, penalty: float, severity: str, message: str = "") -> ThresholdRule:
    return ThresholdRule(comparison, threshold, penalty, severity, message)


# Shared capacity checks for clusters and brokers
_CPU = HealthCheck("cpu_percent", (
    _rule(GT, 90, 40, "critical", "CPU usage at {value:.0f}%"),
    _rule(GT, 80, 25, "warning", "CPU usage at {value:.0f}%"),
    _rule(GT, 70, 10, "info", "CPU usage at {value:.0f}%"),
))
_DISK = HealthCheck("disk_used_percent", (
    _rule(GT, 90, 50, "critical", "Disk usage at {value:.0f}%"),
    _rule(GT, 80, 30, "warning", "Disk usage at {value:.0f}%"),
    _rule(GT, 70, 10, "info", "Disk usage at {value:.0f}%"),
))
_UNDER_REPLICATED = HealthCheck("under_replicated_partitions", (
    _rule(GT, 10, 40, "critical", "{value:g} under-replicated partitions"),
    _rule(GT, 0, 20, "warning", "{value:g} under-replicated partitions"),
))
_ISR_SHRINKS = HealthCheck("isr_shrinks_per_sec", (
    _rule(GT, 5, 30, "warning", "ISR shrinking at {value:.2f}/s"),
    _rule(GT, 0, 10, "info", "ISR shrinking at {value:.2f}/s"),
))
_HANDLER_IDLE = HealthCheck("request_handler_idle_percent", (
    _rule(LT, 10, 40, "critical", "Request handlers only {value:.0f}% idle"),
    _rule(LT, 30, 20, "warning", "Request handlers only {value:.0f}% idle"),
))


CLUSTER_POLICY = HealthPolicy(
    kind=EntityKind.CLUSTER,
    factors=(
        HealthFactor("availability", 0.30, (
            HealthCheck(
                "active_controller",
                (_rule(LT, 1, 100, "critical", "No active controller"),),
                hard_fail=True,
                fatal=True,
            ),
            HealthCheck("active_controller", (
                _rule(GT, 1, 50, "critical", "{value:g} active controllers"),
            )),
            HealthCheck("offline_partitions", (
                _rule(GT, 10, 60, "critical", "{value:g} offline partitions"),
                _rule(GT, 0, 40, "critical", "{value:g} offline partitions"),
            )),
        )),
        HealthFactor("reliability", 0.25, (_UNDER_REPLICATED, _ISR_SHRINKS)),
        HealthFactor("performance", 0.20, (
            HealthCheck("request_latency_ms", (
                _rule(GT, 1000, 40, "critical", "Request latency {value:.0f}ms"),
                _rule(GT, 500, 25, "warning", "Request latency {value:.0f}ms"),
                _rule(GT, 200, 10, "info", "Request latency {value:.0f}ms"),
            )),
            _HANDLER_IDLE,
        )),
        HealthFactor("capacity", 0.25, (_CPU, _DISK)),
    ),
)

BROKER_POLICY = HealthPolicy(
    kind=EntityKind.BROKER,
    factors=(
        HealthFactor("availability", 0.30, (
            HealthCheck(
                "is_online",
                (_rule(LT, 1, 100, "critical", "Broker is offline"),),
                hard_fail=True,
                fatal=True,
            ),
        )),
        HealthFactor("reliability", 0.20, (
            _UNDER_REPLICATED,
            _ISR_SHRINKS,
            HealthCheck("failed_requests_per_sec", (
                _rule(GT, 1, 30, "warning", "{value:.2f} failed requests/s"),
                _rule(GT, 0, 10, "info", "{value:.2f} failed requests/s"),
            )),
        )),
        HealthFactor("performance", 0.25, (
            HealthCheck("produce_latency_ms", (
                _rule(GT, 500, 40, "critical", "Produce latency {value:.0f}ms"),
                _rule(GT, 100, 15, "warning", "Produce latency {value:.0f}ms"),
            )),
            HealthCheck("fetch_latency_ms", (
                _rule(GT, 1000, 30, "critical", "Fetch latency {value:.0f}ms"),
                _rule(GT, 500, 10, "warning", "Fetch latency {value:.0f}ms"),
            )),
            _HANDLER_IDLE,
            HealthCheck("network_processor_idle_percent", (
                _rule(LT, 10, 30, "critical", "Network processors only {value:.0f}% idle"),
                _rule(LT, 30, 10, "warning", "Network processors only {value:.0f}% idle"),
            )),
        )),
        HealthFactor("capacity", 0.25, (
            _CPU,
            _DISK,
            HealthCheck("memory_used_percent", (
                _rule(GT, 90, 30, "critical", "Memory usage at {value:.0f}%"),
                _rule(GT, 80, 15, "warning", "Memory usage at {value:.0f}%"),
            )),
        )),
    ),
)

TOPIC_POLICY = HealthPolicy(
    kind=EntityKind.TOPIC,
    factors=(
        HealthFactor("availability", 0.40, (
            HealthCheck(
                "offline_partitions",
                (_rule(GT, 0, 100, "critical", "{value:g} offline partitions"),),
                hard_fail=True,
                fatal=True,
            ),
        )),
        HealthFactor("reliability", 0.35, (
            _UNDER_REPLICATED,
            HealthCheck("replication_factor", (
                _rule(LT, 2, 40, "warning", "Replication factor {value:g} gives no redundancy"),
                _rule(LT, 3, 10, "info", "Replication factor {value:g}"),
            )),
        )),
        HealthFactor("balance", 0.25, (
            HealthCheck("partition_skew_percent", (
                _rule(GT, 50, 40, "warning", "Partition skew {value:.0f}%"),
                _rule(GT, 20, 15, "info", "Partition skew {value:.0f}%"),
            )),
        )),
    ),
)

CONSUMER_GROUP_POLICY = HealthPolicy(
    kind=EntityKind.CONSUMER_GROUP,
    factors=(
        HealthFactor("activity", 0.30, (
            HealthCheck(
                "active_consumers",
                (_rule(LT, 1, 100, "critical", "No active consumers"),),
                hard_fail=True,
            ),
        )),
        HealthFactor("lag", 0.45, (
            HealthCheck("max_lag", (
                _rule(GT, 100_000, 60, "critical", "Max lag {value:,.0f} messages"),
                _rule(GT, 10_000, 30, "warning", "Max lag {value:,.0f} messages"),
                _rule(GT, 1_000, 10, "info", "Max lag {value:,.0f} messages"),
            )),
        )),
        HealthFactor("trend", 0.25, (
            HealthCheck("lag_trend_per_sec", (
                _rule(GT, 100, 50, "warning", "Lag growing {value:.1f} messages/s"),
                _rule(GT, 0, 15, "info", "Lag growing {value:.1f} messages/s"),
            )),
        )),
    ),
)

DEFAULT_POLICIES: dict[EntityKind, HealthPolicy] = {
    EntityKind.CLUSTER: CLUSTER_POLICY,
    EntityKind.BROKER: BROKER_POLICY,
    EntityKind.TOPIC: TOPIC_POLICY,
    EntityKind.CONSUMER_GROUP: CONSUMER_GROUP_POLICY,
}


def _input(kind: AggregationKind, field: str, alias: str, percentile: float | None = None) -> Aggregation:
    return Aggregation(kind=kind, field=field, alias=alias, percentile=percentile)


HEALTH_INPUTS: dict[EntityKind, tuple[Aggregation, ...]] = {
    EntityKind.CLUSTER: (
        _input(AggregationKind.MAX, "activeControllerCount", "active_controller"),
        _input(AggregationKind.MAX, "offlinePartitionsCount", "offline_partitions"),
        _input(AggregationKind.MAX, "underReplicatedPartitions", "under_replicated_partitions"),
        _input(AggregationKind.AVERAGE, "isrShrinksPerSec", "isr_shrinks_per_sec"),
        _input(AggregationKind.PERCENTILE, "requestLatencyMs", "request_latency_ms", 95),
        _input(AggregationKind.AVERAGE, "requestHandlerIdlePercent", "request_handler_idle_percent"),
        _input(AggregationKind.AVERAGE, "cpuPercent", "cpu_percent"),
        _input(AggregationKind.MAX, "diskUsedPercent", "disk_used_percent"),
    ),
    EntityKind.BROKER: (
        _input(AggregationKind.MIN, "isOnline", "is_online"),
        _input(AggregationKind.MAX, "underReplicatedPartitions", "under_replicated_partitions"),
        _input(AggregationKind.AVERAGE, "isrShrinksPerSec", "isr_shrinks_per_sec"),
        _input(AggregationKind.AVERAGE, "failedProduceRequestsPerSec", "failed_requests_per_sec"),
        _input(AggregationKind.PERCENTILE, "produceRequestLatencyMs", "produce_latency_ms", 95),
        _input(AggregationKind.PERCENTILE, "fetchRequestLatencyMs", "fetch_latency_ms", 95),
        _input(AggregationKind.AVERAGE, "requestHandlerIdlePercent", "request_handler_idle_percent"),
        _input(AggregationKind.AVERAGE, "networkProcessorIdlePercent", "network_processor_idle_percent"),
        _input(AggregationKind.AVERAGE, "cpuPercent", "cpu_percent"),
        _input(AggregationKind.MAX, "diskUsedPercent", "disk_used_percent"),
        _input(AggregationKind.MAX, "memoryUsedPercent", "memory_used_percent"),
    ),
    EntityKind.TOPIC: (
        _input(AggregationKind.MAX, "offlinePartitionsCount", "offline_partitions"),
        _input(AggregationKind.MAX, "underReplicatedPartitions", "under_replicated_partitions"),
        _input(AggregationKind.MIN, "replicationFactor", "replication_factor"),
        _input(AggregationKind.MAX, "partitionSkewPercent", "partition_skew_percent"),
    ),
    EntityKind.CONSUMER_GROUP: (
        _input(AggregationKind.MIN, "activeConsumers", "active_consumers"),
        _input(AggregationKind.MAX, "maxLag", "max_lag"),
        _input(AggregationKind.TREND, "totalLag", "lag_trend_per_sec"),
    ),
}


def default_policy(kind: EntityKind) -> HealthPolicy:
    """Default health policy for an entity kind."""
    return DEFAULT_POLICIES[EntityKind(kind)]


def health_inputs(kind: EntityKind) -> tuple[Aggregation, ...]:
    """Aggregations producing the default policy's inputs for kind."""
    return HEALTH_INPUTS[EntityKind(kind)]
