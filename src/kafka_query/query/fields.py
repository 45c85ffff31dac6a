"""
Known fields for each Kafka entity kind.

Each entity kind maps to a sample event type for time-series queries and an
entity type for entity search. Filters and group-by fields are validated
against these field sets before any query string is rendered.
"""

from dataclasses import dataclass

from kafka_query.types import EntityKind

TAG_PREFIX = "tags."
"""Prefix for entity tag filters, only meaningful in entity search."""


@dataclass(frozen=True)
class EntitySchema:
    """
    Query metadata for one entity kind.

    Attributes:
        kind: The entity kind described
        event_type: Sample event type queried by the time-series dialect
        entity_type: Entity type matched by the entity-search dialect
        facet: Field that identifies one entity in time-series rows
        fields: Attributes that may be filtered or grouped on
        domains: Entity domains searched by the entity-search dialect
    """

    kind: EntityKind
    event_type: str
    entity_type: str
    facet: str
    fields: frozenset[str]
    domains: tuple[str, ...] = ("INFRA",)

    def is_known(self, name: str, allow_tags: bool = False) -> bool:
        if allow_tags and name.startswith(TAG_PREFIX) and len(name) > len(TAG_PREFIX):
            return True
        return name in self.fields


_COMMON = frozenset({"clusterName", "provider", "accountId", "entityGuid", "entityName"})

SCHEMAS: dict[EntityKind, EntitySchema] = {
    EntityKind.CLUSTER: EntitySchema(
        kind=EntityKind.CLUSTER,
        event_type="KafkaBrokerSample",
        entity_type="KAFKACLUSTER",
        facet="clusterName",
        fields=_COMMON
        | {
            "activeControllerCount",
            "offlinePartitionsCount",
            "underReplicatedPartitions",
            "isrShrinksPerSec",
            "unreplicatedPartitions",
            "bytesInPerSec",
            "bytesOutPerSec",
            "messagesInPerSec",
            "requestLatencyMs",
            "requestHandlerIdlePercent",
            "cpuPercent",
            "diskUsedPercent",
            "brokerCount",
        },
    ),
    EntityKind.BROKER: EntitySchema(
        kind=EntityKind.BROKER,
        event_type="KafkaBrokerSample",
        entity_type="KAFKABROKER",
        facet="entityName",
        fields=_COMMON
        | {
            "brokerId",
            "hostname",
            "isOnline",
            "cpuPercent",
            "diskUsedPercent",
            "memoryUsedPercent",
            "underReplicatedPartitions",
            "isrShrinksPerSec",
            "requestHandlerIdlePercent",
            "networkProcessorIdlePercent",
            "produceRequestLatencyMs",
            "fetchRequestLatencyMs",
            "failedProduceRequestsPerSec",
            "failedFetchRequestsPerSec",
            "bytesInPerSec",
            "bytesOutPerSec",
            "messagesInPerSec",
        },
    ),
    EntityKind.TOPIC: EntitySchema(
        kind=EntityKind.TOPIC,
        event_type="KafkaTopicSample",
        entity_type="KAFKATOPIC",
        facet="topic",
        fields=_COMMON
        | {
            "topic",
            "partitionCount",
            "replicationFactor",
            "underReplicatedPartitions",
            "offlinePartitionsCount",
            "partitionSkewPercent",
            "bytesInPerSec",
            "bytesOutPerSec",
            "messagesInPerSec",
            "retentionMs",
        },
    ),
    EntityKind.CONSUMER_GROUP: EntitySchema(
        kind=EntityKind.CONSUMER_GROUP,
        event_type="KafkaOffsetSample",
        entity_type="KAFKACONSUMERGROUP",
        facet="consumerGroup",
        fields=_COMMON
        | {
            "consumerGroup",
            "topic",
            "partition",
            "totalLag",
            "maxLag",
            "lagTrendPerSec",
            "activeConsumers",
            "consumptionRatePerSec",
        },
    ),
}


def schema_for(kind: EntityKind) -> EntitySchema:
    """Look up the schema for an entity kind."""
    return SCHEMAS[EntityKind(kind)]
