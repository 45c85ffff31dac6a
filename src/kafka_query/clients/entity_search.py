"""
Entity search client.

This module provides the EntitySearchClient class for resolving Kafka
entities (clusters, brokers, topics, consumer groups) from the platform's
entity search. Filter expressions are produced by the ENTITY_SEARCH dialect
of the query builder, e.g.:

    domain IN ('INFRA') AND type = 'KAFKABROKER' AND tags.clusterName = 'prod-kafka'

Key design decisions:
- Uses injected httpx.AsyncClient (base_url and API key headers preset)
- Filter expressions are passed as GraphQL variables, never interpolated
- Follows nextCursor pagination up to max_pages
- Fails loudly: HTTP and GraphQL errors raise ExecutionError subclasses
"""

from dataclasses import dataclass

import httpx

from kafka_query.clients.errors import error_for_graphql
from kafka_query.clients.graphql import dig, post_graphql
from kafka_query.clients.types import Entity, EntitySearchResult

ENTITY_SEARCH_QUERY = """
query($query: String!, $cursor: String) {
  actor {
    entitySearch(query: $query) {
      count
      results(cursor: $cursor) {
        nextCursor
        entities { guid name type tags { key values } }
      }
    }
  }
}
"""


@dataclass
class EntitySearchClient:
    """
    Entity search client with injected httpx client.

    Example:
        async with httpx.AsyncClient(base_url="https://api.newrelic.com") as http:
            client = EntitySearchClient(http=http)
            result = await client.search("domain IN ('INFRA') AND type = 'KAFKABROKER'")
            for entity in result.entities:
                print(entity.guid, entity.name)
    """

    http: httpx.AsyncClient
    max_pages: int = 10

    async def search(self, filter_expression: str) -> EntitySearchResult:
        """
        Search entities matching a filter expression.

        Args:
            filter_expression: Entity search expression

        Returns:
            EntitySearchResult with the total count and all fetched entities

        Raises:
            InvalidQueryError: Expression rejected by the service
            PermissionDeniedError: Credentials not allowed to search
            RateLimitedError, ServiceUnavailableError, ExecutionTimeoutError:
                Transient failures (retried by the execution layer)
        """
        entities: list[Entity] = []
        count = 0
        cursor: str | None = None

        for _ in range(self.max_pages):
            envelope = await post_graphql(
                self.http,
                ENTITY_SEARCH_QUERY,
                {"query": filter_expression, "cursor": cursor},
            )
            if envelope.errors:
                raise error_for_graphql(envelope.errors[0])

            search = dig(envelope.data, "actor", "entitySearch") or {}
            count = int(search.get("count") or 0)
            results = search.get("results") or {}
            entities.extend(Entity.model_validate(e) for e in results.get("entities") or [])

            cursor = results.get("nextCursor")
            if not cursor:
                break

        return EntitySearchResult(count=max(count, len(entities)), entities=entities)
