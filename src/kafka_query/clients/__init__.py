"""
Clients for the external query service.

- EntitySearchClient: entity search (ENTITY_SEARCH dialect)
- TimeSeriesClient: aggregation queries (TIMESERIES dialect)
- Pydantic response types shared by both
"""

from kafka_query.clients.entity_search import EntitySearchClient
from kafka_query.clients.timeseries import TimeSeriesClient
from kafka_query.clients.types import (
    Entity,
    EntitySearchResult,
    GraphQLError,
    GraphQLResponse,
    TimeSeriesRow,
)

__all__ = [
    # Clients
    "EntitySearchClient",
    "TimeSeriesClient",
    # Response types
    "Entity",
    "EntitySearchResult",
    "GraphQLError",
    "GraphQLResponse",
    "TimeSeriesRow",
]
