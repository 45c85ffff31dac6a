"""
Protocol definitions for the external query service.

The execution layer depends only on these protocols, so any implementation
(the GraphQL clients in kafka_query.clients, or a test double) can be used.
"""

from typing import Mapping, Protocol, runtime_checkable

from kafka_query.clients.types import EntitySearchResult, TimeSeriesRow
from kafka_query.exceptions import ExecutionError
from kafka_query.query import TimeWindow


@runtime_checkable
class EntitySearchProtocol(Protocol):
    """
    Protocol for entity search.

    Implementations resolve a filter expression such as
    "domain IN ('INFRA') AND type = 'KAFKABROKER' AND tags.clusterName = 'prod'"
    into matching entities.
    """

    async def search(self, filter_expression: str) -> EntitySearchResult:
        """
        Search entities.

        Raises:
            ExecutionError subclass on failure
        """
        ...


@runtime_checkable
class TimeSeriesProtocol(Protocol):
    """
    Protocol for the time-series query service.

    query() runs one query; query_many() runs several in one call and
    reports failures per key instead of failing the whole call.
    """

    async def query(
        self,
        query: str,
        account_id: int | None = None,
        time_window: TimeWindow | None = None,
    ) -> list[TimeSeriesRow]:
        ...

    async def query_many(
        self,
        queries: Mapping[str, str],
        account_id: int | None = None,
    ) -> dict[str, list[TimeSeriesRow] | ExecutionError]:
        ...
