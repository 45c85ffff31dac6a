"""Shared test doubles: fake clock, fake sleep, fake services and mock HTTP."""

import json
from typing import Any, Callable

import httpx
import pytest

from kafka_query.clients.types import Entity, EntitySearchResult, TimeSeriesRow


# =============================================================================
# Time
# =============================================================================


class FakeClock:
    """Manually advanced clock for cache TTL tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Sleep replacement that records requested delays and returns at once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def clock():
    """Fake clock starting at t=1000s."""
    return FakeClock()


@pytest.fixture
def sleep():
    """Recording sleep, no real waiting."""
    return RecordingSleep()


# =============================================================================
# Fake services
# =============================================================================


Responder = Callable[[str], "list[TimeSeriesRow] | Exception"]


class FakeTimeSeries:
    """
    In-memory TimeSeriesProtocol implementation.

    Each query string is answered by responder(query). An exception returned
    by the responder is raised from query() and reported per key from
    query_many(). Setting fail_combined makes query_many() raise as a whole.
    """

    def __init__(self, responder: Responder | None = None) -> None:
        self.responder = responder or (lambda query: [])
        self.queries: list[str] = []
        self.combined_calls: list[dict[str, str]] = []
        self.fail_combined: Exception | None = None

    async def query(self, query, account_id=None, time_window=None):
        self.queries.append(query)
        outcome = self.responder(query)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def query_many(self, queries, account_id=None):
        self.combined_calls.append(dict(queries))
        if self.fail_combined is not None:
            raise self.fail_combined
        results: dict[str, Any] = {}
        for key, query in queries.items():
            self.queries.append(query)
            results[key] = self.responder(query)
        return results

    @property
    def call_count(self) -> int:
        return len(self.queries)


class FakeEntitySearch:
    """In-memory EntitySearchProtocol implementation returning fixed entities."""

    def __init__(self, entities: list[Entity] | None = None, error: Exception | None = None) -> None:
        self.entities = entities or []
        self.error = error
        self.expressions: list[str] = []

    async def search(self, filter_expression):
        self.expressions.append(filter_expression)
        if self.error is not None:
            raise self.error
        return EntitySearchResult(count=len(self.entities), entities=self.entities)


def row(values: dict[str, float], facets: tuple[str, ...] = (), timestamp: float | None = None) -> TimeSeriesRow:
    """Build a TimeSeriesRow."""
    return TimeSeriesRow(facet_values=facets, metric_values=values, timestamp=timestamp)


def entity(guid: str, name: str, cluster: str = "prod-kafka", type_: str = "KAFKABROKER") -> Entity:
    """Build an Entity tagged with its cluster."""
    return Entity(
        guid=guid,
        name=name,
        type=type_,
        tags=[{"key": "clusterName", "values": [cluster]}],
    )


# =============================================================================
# Mock HTTP
# =============================================================================


class MockResponse:
    """Mock httpx.Response for testing."""

    def __init__(self, json_data: Any, status_code: int = 200, headers: dict[str, str] | None = None):
        self._json_data = json_data
        self.status_code = status_code
        self.headers = httpx.Headers(headers or {})

    def json(self) -> Any:
        if isinstance(self._json_data, Exception):
            raise self._json_data
        return self._json_data


class MockAsyncClient:
    """
    Mock httpx.AsyncClient that returns queued responses in order.

    Every POST is recorded with its path and decoded JSON body.
    """

    def __init__(self, responses: list[Any]):
        self._responses = list(responses)
        self.requests: list[tuple[str, dict[str, Any]]] = []

    async def post(self, path: str, json: dict[str, Any] | None = None) -> MockResponse:
        self.requests.append((path, json or {}))
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def graphql_body(request: tuple[str, dict[str, Any]]) -> str:
    """Serialized variables of a recorded request, for substring assertions."""
    return json.dumps(request[1].get("variables", {}))
