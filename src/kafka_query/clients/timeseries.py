"""
Time-series query client.

This module provides the TimeSeriesClient class for running aggregation
queries (TIMESERIES dialect) against the platform's time-series service.
It supports:
- Single queries via query()
- Several queries in one round trip via query_many(), using GraphQL field
  aliases. Errors are reported per alias, so one bad query does not fail
  the others.

Key design decisions:
- Uses injected httpx.AsyncClient (base_url and API key headers preset)
- Query strings are passed as GraphQL variables, never interpolated
- Fails loudly on HTTP errors; per-alias GraphQL errors are returned as
  ExecutionError values by query_many()
"""

from dataclasses import dataclass
from typing import Any, Mapping

import httpx

from kafka_query.clients.errors import error_for_graphql
from kafka_query.clients.graphql import dig, post_graphql
from kafka_query.clients.types import GraphQLError, TimeSeriesRow
from kafka_query.exceptions import ExecutionError, ServiceUnavailableError
from kafka_query.query import TimeWindow, render_window


@dataclass
class TimeSeriesClient:
    """
    Time-series query client with injected httpx client.

    Attributes:
        http: Pre-configured httpx.AsyncClient for the GraphQL endpoint
        account_id: Default account (dataset) queries run against
        server_timeout_seconds: Timeout the service applies to each query

    Example:
        async with httpx.AsyncClient(base_url="https://api.newrelic.com") as http:
            client = TimeSeriesClient(http=http, account_id=1234567)
            rows = await client.query(
                "SELECT average(cpuPercent) FROM KafkaBrokerSample SINCE 30 minutes ago"
            )
    """

    http: httpx.AsyncClient
    account_id: int = 0
    server_timeout_seconds: int = 30

    async def query(
        self,
        query: str,
        account_id: int | None = None,
        time_window: TimeWindow | None = None,
    ) -> list[TimeSeriesRow]:
        """
        Run one query.

        Args:
            query: Query string in the TIMESERIES dialect
            account_id: Account to query, defaults to the client's account
            time_window: Appended as a SINCE clause if the query has none

        Returns:
            Result rows

        Raises:
            ExecutionError subclass: On any failure
        """
        if time_window is not None and " SINCE " not in f" {query.upper()} ":
            query = f"{query} {render_window(time_window)}"

        results = await self.query_many({"q": query}, account_id=account_id)
        outcome = results["q"]
        if isinstance(outcome, ExecutionError):
            raise outcome
        return outcome

    async def query_many(
        self,
        queries: Mapping[str, str],
        account_id: int | None = None,
    ) -> dict[str, list[TimeSeriesRow] | ExecutionError]:
        """
        Run several queries in a single request.

        Args:
            queries: Caller key to query string
            account_id: Account to query, defaults to the client's account

        Returns:
            Caller key to result rows, or to the ExecutionError for that query

        Raises:
            ExecutionError subclass: When the request as a whole fails
        """
        if not queries:
            return {}

        keys = list(queries)
        aliases = {f"q{i}": key for i, key in enumerate(keys)}
        variables: dict[str, Any] = {
            "accountId": account_id if account_id is not None else self.account_id
        }
        variables.update({alias: queries[key] for alias, key in aliases.items()})

        envelope = await post_graphql(self.http, self._document(list(aliases)), variables)

        errors_by_alias: dict[str, GraphQLError] = {}
        for error in envelope.errors:
            alias = next((str(p) for p in error.path if str(p) in aliases), None)
            if alias is None:
                # Not tied to one query: the whole request failed
                raise error_for_graphql(error)
            errors_by_alias.setdefault(alias, error)

        account = dig(envelope.data, "actor", "account")
        outcome: dict[str, list[TimeSeriesRow] | ExecutionError] = {}
        for alias, key in aliases.items():
            if alias in errors_by_alias:
                outcome[key] = error_for_graphql(errors_by_alias[alias])
                continue
            results = dig(account, alias, "results")
            if results is None:
                outcome[key] = ServiceUnavailableError(f"No results returned for query {key}")
                continue
            outcome[key] = [TimeSeriesRow.from_result(r) for r in results]
        return outcome

    def _document(self, aliases: list[str]) -> str:
        params = ", ".join(f"${a}: Nrql!" for a in aliases)
        fields = " ".join(
            f"{a}: nrql(query: ${a}, timeout: {self.server_timeout_seconds}) {{ results }}"
            for a in aliases
        )
        return (
            f"query($accountId: Int!, {params}) "
            f"{{ actor {{ account(id: $accountId) {{ {fields} }} }} }}"
        )
