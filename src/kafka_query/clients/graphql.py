"""Shared GraphQL transport for the query service clients."""

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from kafka_query.clients.errors import error_for_transport, raise_for_status
from kafka_query.clients.types import GraphQLResponse
from kafka_query.exceptions import ServiceUnavailableError

logger = logging.getLogger(__name__)

GRAPHQL_PATH = "/graphql"


async def post_graphql(
    http: httpx.AsyncClient, query: str, variables: dict[str, Any]
) -> GraphQLResponse:
    """
    POST a GraphQL document and parse the envelope.

    GraphQL errors are left in the returned envelope; callers decide whether
    they are fatal for the whole request or only for some aliases.

    Raises:
        ExecutionError subclass: On HTTP or transport failures
    """
    try:
        response = await http.post(GRAPHQL_PATH, json={"query": query, "variables": variables})
    except httpx.HTTPError as e:
        raise error_for_transport(e) from e

    raise_for_status(response)

    try:
        return GraphQLResponse.model_validate(response.json())
    except (ValueError, ValidationError) as e:
        logger.warning("Malformed GraphQL response: %s", e)
        raise ServiceUnavailableError(f"Malformed response from query service: {e}") from e


def dig(data: dict[str, Any] | None, *path: str) -> Any:
    """Follow a key path through nested dicts, returning None when a key is missing."""
    current: Any = data
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current
