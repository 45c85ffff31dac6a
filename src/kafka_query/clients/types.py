"""
Pydantic response types for the external query service.

This module provides Pydantic models for parsing responses from:
- Entity search (GraphQL entitySearch): entity GUIDs, names, types, tags
- Time-series queries (GraphQL nrql): result rows with facets and values

These are API response types for external data validation. The rows are
converted into EntitySample dataclasses (kafka_query.types) before they
reach the aggregator.

Notes:
- Tags arrive as a list of {key, values} pairs and are flattened to a dict
- Facets are either a single string or a list of strings
- Percentile functions return nested objects ({"99": 12.5}); the single
  inner value is unwrapped
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Keys in a time-series result row that are bookkeeping, not metric values
ROW_TIME_KEYS = frozenset({"beginTimeSeconds", "endTimeSeconds", "timestamp"})
ROW_FACET_KEY = "facet"


# =============================================================================
# GraphQL envelope
# =============================================================================


class GraphQLError(BaseModel):
    """
    One error from a GraphQL response.

    Example:
        {"message": "NRQL Syntax Error", "path": ["actor", "account", "q0"],
         "extensions": {"errorClass": "INVALID_INPUT"}}
    """

    model_config = ConfigDict(extra="allow")

    message: str
    path: list[str | int] = Field(default_factory=list)
    extensions: dict[str, Any] = Field(default_factory=dict)

    @property
    def error_class(self) -> str:
        return str(self.extensions.get("errorClass", "")).upper()


class GraphQLResponse(BaseModel):
    """Top-level GraphQL response: data and/or errors."""

    model_config = ConfigDict(extra="allow")

    data: dict[str, Any] | None = None
    errors: list[GraphQLError] = Field(default_factory=list)


# =============================================================================
# Entity search types
# =============================================================================


class Entity(BaseModel):
    """
    An entity returned by entity search.

    Tags are flattened from [{"key": "clusterName", "values": ["prod"]}] to
    {"clusterName": ["prod"]}.
    """

    model_config = ConfigDict(frozen=True)

    guid: str
    name: str
    type: str = ""
    tags: dict[str, list[str]] = Field(default_factory=dict)

    @field_validator("tags", mode="before")
    @classmethod
    def _flatten_tags(cls, value: Any) -> Any:
        if isinstance(value, list):
            return {t["key"]: list(t.get("values", [])) for t in value}
        return value

    def tag(self, key: str) -> str | None:
        """First value of a tag, or None."""
        values = self.tags.get(key)
        return values[0] if values else None


class EntitySearchResult(BaseModel):
    """
    Result of an entity search.

    Example response data:
    {
        "count": 1,
        "results": {"entities": [
            {"guid": "MXxJTkZSQXxOQXwx", "name": "broker-1", "type": "KAFKABROKER",
             "tags": [{"key": "clusterName", "values": ["prod-kafka"]}]}
        ]}
    }
    """

    model_config = ConfigDict(frozen=True)

    count: int = 0
    entities: list[Entity] = Field(default_factory=list)

    @property
    def guids(self) -> list[str]:
        return [e.guid for e in self.entities]


# =============================================================================
# Time-series types
# =============================================================================


class TimeSeriesRow(BaseModel):
    """
    One row of a time-series result.

    Attributes:
        facet_values: Group-by values, in facet order (empty if not faceted)
        metric_values: Alias to numeric value (None when the bucket is empty)
        timestamp: Bucket start in epoch seconds, if the query was a time series
    """

    model_config = ConfigDict(frozen=True)

    facet_values: tuple[str, ...] = ()
    metric_values: dict[str, float | None] = Field(default_factory=dict)
    timestamp: float | None = None

    @classmethod
    def from_result(cls, result: dict[str, Any], facet_fields: tuple[str, ...] = ()) -> "TimeSeriesRow":
        """
        Parse a raw result object from the time-series service.

        Args:
            result: One entry of the "results" list
            facet_fields: Group-by field names, excluded from metric values
        """
        facet = result.get(ROW_FACET_KEY)
        if facet is None:
            facet_values: tuple[str, ...] = tuple(
                str(result[f]) for f in facet_fields if f in result
            )
        elif isinstance(facet, (list, tuple)):
            facet_values = tuple(str(v) for v in facet)
        else:
            facet_values = (str(facet),)

        timestamp = result.get("beginTimeSeconds", result.get("timestamp"))

        metric_values: dict[str, float | None] = {}
        for key, value in result.items():
            if key == ROW_FACET_KEY or key in ROW_TIME_KEYS or key in facet_fields:
                continue
            number = _coerce_number(value)
            if number is None and isinstance(value, str):
                continue  # Facet attribute echoed back, not a metric
            metric_values[key] = number

        return cls(
            facet_values=facet_values,
            metric_values=metric_values,
            timestamp=float(timestamp) if timestamp is not None else None,
        )


def _coerce_number(value: Any) -> float | None:
    # Percentile results are nested: {"99": 12.5}
    if isinstance(value, dict):
        numbers = [v for v in value.values() if isinstance(v, (int, float))]
        return float(numbers[0]) if len(numbers) == 1 else None
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None
