"""
Query descriptors and the dialect-specific builder.

- QueryDescriptor and its parts describe what data is wanted
- build_query() renders a descriptor for a Dialect and computes its cache key
- SCHEMAS lists the known fields for every entity kind
"""

from kafka_query.query.builder import (
    MAX_NESTING_DEPTH,
    BuiltQuery,
    Dialect,
    build_query,
    compute_cache_key,
    quote_string,
    render_literal,
    render_window,
)
from kafka_query.query.descriptor import (
    Aggregation,
    AggregationKind,
    Filter,
    FilterOperator,
    QueryDescriptor,
    TimeWindow,
)
from kafka_query.query.fields import SCHEMAS, EntitySchema, schema_for

__all__ = [
    # Descriptor types
    "Aggregation",
    "AggregationKind",
    "Filter",
    "FilterOperator",
    "QueryDescriptor",
    "TimeWindow",
    # Builder
    "BuiltQuery",
    "Dialect",
    "MAX_NESTING_DEPTH",
    "build_query",
    "compute_cache_key",
    "quote_string",
    "render_literal",
    "render_window",
    # Field registry
    "EntitySchema",
    "SCHEMAS",
    "schema_for",
]
