"""Environment-based configuration for the Kafka query engine."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Query engine configuration.

    All settings can be overridden via environment variables with
    KAFKA_QUERY_ prefix. For example:
        KAFKA_QUERY_API_KEY=NRAK-...
        KAFKA_QUERY_ACCOUNT_ID=1234567
        KAFKA_QUERY_METRIC_TTL_SECONDS=15
    """

    # Query service
    graphql_url: str = "https://api.newrelic.com"  # GraphQL endpoint is <url>/graphql
    api_key: str = ""
    account_id: int = 0

    # Cache
    cache_capacity: int = 500
    topology_ttl_seconds: float = 300.0  # entity lookups
    metric_ttl_seconds: float = 30.0  # live samples

    # Batching
    batch_window_ms: int = 25
    max_batch_size: int = 10

    # Execution
    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 0.25
    retry_max_delay_seconds: float = 5.0
    request_timeout_seconds: float = 10.0

    # Aggregation
    histogram_buckets: int = 10

    model_config = {"env_prefix": "KAFKA_QUERY_"}

    @property
    def batch_window_seconds(self) -> float:
        return self.batch_window_ms / 1000.0
