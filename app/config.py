from __future__ import annotations

from pydantic import ConfigDict, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Warm Signal"
    app_version: str = "0.1.0"
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # Database
    database_url: str | None = None
    db_pool_min_size: int = 1
    db_pool_max_size: int = 5

    # Relationship graph provider
    relationship_graph_base_url: str = "https://bee.theswarm.com"
    relationship_graph_api_key: str | None = None
    relationship_graph_timeout_seconds: float = 15.0

    # Signal matching / discovery
    keyword_rules_path: str = "configs/keyword_rules.v1.yaml"
    signal_base_score: int = 20
    signal_keyword_multiplier: int = 8
    auto_promote_threshold: int = 70
    max_domains_per_text: int = 5
    min_text_length: int = 50
    scan_batch_size: int = 10
    default_team_id: str = "default"

    # Relationship lookups
    path_query_size: int = 100
    path_lookup_delay_ms: int = 200
    path_lookup_concurrency: int = 2
    provider_retry_attempts: int = 3

    # Priority
    priority_fit_weight: float = 0.4
    priority_connection_weight: float = 0.6

    # Metrics
    metrics_backend: str = "stdout"
    metrics_namespace: str = "warm_signal"
    metrics_disable: bool = False
    metrics_sample_rate: float = 1.0
    metrics_statsd_host: str = "127.0.0.1"
    metrics_statsd_port: int = 8125

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = []

    @model_validator(mode="after")
    def _check_priority_weights(self) -> Settings:
        total = self.priority_fit_weight + self.priority_connection_weight
        if abs(total - 1.0) > 1e-6:
            raise ValueError("priority_fit_weight + priority_connection_weight must equal 1.0")
        if not 0 <= self.auto_promote_threshold <= 100:
            raise ValueError("auto_promote_threshold must be within [0, 100]")
        return self

    model_config = ConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


settings = Settings()
