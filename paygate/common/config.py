"""Central environment-driven settings for the payments service.

The process loads this once at startup. Behavior is controlled by environment
variables (see `.env.example`).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "payments-api"
    log_level: str = "INFO"
    database_url: str = "sqlite:///./paygate.db"
    auto_create_schema: bool = False
    api_keys: list[str]
    bank_url: str = "http://bank-simulator:8080"
    bank_timeout_seconds: float = 10.0
    bank_max_attempts: int = 1
    bank_backoff_seconds: float = 1.0
    bank_circuit_failure_threshold: int = 0
    bank_circuit_reset_seconds: float = 30.0
    redis_url: str = "redis://redis:6379/0"
    rate_limit_per_minute: int = 100
    otel_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
