from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from bonsai.dispatch.mentions import DEFAULT_ROLE_SLUGS
from bonsai.store.sql import to_async_dsn


class Settings(BaseSettings):
    """Application configuration read from environment variables."""

    model_config = SettingsConfigDict(env_prefix="BONSAI_", env_file=".env", case_sensitive=False)

    app_name: str = Field(default="Bonsai Workflow")
    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="%(asctime)s %(levelname)s %(name)s [trace=%(trace_id)s] %(message)s")
    dispatch_log_level: str | None = Field(default=None)

    # Database configuration
    database_url: str = Field(default="sqlite+aiosqlite:///./bonsai.db")

    # Dispatch configuration
    debounce_seconds: float = Field(default=3.0, gt=0)
    watchdog_seconds: float = Field(default=120.0, gt=0)
    dispatch_cooldown_seconds: float = Field(default=120.0, ge=0)
    conversational_max_chars: int = Field(default=200, gt=0)
    dispatch_separator: str = Field(default="\n\n---\n\n")
    dispatch_author_types: tuple[str, ...] = Field(default=("human",))
    role_slugs: tuple[str, ...] = Field(default=DEFAULT_ROLE_SLUGS)
    agent_runtime_url: str | None = Field(default=None)
    agent_runtime_timeout: float = Field(default=10.0, gt=0)

    # Observability configuration
    otel_enabled: bool = Field(default=False)
    otel_service_name: str = Field(default="bonsai-workflow")
    otel_exporter_otlp_endpoint: str | None = Field(default=None)
    otel_exporter_otlp_headers: str | None = Field(default=None)

    @field_validator("database_url")
    @classmethod
    def _use_async_driver(cls, value: str) -> str:
        return to_async_dsn(value)

    @field_validator("dispatch_author_types")
    @classmethod
    def _known_author_types(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        allowed = {"human", "agent", "system"}
        unknown = [item for item in value if item not in allowed]
        if unknown:
            raise ValueError(f"Unknown author types: {', '.join(unknown)}")
        return value


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of the application settings."""

    return Settings()
