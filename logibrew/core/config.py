"""
Application Configuration Module.

Pydantic Settings v2 configuration with:
- Environment variable support (and .env files)
- Chain storage and sharding policy
- Append retry / timeout budgets
- Anchor sink settings
- Dashboard aggregation thresholds

Configuration is process-wide and read-only after initialization.
"""

from typing import Optional
from functools import lru_cache

from pydantic import Field, field_validator, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict
import structlog

logger = structlog.get_logger(__name__)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Thresholds used by the forecaster are product tuning decisions;
    they are exposed here instead of being hard-coded.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # ========================================================================
    # APPLICATION
    # ========================================================================

    app_name: str = "LogiBrew Decision Chain"
    app_version: str = "1.0.0"
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")
    api_prefix: str = Field(default="/api/v1", alias="API_PREFIX")

    # ========================================================================
    # STORAGE
    # ========================================================================

    storage_backend: str = Field(
        default="memory",
        alias="STORAGE_BACKEND",
        description="Key/value backend for chains: memory or sql",
    )
    database_url: str = Field(
        default="sqlite+aiosqlite:///./logibrew.db",
        alias="DATABASE_URL",
    )
    db_pool_size: int = Field(default=10, alias="DB_POOL_SIZE")
    db_max_overflow: int = Field(default=20, alias="DB_MAX_OVERFLOW")

    chain_namespace: str = Field(default="chain", alias="CHAIN_NAMESPACE")
    shard_size: int = Field(
        default=250,
        ge=1,
        alias="CHAIN_SHARD_SIZE",
        description="Records per storage shard before a new shard is opened",
    )
    storage_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        alias="STORAGE_TIMEOUT_SECONDS",
    )

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        """Only the memory and sql backends exist."""
        v = v.lower()
        if v not in ("memory", "sql"):
            raise ValueError(f"Unsupported storage backend: {v}")
        return v

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Ensure database URL uses an async driver."""
        if v.startswith("postgresql://"):
            v = v.replace("postgresql://", "postgresql+asyncpg://", 1)
        if v.startswith("sqlite://"):
            v = v.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return v

    # ========================================================================
    # DECISION LOGGER
    # ========================================================================

    append_max_retries: int = Field(default=3, ge=0, alias="APPEND_MAX_RETRIES")
    append_retry_base_delay: float = Field(default=0.05, ge=0, alias="APPEND_RETRY_BASE_DELAY")
    append_retry_max_delay: float = Field(default=1.0, ge=0, alias="APPEND_RETRY_MAX_DELAY")

    # ========================================================================
    # ANCHOR SINK
    # ========================================================================

    anchor_enabled: bool = Field(default=True, alias="ANCHOR_ENABLED")
    anchor_base_url: Optional[str] = Field(
        default=None,
        alias="ANCHOR_BASE_URL",
        description="Document service base URL, e.g. https://site.atlassian.net/wiki/rest/api",
    )
    anchor_api_token: Optional[str] = Field(default=None, alias="ANCHOR_API_TOKEN")
    anchor_document_id: Optional[str] = Field(
        default=None,
        alias="ANCHOR_DOCUMENT_ID",
        description="Document that receives hash roots (per-shipment id when unset)",
    )
    anchor_timeout_seconds: float = Field(default=2.0, gt=0, alias="ANCHOR_TIMEOUT_SECONDS")

    # ========================================================================
    # METRICS / FORECAST
    # ========================================================================

    metrics_window_days: int = Field(default=30, ge=1, alias="METRICS_WINDOW_DAYS")
    delay_rate_threshold: float = Field(
        default=30.0,
        ge=0,
        le=100,
        alias="DELAY_RATE_THRESHOLD",
        description="Delay rate (percent) above which the forecast escalates",
    )
    recent_activity_limit: int = Field(default=10, ge=0, alias="RECENT_ACTIVITY_LIMIT")
    top_delay_causes_limit: int = Field(default=3, ge=1, alias="TOP_DELAY_CAUSES_LIMIT")

    # Payload field mapping (payloads are opaque; these are the only keys read)
    outcome_field: str = Field(default="outcome", alias="PAYLOAD_OUTCOME_FIELD")
    compliant_value: str = Field(default="compliant", alias="PAYLOAD_COMPLIANT_VALUE")
    delay_cause_field: str = Field(default="delayCause", alias="PAYLOAD_DELAY_CAUSE_FIELD")
    requested_field: str = Field(default="requestedAt", alias="PAYLOAD_REQUESTED_FIELD")
    resolved_field: str = Field(default="resolvedAt", alias="PAYLOAD_RESOLVED_FIELD")
    action_field: str = Field(default="action", alias="PAYLOAD_ACTION_FIELD")
    status_field: str = Field(default="status", alias="PAYLOAD_STATUS_FIELD")
    insight_field: str = Field(default="aiInsight", alias="PAYLOAD_INSIGHT_FIELD")

    # ========================================================================
    # OBSERVABILITY
    # ========================================================================

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")  # json or console

    # ========================================================================
    # COMPUTED PROPERTIES
    # ========================================================================

    @computed_field
    @property
    def anchor_configured(self) -> bool:
        """Anchoring to an external document service is possible."""
        return self.anchor_enabled and bool(self.anchor_base_url)

    @property
    def host(self) -> str:
        """Alias for api_host."""
        return self.api_host

    @property
    def port(self) -> int:
        """Alias for api_port."""
        return self.api_port


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    settings = Settings()

    logger.info(
        "settings_loaded",
        environment=settings.environment,
        storage_backend=settings.storage_backend,
        shard_size=settings.shard_size,
        anchor_configured=settings.anchor_configured,
    )

    return settings


# Global settings instance
settings = get_settings()
