"""Configuration for the metadata service storage layer."""

from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Metadata service configuration.

    All settings can be overridden via environment variables. The
    settings object is built once at startup and passed explicitly to
    ``build_storage``; nothing reads it from module state.
    """

    # Service configuration
    SERVICE_NAME: str = Field(default="metadata-service")
    SERVICE_HOST: str = Field(default="0.0.0.0")
    SERVICE_PORT: int = Field(default=8020, ge=1, le=65535)
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO"
    )

    # Provider selection ("postgresql" or "dynamodb", validated at startup)
    DATABASE_PROVIDER: str = Field(default="")

    # Relational backend
    DATABASE_URL: str = Field(default="")
    DB_POOL_SIZE: int = Field(default=20, ge=1)
    DB_MAX_OVERFLOW: int = Field(default=10, ge=0)
    DB_POOL_TIMEOUT: float = Field(default=30, gt=0)
    DB_POOL_RECYCLE: int = Field(default=3600)
    DB_POOL_PRE_PING: bool = Field(default=True)
    DB_CREATE_SCHEMA: bool = Field(default=False)
    DB_MAX_RECORD_BYTES: int = Field(default=1024 * 1024 * 1024, ge=1)
    QUERY_LOG_THRESHOLD_MS: int = Field(default=100, ge=0)

    # Key-value backend
    DYNAMODB_REGION: str = Field(default="")
    DYNAMODB_ENDPOINT: Optional[str] = Field(default=None)
    DYNAMODB_TABLE_PREFIX: str = Field(default="idp")
    DYNAMODB_CREATE_TABLES: bool = Field(default=False)
    DYNAMODB_MAX_CONCURRENT_REQUESTS: int = Field(default=50, ge=1)
    DYNAMODB_MAX_ATTEMPTS: int = Field(default=5, ge=1)
    DYNAMODB_BACKOFF_BASE_SECONDS: float = Field(default=0.05, gt=0)
    DYNAMODB_BACKOFF_MAX_SECONDS: float = Field(default=2.0, gt=0)
    DYNAMODB_CONNECT_TIMEOUT: float = Field(default=2.0, gt=0)
    DYNAMODB_READ_TIMEOUT: float = Field(default=5.0, gt=0)

    # Health reporting
    HEALTH_CHECK_TIMEOUT_SECONDS: float = Field(default=0.8, gt=0, lt=1)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def safe_database_url(self) -> str:
        """Database URL with credentials stripped, for logging."""
        if "@" in self.DATABASE_URL:
            scheme = self.DATABASE_URL.split("://")[0]
            return f"{scheme}://...@{self.DATABASE_URL.split('@')[-1]}"
        return self.DATABASE_URL
