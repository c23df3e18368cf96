"""Application settings using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="educonnect-forum", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: Literal["development", "staging", "production", "testing"] = Field(
        default="development", description="Environment name"
    )
    debug: bool = Field(default=True, description="Debug mode")

    # API Server
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    api_reload: bool = Field(default=True, description="Enable auto-reload")

    # Document store
    store_backend: Literal["memory", "firestore"] = Field(
        default="memory", description="Backing document store"
    )
    firebase_credentials_path: str | None = Field(
        default=None, description="Path to Firebase service account JSON file"
    )
    firebase_project_id: str | None = Field(
        default=None, description="Firebase project ID"
    )
    firestore_database: str = Field(
        default="(default)", description="Firestore database name"
    )
    firestore_watch_liveness_seconds: float = Field(
        default=15.0,
        description="Interval for checking that a Firestore watch stream is alive",
    )

    # Optimistic transactions
    reaction_max_attempts: int = Field(
        default=5, ge=1, description="Attempts for a reaction toggle before giving up"
    )
    transaction_max_attempts: int = Field(
        default=5, ge=1, description="Attempts for comment and counter transactions"
    )
    transaction_retry_base_delay: float = Field(
        default=0.02, ge=0, description="Initial backoff between attempts (seconds)"
    )
    transaction_retry_max_delay: float = Field(
        default=0.5, ge=0, description="Backoff ceiling between attempts (seconds)"
    )

    # Thread reconciler
    reconciler_retry_base_delay: float = Field(
        default=0.5, ge=0, description="Initial delay before resubscribing (seconds)"
    )
    reconciler_retry_max_delay: float = Field(
        default=30.0, ge=0, description="Resubscribe delay ceiling (seconds)"
    )
    reconciler_fault_threshold: int = Field(
        default=3,
        ge=1,
        description="Consecutive subscription failures before reporting a connectivity fault",
    )

    # Forum limits
    topic_title_max_length: int = Field(default=200, description="Max topic title")
    topic_body_max_length: int = Field(default=20000, description="Max topic body")
    comment_body_max_length: int = Field(default=10000, description="Max comment body")
    topic_list_limit: int = Field(default=100, description="Max topics per listing")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="DEBUG", description="Log level"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", description="Log format"
    )
    log_include_caller_info: bool = Field(
        default=True, description="Include caller info"
    )
    log_dir: str = Field(default="logs", description="Directory for log files")
    log_file_max_bytes: int = Field(
        default=10 * 1024 * 1024, description="Max size per log file (10MB default)"
    )
    log_file_backup_count: int = Field(
        default=5, description="Number of backup log files to keep"
    )
    log_requests: bool = Field(
        default=True, description="Log HTTP request start/finish"
    )
    log_exclude_paths: list[str] = Field(
        default=["/health", "/health/live", "/health/ready"],
        description="Paths to exclude from request logging",
    )

    # CORS
    cors_origins: list[str] = Field(default=["*"], description="CORS origins")
    cors_allow_credentials: bool = Field(default=True, description="Allow credentials")
    cors_allow_methods: list[str] = Field(default=["*"], description="Allowed methods")
    cors_allow_headers: list[str] = Field(default=["*"], description="Allowed headers")
    cors_max_age: int = Field(default=600, description="CORS max age")

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"

    @property
    def is_testing(self) -> bool:
        """Check if running in testing mode."""
        return self.environment == "testing"

    @property
    def firestore_configured(self) -> bool:
        """Check if Firestore can be used as the backing store."""
        return bool(self.firebase_credentials_path and self.firebase_project_id)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
