"""
Application Configuration
Pydantic Settings for environment-based configuration of the template marketplace.
"""

from functools import lru_cache
from typing import Literal
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Application
    # ==========================================================================
    app_name: str = "Agent Template Marketplace"
    app_env: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # CORS
    cors_origins: str = "http://localhost:3000,http://localhost:8000"

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",")]

    # ==========================================================================
    # Database
    # ==========================================================================
    database_url: str = "sqlite+aiosqlite:///./marketplace.db"

    @property
    def is_sqlite(self) -> bool:
        return "sqlite" in self.database_url

    # ==========================================================================
    # Identity
    # ==========================================================================
    # Headers set by the upstream auth proxy
    identity_user_header: str = "X-User-Id"
    identity_email_header: str = "X-User-Email"
    identity_name_header: str = "X-User-Name"

    # Development-only fallback principal
    dev_auto_login: bool = False
    dev_user_id: str = "user1"
    dev_user_email: str = "john.doe@example.com"
    dev_user_name: str = "John Doe"

    # Anonymous clones are rejected unless explicitly enabled
    allow_anonymous_clone: bool = False
    anonymous_owner_id: str = "system:anonymous"

    # ==========================================================================
    # Search & Listing
    # ==========================================================================
    search_default_limit: int = 20
    search_max_limit: int = 100
    popular_tags_limit: int = 50
    list_default_limit: int = 20
    list_max_limit: int = 100

    # ==========================================================================
    # Relationship Ledger
    # ==========================================================================
    ledger_max_attempts: int = 3
    ledger_retry_delay_ms: int = 50


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
