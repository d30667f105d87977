"""Application configuration using pydantic-settings."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Database
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/watchledger.db",
        description="Database connection URL",
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug mode (echo SQL)")

    # ======================
    # Sessions
    # ======================
    session_ttl_seconds: int = Field(
        default=86400, description="Lifetime of a session token (24h)"
    )
    refresh_ttl_seconds: int = Field(
        default=604800, description="Lifetime of a refresh token family (7d)"
    )

    # ======================
    # Ledger
    # ======================
    lock_timeout: float = Field(
        default=30.0, description="Max seconds to wait for a balance stream update scope"
    )
    default_network_id: int = Field(default=1, description="Network used when none is given")
    rpc_timeout: float = Field(default=15.0, description="Timeout for chain JSON-RPC calls")
    history_page_size: int = Field(default=50, description="Default history page size")
    max_history_page_size: int = Field(default=500, description="Upper bound for history pages")

    # ======================
    # Preferences
    # ======================
    default_currency: str = Field(default="USD", description="Currency for new preferences")
    default_theme: str = Field(default="light", description="Theme for new preferences")
    default_language: str = Field(default="en", description="Language for new preferences")

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "database_url": self._redact_url(self.database_url),
            "sessions": {
                "session_ttl_seconds": self.session_ttl_seconds,
                "refresh_ttl_seconds": self.refresh_ttl_seconds,
            },
            "ledger": {
                "lock_timeout": self.lock_timeout,
                "default_network_id": self.default_network_id,
                "history_page_size": self.history_page_size,
            },
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact sensitive parts of database URL."""
        if "://" in url and "@" in url:
            proto, rest = url.split("://", 1)
            if "@" in rest:
                creds, host = rest.rsplit("@", 1)
                if ":" in creds:
                    user, _ = creds.split(":", 1)
                    return f"{proto}://{user}:***@{host}"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
