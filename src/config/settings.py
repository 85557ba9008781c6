"""
Application configuration using Pydantic Settings.

Credentials and endpoints are loaded from environment variables (or `.env`).
Strategy parameters live in strategies.yaml, see src/betting/config.py.
"""

from functools import lru_cache
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ===========================================
    # Betfair credentials
    # ===========================================
    # App key used for identity login and REST calls
    login_app_key: str = ""
    # App key used on the Stream API (may be the delayed or live key)
    stream_app_key: str = ""
    betfair_username: str = ""
    betfair_password: str = ""

    # ===========================================
    # Betfair endpoints
    # ===========================================
    login_endpoint: str = "https://identitysso.betfair.ro/api/login"
    api_endpoint: str = "https://api.betfair.com/exchange/betting/rest/v1.0/"
    stream_host: str = "stream-api.betfair.com"
    stream_port: int = 443

    # ===========================================
    # Application
    # ===========================================
    log_level: str = "INFO"
    log_file: str = "bot.log"

    # Per-event NDJSON journal directory
    games_dir: str = "games"

    # Path to strategies.yaml (empty = repository default)
    strategy_config_path: str = ""

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v):
        if isinstance(v, str) and v.upper() in LOG_LEVELS:
            return v.upper()
        raise ValueError(f"log_level must be one of {LOG_LEVELS}, got {v!r}")

    def missing_credentials(self) -> list[str]:
        """Names of required credential variables that are not set."""
        required = {
            "LOGIN_APP_KEY": self.login_app_key,
            "STREAM_APP_KEY": self.stream_app_key,
            "BETFAIR_USERNAME": self.betfair_username,
            "BETFAIR_PASSWORD": self.betfair_password,
        }
        return [name for name, value in required.items() if not value]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience access
settings = get_settings()
