"""Configuration management for share-cost."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SHARE_COST_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Ledger service
    api_base_url: str = "http://localhost:8000/api"
    request_timeout: float = 30.0  # seconds, per request

    # Settlement planning
    partition_limit: int = 16  # max members for exact zero-sum partitioning

    default_currency: str = "EUR"

    # Local cache, queue and group registry
    database_path: Path = Path.home() / ".share_cost" / "share_cost.db"

    def __init__(self, **kwargs):
        """Initialize settings and create database directory if needed."""
        super().__init__(**kwargs)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)


def load_settings() -> Settings:
    """Load application settings from environment variables."""
    try:
        return Settings()
    except Exception as e:
        raise ConfigurationError(
            f"Failed to load settings. Check the SHARE_COST_* variables in your "
            f"environment or .env file.\n"
            f"Error: {e}"
        ) from e
