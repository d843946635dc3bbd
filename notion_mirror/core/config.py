from dataclasses import dataclass
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict

from notion_mirror.core.exceptions import ConfigurationError

APP_VERSION = "0.1.0"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Destination database
    database_url: str = "sqlite+aiosqlite:///./notion_mirror.db"
    table_name: str = "notion_pages"

    # Notion credentials
    notion_token: str = ""
    notion_database_id: str = ""
    notion_version: str = "2022-06-28"

    # Sync tuning
    sync_batch_size: int = 100
    max_retries: int = 3
    retry_delay_ms: int = 1000
    page_delay_ms: int = 100

    # Optional settings
    sync_interval_minutes: int = 0
    log_level: str = "INFO"
    debug: bool = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


@dataclass(frozen=True)
class SyncConfig:
    """Everything one sync run needs, resolved once at the process boundary."""

    notion_token: str
    notion_database_id: str
    table_name: str = "notion_pages"
    batch_size: int = 100
    max_retries: int = 3
    retry_delay_ms: int = 1000
    page_delay_ms: int = 100
    notion_version: str = "2022-06-28"

    def __post_init__(self):
        required = {
            "notion_token": self.notion_token,
            "notion_database_id": self.notion_database_id,
            "table_name": self.table_name,
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")
        if self.batch_size < 1 or self.batch_size > 100:
            raise ConfigurationError("batch_size must be between 1 and 100")
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must not be negative")

    @classmethod
    def from_settings(cls, settings: Settings) -> "SyncConfig":
        return cls(
            notion_token=settings.notion_token,
            notion_database_id=settings.notion_database_id,
            table_name=settings.table_name,
            batch_size=settings.sync_batch_size,
            max_retries=settings.max_retries,
            retry_delay_ms=settings.retry_delay_ms,
            page_delay_ms=settings.page_delay_ms,
            notion_version=settings.notion_version,
        )
