from functools import lru_cache
from typing import List, Optional

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False
    project_name: str = "Station Dispatch API"
    environment: str = "development"

    # Raw CORS origins string - read from env
    cors_origins_raw: Optional[str] = Field(
        default=None,
        alias="CORS_ORIGINS"
    )

    @computed_field
    @property
    def backend_cors_origins(self) -> List[str]:
        """Parse CORS_ORIGINS (comma-separated string)."""
        raw = self.cors_origins_raw or ""
        return [origin.strip() for origin in raw.split(",") if origin.strip()]

    # postgres:// and postgresql:// URLs are rewritten to the psycopg driver
    database_url: str = "sqlite+aiosqlite:///./dispatch.db"

    cache_sweep_interval_minutes: int = 5

    # Warm operators, routes, schedules, locations, vehicles and drivers at startup
    cache_preload_on_startup: bool = True
    cache_preload_timeout_seconds: float = 30.0

    denormalization_batch_size: int = 50


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
