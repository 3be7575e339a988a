"""
Configuration and settings for the marketplace API.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")

    # Database: unset -> in-memory, mongodb:// -> MongoDB, else SQLAlchemy URL
    database_url: Optional[str] = Field(default=None)
    database_name: str = Field(default="agroBridgeDB")

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # Comma-separated; empty allows every origin
    allowed_origins: str = Field(default="")

    log_level: str = Field(default="INFO")

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)

    @property
    def allowed_origin_list(self) -> list[str]:
        return [
            origin.strip()
            for origin in self.allowed_origins.split(",")
            if origin.strip()
        ]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
