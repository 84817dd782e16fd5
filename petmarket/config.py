"""
Configuration and settings for the marketplace backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from petmarket.policy import AuthLevel


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="")

    # Document store (MongoDB)
    mongo_uri: Optional[str] = Field(default=None)
    database_name: str = Field(default="pet-adoption")
    listing_collection: str = Field(default="listing")
    order_collection: str = Field(default="orders")
    store_timeout_ms: int = Field(default=5000, ge=1)
    # Requires a replica set or sharded cluster.
    use_transactions: bool = Field(default=False)

    # Identity provider (Firebase Authentication)
    firebase_credentials_path: Optional[str] = Field(default=None)
    firebase_project_id: Optional[str] = Field(default=None)
    identity_timeout_seconds: float = Field(default=10.0, gt=0)
    check_revoked_tokens: bool = Field(default=False)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # HTTP surface
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:5173", "http://localhost:3000"]
    )
    route_auth: dict[str, AuthLevel] = Field(default_factory=dict)
    latest_limit: int = Field(default=6, ge=1)
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)
    log_level: str = Field(default="INFO")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
