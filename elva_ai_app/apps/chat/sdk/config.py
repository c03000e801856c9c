# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# chat/sdk/config.py
from __future__ import annotations
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache

class Settings(BaseSettings):
    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    # API
    PORT: int = 8011
    # Comma-separated
    CORS_ORIGINS: str = "http://localhost:5173"

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_MAX_CONNECTIONS: int | None = None

    # Postgres
    PGHOST: str = Field(default="localhost", alias="POSTGRES_HOST")
    PGPORT: int = Field(default=5434, alias="POSTGRES_PORT")
    PGDATABASE: str = Field(default="postgres", alias="POSTGRES_DATABASE")
    PGUSER: str = Field(default="postgres", alias="POSTGRES_USER")
    PGPASSWORD: str = Field(default="postgres", alias="POSTGRES_PASSWORD")
    PGSSL: bool = Field(default=False, alias="POSTGRES_SSL")
    CONTROL_PLANE_SCHEMA: str = "elva_control_plane"

    # Quota
    CRON_SECRET: str = "dev-secret"
    QUOTA_MESSAGE_LOCALE: str = "da"
    QUOTA_NOTIFY_CLAIM_TTL_SEC: int = 300
    PLATFORM_ADMIN_ROLE: str = "elva:role:platform-admin"

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

@lru_cache()
def get_settings() -> Settings:
    return Settings()
