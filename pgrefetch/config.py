"""
Configuration settings for pgrefetch.

Uses Pydantic Settings to load environment variables for the database connection,
pool sizing, transaction behaviour, and logging.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

IsolationLevel = Literal["read committed", "repeatable read", "serializable"]


class Settings(BaseSettings):
    # Database
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("pgrefetch", alias="DB_NAME")
    db_schema_name: str = Field("public", alias="DB_SCHEMA_NAME")

    # Pool / transactions
    db_pool_min_size: int = Field(1, alias="DB_POOL_MIN_SIZE")
    db_pool_max_size: int = Field(10, alias="DB_POOL_MAX_SIZE")
    db_acquire_attempts: int = Field(3, alias="DB_ACQUIRE_ATTEMPTS", ge=1)
    db_statement_timeout_ms: int = Field(0, alias="DB_STATEMENT_TIMEOUT_MS", ge=0)
    db_isolation_level: IsolationLevel = Field("read committed", alias="DB_ISOLATION_LEVEL")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["IsolationLevel", "Settings", "get_settings"]
