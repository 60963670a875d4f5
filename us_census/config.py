"""
Configuration settings for the US Census metadata loader.

Uses Pydantic Settings to load environment variables (or a `.env` file) for
database connections, logging, the document cache and ingestion defaults.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from us_census.utils.batching import DEFAULT_BATCH_SIZE


class Settings(BaseSettings):
    # Database
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres-password", alias="DB_PASSWORD")
    db_name: str = Field("us_census", alias="DB_NAME")
    db_statement_timeout_ms: int = Field(0, alias="DB_STATEMENT_TIMEOUT_MS")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Document fetching
    cache_dir: Path = Field(Path(".census_cache"), alias="CACHE_DIR")
    http_timeout_seconds: float = Field(30.0, alias="HTTP_TIMEOUT_SECONDS")
    catalog_url: str = Field("https://api.census.gov/data.json", alias="CATALOG_URL")
    fetch_concurrency: int = Field(4, alias="FETCH_CONCURRENCY")

    # Ingestion defaults
    variables_link_pattern: str = Field(
        r"http://api.census.gov/data/\d\d\d\d/acs/acs\d/variables.json",
        alias="VARIABLES_LINK_PATTERN",
    )
    ingest_batch_size: int = Field(DEFAULT_BATCH_SIZE, alias="INGEST_BATCH_SIZE")

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


__all__ = ["Settings", "get_settings"]
