"""
Infrastructure package for the US Census metadata loader.

Centralizes I/O concerns: the caching HTTP fetcher, database connection
acquisition and the PostgreSQL-backed metadata store. Keep this layer focused
on I/O and resource management, decoupled from the coordinator logic.
"""

from us_census.infrastructure.cache import CachedClient, CachePath, fetch
from us_census.infrastructure.db_factory import (
    apply_statement_timeout,
    build_dsn,
    get_sync_connection,
)
from us_census.infrastructure.store import MetadataStore, PostgresMetadataStore

__all__ = [
    "CachedClient",
    "CachePath",
    "fetch",
    "apply_statement_timeout",
    "build_dsn",
    "get_sync_connection",
    "MetadataStore",
    "PostgresMetadataStore",
]
