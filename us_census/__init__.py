"""
US Census metadata loader.

Fetches the US Census Bureau API metadata documents (the `data.json` catalog
and each endpoint's `variables.json` and `geography.json`), normalizes their
loosely-typed fields and stores them in PostgreSQL:

- Flexible-field decoders and strict record schemas
- A caching HTTP fetcher mirroring URL paths on disk
- A transactional, batched ingestion coordinator
"""

from __future__ import annotations

__version__ = "0.1.0"

# Public API exports
from us_census.config import Settings, get_settings
from us_census.domain.models import ApiPath, GeographyRecord, VariableRecord
from us_census.exceptions import (
    CensusMetadataError,
    DecodeError,
    FetchError,
    IngestError,
    PersistenceError,
)
from us_census.infrastructure.cache import CachedClient, CachePath, fetch
from us_census.orchestrator import (
    IngestResult,
    ingest_api_path,
    load_catalog,
    prefetch_documents,
    resolve_variables_constraint,
    run_ingestion,
)
from us_census.parsing.collections import parse_catalog, parse_geography, parse_variables
from us_census.utils.logging import configure_logging, get_logger

__all__ = [
    "__version__",
    # Configuration
    "Settings",
    "get_settings",
    # Records
    "ApiPath",
    "GeographyRecord",
    "VariableRecord",
    # Errors
    "CensusMetadataError",
    "DecodeError",
    "FetchError",
    "IngestError",
    "PersistenceError",
    # Parsing
    "parse_catalog",
    "parse_geography",
    "parse_variables",
    # Fetching
    "CachedClient",
    "CachePath",
    "fetch",
    # Ingestion
    "IngestResult",
    "ingest_api_path",
    "load_catalog",
    "prefetch_documents",
    "resolve_variables_constraint",
    "run_ingestion",
    # Logging
    "configure_logging",
    "get_logger",
]
