"""
Error hierarchy for the US Census metadata loader.

Every error raised by the fetch, parse and persistence layers derives from
CensusMetadataError so callers (the CLI, an external scheduler) can catch one
type while still telling the failing stage apart.
"""

from __future__ import annotations

from typing import Any, Optional


class CensusMetadataError(Exception):
    """Base class for all errors raised by this package."""


class FetchError(CensusMetadataError):
    """A document could not be retrieved from the cache or the network."""


class UrlParseError(FetchError):
    """The URL string is malformed (no scheme, no host, invalid syntax)."""


class PathDerivationError(FetchError):
    """The URL path cannot be mapped onto a cache file."""


class CacheIOError(FetchError):
    """Reading, writing or creating directories in the cache failed."""


class NetworkError(FetchError):
    """HTTP transport failure or non-success status."""


class DecodeError(CensusMetadataError):
    """
    A JSON value does not have one of the accepted shapes.

    Attributes
    ----------
    value : Any
        The offending raw value, kept for diagnosis.
    field : str | None
        Name of the field being decoded, when known.
    """

    def __init__(self, message: str, value: Any = None, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.value = value
        self.field = field


class PersistenceError(CensusMetadataError):
    """Storage backend failure or constraint violation."""


class IngestError(CensusMetadataError):
    """
    Ingestion of a single endpoint failed; its transaction was rolled back.

    The original error is available as ``__cause__``.
    """

    def __init__(self, api_path_id: Optional[int], link: str, stage: str, cause: Exception) -> None:
        super().__init__(f"[{stage}] endpoint {api_path_id} ({link}): {cause}")
        self.api_path_id = api_path_id
        self.link = link
        self.stage = stage


__all__ = [
    "CensusMetadataError",
    "FetchError",
    "UrlParseError",
    "PathDerivationError",
    "CacheIOError",
    "NetworkError",
    "DecodeError",
    "PersistenceError",
    "IngestError",
]
