"""
Caching HTTP fetcher for Census API metadata documents.

Documents are stored on disk under a base directory mirroring the URL path:

    https://api.census.gov/data/2020/acs/acs5/variables.json
    -> <base_dir>/data/2020/acs/acs5/variables.json

Published metadata documents are treated as immutable, so a cached file is
returned as-is: there is no freshness check and no expiry. Delete the file (or
the whole cache directory) to force a refetch.

Usage:
    from us_census.infrastructure.cache import CachedClient

    client = CachedClient(Path(".census_cache"), timeout=30)
    raw = client.fetch("https://api.census.gov/data/2020/acs/acs5/geography.json")
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union
from urllib.parse import urlsplit

import requests

from us_census.exceptions import CacheIOError, NetworkError, PathDerivationError, UrlParseError
from us_census.utils.logging import get_logger

log = get_logger(__name__)

PathLike = Union[str, os.PathLike]


def _path_segments(url: str) -> List[str]:
    try:
        parts = urlsplit(url)
    except ValueError as exc:
        raise UrlParseError(f"Invalid URL '{url}': {exc}") from exc
    if not parts.scheme or not parts.netloc:
        raise UrlParseError(f"Invalid URL '{url}': expected an absolute URL with a host")
    if not parts.path:
        return []
    return parts.path.split("/")[1:]


@dataclass(frozen=True)
class CachePath:
    """Location of a cached document: a directory plus a file name."""

    dir: Path
    file: str

    @property
    def path(self) -> Path:
        return self.dir / self.file

    def exists(self) -> bool:
        return self.path.is_file()

    @classmethod
    def from_url(cls, url: str, base_dir: PathLike) -> "CachePath":
        """
        Derive the cache location of `url` under `base_dir`.

        Every path segment but the last becomes a nested directory; the last
        segment, which must look like a file name (contain a '.'), becomes the
        file name. `base_dir` is used as given and is never resolved.

        Raises
        ------
        UrlParseError
            If `url` is not an absolute URL.
        PathDerivationError
            If the URL has no path segments or its last segment has no extension.
        """
        segments = _path_segments(url)
        if not segments:
            raise PathDerivationError(
                f"Path of URL '{url}' is empty. Expected at least one path segment "
                "ending with a period (file extension), e.g. '.json'"
            )
        file_name = segments[-1]
        if "." not in file_name or file_name in (".", ".."):
            raise PathDerivationError(
                "Expected the last element in the URL to contain a period (file extension), "
                f"e.g. '.json' or '.html' but got: '{url}'"
            )

        cache_dir = Path(base_dir)
        for segment in segments[:-1]:
            if not segment:
                continue
            if segment in (".", ".."):
                raise PathDerivationError(f"Relative segment '{segment}' not allowed in URL '{url}'")
            cache_dir = cache_dir / segment
        return cls(dir=cache_dir, file=file_name)


def _discard(partial: Path) -> None:
    """Remove a leftover `.part` file; a failure here is logged, not raised."""
    if not partial.exists():
        return
    try:
        partial.unlink()
    except OSError as exc:
        log.warning(
            "Could not remove partial cache file",
            extra={"path": str(partial), "error": str(exc)},
        )


class CachedClient:
    """
    Fetches documents over HTTP, keeping a copy of each on disk.

    Parameters
    ----------
    base_cache_dir : path-like
        Root of the on-disk cache.
    session : requests.Session | None
        Session used for network fetches; a new one is created when omitted.
    timeout : float | None
        Timeout in seconds for each HTTP request. None waits indefinitely.
    """

    def __init__(
        self,
        base_cache_dir: PathLike,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.base_cache_dir = Path(base_cache_dir)
        self.timeout = timeout
        self._session = session or requests.Session()

    def cache_path(self, url: str) -> CachePath:
        return CachePath.from_url(url, self.base_cache_dir)

    def fetch(self, url: str) -> bytes:
        """
        Return the document at `url`, from the cache when present.

        Raises
        ------
        UrlParseError, PathDerivationError
            If no cache location can be derived from `url`.
        NetworkError
            On transport failure or a non-success HTTP status.
        CacheIOError
            If the cache cannot be read or written.
        """
        cache_path = self.cache_path(url)
        if cache_path.exists():
            log.debug("Cache hit", extra={"url": url, "path": str(cache_path.path)})
            try:
                return cache_path.path.read_bytes()
            except OSError as exc:
                raise CacheIOError(f"Failed to read cached document {cache_path.path}: {exc}") from exc

        log.info("Fetching document", extra={"url": url})
        try:
            resp = self._session.get(url, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise NetworkError(f"Failed to fetch '{url}': {exc}") from exc
        body = resp.content

        self._write(cache_path, body)
        log.debug(
            "Cached document", extra={"url": url, "path": str(cache_path.path), "bytes": len(body)}
        )
        return body

    @staticmethod
    def _write(cache_path: CachePath, body: bytes) -> None:
        # Rename into place so a concurrent reader never sees a partial file.
        partial = cache_path.dir / f"{cache_path.file}.{os.getpid()}-{threading.get_ident()}.part"
        try:
            cache_path.dir.mkdir(parents=True, exist_ok=True)
            partial.write_bytes(body)
            os.replace(partial, cache_path.path)
        except OSError as exc:
            _discard(partial)
            raise CacheIOError(f"Failed to write cache file {cache_path.path}: {exc}") from exc

    def close(self) -> None:
        self._session.close()


def fetch(
    url: str,
    base_dir: PathLike,
    session: Optional[requests.Session] = None,
    timeout: Optional[float] = None,
) -> bytes:
    """Fetch `url` through a throwaway CachedClient rooted at `base_dir`."""
    client = CachedClient(base_dir, session=session, timeout=timeout)
    try:
        return client.fetch(url)
    finally:
        if session is None:
            client.close()


__all__ = ["CachePath", "CachedClient", "fetch"]
