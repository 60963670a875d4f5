"""
Ingestion coordinator: fetch, parse and persist the metadata of API endpoints.

Usage (example from CLI):
    from us_census.orchestrator import run_ingestion

    with get_sync_connection() as conn:
        store = PostgresMetadataStore(conn)
        results = run_ingestion(store, CachedClient(".census_cache"))

Each endpoint is ingested inside a single transaction: its variables are
upserted in bounded batches and linked to the endpoint, and its geography
levels are replaced wholesale. Any failure rolls the endpoint back and is
raised as IngestError naming the endpoint and the failing stage.
"""

from __future__ import annotations

import re
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Iterable, List, Optional, Protocol, Sequence, TypedDict

from us_census.config import get_settings
from us_census.domain.models import ApiPath, GeographyRecord, VariableRecord
from us_census.exceptions import CensusMetadataError, IngestError, PersistenceError
from us_census.infrastructure.store import VARIABLE_COLUMNS, MetadataStore
from us_census.parsing.collections import parse_catalog, parse_geography, parse_variables
from us_census.utils.batching import chunked, safe_batch_size
from us_census.utils.logging import get_logger
from us_census.utils.profiler import profile_block

log = get_logger(__name__)

VARIABLES_TABLE = "variables"


class DocumentClient(Protocol):
    """Anything that returns the raw bytes of a document URL (see CachedClient)."""

    def fetch(self, url: str) -> bytes:
        ...


class IngestResult(TypedDict, total=False):
    """
    Summary of one endpoint ingestion.

    `error` and `stage` are only set for endpoints that failed while running
    with `fail_fast=False`.
    """

    api_path_id: Optional[int]
    variables_link: str
    variables: int
    geographies: int
    duration_seconds: float
    peak_rss_bytes: Optional[int]
    cpu_percent: Optional[float]
    error: Optional[str]
    stage: Optional[str]


def _round_float(value: float, decimals: int = 2) -> float:
    """Round a float to specified decimal places for human-readable output."""
    return round(value, decimals)


def _persist_endpoint(
    store: MetadataStore,
    endpoint_id: int,
    variables: Sequence[VariableRecord],
    geographies: Sequence[GeographyRecord],
    unique_constraint: str,
    batch_size: int,
) -> None:
    variables_batch = safe_batch_size(batch_size, len(VARIABLE_COLUMNS))
    for chunk in chunked(variables, variables_batch):
        variable_ids = store.insert_or_get_variable_ids(chunk, unique_constraint)
        store.link_endpoint_variables(endpoint_id, variable_ids)
    store.replace_endpoint_geography(endpoint_id, geographies, batch_size=batch_size)


def ingest_api_path(
    store: MetadataStore,
    client: DocumentClient,
    api_path: ApiPath,
    unique_constraint: str,
    batch_size: Optional[int] = None,
) -> IngestResult:
    """
    Ingest the variables and geography levels of a single endpoint.

    Parameters
    ----------
    store : MetadataStore
        Destination of the parsed records.
    client : DocumentClient
        Fetcher for `variables.json` and `geography.json`.
    api_path : ApiPath
        A persisted endpoint (its `id` anchors the association rows).
    unique_constraint : str
        Name of the `variables` unique constraint used for the upsert.
    batch_size : int | None
        Rows per INSERT. Defaults to settings.ingest_batch_size.

    Returns
    -------
    IngestResult
        Record counts plus profiler measurements.

    Raises
    ------
    IngestError
        If fetching, parsing or persisting fails. Nothing is written for the
        endpoint in that case.
    """
    if api_path.id is None:
        raise ValueError(f"Endpoint {api_path.c_variables_link} has not been persisted yet")
    endpoint_id = api_path.id
    effective_batch = batch_size or get_settings().ingest_batch_size

    log.info(
        f"[ENDPOINT START] {api_path.c_variables_link}",
        extra={"api_path_id": endpoint_id, "vintage": api_path.c_vintage},
    )
    stage = "fetch"
    try:
        with profile_block(api_path.c_variables_link) as stats:
            variables_raw = client.fetch(api_path.c_variables_link)
            geography_raw = client.fetch(api_path.c_geography_link)

            stage = "parse"
            variables = parse_variables(variables_raw)
            geographies = parse_geography(geography_raw)

            stage = "persist"
            store.run_in_transaction(
                lambda: _persist_endpoint(
                    store, endpoint_id, variables, geographies, unique_constraint, effective_batch
                )
            )
    except CensusMetadataError as exc:
        log.error(
            f"[ENDPOINT FAILED] {api_path.c_variables_link}",
            extra={"api_path_id": endpoint_id, "stage": stage, "error": str(exc)},
        )
        raise IngestError(endpoint_id, api_path.c_variables_link, stage, exc) from exc

    result = IngestResult(
        api_path_id=endpoint_id,
        variables_link=api_path.c_variables_link,
        variables=len(variables),
        geographies=len(geographies),
        duration_seconds=_round_float(stats.duration_seconds),
        peak_rss_bytes=stats.peak_rss_bytes,
        cpu_percent=None if stats.cpu_percent is None else _round_float(stats.cpu_percent, 1),
    )
    log.info(
        f"[ENDPOINT SUCCESS] {api_path.c_variables_link}",
        extra={
            "api_path_id": endpoint_id,
            "variables": result["variables"],
            "geographies": result["geographies"],
            "duration": result["duration_seconds"],
            "cpu_percent": result["cpu_percent"],
        },
    )
    return result


def load_catalog(
    store: MetadataStore,
    client: DocumentClient,
    catalog_url: Optional[str] = None,
    batch_size: Optional[int] = None,
) -> int:
    """
    Fetch `data.json` and insert its endpoints into the store.

    Endpoints already present (same vintage and dataset) are skipped. Returns
    the number of endpoints listed in the catalog.
    """
    url = catalog_url or get_settings().catalog_url
    api_paths = parse_catalog(client.fetch(url))
    inserted = store.run_in_transaction(lambda: store.insert_api_paths(api_paths, batch_size))
    log.info(
        "Catalog loaded",
        extra={"catalog_url": url, "endpoints": len(api_paths), "inserted": inserted},
    )
    return len(api_paths)


def resolve_variables_constraint(store: MetadataStore) -> str:
    """Return the name of the single unique constraint on the `variables` table."""
    constraints = store.get_unique_constraints(VARIABLES_TABLE)
    if len(constraints) != 1:
        raise PersistenceError(
            f"Expected exactly one unique key constraint for the `{VARIABLES_TABLE}` table, "
            f"found {len(constraints)}"
        )
    return constraints[0]


def prefetch_documents(
    client: DocumentClient,
    api_paths: Iterable[ApiPath],
    concurrency: Optional[int] = None,
) -> int:
    """
    Warm the document cache for the given endpoints using a thread pool.

    Returns the number of distinct documents fetched (or found cached). On the
    first failure, fetches that have not started are cancelled and the error
    is raised once the running ones finish.
    """
    workers = concurrency or get_settings().fetch_concurrency
    urls = list(
        dict.fromkeys(
            url for path in api_paths for url in (path.c_variables_link, path.c_geography_link)
        )
    )
    log.info("Prefetching documents", extra={"documents": len(urls), "workers": workers})
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = {pool.submit(client.fetch, url): url for url in urls}
        try:
            for future in as_completed(futures):
                future.result()
        except BaseException:
            pool.shutdown(wait=True, cancel_futures=True)
            raise
    return len(urls)


def run_ingestion(
    store: MetadataStore,
    client: DocumentClient,
    pattern: Optional[str] = None,
    limit: Optional[int] = None,
    fail_fast: bool = True,
    batch_size: Optional[int] = None,
) -> List[IngestResult]:
    """
    Ingest every endpoint whose variables link matches `pattern`.

    Loads the catalog first when the store holds no endpoints yet.

    Parameters
    ----------
    store : MetadataStore
        Destination store.
    client : DocumentClient
        Document fetcher.
    pattern : str | None
        PostgreSQL regular expression matched against `c_variables_link`.
        Defaults to settings.variables_link_pattern.
    limit : int | None
        Maximum number of endpoints to ingest.
    fail_fast : bool
        If True, the first IngestError propagates. If False, failures are
        logged, recorded in the returned list and the run continues.
    batch_size : int | None
        Rows per INSERT, forwarded to `ingest_api_path`.

    Returns
    -------
    List[IngestResult]
        One entry per attempted endpoint.
    """
    settings = get_settings()
    effective_pattern = pattern or settings.variables_link_pattern
    try:
        re.compile(effective_pattern)
    except re.error as exc:
        raise ValueError(f"Invalid variables link pattern {effective_pattern!r}: {exc}") from exc

    if not store.has_api_paths():
        log.info("No endpoints stored yet; loading the catalog")
        load_catalog(store, client, batch_size=batch_size)

    unique_constraint = resolve_variables_constraint(store)
    api_paths = store.list_api_paths(effective_pattern)
    if limit is not None:
        api_paths = api_paths[:limit]

    total = len(api_paths)
    results: List[IngestResult] = []
    for index, api_path in enumerate(api_paths, start=1):
        log.info(f"[ENDPOINT {index}/{total}] {api_path.title}", extra={"api_path_id": api_path.id})
        try:
            results.append(
                ingest_api_path(store, client, api_path, unique_constraint, batch_size=batch_size)
            )
        except IngestError as exc:
            if fail_fast:
                raise
            results.append(
                IngestResult(
                    api_path_id=exc.api_path_id,
                    variables_link=exc.link,
                    variables=0,
                    geographies=0,
                    duration_seconds=0.0,
                    peak_rss_bytes=None,
                    cpu_percent=None,
                    error=str(exc.__cause__ or exc),
                    stage=exc.stage,
                )
            )

    failed = sum(1 for result in results if result.get("error"))
    log.info(
        f"[INGESTION COMPLETE] {total - failed}/{total} endpoint(s) ingested",
        extra={"endpoints": total, "failed": failed, "pattern": effective_pattern},
    )
    return results


__all__ = [
    "DocumentClient",
    "IngestResult",
    "ingest_api_path",
    "load_catalog",
    "resolve_variables_constraint",
    "prefetch_documents",
    "run_ingestion",
]
