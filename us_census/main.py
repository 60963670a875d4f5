from __future__ import annotations

import json
import sys
from contextlib import contextmanager
from typing import Iterator, Optional, Tuple

import psycopg
import typer

from us_census.config import get_settings
from us_census.exceptions import CensusMetadataError, PersistenceError
from us_census.infrastructure.cache import CachedClient
from us_census.infrastructure.db_factory import get_sync_connection
from us_census.infrastructure.store import PostgresMetadataStore
from us_census.orchestrator import load_catalog, prefetch_documents, run_ingestion
from us_census.reporter import print_ingest_results
from us_census.utils.logging import configure_logging

app = typer.Typer(help="Load US Census API metadata into PostgreSQL.")


@app.callback()
def _setup() -> None:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)


@contextmanager
def _exit_on_error() -> Iterator[None]:
    try:
        yield
    except CensusMetadataError as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc


@contextmanager
def _open_store() -> Iterator[Tuple[PostgresMetadataStore, CachedClient]]:
    """Yield a metadata store and a document client built from settings."""
    settings = get_settings()
    try:
        conn = get_sync_connection()
    except psycopg.Error as exc:
        raise PersistenceError(
            f"Could not connect to {settings.db_host}:{settings.db_port}/{settings.db_name}: {exc}"
        ) from exc
    client = CachedClient(settings.cache_dir, timeout=settings.http_timeout_seconds)
    try:
        yield (
            PostgresMetadataStore(
                conn,
                statement_timeout_ms=settings.db_statement_timeout_ms,
                batch_size=settings.ingest_batch_size,
            ),
            client,
        )
    finally:
        client.close()
        conn.close()


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"DB={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} | "
        f"cache={settings.cache_dir} catalog={settings.catalog_url}"
    )
    typer.echo(
        f"pattern={settings.variables_link_pattern} batch={settings.ingest_batch_size} "
        f"concurrency={settings.fetch_concurrency} timeout={settings.http_timeout_seconds}s"
    )


@app.command("load-catalog")
def load_catalog_command(
    catalog_url: Optional[str] = typer.Option(
        None,
        "--catalog-url",
        "-u",
        help="Catalog document to load (default from settings).",
    ),
) -> None:
    """
    Fetch the API catalog (data.json) and store its endpoints.
    """
    with _exit_on_error(), _open_store() as (store, client):
        count = load_catalog(store, client, catalog_url=catalog_url)
    typer.echo(f"Catalog lists {count} endpoint(s).")


@app.command()
def prefetch(
    pattern: Optional[str] = typer.Option(
        None,
        "--pattern",
        "-p",
        help="Regex matched against variables links (default from settings).",
    ),
    limit: Optional[int] = typer.Option(
        None, "--limit", "-n", min=1, help="Only prefetch the first N matching endpoints."
    ),
    concurrency: Optional[int] = typer.Option(
        None, "--concurrency", "-c", min=1, help="Number of concurrent downloads."
    ),
) -> None:
    """
    Download the variables and geography documents into the cache.
    """
    settings = get_settings()
    with _exit_on_error(), _open_store() as (store, client):
        if not store.has_api_paths():
            load_catalog(store, client)
        api_paths = store.list_api_paths(pattern or settings.variables_link_pattern)
        if limit is not None:
            api_paths = api_paths[:limit]
        count = prefetch_documents(client, api_paths, concurrency=concurrency)
    typer.echo(f"Cached {count} document(s) under {settings.cache_dir}.")


@app.command()
def ingest(
    pattern: Optional[str] = typer.Option(
        None,
        "--pattern",
        "-p",
        help="Regex matched against variables links (default from settings).",
    ),
    limit: Optional[int] = typer.Option(
        None, "--limit", "-n", min=1, help="Only ingest the first N matching endpoints."
    ),
    batch_size: Optional[int] = typer.Option(
        None, "--batch-size", "-b", min=1, help="Rows per INSERT (default from settings)."
    ),
    keep_going: bool = typer.Option(
        False,
        "--keep-going",
        help="Record failed endpoints and continue instead of stopping at the first failure.",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print results as JSON instead of a table."),
) -> None:
    """
    Ingest variables and geography levels of every matching endpoint.
    """
    with _exit_on_error(), _open_store() as (store, client):
        results = run_ingestion(
            store,
            client,
            pattern=pattern,
            limit=limit,
            fail_fast=not keep_going,
            batch_size=batch_size,
        )

    if as_json:
        typer.echo(json.dumps(results, indent=2))
    else:
        print_ingest_results(results)

    if any(result.get("error") for result in results):
        raise typer.Exit(code=1)


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
