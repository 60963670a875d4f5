"""
Schema bootstrap script for the US Census metadata store.

Applies `db/init.sql` to the configured database in a single transaction.
The schema is not re-entrant, so an already initialized database is left alone
unless `--force` drops the existing tables first.
"""

from __future__ import annotations

import sys
import time
from pathlib import Path

import psycopg
import typer

from us_census.infrastructure.db_factory import build_dsn

app = typer.Typer(help="Create the US Census metadata schema in Postgres.")

DEFAULT_SCHEMA_PATH = Path(__file__).resolve().parent.parent / "db" / "init.sql"

_DROP_STATEMENTS = (
    "DROP TABLE IF EXISTS api_paths_geography_association, api_paths_variables_association, "
    "api_paths, variables, geography CASCADE",
    "DROP FUNCTION IF EXISTS immutable_md5(TEXT), immutable_array_to_string(TEXT[], TEXT)",
)


def _build_dsn(dsn_override: str | None) -> str:
    if dsn_override:
        return dsn_override
    return build_dsn()


def _schema_exists(conn: psycopg.Connection) -> bool:
    with conn.cursor() as cur:
        cur.execute("SELECT to_regclass('public.api_paths') IS NOT NULL")
        row = cur.fetchone()
    return bool(row and row[0])


def _apply_schema(dsn: str, schema_path: Path, force: bool = False) -> bool:
    """Apply `schema_path`; return False when the schema already existed and was kept."""
    ddl = schema_path.read_text(encoding="utf-8")
    with psycopg.connect(dsn, autocommit=True) as conn:
        with conn.transaction():
            if _schema_exists(conn):
                if not force:
                    return False
                with conn.cursor() as cur:
                    for statement in _DROP_STATEMENTS:
                        cur.execute(statement)
            with conn.cursor() as cur:
                cur.execute(ddl)
    return True


@app.command()
def main(
    schema: Path = typer.Option(
        DEFAULT_SCHEMA_PATH,
        "--schema",
        "-s",
        exists=True,
        dir_okay=False,
        help="SQL file to apply.",
    ),
    dsn: str | None = typer.Option(
        None,
        "--dsn",
        help="Optional DSN override for Postgres.",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        help="Drop the existing tables (and their data) before applying the schema.",
    ),
) -> None:
    """
    Create the tables and helper functions used by the loader.
    """
    start = time.perf_counter()
    typer.echo(f"Applying {schema} ...")
    try:
        applied = _apply_schema(_build_dsn(dsn), schema, force=force)
    except psycopg.Error as exc:
        typer.secho(f"Failed to apply schema: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc

    if not applied:
        typer.echo("Schema already present; nothing to do (use --force to recreate).")
        return
    typer.echo(f"Schema applied in {time.perf_counter() - start:.2f}s.")


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
