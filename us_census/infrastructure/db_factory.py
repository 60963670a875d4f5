"""
Database connection factory for the US Census metadata loader.

Builds the DSN from settings and hands out psycopg connections, retrying
transient connection failures with tenacity. Connections are opened in
autocommit mode: every unit of work the loader performs is wrapped in an
explicit `conn.transaction()` block, which is then a real top-level
transaction rather than a savepoint inside an implicit one.
"""

from __future__ import annotations

from typing import Optional

import psycopg
from psycopg import Connection, sql
from psycopg.conninfo import make_conninfo
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from us_census.config import get_settings


def build_dsn() -> str:
    """
    Compose a libpq connection string from settings.

    Values are quoted by `make_conninfo`, so passwords may contain spaces or quotes.
    """
    settings = get_settings()
    return make_conninfo(
        host=settings.db_host,
        port=settings.db_port,
        user=settings.db_user,
        password=settings.db_password,
        dbname=settings.db_name,
        application_name="us-census-metadata",
    )


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((psycopg.OperationalError, psycopg.InterfaceError)),
    reraise=True,
)
def get_sync_connection(dsn: Optional[str] = None) -> Connection:
    """
    Acquire a dedicated autocommit connection with automatic retry.

    Retries up to 3 times with exponential backoff for transient connection errors.

    Parameters
    ----------
    dsn : str | None
        Connection string override; defaults to the one built from settings.

    Returns
    -------
    Connection
        A new psycopg connection instance.

    Raises
    ------
    psycopg.OperationalError
        If connection fails after all retry attempts.
    """
    return psycopg.connect(dsn or build_dsn(), autocommit=True)


def apply_statement_timeout(cur: psycopg.Cursor, timeout_ms: int) -> None:
    """
    Bound every statement of the current transaction to `timeout_ms`.

    A non-positive timeout leaves the server default in place.
    """
    if timeout_ms <= 0:
        return
    cur.execute(sql.SQL("SET LOCAL statement_timeout = {}").format(sql.Literal(int(timeout_ms))))


__all__ = [
    "build_dsn",
    "get_sync_connection",
    "apply_statement_timeout",
]
