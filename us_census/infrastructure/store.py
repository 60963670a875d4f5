"""
Storage layer for API endpoints, variables and geography levels.

`MetadataStore` is the narrow interface the ingestion coordinator depends on;
`PostgresMetadataStore` implements it on top of a psycopg connection and the
schema in `db/init.sql`.

Writes are batched multi-row INSERT statements. Every psycopg error is
re-raised as PersistenceError; raised inside `run_in_transaction`, it rolls the
whole unit of work back.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import (
    Callable,
    Iterator,
    List,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    TypeVar,
    runtime_checkable,
)

import psycopg
from psycopg import sql

from us_census.domain.models import ApiPath, GeographyRecord, VariableRecord
from us_census.exceptions import PersistenceError
from us_census.infrastructure.db_factory import apply_statement_timeout
from us_census.utils.batching import (
    DEFAULT_BATCH_SIZE,
    POSTGRES_MAX_PARAMETERS,
    chunked,
    safe_batch_size,
)
from us_census.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

# (column, PostgreSQL type) in insertion order
VARIABLE_COLUMNS: Tuple[Tuple[str, str], ...] = (
    ("name", "text"),
    ("label", "text[]"),
    ("concept", "text"),
    ("required", "text"),
    ("predicate_type", "text"),
    ("group", "text[]"),
    ("limit", "smallint"),
    ("predicate_only", "boolean"),
    ("attributes", "text[]"),
)
GEOGRAPHY_COLUMNS: Tuple[Tuple[str, str], ...] = (
    ("name", "text"),
    ("geo_level_display", "text"),
    ("reference_date", "date"),
    ("requires", "text[]"),
    ("wildcard", "text[]"),
    ("limit", "integer"),
    ("geo_level_id", "text"),
    ("optional_with_wildcard_for", "text"),
)
API_PATH_COLUMNS: Tuple[Tuple[str, str], ...] = (
    ("c_vintage", "integer"),
    ("c_dataset", "text[]"),
    ("c_geography_link", "text"),
    ("c_variables_link", "text"),
    ("title", "text"),
    ("description", "text"),
)
ASSOCIATION_COLUMN_COUNT = 2


@runtime_checkable
class MetadataStore(Protocol):
    """
    Persistence operations required by the ingestion coordinator.

    Implementations must make `run_in_transaction` all-or-nothing: if `fn`
    raises, nothing it wrote is visible afterwards.
    """

    def run_in_transaction(self, fn: Callable[[], T]) -> T:
        ...

    def insert_or_get_variable_ids(
        self, records: Sequence[VariableRecord], uniqueness_constraint_name: str
    ) -> List[int]:
        """Upsert variables, returning the id of every inserted or conflicting row."""
        ...

    def link_endpoint_variables(self, endpoint_id: int, variable_ids: Sequence[int]) -> None:
        """Associate variables with an endpoint; existing links are left alone."""
        ...

    def replace_endpoint_geography(
        self,
        endpoint_id: int,
        records: Sequence[GeographyRecord],
        batch_size: Optional[int] = None,
    ) -> List[int]:
        """Drop the endpoint's geography rows and links, then insert and link `records`."""
        ...

    def insert_api_paths(self, paths: Sequence[ApiPath], batch_size: Optional[int] = None) -> int:
        ...

    def has_api_paths(self) -> bool:
        ...

    def list_api_paths(self, variables_link_pattern: Optional[str] = None) -> List[ApiPath]:
        ...

    def get_unique_constraints(self, table_name: str) -> List[str]:
        ...


def _values_clause(columns: Sequence[Tuple[str, str]], n_rows: int) -> sql.Composed:
    row = sql.SQL("({})").format(
        sql.SQL(", ").join(
            sql.SQL("{}::{}").format(sql.Placeholder(), sql.SQL(pg_type)) for _, pg_type in columns
        )
    )
    return sql.SQL(", ").join([row] * n_rows)


def _column_list(columns: Sequence[Tuple[str, str]]) -> sql.Composed:
    return sql.SQL(", ").join(sql.Identifier(name) for name, _ in columns)


def _flatten(records: Sequence[object], columns: Sequence[Tuple[str, str]]) -> List[object]:
    params: List[object] = []
    for record in records:
        params.extend(getattr(record, name) for name, _ in columns)
    return params


class PostgresMetadataStore:
    """
    MetadataStore backed by PostgreSQL.

    Parameters
    ----------
    conn : psycopg.Connection
        An autocommit connection (see `get_sync_connection`); transactions are
        opened explicitly by `run_in_transaction`.
    statement_timeout_ms : int
        Applied with SET LOCAL at the start of each transaction; 0 disables it.
    batch_size : int
        Default rows per INSERT, clamped to the bind parameter ceiling.
    """

    def __init__(
        self,
        conn: psycopg.Connection,
        statement_timeout_ms: int = 0,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        self._conn = conn
        self.statement_timeout_ms = statement_timeout_ms
        self.batch_size = batch_size

    @contextmanager
    def _cursor(self) -> Iterator[psycopg.Cursor]:
        try:
            with self._conn.cursor() as cur:
                yield cur
        except psycopg.Error as exc:
            raise PersistenceError(f"{type(exc).__name__}: {exc}") from exc

    def run_in_transaction(self, fn: Callable[[], T]) -> T:
        try:
            with self._conn.transaction():
                with self._cursor() as cur:
                    apply_statement_timeout(cur, self.statement_timeout_ms)
                return fn()
        except psycopg.Error as exc:
            # Raised by COMMIT itself, after fn() returned
            raise PersistenceError(f"{type(exc).__name__}: {exc}") from exc

    def _insert_returning_ids(
        self,
        table: str,
        columns: Sequence[Tuple[str, str]],
        records: Sequence[object],
        suffix: sql.Composable = sql.SQL(""),
    ) -> List[int]:
        if not records:
            return []
        query = sql.SQL("INSERT INTO {} ({}) VALUES {}{} RETURNING id").format(
            sql.Identifier(table),
            _column_list(columns),
            _values_clause(columns, len(records)),
            suffix,
        )
        with self._cursor() as cur:
            cur.execute(query, _flatten(records, columns))
            return [row[0] for row in cur.fetchall()]

    def _insert_associations(
        self, table: str, target_column: str, endpoint_id: int, ids: Sequence[int], on_conflict: bool
    ) -> None:
        if not ids:
            return
        columns = (("api_paths_id", "integer"), (target_column, "integer"))
        suffix = sql.SQL(" ON CONFLICT DO NOTHING") if on_conflict else sql.SQL("")
        size = safe_batch_size(self.batch_size, ASSOCIATION_COLUMN_COUNT)
        with self._cursor() as cur:
            for chunk in chunked(list(ids), size):
                query = sql.SQL("INSERT INTO {} ({}) VALUES {}{}").format(
                    sql.Identifier(table),
                    _column_list(columns),
                    _values_clause(columns, len(chunk)),
                    suffix,
                )
                params: List[object] = []
                for target_id in chunk:
                    params.extend((endpoint_id, target_id))
                cur.execute(query, params)

    def insert_or_get_variable_ids(
        self, records: Sequence[VariableRecord], uniqueness_constraint_name: str
    ) -> List[int]:
        if len(records) * len(VARIABLE_COLUMNS) > POSTGRES_MAX_PARAMETERS:
            raise PersistenceError(
                f"{len(records)} variables exceed the bind parameter limit of one statement"
            )
        # DO UPDATE (rather than DO NOTHING) so RETURNING yields conflicting rows too.
        suffix = sql.SQL(" ON CONFLICT ON CONSTRAINT {} DO UPDATE SET {} = EXCLUDED.{}").format(
            sql.Identifier(uniqueness_constraint_name),
            sql.Identifier("name"),
            sql.Identifier("name"),
        )
        return self._insert_returning_ids("variables", VARIABLE_COLUMNS, records, suffix)

    def link_endpoint_variables(self, endpoint_id: int, variable_ids: Sequence[int]) -> None:
        self._insert_associations(
            "api_paths_variables_association", "variables_id", endpoint_id, variable_ids, True
        )

    def replace_endpoint_geography(
        self,
        endpoint_id: int,
        records: Sequence[GeographyRecord],
        batch_size: Optional[int] = None,
    ) -> List[int]:
        with self._cursor() as cur:
            cur.execute(
                "DELETE FROM api_paths_geography_association WHERE api_paths_id = %s "
                "RETURNING geography_id",
                (endpoint_id,),
            )
            stale_ids = [row[0] for row in cur.fetchall()]
            if stale_ids:
                cur.execute("DELETE FROM geography WHERE id = ANY(%s)", (stale_ids,))
        log.debug(
            "Removed stale geography",
            extra={"api_path_id": endpoint_id, "geographies_removed": len(stale_ids)},
        )

        size = safe_batch_size(batch_size or self.batch_size, len(GEOGRAPHY_COLUMNS))
        geography_ids: List[int] = []
        for chunk in chunked(records, size):
            geography_ids.extend(self._insert_returning_ids("geography", GEOGRAPHY_COLUMNS, chunk))
        self._insert_associations(
            "api_paths_geography_association", "geography_id", endpoint_id, geography_ids, False
        )
        return geography_ids

    def insert_api_paths(self, paths: Sequence[ApiPath], batch_size: Optional[int] = None) -> int:
        size = safe_batch_size(batch_size or self.batch_size, len(API_PATH_COLUMNS))
        inserted = 0
        with self._cursor() as cur:
            for chunk in chunked(paths, size):
                query = sql.SQL(
                    "INSERT INTO api_paths ({}) VALUES {} ON CONFLICT (c_vintage, c_dataset) DO NOTHING"
                ).format(_column_list(API_PATH_COLUMNS), _values_clause(API_PATH_COLUMNS, len(chunk)))
                cur.execute(query, _flatten(chunk, API_PATH_COLUMNS))
                inserted += cur.rowcount
        return inserted

    def has_api_paths(self) -> bool:
        with self._cursor() as cur:
            cur.execute("SELECT EXISTS (SELECT 1 FROM api_paths)")
            row = cur.fetchone()
        return bool(row and row[0])

    def list_api_paths(self, variables_link_pattern: Optional[str] = None) -> List[ApiPath]:
        query = (
            "SELECT id, c_vintage, c_dataset, c_geography_link, c_variables_link, title, description "
            "FROM api_paths"
        )
        params: Tuple[object, ...] = ()
        if variables_link_pattern is not None:
            query += " WHERE c_variables_link ~ %s"
            params = (variables_link_pattern,)
        query += " ORDER BY id"
        with self._cursor() as cur:
            cur.execute(query, params)
            rows = cur.fetchall()
        return [
            ApiPath(
                id=row[0],
                c_vintage=row[1],
                c_dataset=list(row[2]),
                c_geography_link=row[3],
                c_variables_link=row[4],
                title=row[5],
                description=row[6],
            )
            for row in rows
        ]

    def get_unique_constraints(self, table_name: str) -> List[str]:
        # contype 'u' = unique constraint
        with self._cursor() as cur:
            cur.execute(
                "SELECT conname FROM pg_constraint "
                "WHERE conrelid = %s::regclass AND contype = 'u' ORDER BY conname",
                (table_name,),
            )
            return [row[0] for row in cur.fetchall()]


__all__ = [
    "MetadataStore",
    "PostgresMetadataStore",
    "VARIABLE_COLUMNS",
    "GEOGRAPHY_COLUMNS",
    "API_PATH_COLUMNS",
]
