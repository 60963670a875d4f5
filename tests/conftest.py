"""
Pytest configuration for the US Census metadata loader.

Provides fixtures for:
- An in-memory MetadataStore with transactional rollback
- A fake document client serving canned documents
- Sample variables, geography and catalog documents
- Database connection management for integration tests
"""

from __future__ import annotations

import copy
import itertools
import json
import os
import re
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Mapping, Optional, Sequence, Set, Tuple

import psycopg
import pytest

from us_census.config import Settings
from us_census.domain.models import ApiPath, GeographyRecord, VariableRecord
from us_census.exceptions import NetworkError, PersistenceError

SCHEMA_PATH = Path(__file__).parent.parent / "db" / "init.sql"
VARIABLES_CONSTRAINT = "variables_name__attributes_hash__concept_hash__first_group_key"

ACS5_VARIABLES_URL = "http://api.census.gov/data/2020/acs/acs5/variables.json"
ACS5_GEOGRAPHY_URL = "http://api.census.gov/data/2020/acs/acs5/geography.json"
PL_VARIABLES_URL = "http://api.census.gov/data/2020/dec/pl/variables.json"
PL_GEOGRAPHY_URL = "http://api.census.gov/data/2020/dec/pl/geography.json"
CATALOG_URL = "https://api.census.gov/data.json"


class InMemoryMetadataStore:
    """
    MetadataStore keeping rows in dictionaries.

    `run_in_transaction` snapshots the tables and restores them if the unit of
    work raises. Ids come from a shared counter that, like a PostgreSQL
    sequence, is not rolled back. Set `fail_on` to a method name to make that
    method raise PersistenceError.
    """

    def __init__(self, unique_constraints: Sequence[str] = (VARIABLES_CONSTRAINT,)) -> None:
        self.tables: Dict[str, Any] = {
            "variables": {},
            "variable_keys": {},
            "geography": {},
            "api_paths": {},
            "variable_links": set(),
            "geography_links": [],
        }
        self.unique_constraints = list(unique_constraints)
        self.fail_on: Optional[str] = None
        self.variable_batches: List[int] = []
        self.transactions = 0
        self._ids = itertools.count(1)

    # Convenience views
    @property
    def variables(self) -> Dict[int, VariableRecord]:
        return self.tables["variables"]

    @property
    def geography(self) -> Dict[int, GeographyRecord]:
        return self.tables["geography"]

    @property
    def api_paths(self) -> Dict[int, ApiPath]:
        return self.tables["api_paths"]

    @property
    def variable_links(self) -> Set[Tuple[int, int]]:
        return self.tables["variable_links"]

    @property
    def geography_links(self) -> List[Tuple[int, int]]:
        return self.tables["geography_links"]

    def _maybe_fail(self, operation: str) -> None:
        if self.fail_on == operation:
            raise PersistenceError(f"simulated failure in {operation}")

    def run_in_transaction(self, fn: Callable[[], Any]) -> Any:
        self.transactions += 1
        snapshot = copy.deepcopy(self.tables)
        try:
            return fn()
        except Exception:
            self.tables = snapshot
            raise

    def insert_or_get_variable_ids(
        self, records: Sequence[VariableRecord], uniqueness_constraint_name: str
    ) -> List[int]:
        self._maybe_fail("insert_or_get_variable_ids")
        if uniqueness_constraint_name not in self.unique_constraints:
            raise PersistenceError(f"unknown constraint {uniqueness_constraint_name}")
        self.variable_batches.append(len(records))
        keys = self.tables["variable_keys"]
        ids = []
        for record in records:
            key = (
                record.name,
                tuple(record.attributes or ()),
                record.concept or "",
                record.group[0] if record.group else "",
            )
            if key not in keys:
                keys[key] = next(self._ids)
                self.variables[keys[key]] = record
            ids.append(keys[key])
        return ids

    def link_endpoint_variables(self, endpoint_id: int, variable_ids: Sequence[int]) -> None:
        self._maybe_fail("link_endpoint_variables")
        for variable_id in variable_ids:
            self.variable_links.add((endpoint_id, variable_id))

    def replace_endpoint_geography(
        self,
        endpoint_id: int,
        records: Sequence[GeographyRecord],
        batch_size: Optional[int] = None,
    ) -> List[int]:
        self._maybe_fail("replace_endpoint_geography")
        stale = [gid for eid, gid in self.geography_links if eid == endpoint_id]
        self.tables["geography_links"] = [
            link for link in self.geography_links if link[0] != endpoint_id
        ]
        for geography_id in stale:
            del self.geography[geography_id]
        ids = []
        for record in records:
            geography_id = next(self._ids)
            self.geography[geography_id] = record
            self.geography_links.append((endpoint_id, geography_id))
            ids.append(geography_id)
        return ids

    def insert_api_paths(self, paths: Sequence[ApiPath], batch_size: Optional[int] = None) -> int:
        self._maybe_fail("insert_api_paths")
        existing = {(p.c_vintage, tuple(p.c_dataset)) for p in self.api_paths.values()}
        inserted = 0
        for path in paths:
            key = (path.c_vintage, tuple(path.c_dataset))
            if key in existing:
                continue
            path_id = next(self._ids)
            self.api_paths[path_id] = path.model_copy(update={"id": path_id})
            existing.add(key)
            inserted += 1
        return inserted

    def has_api_paths(self) -> bool:
        return bool(self.api_paths)

    def list_api_paths(self, variables_link_pattern: Optional[str] = None) -> List[ApiPath]:
        paths = [self.api_paths[key] for key in sorted(self.api_paths)]
        if variables_link_pattern is None:
            return paths
        return [p for p in paths if re.search(variables_link_pattern, p.c_variables_link)]

    def get_unique_constraints(self, table_name: str) -> List[str]:
        return list(self.unique_constraints) if table_name == "variables" else []


class FakeDocumentClient:
    """Serves canned documents by URL; unknown URLs fail like a 404."""

    def __init__(self, documents: Mapping[str, Any]) -> None:
        self.documents = {
            url: doc if isinstance(doc, bytes) else json.dumps(doc).encode("utf-8")
            for url, doc in documents.items()
        }
        self.requested: List[str] = []

    def fetch(self, url: str) -> bytes:
        self.requested.append(url)
        if url not in self.documents:
            raise NetworkError(f"404 Client Error: Not Found for url: {url}")
        return self.documents[url]


@pytest.fixture
def variables_document() -> Dict[str, Any]:
    return {
        "variables": {
            "for": {
                "label": "Census API FIPS 'for' clause",
                "concept": "Census API Geography Specification",
                "predicateType": "fips-for",
                "group": "N/A",
                "limit": 0,
                "predicateOnly": True,
            },
            "B01001_001E": {
                "label": "Estimate!!Total:",
                "concept": "SEX BY AGE",
                "predicateType": "int",
                "group": "B01001",
                "limit": 0,
                "attributes": "B01001_001EA,B01001_001M,B01001_001MA",
            },
            "B01001_002E": {
                "label": "Estimate!!Total:!!Male:",
                "concept": "SEX BY AGE",
                "predicateType": "int",
                "group": "B01001",
                "limit": 0,
                "attributes": "B01001_002EA,B01001_002M,B01001_002MA",
            },
        }
    }


@pytest.fixture
def geography_document() -> Dict[str, Any]:
    return {
        "fips": [
            {"name": "us", "geoLevelDisplay": "010", "referenceDate": "2020-01-01"},
            {
                "name": "state",
                "geoLevelDisplay": "040",
                "referenceDate": "2020-01-01",
                "wildcard": False,
            },
            {
                "name": "county",
                "geoLevelDisplay": "050",
                "referenceDate": "2020",
                "requires": ["state"],
                "wildcard": ["state"],
                "optionalWithWCFor": "state",
                "limit": '"51',
            },
        ]
    }


@pytest.fixture
def catalog_document() -> Dict[str, Any]:
    return {
        "@context": "https://project-open-data.cio.gov/v1.1/schema/catalog.jsonld",
        "dataset": [
            {
                "c_vintage": 2020,
                "c_dataset": ["acs", "acs5"],
                "c_geographyLink": ACS5_GEOGRAPHY_URL,
                "c_variablesLink": ACS5_VARIABLES_URL,
                "title": "ACS 5-Year Detailed Tables",
                "description": "American Community Survey 5-year estimates.",
            },
            {
                "c_vintage": 2020,
                "c_dataset": ["dec", "pl"],
                "c_geographyLink": PL_GEOGRAPHY_URL,
                "c_variablesLink": PL_VARIABLES_URL,
                "title": "Decennial Census: Redistricting Data",
                "description": "Public Law 94-171 redistricting data.",
            },
        ],
    }


@pytest.fixture
def timeseries_catalog_client(catalog_document: Dict[str, Any]) -> FakeDocumentClient:
    """Serves a catalog that also lists a time series endpoint, which has no vintage."""
    catalog_document["dataset"].append(
        {
            "c_dataset": ["timeseries", "eits"],
            "c_geographyLink": "http://api.census.gov/data/timeseries/eits/geography.json",
            "c_variablesLink": "http://api.census.gov/data/timeseries/eits/variables.json",
            "title": "Economic Indicators",
            "description": "Economic indicators time series.",
        }
    )
    return FakeDocumentClient({CATALOG_URL: catalog_document})


@pytest.fixture
def fake_client(
    variables_document: Dict[str, Any],
    geography_document: Dict[str, Any],
    catalog_document: Dict[str, Any],
) -> FakeDocumentClient:
    return FakeDocumentClient(
        {
            CATALOG_URL: catalog_document,
            ACS5_VARIABLES_URL: variables_document,
            ACS5_GEOGRAPHY_URL: geography_document,
            PL_VARIABLES_URL: variables_document,
            PL_GEOGRAPHY_URL: geography_document,
        }
    )


@pytest.fixture
def memory_store() -> InMemoryMetadataStore:
    return InMemoryMetadataStore()


@pytest.fixture
def acs5_api_path(memory_store: InMemoryMetadataStore) -> ApiPath:
    """The ACS 5-year endpoint, already persisted in `memory_store`."""
    memory_store.insert_api_paths(
        [
            ApiPath(
                c_vintage=2020,
                c_dataset=["acs", "acs5"],
                c_geography_link=ACS5_GEOGRAPHY_URL,
                c_variables_link=ACS5_VARIABLES_URL,
                title="ACS 5-Year Detailed Tables",
                description="American Community Survey 5-year estimates.",
            )
        ]
    )
    return memory_store.list_api_paths()[0]


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres-password"),
        db_name=os.getenv("DB_NAME", "us_census_test"),
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    """
    Database connection string for tests.
    """
    return (
        f"postgresql://{test_settings.db_user}:{test_settings.db_password}"
        f"@{test_settings.db_host}:{test_settings.db_port}/{test_settings.db_name}"
    )


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.OperationalError:
        return False


@pytest.fixture(scope="session")
def db_connection(
    test_dsn: str, db_connection_available: bool
) -> Generator[psycopg.Connection, None, None]:
    """
    Provide a session-scoped autocommit connection for integration tests.

    Skips tests if database is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    conn = psycopg.connect(test_dsn, autocommit=True)
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture(scope="session")
def db_schema_initialized(test_dsn: str, db_connection: psycopg.Connection) -> bool:
    """
    Ensure database schema is initialized, applying db/init.sql if needed.
    """
    from scripts.init_db import _apply_schema

    _apply_schema(test_dsn, SCHEMA_PATH)
    return True


@pytest.fixture(scope="function")
def clean_tables(db_connection: psycopg.Connection, db_schema_initialized: bool):
    """
    Empty every table before and after each test function.
    """
    truncate = (
        "TRUNCATE TABLE api_paths_geography_association, api_paths_variables_association, "
        "api_paths, variables, geography RESTART IDENTITY CASCADE;"
    )
    with db_connection.cursor() as cur:
        cur.execute(truncate)
    yield
    with db_connection.cursor() as cur:
        cur.execute(truncate)
