from __future__ import annotations

from contextlib import contextmanager

import pytest
from rich.console import Console
from typer.testing import CliRunner

from tests.conftest import ACS5_VARIABLES_URL, FakeDocumentClient, InMemoryMetadataStore
from us_census import main
from us_census.reporter import print_ingest_results

runner = CliRunner()


@pytest.fixture
def patched_store(
    monkeypatch: pytest.MonkeyPatch,
    memory_store: InMemoryMetadataStore,
    fake_client: FakeDocumentClient,
) -> InMemoryMetadataStore:
    @contextmanager
    def _fake_open_store():
        yield memory_store, fake_client

    monkeypatch.setattr(main, "_open_store", _fake_open_store)
    return memory_store


def test_info_shows_configuration() -> None:
    result = runner.invoke(main.app, ["info"])
    assert result.exit_code == 0
    assert "DB=" in result.output
    assert "pattern=" in result.output


def test_load_catalog_command(patched_store: InMemoryMetadataStore) -> None:
    result = runner.invoke(main.app, ["load-catalog"])
    assert result.exit_code == 0
    assert "2 endpoint(s)" in result.output
    assert patched_store.has_api_paths()


def test_prefetch_command(patched_store: InMemoryMetadataStore) -> None:
    result = runner.invoke(main.app, ["prefetch", "--pattern", "/2020/", "--concurrency", "2"])
    assert result.exit_code == 0
    assert "Cached 4 document(s)" in result.output


def test_ingest_command_json(patched_store: InMemoryMetadataStore) -> None:
    result = runner.invoke(main.app, ["ingest", "--json"])
    assert result.exit_code == 0
    assert ACS5_VARIABLES_URL in result.output
    assert '"variables": 3' in result.output


def test_ingest_command_fails_fast(
    patched_store: InMemoryMetadataStore, fake_client: FakeDocumentClient
) -> None:
    del fake_client.documents[ACS5_VARIABLES_URL]

    result = runner.invoke(main.app, ["ingest"])

    assert result.exit_code == 1
    assert "Error: [fetch]" in result.output


def test_ingest_command_keep_going_reports_failure(
    patched_store: InMemoryMetadataStore, fake_client: FakeDocumentClient
) -> None:
    del fake_client.documents[ACS5_VARIABLES_URL]

    result = runner.invoke(main.app, ["ingest", "--pattern", "/2020/", "--keep-going", "--json"])

    assert result.exit_code == 1
    assert '"stage": "fetch"' in result.output


def test_reporter_renders_success_and_failure() -> None:
    console = Console(record=True, width=200)
    print_ingest_results(
        [
            {
                "api_path_id": 1,
                "variables_link": ACS5_VARIABLES_URL,
                "variables": 27000,
                "geographies": 87,
                "duration_seconds": 12.3,
                "peak_rss_bytes": 150 * 1024 * 1024,
                "cpu_percent": 87.5,
            },
            {
                "api_path_id": 2,
                "variables_link": "http://api.census.gov/data/2019/acs/acs1/variables.json",
                "variables": 0,
                "geographies": 0,
                "duration_seconds": 0.0,
                "peak_rss_bytes": None,
                "cpu_percent": None,
                "error": "404 Client Error",
                "stage": "fetch",
            },
        ],
        console=console,
    )
    text = console.export_text()
    assert "27,000" in text
    assert "150.00" in text
    assert "CPU %" in text
    assert "87.5" in text
    assert "failed (fetch): 404 Client Error" in text
    assert "1 of 2 endpoint(s) failed" in text


def test_reporter_handles_empty_results() -> None:
    console = Console(record=True, width=120)
    print_ingest_results([], console=console)
    assert "No endpoints ingested" in console.export_text()
