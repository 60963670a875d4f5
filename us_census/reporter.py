from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence

from rich import box
from rich.console import Console
from rich.table import Table


def _format_memory(peak_rss_bytes: Optional[int]) -> str:
    if not peak_rss_bytes:
        return "N/A"
    return f"{peak_rss_bytes / (1024 * 1024):.2f}"


def _format_cpu(cpu_percent: Optional[float]) -> str:
    if cpu_percent is None:
        return "N/A"
    return f"{cpu_percent:.1f}"


def print_ingest_results(
    results: Sequence[Mapping[str, Any]], console: Optional[Console] = None
) -> None:
    """
    Render an ingestion run as a rich table.

    One row per attempted endpoint, in ingestion order. Failed endpoints show
    the failing stage and error in place of the record counts.
    """
    console = console or Console()

    if not results:
        console.print("[yellow]No endpoints ingested.[/yellow]")
        return

    failed = sum(1 for res in results if res.get("error"))
    title = "US Census Metadata Ingestion"
    if failed:
        title = f"{title}\n[dim]{failed} of {len(results)} endpoint(s) failed[/dim]"

    table = Table(title=title, box=box.ROUNDED)
    table.add_column("Endpoint", justify="right", style="cyan", no_wrap=True)
    table.add_column("Variables link", style="white")
    table.add_column("Variables", justify="right", style="magenta")
    table.add_column("Geographies", justify="right", style="magenta")
    table.add_column("Duration (s)", justify="right", style="green")
    table.add_column("Peak Memory (MB)", justify="right", style="yellow")
    table.add_column("CPU %", justify="right", style="red")
    table.add_column("Status", style="bold")

    total_variables = 0
    total_geographies = 0
    for res in results:
        endpoint = str(res.get("api_path_id", ""))
        link = res.get("variables_link", "")
        error = res.get("error")
        if error:
            table.add_row(
                endpoint,
                link,
                "-",
                "-",
                "-",
                "-",
                "-",
                f"[red]failed ({res.get('stage', 'unknown')}): {error}[/red]",
            )
            continue

        variables = res.get("variables", 0)
        geographies = res.get("geographies", 0)
        total_variables += variables
        total_geographies += geographies
        table.add_row(
            endpoint,
            link,
            f"{variables:,}",
            f"{geographies:,}",
            f"{res.get('duration_seconds', 0.0):.1f}",
            _format_memory(res.get("peak_rss_bytes")),
            _format_cpu(res.get("cpu_percent")),
            "[green]ok[/green]",
        )

    table.caption = f"{total_variables:,} variables, {total_geographies:,} geographies"
    console.print(table)


__all__ = ["print_ingest_results"]
