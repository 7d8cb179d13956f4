from __future__ import annotations

from typing import Optional, Sequence

from rich import box
from rich.console import Console
from rich.table import Table

from querymonitor.domain.models import (
    DailyLeaderboardEntry,
    MonitoringStatus,
    QueryStatCandidate,
    SystemMetricSample,
)

QUERY_PREVIEW_CHARS = 80


def _preview(query_text: str, width: int = QUERY_PREVIEW_CHARS) -> str:
    """Collapse whitespace and truncate a statement for a table cell."""
    flat = " ".join(query_text.split())
    if len(flat) <= width:
        return flat
    return flat[: width - 1] + "…"


def _format_bytes(value: int) -> str:
    size = float(value)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


def print_leaderboard(
    entries: Sequence[DailyLeaderboardEntry], console: Optional[Console] = None
) -> None:
    """
    Render a day's leaderboard as a rich table, slowest first.
    """
    console = console or Console()

    if not entries:
        console.print("[yellow]No leaderboard entries for today.[/yellow]")
        return

    table = Table(
        title=f"Slowest queries of {entries[0].day.isoformat()}",
        box=box.ROUNDED,
        caption="Sorted by mean time (descending)",
    )
    table.add_column("#", justify="right", style="dim")
    table.add_column("Query", style="cyan")
    table.add_column("Mean (ms)", justify="right", style="bold green")
    table.add_column("Max (ms)", justify="right", style="green")
    table.add_column("Calls", justify="right", style="magenta")
    table.add_column("Rows", justify="right", style="blue")
    table.add_column("Hit %", justify="right", style="yellow")
    table.add_column("Last seen", style="dim")

    ordered = sorted(entries, key=lambda e: e.mean_time_ms, reverse=True)
    for rank, entry in enumerate(ordered, start=1):
        blocks = entry.shared_blocks_hit + entry.shared_blocks_read
        hit = f"{100.0 * entry.shared_blocks_hit / blocks:.1f}" if blocks else "N/A"
        table.add_row(
            str(rank),
            _preview(entry.query_text),
            f"{entry.mean_time_ms:,.2f}",
            f"{entry.max_time_ms:,.2f}",
            f"{entry.calls:,}",
            f"{entry.rows:,}",
            hit,
            entry.last_seen.astimezone().strftime("%H:%M:%S"),
        )

    console.print(table)


def print_metrics(samples: Sequence[SystemMetricSample], console: Optional[Console] = None) -> None:
    console = console or Console()

    if not samples:
        console.print("[yellow]No system metrics in the requested window.[/yellow]")
        return

    table = Table(title="System metrics", box=box.ROUNDED)
    table.add_column("Time", style="cyan", no_wrap=True)
    table.add_column("Connections", justify="right", style="magenta")
    table.add_column("Cache hit %", justify="right", style="green")
    table.add_column("TPS", justify="right", style="bold green")
    table.add_column("DB size", justify="right", style="yellow")

    for sample in samples:
        ratio = sample.cache_hit_ratio
        table.add_row(
            sample.timestamp.astimezone().strftime("%Y-%m-%d %H:%M:%S"),
            str(sample.active_connections),
            f"{ratio * 100:.2f}" if ratio is not None else "N/A",
            f"{sample.tps:,.2f}" if sample.tps is not None else "N/A",
            _format_bytes(sample.db_size_bytes),
        )

    console.print(table)


def print_catalogue(
    candidates: Sequence[QueryStatCandidate], console: Optional[Console] = None
) -> None:
    console = console or Console()

    if not candidates:
        console.print("[yellow]pg_stat_statements returned no statements.[/yellow]")
        return

    table = Table(title="Live statement catalogue", box=box.ROUNDED)
    table.add_column("Query ID", style="dim", no_wrap=True)
    table.add_column("Query", style="cyan")
    table.add_column("Mean (ms)", justify="right", style="bold green")
    table.add_column("Total (ms)", justify="right", style="green")
    table.add_column("Calls", justify="right", style="magenta")
    table.add_column("Rows", justify="right", style="blue")

    for candidate in candidates:
        table.add_row(
            candidate.query_id,
            _preview(candidate.query_text),
            f"{candidate.mean_time_ms:,.2f}",
            f"{candidate.total_time_ms:,.2f}",
            f"{candidate.calls:,}",
            f"{candidate.rows:,}",
        )

    console.print(table)


def print_status(status: MonitoringStatus, console: Optional[Console] = None) -> None:
    console = console or Console()
    if not status.running:
        console.print("Monitoring: [red]stopped[/red]")
        return

    profile = status.profile or {}
    target = f"{profile.get('username')}@{profile.get('host')}:{profile.get('port')}/{profile.get('database')}"
    console.print(f"Monitoring: [green]running[/green] → {target}")
    if status.next_run_at is not None:
        console.print(f"Next cycle: {status.next_run_at.astimezone():%H:%M:%S}")
    if status.last_cycle and status.last_cycle.get("error"):
        console.print(f"[yellow]Last cycle failed:[/yellow] {status.last_cycle['error']}")
