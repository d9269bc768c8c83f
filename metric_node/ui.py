"""
Rich status output for the metric node.

Used by `python -m metric_node --status` and for the summary table printed
when the running node shuts down.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from rich.console import Console
from rich.table import Table
from rich.text import Text

from .config import SourceRegistry
from .store import TimeSeriesStore


def _fmt_seconds(seconds: Optional[float]) -> str:
    if not seconds:
        return "-"
    seconds = int(seconds)
    if seconds % 86400 == 0:
        return f"{seconds // 86400}d"
    if seconds % 3600 == 0:
        return f"{seconds // 3600}h"
    if seconds % 60 == 0:
        return f"{seconds // 60}m"
    return f"{seconds}s"


def _fmt_time(value: Optional[datetime]) -> str:
    return value.strftime("%H:%M:%S") if value else ""


def make_sources_table(
    registry: SourceRegistry,
    store: Optional[TimeSeriesStore] = None,
    schedule: Optional[dict[str, dict]] = None,
) -> Table:
    """
    Create the sources table.

    Args:
        registry: Source registry
        store: If given, adds a stored-sample count column
        schedule: Scheduler.get_status() output, adds live columns
    """
    table = Table(title="Sources", box=None, expand=True)
    table.add_column("Source", style="cyan")
    table.add_column("Status", width=12)
    table.add_column("Interval", justify="right")
    table.add_column("Retention", justify="right")
    if store is not None:
        table.add_column("Samples", justify="right")
    if schedule is not None:
        table.add_column("Last Fetch", width=10)
        table.add_column("Fetches/Failed", justify="right")
        table.add_column("Last Error")

    for source in registry:
        if not source.active:
            status_text = Text("○ Inactive", style="dim")
        elif source.is_schedulable:
            status_text = Text("● Polling", style="green")
        else:
            status_text = Text("◌ Idle", style="yellow")

        retention = _fmt_seconds(source.retention.age_seconds) if source.is_prunable else "keep"
        row = [source.name, status_text, _fmt_seconds(source.poll_interval_seconds), retention]

        if store is not None:
            row.append(str(store.count(source.name)))
        if schedule is not None:
            live = schedule.get(source.name)
            if live:
                row.extend([
                    _fmt_time(live["last_fetch_at"]),
                    f"{live['fetches']}/{live['failures']}",
                    Text(live["last_error"] or "", style="red"),
                ])
            else:
                row.extend(["", "", ""])

        table.add_row(*row)

    return table


def print_status(
    registry: SourceRegistry,
    store: Optional[TimeSeriesStore] = None,
    console: Optional[Console] = None,
) -> None:
    """Print the sources table and a one-line summary."""
    console = console or Console()
    console.print(make_sources_table(registry, store=store))
    console.print(
        f"[bold]{len(registry.active_sources())}[/] active, "
        f"[bold]{len(registry.schedulable())}[/] polling, "
        f"[bold]{len(registry.prunable())}[/] with retention"
    )
