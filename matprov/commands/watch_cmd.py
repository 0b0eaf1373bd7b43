"""Watch command - keep the index in sync with a ledger written by others."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from rich.console import Console

from ..config import MatprovConfig
from ..indexer import IndexStatus
from ..watcher import run_watch_loop
from .mutate_cmd import open_service


def run_watch(data_dir: Path, config: MatprovConfig) -> int:
    """
    Watch the ledger file and re-sync the index on every change.

    This is a blocking command that runs until interrupted (Ctrl+C).
    """
    console = Console(stderr=True)
    service = open_service(data_dir, config)
    ledger_path = config.resolve_ledger_path(data_dir)

    console.print(f"[bold]Watching[/bold] {ledger_path}")
    console.print("[dim]Press Ctrl+C to stop watching[/dim]")
    console.print()

    syncs = 0

    def on_sync(status: IndexStatus) -> None:
        nonlocal syncs
        syncs += 1
        timestamp = datetime.now().strftime("%H:%M:%S")
        console.print(
            f"[dim]{timestamp}[/dim] indexed through {status.position} "
            f"({len(service.get_all_known_ids())} materials, "
            f"{len(service.get_active_listings())} active listings)"
        )

    run_watch_loop(service, on_sync=on_sync)
    console.print()
    console.print(f"[bold]Stopped.[/bold] {syncs} syncs.")
    return 0
