# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Lightweight key pool health viewer TUI.

Reads the pool from its store and shows one row per key: position, masked
key, status badge, call and failure counters, last use and last error.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table
from rich.text import Text

from gemini_keypool import CredentialPool, PoolSettings, mask_credential, open_store
from gemini_keypool.core.constants import MAX_POOL_SIZE
from gemini_keypool.pool.health import HealthRecord, HealthStatus
from gemini_keypool.utils.paths import get_data_file


# =============================================================================
# DISPLAY CONFIGURATION
# =============================================================================

TABLE_KEY_WIDTH = 24
TABLE_STATUS_WIDTH = 12
TABLE_ERROR_WIDTH = 40

# Status icons and colors: (icon, label, color)
STATUS_DISPLAY = {
    HealthStatus.UNUSED: (":white_circle:", "Unused", "dim"),
    HealthStatus.HEALTHY: (":white_check_mark:", "Healthy", "green"),
    HealthStatus.WARNING: (":warning:", "Warning", "yellow"),
    HealthStatus.FAILED: (":no_entry:", "Failed", "red"),
}

# =============================================================================


def clear_screen():
    """Clear the terminal screen."""
    os.system("cls" if os.name == "nt" else "clear")


def format_time_ago(
    timestamp: Optional[datetime], now: Optional[datetime] = None
) -> str:
    """Format a timestamp as relative time (e.g., '5m ago')."""
    if timestamp is None:
        return "Never"
    now = now or datetime.now(timezone.utc)
    minutes = int((now - timestamp).total_seconds() // 60)
    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    return f"{hours // 24}d ago"


def format_status(record: HealthRecord) -> Text:
    icon, label, color = STATUS_DISPLAY[record.status]
    return Text.from_markup(f"{icon} [{color}]{label}[/{color}]")


def build_pool_table(pool: CredentialPool, now: Optional[datetime] = None) -> Table:
    """Render the pool as a rich Table (one row per key)."""
    table = Table(box=None, show_header=True, header_style="bold", padding=(0, 1))
    table.add_column("#", style="dim", width=3)
    table.add_column("Key", style="yellow", min_width=TABLE_KEY_WIDTH)
    table.add_column("", width=6)
    table.add_column("Status", min_width=TABLE_STATUS_WIDTH)
    table.add_column("Calls", justify="right")
    table.add_column("Fails", justify="right")
    table.add_column("Last used")
    table.add_column("Last error", style="red", max_width=TABLE_ERROR_WIDTH)

    preferred = pool.preferred_index
    for idx, credential, record in pool.health_snapshot():
        table.add_row(
            str(idx + 1),
            mask_credential(credential, style="full"),
            "[bold green]active[/bold green]" if idx == preferred else "",
            format_status(record),
            str(record.total_calls),
            str(record.consecutive_failures),
            format_time_ago(record.last_used_at, now),
            record.last_error or "",
        )
    return table


class PoolViewer:
    """Interactive viewer over a pool loaded from the configured store."""

    def __init__(self, settings: Optional[PoolSettings] = None):
        self.settings = settings or PoolSettings.from_env()
        self.console = Console()
        self.pool: Optional[CredentialPool] = None

    def reload(self) -> CredentialPool:
        self.pool = CredentialPool.load(
            open_store(self.settings), rotation_delay=self.settings.rotation_delay
        )
        return self.pool

    def show(self) -> None:
        clear_screen()
        pool = self.pool or self.reload()

        self.console.print("━" * 78)
        self.console.print(
            f"[bold cyan]:key: Key Pool Health[/bold cyan]  |  "
            f"{pool.size}/{MAX_POOL_SIZE} keys"
        )
        self.console.print("━" * 78)
        self.console.print(f"Store: [dim]{self.settings.resolved_store_path}[/dim]")
        self.console.print()

        if pool.size == 0:
            self.console.print(
                "[yellow]No API keys added. Run keypool-manager to add one.[/yellow]"
            )
            return
        self.console.print(build_pool_table(pool))

    def run(self) -> None:
        while True:
            self.show()
            choice = Prompt.ask(
                Text.from_markup(
                    "\n[bold]Press [cyan]R[/cyan] to reload or [red]Q[/red] to quit[/bold]"
                ),
                choices=["r", "q", "R", "Q"],
                show_choices=False,
                default="r",
            )
            if choice.lower() == "q":
                break
            self.reload()


def run_pool_viewer():
    """Entry point for the pool viewer."""
    load_dotenv(get_data_file(".env"))
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")
    try:
        PoolViewer().run()
    except KeyboardInterrupt:
        Console().print("\n[bold yellow]Exiting viewer.[/bold yellow]")


if __name__ == "__main__":
    run_pool_viewer()
