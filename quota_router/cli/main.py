"""
CLI interface for Quota Router.

Inspect and reset the usage ledger of the configured providers.
"""

import asyncio
import logging
import sys
from typing import List, Optional, Tuple

import typer
from rich.console import Console
from rich.table import Table

from quota_router.config.loader import (
    LIMIT_KEYS,
    RouterConfig,
    SelectionPolicy,
    VirtualProviderEntry,
    load_router_config,
)
from quota_router.core.limits import under_limit
from quota_router.core.selection import select_candidate
from quota_router.core.usage_tracker import UsageTracker
from quota_router.storage.db import DEFAULT_DB_PATH, initialize_schema
from quota_router.storage.models import UsageWindow
from quota_router.storage.repository import SQLiteKeyValueStore

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

CONFIG_OPTION = typer.Option(
    ...,
    "--config",
    "-c",
    help="Path to the router YAML configuration"
)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")
):
    """Quota Router CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        force=True
    )
    if ctx.invoked_subcommand is None:
        console.print("Quota Router - Use --help to see available commands")


@app.command()
def init(
    db_path: str = typer.Option(DEFAULT_DB_PATH, "--db", help="Path to SQLite database file")
):
    """Initialize the usage database."""
    try:
        initialize_schema(db_path)
        console.print("[green]✓[/] Database initialized successfully")
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def usage(
    config_path: str = CONFIG_OPTION,
    window: UsageWindow = typer.Option(
        UsageWindow.MINUTE,
        "--window",
        "-w",
        help="Sliding window to aggregate over"
    )
):
    """Show tokens and requests consumed per configured provider."""
    try:
        config = load_router_config(config_path)
        tracker = _open_tracker(config)
        rows = asyncio.run(_collect_usage(tracker, config.providers, window))
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title=f"Usage in the last {window.value}")
    table.add_column("Provider")
    table.add_column("Name")
    table.add_column("Requests", justify="right")
    table.add_column("Tokens", justify="right")
    for entry, result in rows:
        table.add_row(
            entry.provider_id,
            entry.provider_name or "-",
            f"{result.requests:,}",
            f"{result.tokens:,}"
        )
    console.print(table)


@app.command()
def status(config_path: str = CONFIG_OPTION):
    """Show which providers are under their limits and which is used next."""
    try:
        config = load_router_config(config_path)
        tracker = _open_tracker(config)
        eligibility, candidates, selected = asyncio.run(_collect_status(tracker, config))
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title="Provider status")
    table.add_column("#", justify="right")
    table.add_column("Provider")
    table.add_column("Limits")
    table.add_column("Under limit")
    table.add_column("Next")
    for index, (entry, eligible) in enumerate(eligibility, start=1):
        table.add_row(
            str(index),
            entry.provider_id or "-",
            _format_limits(entry),
            "[green]yes[/]" if eligible else "[red]no[/]",
            "→" if entry is selected else ""
        )
    console.print(table)

    if not candidates:
        console.print("[yellow]No provider can be selected[/]")
    elif config.selection.policy == SelectionPolicy.RANDOM_UNDER_LIMIT:
        console.print("[dim]Random policy: next provider is drawn from those under limit[/]")


@app.command()
def clear(
    config_path: str = CONFIG_OPTION,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation")
):
    """Erase all recorded usage data."""
    if not yes and not typer.confirm("Erase all recorded usage data?"):
        console.print("Aborted")
        sys.exit(EXIT_CODE_PASS)

    try:
        config = load_router_config(config_path)
        asyncio.run(_open_tracker(config).clear_all_usage_data())
        console.print("[green]✓[/] Usage data cleared")
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


def _open_tracker(config: RouterConfig) -> UsageTracker:
    return UsageTracker(SQLiteKeyValueStore(config.db_path))


async def _collect_usage(tracker, providers, window):
    rows = []
    for entry in providers:
        if not entry.provider_id:
            continue
        rows.append((entry, await tracker.get_usage(entry.provider_id, window)))
    return rows


async def _collect_status(tracker: UsageTracker, config: RouterConfig):
    """Evaluate limits the same way the fallback handler does.

    Only entries with a resolvable profile are selection candidates.
    """
    eligibility = []
    for entry in config.providers:
        eligibility.append((entry, await under_limit(tracker, entry)))

    candidates: List[Tuple[VirtualProviderEntry, bool]] = [
        (entry, eligible) for entry, eligible in eligibility
        if entry.provider_id and entry.provider_name and entry.provider_id in config.profiles
    ]

    async def is_eligible(candidate: Tuple[VirtualProviderEntry, bool]) -> bool:
        return candidate[1]

    policy = config.selection.policy
    selected: Optional[VirtualProviderEntry] = None
    if policy == SelectionPolicy.FIRST_UNDER_LIMIT or not any(ok for _, ok in candidates):
        chosen = await select_candidate(candidates, is_eligible)
        if chosen is not None:
            selected = chosen[0]
    return eligibility, candidates, selected


def _format_limits(entry: VirtualProviderEntry) -> str:
    """Format configured ceilings, e.g. ``requests_per_minute=10``."""
    if entry.limits is None:
        return "[dim]unlimited[/]"
    parts = [
        f"{key}={getattr(entry.limits, key):,}"
        for key in LIMIT_KEYS
        if getattr(entry.limits, key) is not None
    ]
    return ", ".join(parts) or "[dim]unlimited[/]"


if __name__ == "__main__":
    app()
