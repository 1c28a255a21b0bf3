"""
CLI commands for inspecting and repairing resource locks.
"""

from datetime import datetime
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..config import ConfigManager, RefinerySettings
from ..errors import NotOwnerError, RefineryError
from ..locks import LockManager

app = typer.Typer(name="locks", help="Resource lock commands")
console = Console()


def _lock_manager(town: Path) -> LockManager:
    settings = RefinerySettings(town_root=town)
    config_manager = ConfigManager(settings)
    return LockManager(
        config_manager.locks_dir,
        ttl_seconds=settings.lock_ttl_seconds,
        dead_owner_grace_seconds=settings.dead_owner_grace_seconds,
    )


def _age(moment: datetime, now: datetime) -> str:
    return f"{(now - moment).total_seconds():.0f}s"


@app.command("list")
def list_locks(
    town: Path = typer.Option(Path("."), "--town", "-t", help="Town root directory"),
):
    """List held locks and their liveness."""
    try:
        manager = _lock_manager(town)
        locks = manager.list_locks()
        if not locks:
            console.print("[yellow]No locks held[/yellow]")
            return

        now = datetime.now(locks[0].heartbeat_at.tzinfo)
        table = Table(title="Resource Locks")
        table.add_column("Resource", style="cyan")
        table.add_column("Owner", style="white")
        table.add_column("Acquired", style="white")
        table.add_column("Heartbeat age", style="white")
        table.add_column("TTL", style="white")
        table.add_column("State", style="white")

        for lock in locks:
            stale = manager.is_stale(lock)
            table.add_row(
                lock.resource_key,
                lock.owner_id,
                lock.acquired_at.isoformat(timespec="seconds"),
                _age(lock.heartbeat_at, now),
                f"{lock.ttl_seconds:g}s",
                "[red]stale[/red]" if stale else "[green]live[/green]",
            )
        console.print(table)

    except RefineryError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


@app.command()
def clean(
    town: Path = typer.Option(Path("."), "--town", "-t", help="Town root directory"),
):
    """Reclaim stale locks."""
    try:
        reclaimed = _lock_manager(town).clean_stale_locks()
    except RefineryError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    if reclaimed:
        console.print(Panel(
            "\n".join(f"• {key}" for key in reclaimed),
            title=f"Reclaimed {len(reclaimed)} stale lock(s)",
            border_style="yellow",
        ))
    else:
        console.print("[green]✓ No stale locks[/green]")


@app.command()
def collisions(
    town: Path = typer.Option(Path("."), "--town", "-t", help="Town root directory"),
):
    """Report keys that more than one live owner believes it holds."""
    found = _lock_manager(town).detect_collisions()
    if not found:
        console.print("[green]✓ No lock collisions[/green]")
        return

    console.print(Panel(
        "\n".join(f"• {key}" for key in found),
        title="Lock collisions",
        border_style="red",
    ))
    raise typer.Exit(2)


@app.command()
def release(
    resource_key: str = typer.Argument(..., help="Lock key, e.g. rig:gastown:merge"),
    owner_id: str = typer.Option(..., "--owner", "-o", help="Owner id recorded in the lock"),
    town: Path = typer.Option(Path("."), "--town", "-t", help="Town root directory"),
):
    """Release a lock on behalf of its recorded owner."""
    try:
        _lock_manager(town).release(resource_key, owner_id)
    except NotOwnerError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✓ Released {resource_key}[/green]")
