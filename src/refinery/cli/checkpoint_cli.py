"""
CLI commands for merge queue checkpoints.
"""

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from ..checkpoint_store import CheckpointStore
from ..config import ConfigManager, RefinerySettings

app = typer.Typer(name="checkpoint", help="Merge queue checkpoint commands")
console = Console()


def _store(town: Path, rig: str) -> CheckpointStore:
    config_manager = ConfigManager(RefinerySettings(town_root=town))
    return CheckpointStore(config_manager.checkpoint_path(rig))


@app.command()
def show(
    rig: str = typer.Argument(..., help="Rig name"),
    town: Path = typer.Option(Path("."), "--town", "-t", help="Town root directory"),
):
    """Show the checkpoint of a rig's merge queue."""
    checkpoint = _store(town, rig).read()
    if checkpoint is None:
        console.print(f"[yellow]No checkpoint for rig {rig}[/yellow]")
        return

    table = Table(title=f"Checkpoint: {rig}")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Owner", checkpoint.owner_id)
    table.add_row("Branch", checkpoint.queue_position or "-")
    table.add_row("Stage", checkpoint.stage.value)
    table.add_row("Target head", checkpoint.captured_head or "-")
    table.add_row("Rebased head", checkpoint.rebased_head or "-")
    table.add_row("Test runs", str(checkpoint.test_attempts))
    table.add_row("Issue", checkpoint.issue_id or "-")
    table.add_row("Fix", checkpoint.fix_sha or "-")
    table.add_row("Updated", checkpoint.updated_at.isoformat(timespec="seconds"))
    console.print(table)


@app.command()
def clear(
    rig: str = typer.Argument(..., help="Rig name"),
    town: Path = typer.Option(Path("."), "--town", "-t", help="Town root directory"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Remove a rig's checkpoint so the queue restarts from scanning."""
    if not yes and not typer.confirm(f"Clear the checkpoint for rig {rig}?"):
        raise typer.Exit(1)
    _store(town, rig).clear()
    console.print(f"[green]✓ Checkpoint for {rig} cleared[/green]")
