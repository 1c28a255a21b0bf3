from pathlib import Path
from typing import Optional, List

import typer
from rich.console import Console
from rich.table import Table

from ..checkpoint_store import CheckpointStore
from ..config import ConfigManager, RefinerySettings
from ..daemon import RefineryDaemon
from ..errors import ConfigError
from ..event_log import EventLog
from ..ledger import QueueLedger
from ..models import EventKind
from ..sinks import FileIssueFiler, MailboxNotifier
from ..utils.log_setup import configure_logging
from .checkpoint_cli import app as checkpoint_app
from .locks_cli import app as locks_app

app = typer.Typer(help="Refinery merge queue for a town of agents")
app.add_typer(locks_app, name="locks")
app.add_typer(checkpoint_app, name="checkpoint")
console = Console()


@app.command()
def run(
    town: Path = typer.Option(Path("."), "--town", "-t", help="Town root directory"),
    rig: Optional[List[str]] = typer.Option(None, "--rig", "-r", help="Only serve these rigs"),
    session: Optional[str] = typer.Option(None, "--session", help="Session part of the owner id"),
):
    """Run the merge queue until interrupted."""
    overrides = {"town_root": town}
    if session:
        overrides["session_id"] = session
    try:
        settings = RefinerySettings(**overrides)
    except ValueError as e:
        console.print(f"[red]Invalid settings: {e}[/red]")
        raise typer.Exit(1)

    configure_logging(settings.logging.level, settings.logging.dir)
    try:
        code = RefineryDaemon(settings, rigs=rig or None).run()
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    raise typer.Exit(code)


@app.command()
def status(
    town: Path = typer.Option(Path("."), "--town", "-t", help="Town root directory"),
):
    """Show queue settings, checkpoints and rejected branches per rig."""
    config_manager = ConfigManager(RefinerySettings(town_root=town))
    try:
        rigs = config_manager.rig_names()
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    if not rigs:
        console.print("[yellow]No rigs registered[/yellow]")
        return

    table = Table(title="Merge Queues")
    table.add_column("Rig", style="cyan")
    table.add_column("Enabled", style="white")
    table.add_column("Target", style="white")
    table.add_column("In flight", style="white")
    table.add_column("Stage", style="white")
    table.add_column("Rejected", style="white")
    table.add_column("Open issues", style="white")

    for name in rigs:
        try:
            queue = config_manager.load_rig_settings(name).merge_queue
        except ConfigError as e:
            table.add_row(name, "[red]invalid settings[/red]", "-", "-", "-", str(e)[:40], "-")
            continue
        checkpoint = CheckpointStore(config_manager.checkpoint_path(name)).read()
        rejected = QueueLedger(config_manager.ledger_path(name)).rejections()
        issues = FileIssueFiler(config_manager.issues_dir(name), config_manager.issue_prefix(name))
        open_issues = [i for i in issues.list_issues() if i.get("status") == "open"]
        table.add_row(
            name,
            "[green]yes[/green]" if queue.enabled else "[yellow]no[/yellow]",
            queue.target_branch,
            checkpoint.queue_position if checkpoint and checkpoint.queue_position else "-",
            checkpoint.stage.value if checkpoint else "idle",
            str(len(rejected)),
            str(len(open_issues)),
        )
    console.print(table)


@app.command()
def events(
    rig: str = typer.Argument(..., help="Rig name"),
    town: Path = typer.Option(Path("."), "--town", "-t", help="Town root directory"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of events to show"),
    kind: Optional[EventKind] = typer.Option(None, "--kind", "-k", help="Only events of this kind"),
):
    """Show the most recent merge queue events for a rig."""
    config_manager = ConfigManager(RefinerySettings(town_root=town))
    log = EventLog(config_manager.events_path(rig))
    entries = log.read(kind)[-limit:] if kind else log.tail(limit)

    if not entries:
        console.print(f"[yellow]No events for rig {rig}[/yellow]")
        return

    table = Table(title=f"Events: {rig}")
    table.add_column("Time", style="cyan")
    table.add_column("Kind", style="magenta")
    table.add_column("Details", style="white")
    for event in entries:
        details = ", ".join(f"{k}={v}" for k, v in event.payload.items() if v is not None)
        table.add_row(event.timestamp.isoformat(timespec="seconds"), event.kind.value, details)
    console.print(table)


@app.command()
def mail(
    owner: str = typer.Argument(..., help="Worker name, e.g. alice"),
    town: Path = typer.Option(Path("."), "--town", "-t", help="Town root directory"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of messages to show"),
):
    """Show the refinery's messages to a worker."""
    config_manager = ConfigManager(RefinerySettings(town_root=town))
    messages = MailboxNotifier(config_manager.mail_dir).messages(owner)[-limit:]

    if not messages:
        console.print(f"[yellow]No messages for {owner}[/yellow]")
        return

    table = Table(title=f"Mail: {owner}")
    table.add_column("Sent", style="cyan")
    table.add_column("From", style="white")
    table.add_column("Subject", style="white")
    for message in messages:
        table.add_row(message["sent_at"], message["from"], message["subject"])
    console.print(table)


def main():
    app()


if __name__ == "__main__":
    main()
