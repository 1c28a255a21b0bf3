"""
CLI command tests for the refinery.
"""

import json
import re
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from refinery.checkpoint_store import CheckpointStore
from refinery.cli import checkpoint_cli, locks_cli
from refinery.cli import main as main_cli
from refinery.cli.main import app as cli_app
from refinery.config import ConfigManager, RefinerySettings
from refinery.event_log import EventLog
from refinery.locks import LockManager
from refinery.models import Checkpoint, Event, EventKind, Stage
from refinery.sinks import FileIssueFiler, MailboxNotifier
from refinery.utils.timeutil import utcnow


@pytest.fixture(autouse=True)
def wide_console(monkeypatch):
    """Keep table cells on one line regardless of the runner terminal."""
    for module in (main_cli, locks_cli, checkpoint_cli):
        monkeypatch.setattr(module.console, "width", 200)


@pytest.fixture()
def town(tmp_path):
    (tmp_path / "mayor").mkdir()
    (tmp_path / "mayor" / "rigs.json").write_text(json.dumps({
        "version": 1,
        "rigs": {"gastown": {"git_url": "https://example.com/gastown.git"}},
    }))
    return ConfigManager(RefinerySettings(town_root=tmp_path))


class TestLocksCLI:
    """Test lock inspection commands."""

    def test_list_empty(self, town):
        runner = CliRunner()
        result = runner.invoke(cli_app, ["locks", "list", "--town", str(town.town_root)])

        assert result.exit_code == 0
        assert "No locks held" in result.output

    def test_list_shows_holder(self, town):
        LockManager(town.locks_dir).acquire("rig:gastown:merge", "host:1:refinery")

        runner = CliRunner()
        result = runner.invoke(cli_app, ["locks", "list", "--town", str(town.town_root)])

        assert result.exit_code == 0
        assert "rig:gastown:merge" in result.output
        assert "live" in result.output

    def test_clean_reports_nothing_to_do(self, town):
        runner = CliRunner()
        result = runner.invoke(cli_app, ["locks", "clean", "--town", str(town.town_root)])

        assert result.exit_code == 0
        assert "No stale locks" in result.output

    def test_collisions_none(self, town):
        runner = CliRunner()
        result = runner.invoke(cli_app, ["locks", "collisions", "--town", str(town.town_root)])

        assert result.exit_code == 0
        assert "No lock collisions" in result.output

    def test_release_requires_matching_owner(self, town):
        LockManager(town.locks_dir).acquire("rig:gastown:merge", "host:1:refinery")
        runner = CliRunner()

        wrong = runner.invoke(cli_app, [
            "locks", "release", "rig:gastown:merge",
            "--owner", "someone-else",
            "--town", str(town.town_root),
        ])
        right = runner.invoke(cli_app, [
            "locks", "release", "rig:gastown:merge",
            "--owner", "host:1:refinery",
            "--town", str(town.town_root),
        ])

        assert wrong.exit_code == 1
        assert right.exit_code == 0
        assert LockManager(town.locks_dir).read("rig:gastown:merge") is None


class TestCheckpointCLI:
    """Test checkpoint commands."""

    def test_show_and_clear(self, town):
        CheckpointStore(town.checkpoint_path("gastown")).write(Checkpoint(
            rig="gastown",
            owner_id="host:1:refinery",
            queue_position="polecat/alice/x",
            stage=Stage.TESTING,
            updated_at=utcnow(),
        ))
        runner = CliRunner()

        shown = runner.invoke(cli_app, ["checkpoint", "show", "gastown", "--town", str(town.town_root)])
        assert shown.exit_code == 0
        assert "testing" in shown.output

        cleared = runner.invoke(cli_app, ["checkpoint", "clear", "gastown", "--yes", "--town", str(town.town_root)])
        assert cleared.exit_code == 0
        assert CheckpointStore(town.checkpoint_path("gastown")).read() is None

    def test_show_missing(self, town):
        runner = CliRunner()
        result = runner.invoke(cli_app, ["checkpoint", "show", "gastown", "--town", str(town.town_root)])

        assert result.exit_code == 0
        assert "No checkpoint" in result.output


class TestQueueCLI:
    """Test status, events and run commands."""

    def test_status_lists_rigs(self, town):
        runner = CliRunner()
        result = runner.invoke(cli_app, ["status", "--town", str(town.town_root)])

        assert result.exit_code == 0
        assert "gastown" in result.output
        assert "main" in result.output

    def test_status_counts_open_issues(self, town):
        filer = FileIssueFiler(town.issues_dir("gastown"), town.issue_prefix("gastown"))
        filer.file_issue("Tests failing on main", "details", ["bug"])
        runner = CliRunner()

        result = runner.invoke(cli_app, ["status", "--town", str(town.town_root)])

        assert result.exit_code == 0
        assert "Open issues" in result.output
        row = next(line for line in result.output.splitlines() if "gastown" in line)
        cells = [cell.strip() for cell in re.split(r"[│|]", row) if cell.strip()]
        assert cells[-1] == "1"

    def test_mail_shows_owner_inbox(self, town):
        MailboxNotifier(town.mail_dir).notify(
            "alice", "Merge of polecat/alice/x rejected: tests-failed", "body", {}
        )
        runner = CliRunner()

        shown = runner.invoke(cli_app, ["mail", "alice", "--town", str(town.town_root)])
        empty = runner.invoke(cli_app, ["mail", "bob", "--town", str(town.town_root)])

        assert shown.exit_code == 0
        assert "tests-failed" in shown.output
        assert "No messages for bob" in empty.output

    def test_events_filtered_by_kind(self, town):
        log = EventLog(town.events_path("gastown"))
        log.log(Event(kind=EventKind.BRANCH_MERGED, rig="gastown", payload={"branch": "a"}))
        log.log(Event(kind=EventKind.BRANCH_REJECTED, rig="gastown", payload={"branch": "b"}))
        runner = CliRunner()

        result = runner.invoke(cli_app, [
            "events", "gastown", "--kind", "branch-rejected", "--town", str(town.town_root),
        ])

        assert result.exit_code == 0
        assert "branch-rejected" in result.output
        assert "branch-merged" not in result.output

    def test_run_exits_with_daemon_code(self, town):
        runner = CliRunner()
        with patch("refinery.cli.main.configure_logging"), \
                patch("refinery.cli.main.RefineryDaemon") as daemon_cls:
            daemon_cls.return_value.run.return_value = 0
            result = runner.invoke(cli_app, ["run", "--town", str(town.town_root), "--rig", "gastown"])

        assert result.exit_code == 0
        settings = daemon_cls.call_args.args[0]
        assert settings.town_root == town.town_root
        assert daemon_cls.call_args.kwargs["rigs"] == ["gastown"]
