"""
Pytest configuration and shared fixtures.
"""

import subprocess
from collections.abc import Generator
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest
from loguru import logger


def run_git(repo: Path, *args: str) -> str:
    """Run a git command in ``repo`` and return its stdout."""
    result = subprocess.run(
        ["git", *args],
        cwd=repo,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


def configure_identity(repo: Path) -> None:
    run_git(repo, "config", "user.name", "Test User")
    run_git(repo, "config", "user.email", "test@example.com")
    run_git(repo, "config", "commit.gpgsign", "false")


def commit_file(repo: Path, relative_path: str, content: str, message: str) -> str:
    """Write a file, commit it and return the new HEAD sha."""
    target = repo / relative_path
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")
    run_git(repo, "add", "-A")
    run_git(repo, "commit", "-m", message)
    return run_git(repo, "rev-parse", "HEAD")


@dataclass
class GitTown:
    """A bare remote, a worker clone that pushes branches, and the refinery clone."""

    remote: Path
    worker: Path
    refinery: Path

    def push_branch(self, branch: str, files: dict[str, str], base: str = "origin/main") -> str:
        run_git(self.worker, "fetch", "origin")
        run_git(self.worker, "checkout", "-B", branch, base)
        head = ""
        for path, content in files.items():
            head = commit_file(self.worker, path, content, f"{branch}: update {path}")
        run_git(self.worker, "push", "-f", "origin", f"{branch}:refs/heads/{branch}")
        return head

    def advance_main(self, files: dict[str, str], message: str = "direct commit on main") -> str:
        run_git(self.worker, "fetch", "origin")
        run_git(self.worker, "checkout", "-B", "main", "origin/main")
        for path, content in files.items():
            target = self.worker / path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        run_git(self.worker, "add", "-A")
        run_git(self.worker, "commit", "-m", message)
        run_git(self.worker, "push", "origin", "main:refs/heads/main")
        return run_git(self.worker, "rev-parse", "HEAD")

    def remote_head(self, branch: str = "main") -> str:
        return run_git(self.remote, "rev-parse", f"refs/heads/{branch}")

    def remote_branches(self) -> list[str]:
        output = run_git(self.remote, "for-each-ref", "--format=%(refname:short)", "refs/heads/")
        return sorted(line for line in output.splitlines() if line)


@pytest.fixture()
def git_town(tmp_path: Path) -> GitTown:
    """Build a remote with one commit on main and two clones of it."""
    remote = tmp_path / "origin.git"
    run_git(tmp_path, "init", "--bare", "-b", "main", str(remote))

    seed = tmp_path / "seed"
    seed.mkdir()
    run_git(seed, "init", "-b", "main")
    configure_identity(seed)
    commit_file(seed, "README.md", "# Rig\n", "initial commit")
    commit_file(seed, "app/core.txt", "line one\nline two\nline three\n", "add core")
    run_git(seed, "remote", "add", "origin", str(remote))
    run_git(seed, "push", "origin", "main")

    worker = tmp_path / "worker"
    refinery = tmp_path / "refinery"
    for clone in (worker, refinery):
        run_git(tmp_path, "clone", str(remote), str(clone))
        configure_identity(clone)

    return GitTown(remote=remote, worker=worker, refinery=refinery)


class ManualClock:
    """Deterministic clock for lock and checkpoint staleness tests."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture()
def captured_logs() -> Generator[list[str], None, None]:
    """Collect loguru messages emitted during a test."""
    messages: list[str] = []
    handler_id = logger.add(lambda message: messages.append(str(message)), level="DEBUG")
    yield messages
    logger.remove(handler_id)


# Pytest configuration
def pytest_configure(config: Any) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: mark test as slow running (takes more than 5 seconds)"
    )
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "unit: mark test as unit test")


def pytest_collection_modifyitems(config: Any, items: list[Any]) -> None:
    """Modify test collection to add markers based on file location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
