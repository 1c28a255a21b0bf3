"""
Collaborator interfaces consumed by the merge queue engine.

The engine talks to git, branch discovery, owner notification and issue
filing only through these protocols; default implementations live in
``git_tool``, ``discovery`` and ``sinks``.
"""

import threading
from dataclasses import dataclass, field
from typing import Any, Protocol

from .models import QueueCandidate


@dataclass
class SuiteResult:
    """Outcome of one run of the configured test command."""

    passed: bool
    returncode: int | None
    output: str = ""
    duration_seconds: float = 0.0
    ref: str | None = None


@dataclass
class FailureReport:
    """What the verification gate knows about a failing candidate."""

    rig: str
    candidate: QueueCandidate
    target_branch: str
    target_sha: str
    rebased_head: str
    runs: list[SuiteResult] = field(default_factory=list)


class CancelToken:
    """Cooperative cancellation shared by the engine loop and its waits."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; returns True if cancelled."""
        return self._event.wait(timeout)


class CandidateSource(Protocol):
    """Yields branches ready for integration."""

    def candidates(self) -> list[QueueCandidate]: ...


class GitProvider(Protocol):
    """Git primitives the engine needs, each bounded by a timeout."""

    def is_git_repo(self) -> bool: ...

    def fetch(self) -> None: ...

    def remote_head(self, branch: str) -> str: ...

    def rebase(self, branch: str, onto: str, strategy_option: str | None = None) -> str: ...

    def run_tests(self, command: str, ref: str) -> SuiteResult: ...

    def fast_forward(self, target: str, sha: str) -> str: ...

    def push(self, target: str) -> None: ...

    def reset_to_remote(self, branch: str) -> None: ...

    def contains(self, ancestor: str, ref: str) -> bool: ...

    def delete_branch(self, branch: str) -> None: ...

    def abort_in_progress(self) -> None: ...


class Notifier(Protocol):
    """Delivers a message to a branch owner."""

    def notify(self, owner: str, subject: str, body: str, payload: dict[str, Any]) -> None: ...


class IssueFiler(Protocol):
    """Files a tracking issue and returns its id."""

    def file_issue(self, title: str, body: str, labels: list[str]) -> str: ...


class FailureFixer(Protocol):
    """Optionally applies a fix for a failure that already exists on the target."""

    def attempt_fix(self, report: FailureReport) -> str | None:
        """Return the new head SHA of the candidate branch, or None."""
        ...
