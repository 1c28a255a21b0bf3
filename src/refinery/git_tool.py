"""
Git integration tool for the refinery.

This module runs the git primitives the merge queue needs (fetch, rebase,
fast-forward, push, branch cleanup) inside the refinery's own clone. Every
command runs under an explicit timeout.
"""

import logging
import os
import shlex
import subprocess
import time
from pathlib import Path
from typing import Any

from .constants import DEFAULT_REMOTE
from .errors import (
    GitCommandError,
    PushRejectedError,
    RebaseConflictError,
    StageTimeoutError,
)
from .interfaces import SuiteResult

_PUSH_REJECTION_MARKERS = ("[rejected]", "non-fast-forward", "fetch first", "stale info")


class GitOperationResult:
    """Result of a Git operation."""

    def __init__(self, success: bool, output: str = "", error: str = "", data: dict[str, Any] | None = None):
        self.success = success
        self.output = output
        self.error = error
        self.data = data or {}

    @property
    def timed_out(self) -> bool:
        return bool(self.data.get("timeout"))


class GitTool:
    """Git operations for the refinery clone of one rig."""

    def __init__(
        self,
        repo_path: Path,
        remote: str = DEFAULT_REMOTE,
        fetch_timeout: float = 120.0,
        rebase_timeout: float = 300.0,
        test_timeout: float = 1800.0,
        push_timeout: float = 120.0,
    ):
        self.repo_path = Path(repo_path)
        self.remote = remote
        self.fetch_timeout = fetch_timeout
        self.rebase_timeout = rebase_timeout
        self.test_timeout = test_timeout
        self.push_timeout = push_timeout
        self.logger = logging.getLogger(__name__)

    def _run_git_command(
        self,
        command: list[str],
        timeout: float | None = None,
        env: dict[str, str] | None = None,
    ) -> GitOperationResult:
        """Run a Git command and return the result."""
        run_env = None
        if env:
            run_env = {**os.environ, **env}
        try:
            result = subprocess.run(
                ["git"] + command,
                cwd=self.repo_path,
                capture_output=True,
                text=True,
                check=False,
                env=run_env,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            return GitOperationResult(
                success=False,
                error=f"git {' '.join(command)} timed out after {timeout}s",
                data={"timeout": True},
            )
        except OSError as e:
            return GitOperationResult(
                success=False,
                error=str(e),
                data={"exception": str(e)},
            )

        return GitOperationResult(
            success=result.returncode == 0,
            output=result.stdout.strip(),
            error=result.stderr.strip(),
            data={"returncode": result.returncode},
        )

    def _require(self, command: list[str], timeout: float | None = None, stage: str | None = None) -> str:
        """Run a command that must succeed and return its stdout."""
        result = self._run_git_command(command, timeout=timeout)
        if result.timed_out:
            raise StageTimeoutError(stage or command[0], timeout or 0.0)
        if not result.success:
            raise GitCommandError(command, result.data.get("returncode"), result.error)
        return result.output

    def _remote_ref(self, branch: str) -> str:
        return f"refs/remotes/{self.remote}/{branch}"

    def is_git_repo(self) -> bool:
        """Check if the repository path is a Git repository."""
        return self._run_git_command(["rev-parse", "--git-dir"]).success

    def rev_parse(self, ref: str) -> str:
        return self._require(["rev-parse", "--verify", f"{ref}^{{commit}}"])

    def fetch(self) -> None:
        """Fetch and prune the remote so every decision sees its current state."""
        self._require(["fetch", "--prune", self.remote], timeout=self.fetch_timeout, stage="fetch")

    def remote_head(self, branch: str) -> str:
        """SHA of ``branch`` on the remote as of the last fetch."""
        return self.rev_parse(self._remote_ref(branch))

    def list_remote_branches(self) -> dict[str, str]:
        """Map of remote branch name to tip SHA, as of the last fetch."""
        output = self._require([
            "for-each-ref",
            "--format=%(refname)|%(objectname)",
            f"refs/remotes/{self.remote}/",
        ])
        prefix = f"refs/remotes/{self.remote}/"
        branches = {}
        for line in output.splitlines():
            if "|" not in line:
                continue
            refname, sha = line.split("|", 1)
            name = refname[len(prefix):]
            if name and name != "HEAD":
                branches[name] = sha
        return branches

    def merge_base(self, a: str, b: str) -> str:
        return self._require(["merge-base", a, b])

    def contains(self, ancestor: str, ref: str) -> bool:
        """True if ``ancestor`` is reachable from ``ref``."""
        command = ["merge-base", "--is-ancestor", ancestor, ref]
        result = self._run_git_command(command)
        returncode = result.data.get("returncode")
        if returncode == 0:
            return True
        if returncode == 1:
            return False
        raise GitCommandError(command, returncode, result.error)

    def conflicted_files(self) -> list[str]:
        result = self._run_git_command(["diff", "--name-only", "--diff-filter=U"])
        if not result.success:
            return []
        return [line for line in result.output.splitlines() if line.strip()]

    def abort_in_progress(self) -> None:
        """Abort a rebase or merge left behind by an interrupted run."""
        for marker in ("rebase-merge", "rebase-apply"):
            marker_path = self._require(["rev-parse", "--git-path", marker])
            if (self.repo_path / marker_path).exists():
                self.logger.warning("Aborting rebase left in progress")
                self._run_git_command(["rebase", "--abort"])
                break

        merge_head = self._require(["rev-parse", "--git-path", "MERGE_HEAD"])
        if (self.repo_path / merge_head).exists():
            self.logger.warning("Aborting merge left in progress")
            self._run_git_command(["merge", "--abort"])

    def rebase(self, branch: str, onto: str, strategy_option: str | None = None) -> str:
        """
        Rebase the remote ``branch`` onto the current remote tip of ``onto``.

        Always starts from the remote branch, so repeating it is safe.
        Returns the rebased head SHA.
        """
        self.abort_in_progress()
        self._require(["checkout", "-f", "-B", branch, self._remote_ref(branch)])

        command = ["rebase"]
        if strategy_option:
            command.extend(["-X", strategy_option])
        command.append(self._remote_ref(onto))

        result = self._run_git_command(command, timeout=self.rebase_timeout)
        if result.timed_out:
            self._run_git_command(["rebase", "--abort"])
            raise StageTimeoutError("rebasing", self.rebase_timeout)
        if not result.success:
            files = self.conflicted_files()
            self._run_git_command(["rebase", "--abort"])
            if files or "conflict" in (result.output + result.error).lower():
                raise RebaseConflictError(branch, onto, files)
            raise GitCommandError(command, result.data.get("returncode"), result.error)

        head = self.rev_parse("HEAD")
        self.logger.info(f"Rebased {branch} onto {self.remote}/{onto}: {head[:8]}")
        return head

    def run_tests(self, command: str, ref: str) -> SuiteResult:
        """Check out ``ref`` and run the test command against it."""
        self._require(["checkout", "-f", "--detach", ref])

        started = time.monotonic()
        try:
            result = subprocess.run(
                shlex.split(command),
                cwd=self.repo_path,
                capture_output=True,
                text=True,
                check=False,
                timeout=self.test_timeout,
            )
        except subprocess.TimeoutExpired:
            raise StageTimeoutError("testing", self.test_timeout)
        except OSError as e:
            return SuiteResult(
                passed=False,
                returncode=None,
                output=str(e),
                duration_seconds=time.monotonic() - started,
                ref=ref,
            )

        return SuiteResult(
            passed=result.returncode == 0,
            returncode=result.returncode,
            output=(result.stdout + result.stderr)[-8000:],
            duration_seconds=time.monotonic() - started,
            ref=ref,
        )

    def fast_forward(self, target: str, sha: str) -> str:
        """Point the local ``target`` at its remote tip, then fast-forward it to ``sha``."""
        self._require(["checkout", "-f", "-B", target, self._remote_ref(target)])
        self._require(["merge", "--ff-only", sha])
        return self.rev_parse("HEAD")

    def push(self, target: str) -> None:
        """Push the local ``target`` to the remote. Raises PushRejectedError if refused."""
        command = ["push", "--porcelain", self.remote, f"{target}:refs/heads/{target}"]
        result = self._run_git_command(command, timeout=self.push_timeout)
        if result.timed_out:
            raise StageTimeoutError("pushing", self.push_timeout)
        if not result.success:
            combined = f"{result.output}\n{result.error}"
            if any(marker in combined for marker in _PUSH_REJECTION_MARKERS):
                raise PushRejectedError(target, combined)
            raise GitCommandError(command, result.data.get("returncode"), result.error)
        self.logger.info(f"Pushed {target} to {self.remote}")

    def reset_to_remote(self, branch: str) -> None:
        """Discard local commits on ``branch`` that the remote does not have."""
        self._require(["checkout", "-f", "-B", branch, self._remote_ref(branch)])

    def delete_branch(self, branch: str) -> None:
        """Delete a merged branch on the remote and locally."""
        self._require(
            ["push", self.remote, "--delete", branch],
            timeout=self.push_timeout,
            stage="pushing",
        )
        self._run_git_command(["branch", "-D", branch])
        self.logger.info(f"Deleted merged branch {branch}")
