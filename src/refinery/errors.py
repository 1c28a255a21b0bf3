"""
Error taxonomy for the refinery.

Candidate-local errors (conflicts, test failures, push rejections, stage
timeouts) are absorbed by the merge queue engine and turned into a
reject/retry decision. Infrastructure errors (lock or checkpoint writes,
corrupt configuration) halt the engine.
"""

from typing import Any


class RefineryError(Exception):
    """Base class for all refinery errors."""


class LockHeldError(RefineryError):
    """The resource is held by another live owner. Retryable."""

    def __init__(self, resource_key: str, holder: Any = None):
        self.resource_key = resource_key
        self.holder = holder
        owner = getattr(holder, "owner_id", None) or "unknown"
        super().__init__(f"Lock {resource_key} is held by {owner}")


class NotOwnerError(RefineryError):
    """The caller does not hold the lock it tried to mutate."""

    def __init__(self, resource_key: str, owner_id: str, holder: str | None = None):
        self.resource_key = resource_key
        self.owner_id = owner_id
        self.holder = holder
        super().__init__(
            f"{owner_id} does not own lock {resource_key} (holder: {holder or 'none'})"
        )


class LockWriteError(RefineryError):
    """A lock file could not be written or removed."""


class CheckpointCorruptError(RefineryError):
    """A persisted checkpoint could not be parsed. Never trusted partially."""


class CheckpointWriteError(RefineryError):
    """A checkpoint could not be durably written."""


class EventLogError(RefineryError):
    """An audit event could not be appended."""


class ConfigError(RefineryError):
    """Configuration is missing or invalid."""


class GitCommandError(RefineryError):
    """A git command failed for a reason the queue cannot classify."""

    def __init__(self, command: list[str], returncode: int | None, stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(
            f"git {' '.join(command)} failed ({returncode}): {stderr.strip()}"
        )


class RebaseConflictError(RefineryError):
    """Rebasing a candidate onto the target produced conflicts."""

    def __init__(self, branch: str, onto: str, files: list[str] | None = None):
        self.branch = branch
        self.onto = onto
        self.files = files or []
        detail = ", ".join(self.files) if self.files else "unknown files"
        super().__init__(f"Rebase of {branch} onto {onto} conflicts in {detail}")


class TestFailureError(RefineryError):
    """The configured test command failed."""

    __test__ = False

    def __init__(self, command: str, returncode: int | None, output: str = ""):
        self.command = command
        self.returncode = returncode
        self.output = output
        super().__init__(f"Test command {command!r} exited with {returncode}")


class PushRejectedError(RefineryError):
    """The remote refused the push, usually because the target moved."""

    def __init__(self, branch: str, stderr: str = ""):
        self.branch = branch
        self.stderr = stderr
        super().__init__(f"Push of {branch} rejected: {stderr.strip()}")


class StageTimeoutError(RefineryError):
    """A git or test stage exceeded its timeout."""

    def __init__(self, stage: str, timeout: float):
        self.stage = stage
        self.timeout = timeout
        super().__init__(f"Stage {stage} timed out after {timeout:g}s")
