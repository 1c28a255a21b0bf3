"""
Queue ledger for one rig.

Remembers when each worker branch was first seen (which fixes its FIFO
position across restarts), and at which head each branch was merged or
rejected, so neither is picked up again until its owner pushes new commits.
"""

import threading
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field

from .utils.atomic import atomic_write_json, read_json_file
from .utils.timeutil import utcnow


class Rejection(BaseModel):
    """A branch the queue gave back to its owner."""

    head_sha: str | None = None
    reason: str
    detail: dict[str, Any] = Field(default_factory=dict)
    rejected_at: datetime


class LedgerState(BaseModel):
    first_seen: dict[str, datetime] = Field(default_factory=dict)
    rejections: dict[str, Rejection] = Field(default_factory=dict)
    merged: dict[str, str | None] = Field(default_factory=dict)


class QueueLedger:
    """Persistent discovery order and rejection memory."""

    def __init__(self, path: Path, clock: Callable[[], datetime] = utcnow):
        self.path = Path(path)
        self._clock = clock
        self._lock = threading.Lock()
        self._state = self._load()

    def _load(self) -> LedgerState:
        try:
            return LedgerState.model_validate(read_json_file(self.path))
        except FileNotFoundError:
            return LedgerState()
        except ValueError as e:
            logger.error(f"Ledger {self.path} is unreadable, starting empty: {e}")
            return LedgerState()

    def _save(self) -> None:
        atomic_write_json(self.path, self._state.model_dump(mode="json"))

    def first_seen(self, branch: str) -> datetime:
        """Discovery time of ``branch``, recording now if it is new."""
        with self._lock:
            seen = self._state.first_seen.get(branch)
            if seen is None:
                seen = self._clock()
                self._state.first_seen[branch] = seen
                self._save()
            return seen

    def is_rejected(self, branch: str, head_sha: str | None) -> bool:
        """True if ``branch`` was rejected and has not moved since."""
        rejection = self._state.rejections.get(branch)
        return rejection is not None and rejection.head_sha == head_sha

    def rejection(self, branch: str) -> Rejection | None:
        return self._state.rejections.get(branch)

    def record_rejection(
        self,
        branch: str,
        head_sha: str | None,
        reason: str,
        detail: dict[str, Any] | None = None,
    ) -> None:
        with self._lock:
            self._state.rejections[branch] = Rejection(
                head_sha=head_sha,
                reason=reason,
                detail=detail or {},
                rejected_at=self._clock(),
            )
            self._save()

    def record_merged(self, branch: str, head_sha: str | None) -> None:
        """Mark ``branch`` consumed at ``head_sha``; new commits requeue it."""
        with self._lock:
            self._state.merged[branch] = head_sha
            self._state.first_seen.pop(branch, None)
            self._state.rejections.pop(branch, None)
            self._save()

    def is_merged(self, branch: str, head_sha: str | None) -> bool:
        """True if ``branch`` was merged and has not moved since."""
        return branch in self._state.merged and self._state.merged[branch] == head_sha

    def prune(self, live_branches: set[str]) -> None:
        """Forget branches that no longer exist on the remote."""
        with self._lock:
            gone = [
                b for b in set(self._state.first_seen) | set(self._state.rejections) | set(self._state.merged)
                if b not in live_branches
            ]
            for branch in gone:
                self._state.first_seen.pop(branch, None)
                self._state.rejections.pop(branch, None)
                self._state.merged.pop(branch, None)
            if gone:
                self._save()

    def rejections(self) -> dict[str, Rejection]:
        return dict(self._state.rejections)
