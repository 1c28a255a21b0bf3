"""
Event model for the refinery audit trail.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from ..utils.timeutil import utcnow


class EventKind(str, Enum):
    """Lock and queue state transitions recorded in the event log."""

    LOCK_ACQUIRED = "lock-acquired"
    LOCK_RELEASED = "lock-released"
    LOCK_STALE_RECLAIMED = "lock-stale-reclaimed"
    LOCK_CONTENDED = "lock-contended"
    CHECKPOINT_RESUMED = "checkpoint-resumed"
    CHECKPOINT_DISCARDED = "checkpoint-discarded"
    BRANCH_DISCOVERED = "branch-discovered"
    BRANCH_REBASED = "branch-rebased"
    REBASE_CONFLICT = "rebase-conflict"
    TESTS_PASSED = "tests-passed"
    TESTS_FAILED = "tests-failed"
    TESTS_RETRIED = "tests-retried"
    FAILURE_CLASSIFIED = "failure-classified"
    FIX_APPLIED = "fix-applied"
    BUG_FILED = "bug-filed"
    GATE_BLOCKED = "gate-blocked"
    PUSH_REJECTED = "push-rejected"
    BRANCH_MERGED = "branch-merged"
    BRANCH_REJECTED = "branch-rejected"
    BRANCH_DELETED = "branch-deleted"
    MANUAL_INTERVENTION = "manual-intervention"
    STAGE_TIMEOUT = "stage-timeout"
    ENGINE_STARTED = "engine-started"
    ENGINE_STOPPED = "engine-stopped"


class Event(BaseModel):
    """One append-only audit record."""

    timestamp: datetime = Field(default_factory=utcnow)
    kind: EventKind
    rig: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
