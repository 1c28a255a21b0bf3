"""
Checkpoint model for the refinery.

This module provides the resumable snapshot of in-flight merge queue work.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from .candidate import QueueCandidate

CHECKPOINT_SCHEMA_VERSION = 1


class Stage(str, Enum):
    """Processing stage recorded in a checkpoint."""

    IDLE = "idle"
    REBASING = "rebasing"
    TESTING = "testing"
    RESOLVING_FAILURE = "resolving-failure"
    MERGING = "merging"
    DONE = "done"


class Checkpoint(BaseModel):
    """Snapshot written before every stage that mutates the repository."""

    schema_version: int = CHECKPOINT_SCHEMA_VERSION
    rig: str
    owner_id: str
    queue_position: str | None = None
    candidate: QueueCandidate | None = None
    stage: Stage = Stage.IDLE
    captured_head: str | None = None
    rebased_head: str | None = None
    test_attempts: int = Field(default=0, ge=0)
    issue_id: str | None = None
    fix_sha: str | None = None
    push_attempts: int = Field(default=0, ge=0)
    updated_at: datetime

    @property
    def in_flight(self) -> bool:
        return self.stage not in (Stage.IDLE, Stage.DONE)
