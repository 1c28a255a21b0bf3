"""
Data models for the refinery.

This module provides the persisted records: locks, queue candidates,
checkpoints and audit events.
"""

from .candidate import QueueCandidate
from .checkpoint import CHECKPOINT_SCHEMA_VERSION, Checkpoint, Stage
from .event import Event, EventKind
from .lock import LockClaim, ResourceLock

__all__ = [
    "QueueCandidate",
    "CHECKPOINT_SCHEMA_VERSION",
    "Checkpoint",
    "Stage",
    "Event",
    "EventKind",
    "LockClaim",
    "ResourceLock",
]
