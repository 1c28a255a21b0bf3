"""
Lock models for the refinery.

This module provides the ResourceLock record stored in lock files and the
LockClaim record each owner keeps for collision detection.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class ResourceLock(BaseModel):
    """Advisory lock on a named resource (a rig's merge slot, a workspace)."""

    resource_key: str = Field(..., min_length=1)
    owner_id: str = Field(..., min_length=1)
    pid: int
    hostname: str
    acquired_at: datetime
    heartbeat_at: datetime
    ttl_seconds: float = Field(..., gt=0)

    def heartbeat_age(self, now: datetime) -> float:
        """Seconds since the owner last refreshed the lock."""
        return (now - self.heartbeat_at).total_seconds()


class LockClaim(BaseModel):
    """An owner's own belief that it holds a resource."""

    resource_key: str
    owner_id: str
    pid: int
    hostname: str
    heartbeat_at: datetime
