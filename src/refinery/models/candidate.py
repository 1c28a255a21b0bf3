"""
Queue candidate model for the refinery.

A candidate is a worker branch that is ready to be integrated into the
rig's target branch.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class QueueCandidate(BaseModel):
    """Worker branch waiting in the merge queue."""

    branch_name: str = Field(..., min_length=1)
    base_sha: str
    owner: str
    discovered_at: datetime
    head_sha: str | None = None

    def sort_key(self) -> tuple[datetime, str]:
        """FIFO ordering: oldest discovery first, branch name breaks ties."""
        return (self.discovered_at, self.branch_name)
