"""
Branch discovery for the merge queue.

Lists worker branches on the remote that have not been integrated into the target
branch yet and turns them into queue candidates in FIFO order.
"""

from loguru import logger

from .errors import GitCommandError
from .git_tool import GitTool
from .ledger import QueueLedger
from .models import QueueCandidate


def branch_owner(branch: str, prefixes: list[str]) -> str | None:
    """Worker name encoded in a branch such as ``polecat/alice/fix-42``."""
    for prefix in prefixes:
        if branch.startswith(prefix):
            rest = branch[len(prefix):]
            name = rest.split("/", 1)[0]
            return name or None
    return None


class GitBranchSource:
    """Candidate source backed by the remote's worker branches."""

    def __init__(
        self,
        git: GitTool,
        target_branch: str,
        prefixes: list[str],
        ledger: QueueLedger,
    ):
        self.git = git
        self.target_branch = target_branch
        self.prefixes = prefixes
        self.ledger = ledger

    def candidates(self) -> list[QueueCandidate]:
        self.git.fetch()
        target_ref = f"refs/remotes/{self.git.remote}/{self.target_branch}"
        branches = self.git.list_remote_branches()
        self.ledger.prune(set(branches))

        found: list[QueueCandidate] = []
        for branch, head in sorted(branches.items()):
            if branch == self.target_branch:
                continue
            owner = branch_owner(branch, self.prefixes)
            if owner is None:
                continue
            if self.git.contains(head, target_ref):
                continue
            if self.ledger.is_merged(branch, head):
                logger.debug(f"Skipping {branch}: already merged at {head[:8]}")
                continue
            if self.ledger.is_rejected(branch, head):
                logger.debug(f"Skipping {branch}: rejected at {head[:8]}")
                continue

            try:
                base = self.git.merge_base(head, target_ref)
            except GitCommandError as e:
                logger.warning(f"Skipping {branch}: no common history with {self.target_branch}: {e}")
                continue

            found.append(
                QueueCandidate(
                    branch_name=branch,
                    base_sha=base,
                    owner=owner,
                    discovered_at=self.ledger.first_seen(branch),
                    head_sha=head,
                )
            )

        found.sort(key=QueueCandidate.sort_key)
        return found
