"""Tests for worker branch discovery."""

import pytest

from refinery.discovery import GitBranchSource, branch_owner
from refinery.git_tool import GitTool
from refinery.ledger import QueueLedger


@pytest.mark.parametrize(
    "branch,owner",
    [
        ("polecat/alice/fix-42", "alice"),
        ("crew/bob", "bob"),
        ("feature/x", None),
        ("polecat/", None),
    ],
)
def test_branch_owner(branch, owner):
    assert branch_owner(branch, ["polecat/", "crew/"]) == owner


@pytest.fixture()
def source(git_town, tmp_path, clock):
    ledger = QueueLedger(tmp_path / "ledger.json", clock=clock)
    return GitBranchSource(GitTool(git_town.refinery), "main", ["polecat/", "crew/"], ledger)


def test_candidates_in_discovery_order(git_town, source, clock):
    git_town.push_branch("polecat/zed/fix-1", {"z.txt": "z\n"})
    source.candidates()

    clock.advance(10)
    git_town.push_branch("crew/alice", {"a.txt": "a\n"})
    git_town.push_branch("feature/ignored", {"f.txt": "f\n"})

    candidates = source.candidates()

    assert [c.branch_name for c in candidates] == ["polecat/zed/fix-1", "crew/alice"]
    assert candidates[0].owner == "zed"
    assert candidates[0].base_sha == git_town.remote_head()
    assert candidates[1].discovered_at > candidates[0].discovered_at


def test_merged_branches_are_not_candidates(git_town, source):
    git_town.push_branch("polecat/alice/fix-1", {"a.txt": "a\n"})
    git_town.advance_main({"b.txt": "b\n"})
    # A branch that points into main's history is already integrated.
    git_town.push_branch("polecat/bob/old", {}, base="origin/main")

    names = [c.branch_name for c in source.candidates()]
    assert names == ["polecat/alice/fix-1"]


def test_rejected_branch_skipped_until_head_changes(git_town, source):
    head = git_town.push_branch("polecat/alice/fix-1", {"a.txt": "a\n"})
    source.ledger.record_rejection("polecat/alice/fix-1", head, "tests-failed")

    assert source.candidates() == []

    git_town.push_branch("polecat/alice/fix-1", {"a.txt": "a\n", "b.txt": "b\n"})
    assert [c.branch_name for c in source.candidates()] == ["polecat/alice/fix-1"]


def test_merged_branch_skipped_until_head_changes(git_town, source):
    head = git_town.push_branch("polecat/alice/fix-1", {"a.txt": "a\n"})
    source.ledger.record_merged("polecat/alice/fix-1", head)

    assert source.candidates() == []

    git_town.push_branch("polecat/alice/fix-1", {"a.txt": "a\n", "c.txt": "c\n"})
    assert [c.branch_name for c in source.candidates()] == ["polecat/alice/fix-1"]
