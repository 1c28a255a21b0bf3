"""Tests for the resource lock manager."""

import json
import os
import socket
import subprocess
import threading

import pytest

from refinery.errors import LockHeldError, NotOwnerError
from refinery.locks import LockManager, make_owner_id, process_alive
from refinery.models import EventKind


@pytest.fixture()
def dead_pid():
    """PID of a process that has already exited."""
    proc = subprocess.Popen(["sleep", "0"])
    proc.wait()
    return proc.pid


@pytest.fixture()
def locks_dir(tmp_path):
    return tmp_path / ".runtime" / "locks"


def test_make_owner_id_format():
    owner = make_owner_id("refinery")
    host, pid, session = owner.split(":")
    assert host == socket.gethostname()
    assert pid == str(os.getpid())
    assert session == "refinery"


def test_process_alive(dead_pid):
    assert process_alive(os.getpid())
    assert not process_alive(dead_pid)
    assert not process_alive(0)


def test_acquire_and_release(locks_dir, clock):
    manager = LockManager(locks_dir, clock=clock)

    lock = manager.acquire("rig:gastown:merge", "owner-a")

    assert lock.owner_id == "owner-a"
    assert lock.pid == os.getpid()
    assert lock.acquired_at == clock.now
    assert manager.is_held_by("rig:gastown:merge", "owner-a")

    manager.release("rig:gastown:merge", "owner-a")
    assert manager.read("rig:gastown:merge") is None
    assert manager.list_locks() == []


def test_second_owner_cannot_acquire_live_lock(locks_dir, clock):
    manager = LockManager(locks_dir, clock=clock)
    manager.acquire("rig:gastown:merge", "owner-a")

    with pytest.raises(LockHeldError) as exc_info:
        manager.acquire("rig:gastown:merge", "owner-b")

    assert exc_info.value.holder.owner_id == "owner-a"
    assert manager.is_held_by("rig:gastown:merge", "owner-a")


def test_reacquire_by_same_owner_refreshes(locks_dir, clock):
    manager = LockManager(locks_dir, clock=clock)
    first = manager.acquire("rig:gastown:merge", "owner-a")

    clock.advance(10)
    second = manager.acquire("rig:gastown:merge", "owner-a")

    assert second.acquired_at == first.acquired_at
    assert second.heartbeat_at == clock.now


def test_lock_passes_between_owners_after_release(locks_dir, clock):
    manager = LockManager(locks_dir, clock=clock)
    key = "workspace:/town/gastown/polecats/alice"

    manager.acquire(key, "owner-a")
    with pytest.raises(LockHeldError):
        manager.acquire(key, "owner-b")
    manager.release(key, "owner-a")

    manager.acquire(key, "owner-b")
    assert manager.is_held_by(key, "owner-b")
    assert not manager.is_held_by(key, "owner-a")


def test_concurrent_acquire_has_single_winner(locks_dir):
    manager = LockManager(locks_dir)
    winners = []
    losers = []
    barrier = threading.Barrier(8)

    def contend(index):
        barrier.wait()
        try:
            manager.acquire("rig:gastown:merge", f"owner-{index}")
            winners.append(index)
        except LockHeldError:
            losers.append(index)

    threads = [threading.Thread(target=contend, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(winners) == 1
    assert len(losers) == 7
    assert manager.is_held_by("rig:gastown:merge", f"owner-{winners[0]}")


def test_release_by_non_owner_raises(locks_dir, clock):
    manager = LockManager(locks_dir, clock=clock)
    manager.acquire("rig:gastown:merge", "owner-a")

    with pytest.raises(NotOwnerError) as exc_info:
        manager.release("rig:gastown:merge", "owner-b")

    assert exc_info.value.holder == "owner-a"
    assert manager.is_held_by("rig:gastown:merge", "owner-a")


def test_release_of_missing_lock_raises(locks_dir):
    manager = LockManager(locks_dir)
    with pytest.raises(NotOwnerError):
        manager.release("rig:gastown:merge", "owner-a")


def test_heartbeat_refreshes_and_detects_loss(locks_dir, clock):
    manager = LockManager(locks_dir, clock=clock)
    manager.acquire("rig:gastown:merge", "owner-a")

    clock.advance(30)
    refreshed = manager.heartbeat("rig:gastown:merge", "owner-a")
    assert refreshed.heartbeat_at == clock.now

    with pytest.raises(NotOwnerError):
        manager.heartbeat("rig:gastown:merge", "owner-b")


def test_killed_owner_reclaimable_only_after_grace(locks_dir, clock, dead_pid):
    events = []
    killed = LockManager(locks_dir, clock=clock, pid=dead_pid)
    survivor = LockManager(
        locks_dir, clock=clock, dead_owner_grace_seconds=5, event_sink=events.append
    )
    killed.acquire("rig:gastown:merge", "owner-dead")

    clock.advance(4)
    with pytest.raises(LockHeldError):
        survivor.acquire("rig:gastown:merge", "owner-b")

    clock.advance(1)
    lock = survivor.acquire("rig:gastown:merge", "owner-b")

    assert lock.owner_id == "owner-b"
    assert [e.kind for e in events] == [EventKind.LOCK_STALE_RECLAIMED]
    assert events[0].payload["previous_owner"] == "owner-dead"
    assert events[0].payload["reclaimed_by"] == "owner-b"


def test_hung_owner_reclaimable_after_ttl(locks_dir, clock):
    manager = LockManager(locks_dir, ttl_seconds=300, clock=clock)
    manager.acquire("rig:gastown:merge", "owner-hung")

    clock.advance(299)
    with pytest.raises(LockHeldError):
        manager.acquire("rig:gastown:merge", "owner-b")

    clock.advance(2)
    assert manager.acquire("rig:gastown:merge", "owner-b").owner_id == "owner-b"


def test_remote_owner_judged_by_ttl_only(locks_dir, clock, dead_pid):
    remote = LockManager(locks_dir, ttl_seconds=60, clock=clock, pid=dead_pid, hostname="other-host")
    local = LockManager(locks_dir, ttl_seconds=60, clock=clock)
    remote.acquire("rig:gastown:merge", "owner-remote")

    clock.advance(30)
    with pytest.raises(LockHeldError):
        local.acquire("rig:gastown:merge", "owner-local")

    clock.advance(31)
    assert local.acquire("rig:gastown:merge", "owner-local").owner_id == "owner-local"


def test_corrupt_lock_file_is_stale(locks_dir, clock):
    events = []
    manager = LockManager(locks_dir, clock=clock, event_sink=events.append)
    manager.acquire("rig:gastown:merge", "owner-a")
    lock_file = next(locks_dir.glob("*.json"))
    lock_file.write_text("{not json")

    lock = manager.acquire("rig:gastown:merge", "owner-b")

    assert lock.owner_id == "owner-b"
    assert events[0].payload["previous_owner"] is None


@pytest.mark.parametrize("resource_key", ["rig:gastown:merge", "workspace:/" + "deep/" * 60 + "tree"])
def test_clean_reports_key_of_corrupt_lock(locks_dir, clock, resource_key):
    manager = LockManager(locks_dir, clock=clock)
    manager.acquire(resource_key, "owner-a")
    lock_file = next(locks_dir.glob("*.json"))
    lock_file.write_text("{not json")

    assert manager.clean_stale_locks() == [resource_key]
    assert list(locks_dir.glob("*.json")) == []


def test_guard_file_shared_by_all_keys(locks_dir, clock):
    manager = LockManager(locks_dir, clock=clock)
    for rig in ("gastown", "beads", "wyvern"):
        manager.acquire(f"rig:{rig}:merge", "owner-a")
        manager.release(f"rig:{rig}:merge", "owner-a")

    assert [p.name for p in locks_dir.iterdir() if p.is_file()] == [".guard"]


def test_clean_stale_locks(locks_dir, clock, dead_pid):
    killed = LockManager(locks_dir, clock=clock, pid=dead_pid)
    manager = LockManager(locks_dir, clock=clock, dead_owner_grace_seconds=5)
    killed.acquire("rig:gastown:merge", "owner-dead")
    manager.acquire("rig:beads:merge", "owner-live")

    clock.advance(10)
    reclaimed = manager.clean_stale_locks()

    assert reclaimed == ["rig:gastown:merge"]
    assert manager.read("rig:gastown:merge") is None
    assert manager.is_held_by("rig:beads:merge", "owner-live")


def test_lock_file_contents(locks_dir, clock):
    manager = LockManager(locks_dir, clock=clock)
    manager.acquire("rig:gastown:merge", "owner-a", ttl=60)

    data = json.loads((locks_dir / "rig%3Agastown%3Amerge.json").read_text())
    assert data["owner_id"] == "owner-a"
    assert data["ttl_seconds"] == 60
    assert {"acquired_at", "heartbeat_at", "pid", "hostname"} <= set(data)


def test_detect_collisions_when_lock_bypassed(locks_dir, clock, captured_logs):
    manager = LockManager(locks_dir, clock=clock)
    manager.acquire("rig:gastown:merge", "owner-a")
    assert manager.detect_collisions() == []

    # A process that ignores the advisory lock removes it and takes over.
    (locks_dir / "rig%3Agastown%3Amerge.json").unlink()
    manager.acquire("rig:gastown:merge", "owner-b")

    assert manager.detect_collisions() == ["rig:gastown:merge"]
    assert any("collision" in message.lower() for message in captured_logs)

    # The displaced owner learns it lost the lock and drops its claim.
    with pytest.raises(NotOwnerError):
        manager.heartbeat("rig:gastown:merge", "owner-a")
    assert manager.detect_collisions() == []
