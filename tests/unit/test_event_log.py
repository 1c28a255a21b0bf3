"""Tests for the append-only event log."""

import json
import threading

import pytest

from refinery.errors import EventLogError
from refinery.event_log import EventLog
from refinery.models import Event, EventKind


def test_log_creates_file_and_appends(tmp_path):
    log = EventLog(tmp_path / "state" / "events.jsonl")

    log.log(Event(kind=EventKind.LOCK_ACQUIRED, rig="gastown", payload={"owner_id": "a"}))
    log.log(Event(kind=EventKind.LOCK_RELEASED, rig="gastown", payload={"owner_id": "a"}))

    lines = log.path.read_text().splitlines()
    assert len(lines) == 2
    assert json.loads(lines[0])["kind"] == "lock-acquired"
    assert [e.kind for e in log.read()] == [EventKind.LOCK_ACQUIRED, EventKind.LOCK_RELEASED]


def test_concurrent_writers_produce_whole_lines(tmp_path):
    log = EventLog(tmp_path / "events.jsonl")

    def writer(index):
        for n in range(50):
            log.log(Event(kind=EventKind.TESTS_RETRIED, payload={"writer": index, "n": n}))

    threads = [threading.Thread(target=writer, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    events = log.read()
    assert len(events) == 400
    for index in range(8):
        ns = [e.payload["n"] for e in events if e.payload["writer"] == index]
        assert ns == list(range(50))


def test_read_filters_by_kind(tmp_path):
    log = EventLog(tmp_path / "events.jsonl")
    log.log(Event(kind=EventKind.BRANCH_MERGED, payload={"branch": "polecat/a"}))
    log.log(Event(kind=EventKind.BRANCH_REJECTED, payload={"branch": "polecat/b"}))

    merged = log.read(EventKind.BRANCH_MERGED)
    assert [e.payload["branch"] for e in merged] == ["polecat/a"]


def test_malformed_lines_are_skipped(tmp_path):
    log = EventLog(tmp_path / "events.jsonl")
    log.log(Event(kind=EventKind.ENGINE_STARTED))
    with open(log.path, "a") as f:
        f.write("{truncated\n")
    log.log(Event(kind=EventKind.ENGINE_STOPPED))

    assert [e.kind for e in log.read()] == [EventKind.ENGINE_STARTED, EventKind.ENGINE_STOPPED]


def test_tail(tmp_path):
    log = EventLog(tmp_path / "events.jsonl")
    for n in range(5):
        log.log(Event(kind=EventKind.TESTS_PASSED, payload={"n": n}))

    assert [e.payload["n"] for e in log.tail(2)] == [3, 4]
    assert log.tail(0) == []


def test_read_missing_log(tmp_path):
    assert EventLog(tmp_path / "missing.jsonl").read() == []


def test_write_failure_raises_event_log_error(tmp_path):
    path = tmp_path / "events.jsonl"
    path.mkdir()

    with pytest.raises(EventLogError):
        EventLog(path).log(Event(kind=EventKind.ENGINE_STARTED))
