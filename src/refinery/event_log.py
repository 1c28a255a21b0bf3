"""
Append-only audit log of lock and queue transitions.

One JSON object per line. Appends from multiple threads of one process are
serialized by a single writer lock; only the refinery process for a rig
writes its log.
"""

import json
import os
import threading
from pathlib import Path

from loguru import logger

from .errors import EventLogError
from .models import Event, EventKind


class EventLog:
    """JSONL event sink with a single writer lock."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def log(self, event: Event) -> None:
        """Append ``event``. Write errors raise EventLogError."""
        line = event.model_dump_json() + "\n"
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(line)
                    f.flush()
                    os.fsync(f.fileno())
            except OSError as e:
                raise EventLogError(f"Cannot append to {self.path}: {e}") from e

    def read(self, kind: EventKind | None = None) -> list[Event]:
        """Return logged events in append order, optionally of one kind."""
        if not self.path.exists():
            return []

        events: list[Event] = []
        with self._lock, open(self.path, "r", encoding="utf-8") as f:
            for number, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    event = Event.model_validate(json.loads(line))
                except ValueError as e:
                    logger.warning(f"Skipping malformed event at {self.path}:{number}: {e}")
                    continue
                if kind is None or event.kind == kind:
                    events.append(event)
        return events

    def tail(self, count: int) -> list[Event]:
        if count <= 0:
            return []
        return self.read()[-count:]
