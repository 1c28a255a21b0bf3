"""
File-backed notification and issue-filing sinks.

MailboxNotifier drops messages into a JSONL inbox per owner; FileIssueFiler
writes one JSON file per tracking issue. Both stand in for the town's mail
and issue services, which live outside the refinery.
"""

import json
import os
import re
import threading
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any
from urllib.parse import quote

from loguru import logger

from .constants import DEFAULT_ISSUE_PREFIX
from .utils.atomic import atomic_create_json
from .utils.timeutil import utcnow


class MailboxNotifier:
    """Appends messages to ``<mail_dir>/<owner>.jsonl``."""

    def __init__(self, mail_dir: Path, sender: str = "refinery", clock: Callable[[], datetime] = utcnow):
        self.mail_dir = Path(mail_dir)
        self.sender = sender
        self._clock = clock
        self._lock = threading.Lock()

    def inbox_path(self, owner: str) -> Path:
        return self.mail_dir / f"{quote(owner, safe='')}.jsonl"

    def notify(self, owner: str, subject: str, body: str, payload: dict[str, Any]) -> None:
        message = {
            "from": self.sender,
            "to": owner,
            "subject": subject,
            "body": body,
            "payload": payload,
            "sent_at": self._clock().isoformat(),
        }
        path = self.inbox_path(owner)
        with self._lock:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a", encoding="utf-8") as f:
                f.write(json.dumps(message, default=str) + "\n")
                f.flush()
                os.fsync(f.fileno())
        logger.info(f"Notified {owner}: {subject}")

    def messages(self, owner: str) -> list[dict[str, Any]]:
        path = self.inbox_path(owner)
        if not path.exists():
            return []
        with open(path, "r", encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]


class FileIssueFiler:
    """Writes tracking issues as ``<issues_dir>/<prefix>-<n>.json``."""

    def __init__(
        self,
        issues_dir: Path,
        prefix: str = DEFAULT_ISSUE_PREFIX,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.issues_dir = Path(issues_dir)
        self.prefix = prefix
        self._clock = clock
        self._pattern = re.compile(rf"^{re.escape(prefix)}-(\d+)\.json$")

    def _next_number(self) -> int:
        numbers = [
            int(m.group(1))
            for p in self.issues_dir.glob(f"{self.prefix}-*.json")
            if (m := self._pattern.match(p.name))
        ]
        return max(numbers, default=0) + 1

    def file_issue(self, title: str, body: str, labels: list[str]) -> str:
        self.issues_dir.mkdir(parents=True, exist_ok=True)
        while True:
            issue_id = f"{self.prefix}-{self._next_number()}"
            record = {
                "id": issue_id,
                "title": title,
                "body": body,
                "labels": labels,
                "status": "open",
                "created_at": self._clock().isoformat(),
            }
            if atomic_create_json(self.issues_dir / f"{issue_id}.json", record):
                logger.info(f"Filed issue {issue_id}: {title}")
                return issue_id

    def list_issues(self) -> list[dict[str, Any]]:
        issues = []
        for p in sorted(self.issues_dir.glob(f"{self.prefix}-*.json")):
            with open(p, "r", encoding="utf-8") as f:
                issues.append(json.load(f))
        return issues
