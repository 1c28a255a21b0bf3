"""
Resource lock manager.

Advisory, file-backed locks on named resources (``rig:<name>:merge``,
``workspace:<path>``). Each key has one JSON lock file holding the owner
identity and liveness metadata. Mutations are serialized across processes
with ``flock`` on a single guard file in the lock directory; lock files are
only ever created with ``os.link`` and replaced with ``os.replace``.

Every owner also keeps a claim record per key it believes it holds. Two live
claims on one key means two processes both think they own it, which
``detect_collisions`` reports.
"""

import fcntl
import hashlib
import os
import socket
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from urllib.parse import quote, unquote

from loguru import logger

from .errors import EventLogError, LockHeldError, LockWriteError, NotOwnerError
from .models import Event, EventKind, LockClaim, ResourceLock
from .utils.atomic import atomic_create_json, atomic_write_json, read_json_file
from .utils.timeutil import utcnow

DEFAULT_TTL_SECONDS = 300.0
DEFAULT_DEAD_OWNER_GRACE_SECONDS = 5.0

_MAX_STEM_LENGTH = 180
# quote() never emits "%%"; it marks hashed stems.
_HASH_SEPARATOR = "%%"
_CLAIMS_DIR = "claims"
_GUARD_FILE = ".guard"

EventSink = Callable[[Event], None]


def make_owner_id(session_id: str | None = None) -> str:
    """Owner identity for this process: ``<hostname>:<pid>:<session>``."""
    session = session_id or uuid.uuid4().hex[:8]
    return f"{socket.gethostname()}:{os.getpid()}:{session}"


def process_alive(pid: int) -> bool:
    """Check whether a process with ``pid`` is running on this host."""
    if pid <= 0:
        return False
    if pid == os.getpid():
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def _file_stem(resource_key: str) -> str:
    stem = quote(resource_key, safe="")
    if len(stem) > _MAX_STEM_LENGTH:
        digest = hashlib.sha256(resource_key.encode("utf-8")).hexdigest()[:16]
        stem = f"{stem[:_MAX_STEM_LENGTH - 18]}{_HASH_SEPARATOR}{digest}"
    return stem


class LockManager:
    """Acquire, refresh, release and reap advisory resource locks."""

    def __init__(
        self,
        locks_dir: Path,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        dead_owner_grace_seconds: float = DEFAULT_DEAD_OWNER_GRACE_SECONDS,
        clock: Callable[[], datetime] = utcnow,
        event_sink: EventSink | None = None,
        pid: int | None = None,
        hostname: str | None = None,
    ):
        """
        Args:
            locks_dir: Directory holding lock files, the guard file and claims
            ttl_seconds: Default heartbeat staleness threshold
            dead_owner_grace_seconds: Minimum heartbeat age before a lock whose
                owner process is gone may be reclaimed
            clock: Source of aware UTC timestamps
            event_sink: Receives lock-stale-reclaimed events
            pid: Process id recorded in locks taken by this manager
            hostname: Host name recorded in locks taken by this manager
        """
        self.locks_dir = Path(locks_dir)
        self.claims_dir = self.locks_dir / _CLAIMS_DIR
        self.ttl_seconds = ttl_seconds
        self.dead_owner_grace_seconds = dead_owner_grace_seconds
        self.event_sink = event_sink
        self.pid = pid if pid is not None else os.getpid()
        self.hostname = hostname or socket.gethostname()
        self._clock = clock
        self._ensure_dirs()

    def _ensure_dirs(self) -> None:
        try:
            self.locks_dir.mkdir(parents=True, exist_ok=True)
            self.claims_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LockWriteError(f"Cannot create lock directory {self.locks_dir}: {e}") from e

    # Paths and guards

    def _lock_path(self, stem: str) -> Path:
        return self.locks_dir / f"{stem}.json"

    def _claim_path(self, stem: str, owner_id: str) -> Path:
        return self.claims_dir / stem / f"{quote(owner_id, safe='')}.json"

    @contextmanager
    def _guard(self) -> Iterator[None]:
        with open(self.locks_dir / _GUARD_FILE, "a+") as guard:
            fcntl.flock(guard.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(guard.fileno(), fcntl.LOCK_UN)

    def _lock_files(self) -> list[Path]:
        return sorted(
            p for p in self.locks_dir.glob("*.json") if not p.name.startswith(".")
        )

    # Record IO

    def _load(self, path: Path) -> tuple[ResourceLock | None, bool]:
        """Return (lock, corrupt). A missing file is (None, False)."""
        try:
            return ResourceLock.model_validate(read_json_file(path)), False
        except FileNotFoundError:
            return None, False
        except ValueError as e:
            logger.warning(f"Unreadable lock file {path}: {e}")
            return None, True

    def _replace(self, path: Path, record: ResourceLock) -> None:
        try:
            atomic_write_json(path, record.model_dump(mode="json"))
        except OSError as e:
            raise LockWriteError(f"Cannot write lock file {path}: {e}") from e

    def _remove(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise LockWriteError(f"Cannot remove lock file {path}: {e}") from e

    def _write_claim(self, record: ResourceLock) -> None:
        claim = LockClaim(
            resource_key=record.resource_key,
            owner_id=record.owner_id,
            pid=record.pid,
            hostname=record.hostname,
            heartbeat_at=record.heartbeat_at,
        )
        path = self._claim_path(_file_stem(record.resource_key), record.owner_id)
        try:
            atomic_write_json(path, claim.model_dump(mode="json"))
        except OSError as e:
            raise LockWriteError(f"Cannot write lock claim {path}: {e}") from e

    def _drop_claim(self, resource_key: str, owner_id: str) -> None:
        self._claim_path(_file_stem(resource_key), owner_id).unlink(missing_ok=True)

    def _key_for_stem(self, stem: str) -> str:
        """Resource key behind a lock file stem whose lock record is unreadable."""
        if _HASH_SEPARATOR not in stem:
            return unquote(stem)
        # Hashed stems are not reversible; claims still carry the full key.
        for claim_file in sorted((self.claims_dir / stem).glob("*.json")):
            try:
                return LockClaim.model_validate(read_json_file(claim_file)).resource_key
            except (OSError, ValueError):
                continue
        return stem

    def _new_record(
        self, resource_key: str, owner_id: str, ttl_seconds: float, now: datetime
    ) -> ResourceLock:
        return ResourceLock(
            resource_key=resource_key,
            owner_id=owner_id,
            pid=self.pid,
            hostname=self.hostname,
            acquired_at=now,
            heartbeat_at=now,
            ttl_seconds=ttl_seconds,
        )

    def _emit_reclaim(self, resource_key: str, previous: ResourceLock | None, by: str | None) -> None:
        logger.warning(
            f"Reclaimed stale lock {resource_key} from "
            f"{previous.owner_id if previous else 'unreadable lock file'}"
        )
        if self.event_sink is None:
            return
        event = Event(
            kind=EventKind.LOCK_STALE_RECLAIMED,
            payload={
                "resource_key": resource_key,
                "previous_owner": previous.owner_id if previous else None,
                "previous_heartbeat_at": previous.heartbeat_at.isoformat() if previous else None,
                "reclaimed_by": by,
            },
        )
        try:
            self.event_sink(event)
        except EventLogError as e:
            logger.error(f"Could not record reclaim of {resource_key}: {e}")

    # Liveness

    def owner_dead(self, lock: ResourceLock | LockClaim) -> bool:
        """True only when the owner is on this host and its process is gone."""
        return lock.hostname == self.hostname and not process_alive(lock.pid)

    def is_stale(self, lock: ResourceLock, now: datetime | None = None) -> bool:
        """
        A lock is stale when its heartbeat is older than its TTL (a hung owner),
        or when its owner process is provably dead and the heartbeat is older
        than the dead-owner grace period.
        """
        now = now or self._clock()
        age = lock.heartbeat_age(now)
        if age > lock.ttl_seconds:
            return True
        return age >= self.dead_owner_grace_seconds and self.owner_dead(lock)

    def _claim_live(self, claim: LockClaim, now: datetime) -> bool:
        if (now - claim.heartbeat_at).total_seconds() > self.ttl_seconds:
            return False
        return not self.owner_dead(claim)

    # Public API

    def acquire(
        self, resource_key: str, owner_id: str, ttl: float | None = None
    ) -> ResourceLock:
        """
        Try once to take the lock on ``resource_key``.

        Re-acquiring a lock the caller already holds refreshes it. A stale lock
        is reclaimed. Raises LockHeldError when another live owner holds it.
        """
        ttl_seconds = ttl if ttl is not None else self.ttl_seconds
        stem = _file_stem(resource_key)
        path = self._lock_path(stem)

        with self._guard():
            now = self._clock()
            record = self._new_record(resource_key, owner_id, ttl_seconds, now)
            try:
                created = atomic_create_json(path, record.model_dump(mode="json"))
            except OSError as e:
                raise LockWriteError(f"Cannot create lock file {path}: {e}") from e

            if created:
                self._write_claim(record)
                logger.debug(f"Acquired lock {resource_key} for {owner_id}")
                return record

            existing, corrupt = self._load(path)
            if existing is not None and existing.owner_id == owner_id:
                refreshed = existing.model_copy(
                    update={"heartbeat_at": now, "ttl_seconds": ttl_seconds}
                )
                self._replace(path, refreshed)
                self._write_claim(refreshed)
                return refreshed

            if existing is not None and not self.is_stale(existing, now):
                raise LockHeldError(resource_key, existing)

            self._replace(path, record)
            self._write_claim(record)
            if existing is not None or corrupt:
                self._emit_reclaim(resource_key, existing, owner_id)
            return record

    def heartbeat(self, resource_key: str, owner_id: str) -> ResourceLock:
        """Refresh ``heartbeat_at``. Raises NotOwnerError if the lock was lost."""
        stem = _file_stem(resource_key)
        path = self._lock_path(stem)

        with self._guard():
            existing, _ = self._load(path)
            if existing is None or existing.owner_id != owner_id:
                self._drop_claim(resource_key, owner_id)
                raise NotOwnerError(
                    resource_key, owner_id, existing.owner_id if existing else None
                )
            updated = existing.model_copy(update={"heartbeat_at": self._clock()})
            self._replace(path, updated)
            self._write_claim(updated)
            return updated

    def release(self, resource_key: str, owner_id: str) -> None:
        """Delete the lock if ``owner_id`` holds it, else raise NotOwnerError."""
        stem = _file_stem(resource_key)
        path = self._lock_path(stem)

        with self._guard():
            existing, _ = self._load(path)
            self._drop_claim(resource_key, owner_id)
            if existing is None or existing.owner_id != owner_id:
                raise NotOwnerError(
                    resource_key, owner_id, existing.owner_id if existing else None
                )
            self._remove(path)
            logger.debug(f"Released lock {resource_key} held by {owner_id}")

    def clean_stale_locks(self) -> list[str]:
        """Reclaim every stale lock and prune dead claims. Returns reclaimed keys."""
        reclaimed: list[str] = []
        for path in self._lock_files():
            stem = path.stem
            with self._guard():
                now = self._clock()
                existing, corrupt = self._load(path)
                if existing is None and not corrupt:
                    continue
                if corrupt or self.is_stale(existing, now):
                    key = existing.resource_key if existing else self._key_for_stem(stem)
                    self._remove(path)
                    reclaimed.append(key)
                    self._emit_reclaim(key, existing, None)

        self._prune_claims()
        return reclaimed

    def _prune_claims(self) -> None:
        now = self._clock()
        for claim_file in self.claims_dir.glob("*/*.json"):
            try:
                claim = LockClaim.model_validate(read_json_file(claim_file))
            except (OSError, ValueError):
                claim_file.unlink(missing_ok=True)
                continue
            if not self._claim_live(claim, now):
                claim_file.unlink(missing_ok=True)

    def detect_collisions(self) -> list[str]:
        """
        Report keys with more than one live claim.

        This is never expected in steady state and is surfaced, not resolved.
        """
        now = self._clock()
        collisions: list[str] = []
        for key_dir in sorted(p for p in self.claims_dir.iterdir() if p.is_dir()):
            live: list[LockClaim] = []
            for claim_file in key_dir.glob("*.json"):
                try:
                    claim = LockClaim.model_validate(read_json_file(claim_file))
                except (OSError, ValueError):
                    continue
                if self._claim_live(claim, now):
                    live.append(claim)
            if len(live) > 1:
                key = live[0].resource_key
                owners = sorted(c.owner_id for c in live)
                logger.error(f"Lock collision on {key}: live owners {owners}")
                collisions.append(key)
        return collisions

    def read(self, resource_key: str) -> ResourceLock | None:
        lock, _ = self._load(self._lock_path(_file_stem(resource_key)))
        return lock

    def list_locks(self) -> list[ResourceLock]:
        locks = []
        for path in self._lock_files():
            lock, _ = self._load(path)
            if lock is not None:
                locks.append(lock)
        return locks

    def is_held_by(self, resource_key: str, owner_id: str) -> bool:
        lock = self.read(resource_key)
        return lock is not None and lock.owner_id == owner_id
