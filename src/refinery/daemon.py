"""
Refinery daemon.

Runs one merge queue engine per rig on a bounded worker pool, and
turns SIGINT/SIGTERM into a clean shutdown: every engine finishes its
current stage, writes its final checkpoint and releases its lock.
"""

import signal
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait

from loguru import logger

from .checkpoint_store import CheckpointStore
from .config import ConfigManager, RefinerySettings
from .discovery import GitBranchSource
from .engine import MergeQueueEngine
from .event_log import EventLog
from .git_tool import GitTool
from .interfaces import CancelToken, FailureFixer
from .ledger import QueueLedger
from .locks import LockManager, make_owner_id
from .models import Event
from .sinks import FileIssueFiler, MailboxNotifier

_TICK_SECONDS = 1.0


def build_engine(
    config_manager: ConfigManager,
    rig: str,
    owner_id: str,
    fixer: FailureFixer | None = None,
) -> MergeQueueEngine:
    """Wire the default collaborators for one rig."""
    settings = config_manager.settings
    rig_settings = config_manager.load_rig_settings(rig)
    queue_config = rig_settings.merge_queue

    events = EventLog(config_manager.events_path(rig))

    def lock_events(event: Event) -> None:
        events.log(event.model_copy(update={"rig": rig}))

    locks = LockManager(
        config_manager.locks_dir,
        ttl_seconds=settings.lock_ttl_seconds,
        dead_owner_grace_seconds=settings.dead_owner_grace_seconds,
        event_sink=lock_events,
    )
    git = GitTool(
        config_manager.refinery_clone(rig),
        remote=settings.remote,
        fetch_timeout=settings.fetch_timeout_seconds,
        rebase_timeout=settings.rebase_timeout_seconds,
        test_timeout=settings.test_timeout_seconds,
        push_timeout=settings.push_timeout_seconds,
    )
    ledger = QueueLedger(config_manager.ledger_path(rig))
    source = GitBranchSource(git, queue_config.target_branch, settings.worker_prefixes, ledger)

    return MergeQueueEngine(
        rig=rig,
        config=queue_config,
        git=git,
        source=source,
        locks=locks,
        checkpoints=CheckpointStore(config_manager.checkpoint_path(rig)),
        events=events,
        ledger=ledger,
        notifier=MailboxNotifier(config_manager.mail_dir),
        issues=FileIssueFiler(config_manager.issues_dir(rig), config_manager.issue_prefix(rig)),
        fixer=fixer,
        owner_id=owner_id,
        heartbeat_interval=settings.heartbeat_interval_seconds,
        checkpoint_stale_after=settings.checkpoint_stale_after,
    )


class RefineryDaemon:
    """Runs the merge queue for every registered rig until told to stop."""

    def __init__(
        self,
        settings: RefinerySettings | None = None,
        rigs: list[str] | None = None,
        fixer: FailureFixer | None = None,
    ):
        self.config_manager = ConfigManager(settings)
        self.settings = self.config_manager.settings
        self.rigs = rigs or self.config_manager.rig_names()
        self.fixer = fixer
        self.owner_id = make_owner_id(self.settings.session_id)
        self.cancel = CancelToken()
        self.engines: dict[str, MergeQueueEngine] = {}

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals"""
        logger.info(f"Received signal {signum}, finishing current stage before exit...")
        self.cancel.cancel()

    def install_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            return
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def max_workers(self) -> int:
        """Worker threads across rigs; ``max_concurrent = 0`` means one per rig."""
        limits = [
            self.config_manager.load_rig_settings(rig).merge_queue.max_concurrent
            for rig in self.rigs
        ]
        limit = min(limits) if limits else 1
        if limit == 0:
            return max(len(self.rigs), 1)
        return limit

    def run(self) -> int:
        """Run until cancelled. Returns a process exit code."""
        if not self.rigs:
            logger.warning("No rigs registered, nothing to do")
            return 0

        for rig in self.rigs:
            self.engines[rig] = build_engine(self.config_manager, rig, self.owner_id, self.fixer)

        self.install_signal_handlers()
        workers = self.max_workers()
        logger.info(f"Refinery {self.owner_id} serving {len(self.rigs)} rig(s) with {workers} worker(s)")

        halted: list[str] = []
        started: list[str] = []
        try:
            for rig, engine in self.engines.items():
                if not engine.git.is_git_repo():
                    logger.error(f"Refinery clone for rig {rig} is not a git repository")
                    halted.append(rig)
                    continue
                try:
                    engine.start()
                    started.append(rig)
                except Exception as e:
                    logger.exception(f"Recovery for rig {rig} failed: {e}")
                    halted.append(rig)

            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="refinery") as pool:
                self._schedule(pool, started, halted)
        finally:
            for rig in started:
                self.engines[rig].stop()

        if halted:
            logger.error(f"Halted rigs: {', '.join(halted)}")
            return 1
        logger.info("Refinery stopped")
        return 0

    def _schedule(self, pool: ThreadPoolExecutor, rigs: list[str], halted: list[str]) -> None:
        """Submit one queue cycle per rig whenever its poll interval has elapsed."""
        next_due = {rig: 0.0 for rig in rigs}
        running: dict[str, Future] = {}

        while running or (not self.cancel.cancelled and len(halted) < len(self.rigs)):
            now = time.monotonic()
            for rig, future in list(running.items()):
                if not future.done():
                    continue
                del running[rig]
                try:
                    future.result()
                except Exception as e:
                    logger.exception(f"Merge queue for rig {rig} halted: {e}")
                    halted.append(rig)
                    continue
                next_due[rig] = now + self.engines[rig].poll_seconds

            if not self.cancel.cancelled:
                for rig in rigs:
                    if rig in running or rig in halted or next_due[rig] > now:
                        continue
                    running[rig] = pool.submit(self.engines[rig].run_cycle, self.cancel)

            if running:
                wait(list(running.values()), timeout=_TICK_SECONDS, return_when=FIRST_COMPLETED)
            elif not self.cancel.cancelled:
                pending = [next_due[r] for r in rigs if r not in halted]
                if not pending:
                    break
                self.cancel.wait(max(min(pending) - time.monotonic(), 0.0))

    def stop(self) -> None:
        self.cancel.cancel()
