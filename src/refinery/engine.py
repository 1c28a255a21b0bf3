"""
Merge queue engine.

Serializes ready worker branches onto a rig's target branch: one candidate
at a time, always rebased onto the current remote tip, verified by the test
command, fast-forwarded and pushed immediately. Every repository-mutating
stage is preceded by a checkpoint and every transition is recorded in the
event log, so an interrupted run can be resumed or safely restarted.
"""

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from loguru import logger

from .checkpoint_store import CheckpointStore
from .config.settings import ON_CONFLICT_AUTO_REBASE, MergeQueueConfig
from .constants import merge_lock_key
from .errors import (
    EventLogError,
    GitCommandError,
    LockHeldError,
    LockWriteError,
    NotOwnerError,
    PushRejectedError,
    RebaseConflictError,
    RefineryError,
    StageTimeoutError,
    TestFailureError,
)
from .event_log import EventLog
from .interfaces import (
    CancelToken,
    CandidateSource,
    FailureFixer,
    FailureReport,
    GitProvider,
    IssueFiler,
    Notifier,
    SuiteResult,
)
from .ledger import QueueLedger
from .locks import LockManager, make_owner_id
from .models import Checkpoint, Event, EventKind, QueueCandidate, Stage
from .utils.timeutil import utcnow

DEFAULT_HEARTBEAT_INTERVAL = 30.0
DEFAULT_CHECKPOINT_STALE_AFTER = timedelta(hours=1)
MIN_POLL_SECONDS = 1.0
MAX_PUSH_ATTEMPTS = 2

AUTO_REBASE_STRATEGY = "theirs"


class Outcome(str, Enum):
    """How processing of one candidate ended."""

    MERGED = "merged"
    REJECTED = "rejected"
    BLOCKED = "blocked"
    MANUAL_INTERVENTION = "manual-intervention"
    DEFERRED = "deferred"
    SKIPPED = "skipped"


@dataclass
class CandidateOutcome:
    branch: str | None
    outcome: Outcome
    reason: str = ""
    detail: dict[str, Any] = field(default_factory=dict)


@dataclass
class _Flight:
    """Working state of the candidate currently being processed."""

    candidate: QueueCandidate
    captured_head: str | None = None
    rebased_head: str | None = None
    test_attempts: int = 0
    issue_id: str | None = None
    fix_sha: str | None = None
    push_attempts: int = 0
    runs: list[SuiteResult] = field(default_factory=list)


class _LockLost(Exception):
    pass


class LockHeartbeat:
    """Background thread that keeps a held lock fresh."""

    def __init__(self, locks: LockManager, resource_key: str, owner_id: str, interval: float):
        self.locks = locks
        self.resource_key = resource_key
        self.owner_id = owner_id
        self.interval = interval
        self.lost = False
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._run, name=f"heartbeat-{self.resource_key}", daemon=True
        )
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.locks.heartbeat(self.resource_key, self.owner_id)
            except NotOwnerError as e:
                self.lost = True
                logger.error(f"Lost lock {self.resource_key}: {e}")
                return
            except LockWriteError as e:
                logger.error(f"Heartbeat for {self.resource_key} failed, retrying: {e}")

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval + 5)


class MergeQueueEngine:
    """Merge queue state machine for a single rig."""

    def __init__(
        self,
        rig: str,
        config: MergeQueueConfig,
        git: GitProvider,
        source: CandidateSource,
        locks: LockManager,
        checkpoints: CheckpointStore,
        events: EventLog,
        ledger: QueueLedger,
        notifier: Notifier,
        issues: IssueFiler,
        fixer: FailureFixer | None = None,
        owner_id: str | None = None,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        checkpoint_stale_after: timedelta = DEFAULT_CHECKPOINT_STALE_AFTER,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.rig = rig
        self.config = config
        self.git = git
        self.source = source
        self.locks = locks
        self.checkpoints = checkpoints
        self.events = events
        self.ledger = ledger
        self.notifier = notifier
        self.issues = issues
        self.fixer = fixer
        self.owner_id = owner_id or make_owner_id()
        self.heartbeat_interval = heartbeat_interval
        self.checkpoint_stale_after = checkpoint_stale_after
        self.lock_key = merge_lock_key(rig)
        self._clock = clock
        self._resume: Checkpoint | None = None
        self._carryover: QueueCandidate | None = None
        self._announced: set[str] = set()
        self.log = logger.bind(rig=rig)

    # Events

    def _emit(self, kind: EventKind, **payload: Any) -> None:
        event = Event(timestamp=self._clock(), kind=kind, rig=self.rig, payload=payload)
        try:
            self.events.log(event)
        except EventLogError as e:
            self.log.error(f"Event log unavailable ({e}); {kind.value}: {payload}")

    # Recovery

    def recover(self) -> Checkpoint | None:
        """
        Decide what to do with a checkpoint left by a previous run.

        Returns the checkpoint when it will be resumed, None otherwise. A
        discarded checkpoint's candidate is still processed first.
        """
        checkpoint = self.checkpoints.read()
        if checkpoint is None:
            return None

        if not checkpoint.in_flight or checkpoint.candidate is None:
            self.checkpoints.clear()
            return None

        stale = self.checkpoints.is_stale(checkpoint, self.checkpoint_stale_after)
        held = checkpoint.owner_id == self.owner_id and self.locks.is_held_by(
            self.lock_key, self.owner_id
        )

        if not stale and held:
            self._resume = checkpoint
            self._emit(
                EventKind.CHECKPOINT_RESUMED,
                branch=checkpoint.queue_position,
                stage=checkpoint.stage.value,
            )
            self.log.info(
                f"Resuming {checkpoint.queue_position} at stage {checkpoint.stage.value}"
            )
            return checkpoint

        reason = "stale" if stale else "lock-not-held"
        self._emit(
            EventKind.CHECKPOINT_DISCARDED,
            branch=checkpoint.queue_position,
            stage=checkpoint.stage.value,
            previous_owner=checkpoint.owner_id,
            reason=reason,
        )
        self.log.warning(
            f"Discarding checkpoint for {checkpoint.queue_position} ({reason}), "
            f"restarting it from scanning"
        )
        self.checkpoints.clear()
        self.git.abort_in_progress()
        self.locks.clean_stale_locks()
        self._carryover = checkpoint.candidate
        return None

    # Main loop

    @property
    def poll_seconds(self) -> float:
        return max(self.config.poll_interval_seconds, MIN_POLL_SECONDS)

    def start(self) -> None:
        """Announce the engine and recover from any previous run."""
        self._emit(EventKind.ENGINE_STARTED, owner_id=self.owner_id)
        self.recover()

    def stop(self) -> None:
        self._emit(EventKind.ENGINE_STOPPED, owner_id=self.owner_id)
        self.log.info("Merge queue engine stopped")

    def run_forever(self, cancel: CancelToken) -> None:
        """Poll the queue until ``cancel`` is set."""
        self.start()
        try:
            while not cancel.cancelled:
                self.run_cycle(cancel)
                if cancel.wait(self.poll_seconds):
                    break
        finally:
            self.stop()

    def run_cycle(self, cancel: CancelToken | None = None) -> list[CandidateOutcome]:
        """Process candidates until the queue is empty or the cycle must end."""
        cancel = cancel or CancelToken()
        if not self.config.enabled:
            self.log.debug("Merge queue disabled")
            return [CandidateOutcome(None, Outcome.SKIPPED, "disabled")]

        outcomes: list[CandidateOutcome] = []

        if self._resume is not None:
            checkpoint, self._resume = self._resume, None
            outcome = self.process_candidate(checkpoint.candidate, cancel, resume=checkpoint)
            outcomes.append(outcome)
            if outcome.outcome in (Outcome.SKIPPED, Outcome.DEFERRED, Outcome.BLOCKED):
                return outcomes

        attempted: set[tuple[str, str | None]] = set()
        while not cancel.cancelled:
            try:
                queue = self._scan()
            except (GitCommandError, StageTimeoutError) as e:
                self.log.error(f"Scanning failed, retrying next poll: {e}")
                break

            queue = [c for c in queue if (c.branch_name, c.head_sha) not in attempted]
            if not queue:
                break

            candidate = queue[0]
            attempted.add((candidate.branch_name, candidate.head_sha))
            outcome = self.process_candidate(candidate, cancel)
            outcomes.append(outcome)
            if outcome.outcome in (Outcome.SKIPPED, Outcome.DEFERRED, Outcome.BLOCKED):
                break
        return outcomes

    def _scan(self) -> list[QueueCandidate]:
        queue = self.source.candidates()
        for candidate in queue:
            if candidate.branch_name not in self._announced:
                self._announced.add(candidate.branch_name)
                self._emit(
                    EventKind.BRANCH_DISCOVERED,
                    branch=candidate.branch_name,
                    owner=candidate.owner,
                    base_sha=candidate.base_sha,
                    discovered_at=candidate.discovered_at.isoformat(),
                )

        if self._carryover is not None:
            carried = self._carryover.branch_name
            first = [c for c in queue if c.branch_name == carried]
            if first:
                queue = first + [c for c in queue if c.branch_name != carried]
            else:
                self.log.info(f"Carried-over candidate {carried} is no longer pending")
                self._carryover = None
        return queue

    # Candidate processing

    def process_candidate(
        self,
        candidate: QueueCandidate,
        cancel: CancelToken | None = None,
        resume: Checkpoint | None = None,
    ) -> CandidateOutcome:
        """Take the merge lock and drive one candidate through the stages."""
        cancel = cancel or CancelToken()
        branch = candidate.branch_name

        try:
            self.locks.acquire(self.lock_key, self.owner_id)
        except LockHeldError as e:
            holder = getattr(e.holder, "owner_id", None)
            self._emit(EventKind.LOCK_CONTENDED, resource_key=self.lock_key, holder=holder)
            self.log.info(f"Merge lock held by {holder}, retrying next poll")
            return CandidateOutcome(branch, Outcome.SKIPPED, "lock-contended", {"holder": holder})

        self._emit(EventKind.LOCK_ACQUIRED, resource_key=self.lock_key, owner_id=self.owner_id)
        heartbeat = LockHeartbeat(self.locks, self.lock_key, self.owner_id, self.heartbeat_interval)
        heartbeat.start()
        try:
            outcome = self._drive(candidate, cancel, resume, heartbeat)
        finally:
            heartbeat.stop()
            self._release_lock()

        if outcome.outcome not in (Outcome.SKIPPED, Outcome.DEFERRED):
            self._carryover = None
        if outcome.outcome == Outcome.MERGED and self.config.delete_merged_branches:
            self._delete_branch(branch)
        return outcome

    def _release_lock(self) -> None:
        try:
            self.locks.release(self.lock_key, self.owner_id)
        except NotOwnerError as e:
            self.log.error(f"Merge lock was not ours at release: {e}")
            return
        self._emit(EventKind.LOCK_RELEASED, resource_key=self.lock_key, owner_id=self.owner_id)

    def _drive(
        self,
        candidate: QueueCandidate,
        cancel: CancelToken,
        resume: Checkpoint | None,
        heartbeat: LockHeartbeat,
    ) -> CandidateOutcome:
        flight = _Flight(candidate=candidate)
        stage = Stage.REBASING
        if resume is not None:
            flight.captured_head = resume.captured_head
            flight.rebased_head = resume.rebased_head
            flight.test_attempts = resume.test_attempts
            flight.issue_id = resume.issue_id
            flight.fix_sha = resume.fix_sha
            flight.push_attempts = resume.push_attempts
            stage = resume.stage

        try:
            if resume is not None:
                stage = self._revalidate(flight, stage)

            while True:
                if stage == Stage.DONE:
                    return self._finish(flight)
                if cancel.cancelled:
                    return self._defer(flight, stage)
                self._ensure_lock(heartbeat)

                if stage == Stage.REBASING:
                    result = self._stage_rebase(flight)
                elif stage == Stage.TESTING:
                    result = self._stage_test(flight)
                elif stage == Stage.RESOLVING_FAILURE:
                    result = self._stage_resolve(flight)
                elif stage == Stage.MERGING:
                    result = self._stage_merge(flight)
                else:
                    raise ValueError(f"Unexpected stage {stage}")

                if isinstance(result, CandidateOutcome):
                    return result
                stage = result

        except _LockLost:
            self.log.error(f"Merge lock lost while processing {candidate.branch_name}")
            self._carryover = candidate
            return CandidateOutcome(candidate.branch_name, Outcome.SKIPPED, "lock-lost")
        except StageTimeoutError as e:
            if e.stage == "fetch":
                self.log.error(f"Fetch timed out, deferring {candidate.branch_name}: {e}")
                self._carryover = candidate
                return CandidateOutcome(candidate.branch_name, Outcome.SKIPPED, "fetch-failed")
            self._emit(
                EventKind.STAGE_TIMEOUT,
                branch=candidate.branch_name,
                stage=e.stage,
                timeout=e.timeout,
            )
            self._restore_target()
            return self._reject(flight, "timeout", {"stage": e.stage, "timeout": e.timeout})
        except GitCommandError as e:
            if e.command and e.command[0] == "fetch":
                self.log.error(f"Fetch failed, deferring {candidate.branch_name}: {e}")
                self._carryover = candidate
                return CandidateOutcome(candidate.branch_name, Outcome.SKIPPED, "fetch-failed")
            self._restore_target()
            return self._reject(flight, "git-error", {"error": str(e)})

    def _ensure_lock(self, heartbeat: LockHeartbeat) -> None:
        if heartbeat.lost or not self.locks.is_held_by(self.lock_key, self.owner_id):
            raise _LockLost()

    def _save(self, flight: _Flight, stage: Stage) -> None:
        self.checkpoints.write(
            Checkpoint(
                rig=self.rig,
                owner_id=self.owner_id,
                queue_position=flight.candidate.branch_name,
                candidate=flight.candidate,
                stage=stage,
                captured_head=flight.captured_head,
                rebased_head=flight.rebased_head,
                test_attempts=flight.test_attempts,
                issue_id=flight.issue_id,
                fix_sha=flight.fix_sha,
                push_attempts=flight.push_attempts,
                updated_at=self._clock(),
            )
        )

    def _revalidate(self, flight: _Flight, stage: Stage) -> Stage:
        """Check a resumed stage still applies to the remote's current state."""
        target = self.config.target_branch
        if stage in (Stage.TESTING, Stage.RESOLVING_FAILURE):
            if not flight.rebased_head or not flight.captured_head:
                return Stage.REBASING
            self.git.fetch()
            if self.git.remote_head(target) != flight.captured_head:
                self.log.info(f"{target} moved since the checkpoint, rebasing again")
                return Stage.REBASING
            return Stage.TESTING

        if stage == Stage.MERGING:
            if not flight.rebased_head:
                return Stage.REBASING
            self.git.fetch()
            remote = self.git.remote_head(target)
            if self.git.contains(flight.rebased_head, remote):
                self.log.info(f"{flight.candidate.branch_name} was already pushed")
                return Stage.DONE
            if remote != flight.captured_head:
                self.log.info(f"{target} moved since the checkpoint, rebasing again")
                return Stage.REBASING
        return stage

    # Stages

    def _stage_rebase(self, flight: _Flight) -> Stage | CandidateOutcome:
        target = self.config.target_branch
        branch = flight.candidate.branch_name

        self.git.fetch()
        flight.captured_head = self.git.remote_head(target)
        tip = self.git.remote_head(branch)
        if tip != flight.candidate.head_sha:
            flight.candidate = flight.candidate.model_copy(update={"head_sha": tip})
        # A fresh rebase is verified from scratch; an earlier fix commit does not carry over.
        flight.rebased_head = None
        flight.fix_sha = None
        self._save(flight, Stage.REBASING)

        strategy = None
        try:
            head = self.git.rebase(branch, target)
        except RebaseConflictError as e:
            self._emit(
                EventKind.REBASE_CONFLICT,
                branch=branch,
                onto=flight.captured_head,
                files=e.files,
                policy=self.config.on_conflict,
            )
            if self.config.on_conflict != ON_CONFLICT_AUTO_REBASE:
                return self._reject(flight, "rebase-conflict", {"files": e.files})
            try:
                head = self.git.rebase(branch, target, strategy_option=AUTO_REBASE_STRATEGY)
            except RebaseConflictError as retry_error:
                return self._reject(
                    flight, "rebase-conflict", {"files": retry_error.files, "auto_rebase": True}
                )
            strategy = AUTO_REBASE_STRATEGY

        flight.rebased_head = head
        self._emit(
            EventKind.BRANCH_REBASED,
            branch=branch,
            onto=flight.captured_head,
            head=head,
            strategy=strategy,
        )
        return Stage.TESTING if self.config.run_tests else Stage.MERGING

    def _stage_test(self, flight: _Flight) -> Stage:
        branch = flight.candidate.branch_name
        self._save(flight, Stage.TESTING)

        flight.runs = []
        runs = 1 + self.config.retry_flaky_tests
        for attempt in range(1, runs + 1):
            if attempt > 1:
                self._emit(EventKind.TESTS_RETRIED, branch=branch, attempt=attempt)
            result = self.git.run_tests(self.config.test_command, flight.rebased_head)
            flight.test_attempts += 1
            flight.runs.append(result)
            if result.passed:
                self._emit(
                    EventKind.TESTS_PASSED,
                    branch=branch,
                    head=flight.rebased_head,
                    attempt=attempt,
                    duration_seconds=result.duration_seconds,
                )
                return Stage.MERGING
            self._emit(
                EventKind.TESTS_FAILED,
                branch=branch,
                head=flight.rebased_head,
                attempt=attempt,
                returncode=result.returncode,
            )
        return Stage.RESOLVING_FAILURE

    def _stage_resolve(self, flight: _Flight) -> Stage | CandidateOutcome:
        """Verification gate: never merge past a failure without a fix or a filed issue."""
        branch = flight.candidate.branch_name
        self._save(flight, Stage.RESOLVING_FAILURE)

        baseline = self.git.run_tests(self.config.test_command, flight.captured_head)
        if baseline.passed:
            self._emit(EventKind.FAILURE_CLASSIFIED, branch=branch, classification="caused-by-branch")
            last = flight.runs[-1] if flight.runs else None
            failure = TestFailureError(
                self.config.test_command,
                last.returncode if last else None,
                last.output if last else "",
            )
            return self._reject(
                flight,
                "tests-failed",
                {"error": str(failure), "output": failure.output[-2000:]},
            )

        self._emit(
            EventKind.FAILURE_CLASSIFIED,
            branch=branch,
            classification="pre-existing",
            target_sha=flight.captured_head,
        )
        report = FailureReport(
            rig=self.rig,
            candidate=flight.candidate,
            target_branch=self.config.target_branch,
            target_sha=flight.captured_head,
            rebased_head=flight.rebased_head,
            runs=list(flight.runs) + [baseline],
        )

        if self.fixer is not None and flight.fix_sha is None:
            fix_sha = self.fixer.attempt_fix(report)
            if fix_sha:
                flight.fix_sha = fix_sha
                flight.rebased_head = fix_sha
                self._emit(EventKind.FIX_APPLIED, branch=branch, fix_sha=fix_sha)
                return Stage.TESTING

        if flight.issue_id is None:
            flight.issue_id = self._file_issue(report)

        if flight.issue_id is not None:
            return Stage.MERGING

        self._emit(EventKind.GATE_BLOCKED, branch=branch, target_sha=flight.captured_head)
        self.log.warning(f"Verification gate blocked {branch}: no fix and no tracking issue")
        self.checkpoints.clear()
        self._notify(
            flight.candidate,
            f"Merge of {branch} blocked",
            f"Tests fail on {self.config.target_branch} as well and no tracking issue "
            f"could be filed. The branch will be retried on the next poll.",
            {"branch": branch, "reason": "gate-blocked"},
        )
        return CandidateOutcome(branch, Outcome.BLOCKED, "gate-blocked")

    def _file_issue(self, report: FailureReport) -> str | None:
        last = report.runs[-1] if report.runs else None
        title = (
            f"Tests failing on {report.target_branch} "
            f"({report.target_sha[:8] if report.target_sha else 'unknown'}) in {report.rig}"
        )
        body = (
            f"The test command `{self.config.test_command}` fails on "
            f"{report.target_branch} at {report.target_sha} independently of "
            f"{report.candidate.branch_name}.\n\n"
            f"{last.output[-2000:] if last else ''}"
        )
        try:
            issue_id = self.issues.file_issue(title, body, ["bug", "pre-existing-failure"])
        except (OSError, RefineryError) as e:
            self.log.error(f"Could not file tracking issue: {e}")
            return None
        self._emit(
            EventKind.BUG_FILED,
            branch=report.candidate.branch_name,
            issue_id=issue_id,
            target_sha=report.target_sha,
        )
        return issue_id

    def _stage_merge(self, flight: _Flight) -> Stage | CandidateOutcome:
        target = self.config.target_branch
        branch = flight.candidate.branch_name
        self._save(flight, Stage.MERGING)

        try:
            self.git.fast_forward(target, flight.rebased_head)
            self.git.push(target)
        except PushRejectedError as e:
            flight.push_attempts += 1
            self._emit(EventKind.PUSH_REJECTED, branch=branch, attempt=flight.push_attempts, error=e.stderr)
            if flight.push_attempts >= MAX_PUSH_ATTEMPTS:
                return self._manual_intervention(flight, f"push rejected {flight.push_attempts} times: {e}")
            # The remote moved under us: rebase, test and pass the gate again on its new tip.
            self.log.info(f"Push of {target} rejected, rebasing {branch} again")
            return Stage.REBASING
        return Stage.DONE

    # Terminal transitions

    def _finish(self, flight: _Flight) -> CandidateOutcome:
        branch = flight.candidate.branch_name
        self.checkpoints.clear()
        self._emit(
            EventKind.BRANCH_MERGED,
            branch=branch,
            target=self.config.target_branch,
            head=flight.rebased_head,
            onto=flight.captured_head,
            issue_id=flight.issue_id,
            fix_sha=flight.fix_sha,
        )
        self.ledger.record_merged(branch, flight.candidate.head_sha)
        self.log.success(f"Merged {branch} into {self.config.target_branch}")
        return CandidateOutcome(branch, Outcome.MERGED, detail={"head": flight.rebased_head})

    def _reject(self, flight: _Flight, reason: str, detail: dict[str, Any]) -> CandidateOutcome:
        candidate = flight.candidate
        branch = candidate.branch_name
        self.checkpoints.clear()
        self.ledger.record_rejection(branch, candidate.head_sha, reason, detail)
        self._emit(EventKind.BRANCH_REJECTED, branch=branch, owner=candidate.owner, reason=reason, **detail)
        self.log.warning(f"Rejected {branch} ({reason})")
        self._notify(
            candidate,
            f"Merge of {branch} rejected: {reason}",
            f"{branch} was not merged into {self.config.target_branch} ({reason}). "
            f"Push new commits to the branch to requeue it.",
            {"branch": branch, "reason": reason, **detail},
        )
        return CandidateOutcome(branch, Outcome.REJECTED, reason, detail)

    def _manual_intervention(self, flight: _Flight, reason: str) -> CandidateOutcome:
        candidate = flight.candidate
        branch = candidate.branch_name
        self._restore_target()
        self.checkpoints.clear()
        self.ledger.record_rejection(branch, candidate.head_sha, "manual-intervention", {"error": reason})
        self._emit(EventKind.MANUAL_INTERVENTION, branch=branch, owner=candidate.owner, reason=reason)
        self.log.error(f"{branch} needs manual intervention: {reason}")
        self._notify(
            candidate,
            f"Merge of {branch} needs manual intervention",
            f"{branch} could not be pushed to {self.config.target_branch}: {reason}",
            {"branch": branch, "reason": "manual-intervention"},
        )
        return CandidateOutcome(branch, Outcome.MANUAL_INTERVENTION, reason)

    def _defer(self, flight: _Flight, stage: Stage) -> CandidateOutcome:
        self._save(flight, stage)
        self.log.info(f"Shutdown requested, {flight.candidate.branch_name} stops before {stage.value}")
        return CandidateOutcome(flight.candidate.branch_name, Outcome.DEFERRED, "shutdown", {"stage": stage.value})

    # Helpers

    def _restore_target(self) -> None:
        try:
            self.git.reset_to_remote(self.config.target_branch)
        except (GitCommandError, StageTimeoutError) as e:
            self.log.error(f"Could not reset {self.config.target_branch} to the remote: {e}")

    def _notify(self, candidate: QueueCandidate, subject: str, body: str, payload: dict[str, Any]) -> None:
        try:
            self.notifier.notify(candidate.owner, subject, body, payload)
        except (OSError, RefineryError) as e:
            self.log.error(f"Could not notify {candidate.owner}: {e}")

    def _delete_branch(self, branch: str) -> None:
        try:
            self.git.delete_branch(branch)
        except (GitCommandError, StageTimeoutError) as e:
            self.log.warning(f"Could not delete merged branch {branch}: {e}")
            return
        self._emit(EventKind.BRANCH_DELETED, branch=branch)
