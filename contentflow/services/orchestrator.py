"""
Status-driven orchestration core.

For a status, fetch every job in it and run that status's stage handler on
each job, one at a time. Sequential processing is a throttle: most
collaborators are rate limited per caller. Per-job failures go to the error
handler and never stop the batch; only a failed fetch aborts a batch.

Reentrancy: a batch holds its stage lease from fetch to last write, so an
overlapping trigger for the same stage returns locked=True without touching
any job. Different stages run independently; the status column keeps them
from ever sharing a job.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Mapping

from contentflow.core.errors import (
    BatchFetchError,
    ErrorKind,
    StageBusyError,
    StaleJobError,
    classify_exception,
)
from contentflow.core.state_machine import TRANSITIONS, JobStatus, Transition, transition_for
from contentflow.services.error_handler import ErrorHandler
from contentflow.services.health import HealthAggregator, HealthReport
from contentflow.services.job_store import JobRecord, JobStore
from contentflow.services.leases import TIMEOUTS_STAGE, Lease, StageLeaseManager
from contentflow.services.notifier import Notifier
from contentflow.services.stage_handlers import Failure, StageHandler, Success
from contentflow.services.stats import OutcomeKind, ProcessingStats, StatsAggregator
from contentflow.services.timeout_monitor import TimeoutMonitor, TimeoutResult

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"
FAILED = "failed"
SKIPPED = "skipped"


@dataclass(frozen=True)
class BatchResult:
    status: str
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    locked: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class JobResult:
    job_id: int | None
    status: str | None
    success: bool
    error: str | None = None
    # left in created for the next batch because the stage was busy
    queued: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


class Orchestrator:
    def __init__(
        self,
        store: JobStore,
        handlers: Mapping[JobStatus, StageHandler],
        error_handler: ErrorHandler,
        stats: StatsAggregator,
        leases: StageLeaseManager,
        timeout_monitor: TimeoutMonitor,
        health: HealthAggregator | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self.store = store
        self.handlers = self._validate_handlers(handlers)
        self.error_handler = error_handler
        self.stats = stats
        self.leases = leases
        self.timeout_monitor = timeout_monitor
        self.health = health or HealthAggregator()
        self.notifier = notifier or error_handler.notifier

    @staticmethod
    def _validate_handlers(handlers: Mapping[Any, StageHandler]) -> dict[JobStatus, StageHandler]:
        validated: dict[JobStatus, StageHandler] = {}
        for raw, handler in handlers.items():
            status = JobStatus.parse(raw)
            if status not in TRANSITIONS:
                raise ValueError(f"Stage handler registered for {status.value}, which has no transition")
            if not callable(handler):
                raise ValueError(f"Stage handler for {status.value} is not callable")
            validated[status] = handler

        missing = [s.value for s in TRANSITIONS if s not in validated]
        if missing:
            raise ValueError(f"Missing stage handlers for: {', '.join(missing)}")
        return validated

    # ------------------------------------------------------------------
    # batches
    # ------------------------------------------------------------------

    def run_batch(self, status: JobStatus | str) -> BatchResult:
        status = JobStatus.parse(status)
        transition = transition_for(status)
        try:
            with self.leases.hold(status.value) as lease:
                return self._run_batch_locked(transition, lease)
        except StageBusyError:
            logger.info("Skipping %s batch: previous run still in progress", status.value)
            return BatchResult(status=status.value, locked=True)

    def _run_batch_locked(self, transition: Transition, lease: Lease) -> BatchResult:
        status = transition.source
        try:
            jobs = self.store.list_by_status(status)
        except Exception as e:
            logger.error("Could not fetch %s jobs: %s", status.value, e)
            raise BatchFetchError(status.value, str(e)) from e

        if not jobs:
            logger.info("No %s jobs to process", status.value)
            return BatchResult(status=status.value)

        logger.info("Processing %s %s job(s)", len(jobs), status.value)
        counts = {SUCCEEDED: 0, FAILED: 0, SKIPPED: 0}
        attempted = 0
        guard_skips = 0

        for job in jobs:
            if not transition.accepts(job):
                guard_skips += 1
                logger.debug("Job %s: %s guard not met, leaving it", job.id, transition.stage)
                continue
            attempted += 1
            counts[self._process_job(job, transition)] += 1
            if not lease.renew():
                logger.warning("Lost the %s lease mid-batch", status.value)

        result = BatchResult(
            status=status.value,
            attempted=attempted,
            succeeded=counts[SUCCEEDED],
            failed=counts[FAILED],
            skipped=counts[SKIPPED] + guard_skips,
        )
        logger.info("%s batch done: %s", status.value, result)
        return result

    def _process_job(self, job: JobRecord, transition: Transition) -> str:
        handler = self.handlers[transition.source]
        try:
            outcome = handler(job)
        except Exception as e:
            logger.exception("Job %s: %s raised", job.id, transition.stage)
            self.error_handler.handle_failure(job, classify_exception(e), str(e) or type(e).__name__, transition.stage)
            return FAILED

        if isinstance(outcome, Failure):
            self.error_handler.handle_failure(job, outcome.error_kind, outcome.message, transition.stage)
            return FAILED
        if not isinstance(outcome, Success):
            self.error_handler.handle_failure(
                job, ErrorKind.INTERNAL, f"handler returned {type(outcome).__name__}, not a stage outcome",
                transition.stage,
            )
            return FAILED

        try:
            updated = self.store.update_status(
                job.id, transition.on_success, outcome.updated_fields, expected_status=transition.source
            )
        except StaleJobError as e:
            logger.warning("Job %s: result of %s discarded: %s", job.id, transition.stage, e)
            return SKIPPED
        except Exception as e:
            logger.exception("Job %s: status write after %s failed", job.id, transition.stage)
            self.error_handler.handle_failure(
                job, classify_exception(e), f"status write failed: {e}", transition.stage
            )
            return FAILED

        logger.info("Job %s: %s -> %s", job.id, transition.source.value, updated.status.value)
        if updated.status == JobStatus.COMPLETED:
            self.stats.record_outcome(OutcomeKind.SUCCESS)
        elif updated.status == JobStatus.AWAITING_APPROVAL:
            self.stats.record_outcome(OutcomeKind.PENDING)
        return SUCCEEDED

    # ------------------------------------------------------------------
    # ad hoc submission
    # ------------------------------------------------------------------

    def process_single_unit(self, target: str | int | JobRecord) -> JobResult:
        """
        Run one job through initial processing outside the schedule.
        A URL creates the job first; an id or record refers to an existing
        created job.
        """
        if isinstance(target, str):
            url = target.strip()
            if not url:
                raise ValueError("source_url is empty")
            job = self.store.create(url)
            logger.info("Created job %s for %s", job.id, url)
        else:
            job_id = target.id if isinstance(target, JobRecord) else int(target)
            job = self.store.get(job_id)

        if job.status != JobStatus.CREATED:
            return JobResult(
                job_id=job.id, status=job.status.value, success=False,
                error=f"Job is {job.status.value}; only created jobs can be processed",
            )

        transition = TRANSITIONS[JobStatus.CREATED]
        try:
            with self.leases.hold(JobStatus.CREATED.value):
                self._process_job(job, transition)
        except StageBusyError:
            logger.info("Job %s left for the next %s batch (stage busy)", job.id, JobStatus.CREATED.value)
            return JobResult(job_id=job.id, status=JobStatus.CREATED.value, success=True, queued=True)

        current = self.store.get(job.id)
        return JobResult(
            job_id=current.id,
            status=current.status.value,
            success=current.status == transition.on_success,
            error=current.error_info.message if current.error_info else None,
        )

    # ------------------------------------------------------------------
    # timeouts, health, stats
    # ------------------------------------------------------------------

    def process_timeouts(self) -> TimeoutResult:
        try:
            with self.leases.hold(TIMEOUTS_STAGE):
                return self.timeout_monitor.scan()
        except StageBusyError:
            logger.info("Skipping timeout scan: previous run still in progress")
            return TimeoutResult(locked=True)

    def check_health(self) -> HealthReport:
        return self.health.check_health()

    def snapshot(self) -> ProcessingStats:
        return self.stats.snapshot()

    def reset_and_report(self) -> ProcessingStats:
        return self.stats.reset_and_report()

    def daily_summary(self) -> dict[str, Any]:
        """Reset the counters and report them with the store's status distribution."""
        report = self.stats.reset_and_report()
        summary: dict[str, Any] = {"stats": report.to_dict()}
        try:
            summary["by_status"] = {s.value: n for s, n in self.store.count_by_status().items()}
        except Exception as e:
            logger.error("Could not count jobs by status: %s", e)
            summary["by_status"] = None

        payload = {**report.to_dict()}
        if summary["by_status"]:
            payload["by_status"] = {k: v for k, v in summary["by_status"].items() if v}
        try:
            summary["notified"] = self.notifier.send("daily_summary", payload)
        except Exception:
            logger.exception("Daily summary notification could not be sent")
            summary["notified"] = False
        return summary
