from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Callable

from contentflow.core.errors import BatchFetchError, StaleJobError
from contentflow.core.state_machine import JobStatus
from contentflow.services.job_store import JobRecord, JobStore, utcnow
from contentflow.services.notifier import Notifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimeoutResult:
    scanned: int = 0
    warned: int = 0
    escalated: int = 0
    errors: int = 0
    locked: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


def _hours(delta: timedelta) -> float:
    return round(delta.total_seconds() / 3600, 1)


class TimeoutMonitor:
    """
    Finds jobs idling in awaiting_approval.

    warn_after <= elapsed < escalate_after: one warning per stay in the status
    (tracked with last_warned_at, compared against status_changed_at).
    elapsed >= escalate_after: moved to timeout_review, which takes the job out
    of every later scan.
    """

    def __init__(
        self,
        store: JobStore,
        notifier: Notifier,
        warn_after: timedelta = timedelta(hours=24),
        escalate_after: timedelta = timedelta(hours=48),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if warn_after >= escalate_after:
            raise ValueError("warn_after must be shorter than escalate_after")
        self.store = store
        self.notifier = notifier
        self.warn_after = warn_after
        self.escalate_after = escalate_after
        self._clock = clock

    @staticmethod
    def already_warned(job: JobRecord) -> bool:
        return job.last_warned_at is not None and job.last_warned_at >= job.status_changed_at

    def scan(self) -> TimeoutResult:
        # a failing fetch aborts the scan; per-job problems do not
        try:
            jobs = self.store.list_by_status(JobStatus.AWAITING_APPROVAL)
        except Exception as e:
            raise BatchFetchError(JobStatus.AWAITING_APPROVAL.value, str(e)) from e
        now = self._clock()
        warned = escalated = errors = 0

        for job in jobs:
            try:
                action = self._evaluate(job, now)
            except Exception:
                errors += 1
                logger.exception("Timeout check failed for job %s", job.id)
                continue
            if action == "warned":
                warned += 1
            elif action == "escalated":
                escalated += 1

        result = TimeoutResult(scanned=len(jobs), warned=warned, escalated=escalated, errors=errors)
        logger.info("Timeout scan: %s", result)
        return result

    def _evaluate(self, job: JobRecord, now: datetime) -> str | None:
        if job.approval_flag:
            # approved, the next approval batch picks it up
            return None

        elapsed = now - job.status_changed_at
        if elapsed >= self.escalate_after:
            return self._escalate(job, elapsed)
        if elapsed >= self.warn_after and not self.already_warned(job):
            return self._warn(job, elapsed, now)
        return None

    def _escalate(self, job: JobRecord, elapsed: timedelta) -> str | None:
        try:
            self.store.update_status(job.id, JobStatus.TIMEOUT_REVIEW, expected_status=JobStatus.AWAITING_APPROVAL)
        except StaleJobError as e:
            logger.info("Job %s moved before escalation: %s", job.id, e)
            return None

        logger.warning("Job %s escalated to timeout_review after %sh", job.id, _hours(elapsed))
        try:
            self.notifier.send(
                "approval_escalated",
                {"job_id": job.id, "source_url": job.source_url, "waiting_hours": _hours(elapsed)},
            )
        except Exception:
            logger.exception("Escalation notification for job %s could not be sent", job.id)
        return "escalated"

    def _warn(self, job: JobRecord, elapsed: timedelta, now: datetime) -> str | None:
        delivered = self.notifier.send(
            "approval_timeout_warning",
            {
                "job_id": job.id,
                "source_url": job.source_url,
                "waiting_hours": _hours(elapsed),
                "escalates_in_hours": _hours(self.escalate_after - elapsed),
            },
        )
        if not delivered:
            # not marked, so the next scan tries again
            logger.warning("Timeout warning for job %s was not delivered", job.id)
            return None
        self.store.mark_warned(job.id, now)
        return "warned"
