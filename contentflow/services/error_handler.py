from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from contentflow.core.errors import ErrorKind, InvalidStateTransitionError
from contentflow.core.state_machine import JobStatus
from contentflow.services.job_store import ErrorInfo, JobRecord, JobStore, utcnow
from contentflow.services.notifier import Notifier
from contentflow.services.stats import OutcomeKind, StatsAggregator

logger = logging.getLogger(__name__)


class ErrorHandler:
    """
    Terminal sink for stage failures: marks the job failed, records the
    diagnostics, counts the failure and tells a human. Never raises.
    """

    def __init__(
        self,
        store: JobStore,
        stats: StatsAggregator,
        notifier: Notifier,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.stats = stats
        self.notifier = notifier
        self._clock = clock

    def handle_failure(self, job: JobRecord, error_kind: ErrorKind | str, message: str, stage: str) -> bool:
        """Returns True when the failed status was written to the store."""
        try:
            kind = ErrorKind(error_kind).value
        except ValueError:
            kind = ErrorKind.INTERNAL.value
        message = (message or "unknown error").strip()
        recorded = False

        try:
            self.store.update_status(
                job.id,
                JobStatus.FAILED,
                {"error_info": ErrorInfo(message=message, stage=stage, kind=kind, occurred_at=self._clock())},
            )
            recorded = True
        except InvalidStateTransitionError as e:
            # already terminal; it was counted and reported when it got there
            logger.warning("Job %s not marked failed at %s: %s", job.id, stage, e)
            return False
        except Exception:
            logger.exception("Could not record failure for job %s at %s", job.id, stage)

        self.stats.record_outcome(OutcomeKind.FAILURE)
        logger.error("Job %s failed at %s [%s]: %s", job.id, stage, kind, message)

        try:
            self.notifier.send(
                "job_failed",
                {
                    "job_id": job.id,
                    "source_url": job.source_url,
                    "stage": stage,
                    "error_kind": kind,
                    "message": message,
                },
            )
        except Exception:
            logger.exception("Failure notification for job %s could not be sent", job.id)

        return recorded
