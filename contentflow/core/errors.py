"""
Pipeline error taxonomy.

Collaborators raise PipelineError subclasses; stage handlers turn them into
Failure outcomes tagged with an ErrorKind so the orchestrator decides what
happens to the job. Orchestration errors (stale writes, busy leases, batch
fetch faults) have their own types below.
"""

from __future__ import annotations

from enum import Enum

import httpx
import openai


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    TRANSIENT_NETWORK = "transient_network"
    VALIDATION_ERROR = "validation_error"
    SERVICE_UNAVAILABLE = "service_unavailable"
    INTERNAL = "internal"

    @property
    def retryable(self) -> bool:
        return self in (ErrorKind.RATE_LIMITED, ErrorKind.TRANSIENT_NETWORK, ErrorKind.SERVICE_UNAVAILABLE)


class PipelineError(Exception):
    """Base exception for collaborator failures. Carries an ErrorKind."""

    kind: ErrorKind = ErrorKind.INTERNAL


class NotFoundError(PipelineError):
    """Source content is missing; needs human input before a retry."""

    kind = ErrorKind.NOT_FOUND


class RateLimitedError(PipelineError):
    kind = ErrorKind.RATE_LIMITED


class TransientNetworkError(PipelineError):
    kind = ErrorKind.TRANSIENT_NETWORK


class JobValidationError(PipelineError):
    """Malformed job data; requires a manual fix."""

    kind = ErrorKind.VALIDATION_ERROR


class ServiceUnavailableError(PipelineError):
    kind = ErrorKind.SERVICE_UNAVAILABLE


class JobNotFoundError(Exception):
    """Raised when a job id does not exist in the store."""

    def __init__(self, job_id: int):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class StaleJobError(Exception):
    """Raised when a compare-and-set status write finds the job already moved."""

    def __init__(self, job_id: int, expected: str, actual: str):
        self.job_id = job_id
        self.expected = expected
        self.actual = actual
        super().__init__(f"Job {job_id} is no longer {expected} (now {actual})")


class InvalidStateTransitionError(Exception):
    """Raised when attempting a status change outside the transition table."""

    def __init__(self, current_state: str, target_state: str):
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(f"Invalid job state transition: {current_state} -> {target_state}")


class StageBusyError(Exception):
    """Raised when another run already holds the lease for a stage."""

    def __init__(self, stage: str):
        self.stage = stage
        super().__init__(f"Stage already running: {stage}")


class BatchFetchError(Exception):
    """The job store could not list a batch. Aborts the batch, not a job."""

    def __init__(self, status: str, reason: str):
        self.status = status
        self.reason = reason
        super().__init__(f"Could not fetch {status} jobs: {reason}")


def classify_exception(exc: BaseException) -> ErrorKind:
    """Map any exception raised by a collaborator onto the pipeline taxonomy."""
    if isinstance(exc, PipelineError):
        return exc.kind

    if isinstance(exc, httpx.TimeoutException | httpx.NetworkError):
        return ErrorKind.TRANSIENT_NETWORK
    if isinstance(exc, httpx.HTTPStatusError):
        return _kind_for_status(exc.response.status_code)

    if isinstance(exc, openai.RateLimitError):
        return ErrorKind.RATE_LIMITED
    if isinstance(exc, openai.APIConnectionError):  # includes APITimeoutError
        return ErrorKind.TRANSIENT_NETWORK
    if isinstance(exc, openai.APIStatusError):
        return _kind_for_status(exc.status_code)

    if isinstance(exc, TimeoutError | ConnectionError):
        return ErrorKind.TRANSIENT_NETWORK
    return ErrorKind.INTERNAL


def _kind_for_status(status_code: int) -> ErrorKind:
    if status_code == 404:
        return ErrorKind.NOT_FOUND
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code in (400, 422):
        return ErrorKind.VALIDATION_ERROR
    if status_code >= 500:
        return ErrorKind.SERVICE_UNAVAILABLE
    return ErrorKind.INTERNAL
