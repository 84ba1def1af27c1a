"""
Job status enum and the transition table that drives the pipeline.

Lifecycle:
    created -> awaiting_approval -> generating_assets -> assets_ready -> completed

Each non-terminal status except the approval wait maps to exactly one stage
handler. Any handler failure lands in failed. A job idling in
awaiting_approval past the escalation threshold moves to timeout_review.

INVARIANT: terminal statuses (completed, failed, timeout_review) never
transition again. The status column is also the ownership token: only the
batch for a status ever picks up jobs in that status.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, FrozenSet, TYPE_CHECKING

from contentflow.core.errors import InvalidStateTransitionError

if TYPE_CHECKING:
    from contentflow.services.job_store import JobRecord


class JobStatus(str, Enum):
    CREATED = "created"
    AWAITING_APPROVAL = "awaiting_approval"
    GENERATING_ASSETS = "generating_assets"
    ASSETS_READY = "assets_ready"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT_REVIEW = "timeout_review"

    @classmethod
    def parse(cls, raw: "str | JobStatus") -> "JobStatus":
        """
        Accepts the stored value ("awaiting_approval"), the member name
        ("AWAITING_APPROVAL") or the CamelCase form ("AwaitingApproval").
        """
        if isinstance(raw, JobStatus):
            return raw
        key = re.sub(r"[^a-z]", "", (raw or "").lower())
        for status in cls:
            if key == status.value.replace("_", ""):
                return status
        raise ValueError(f"Unknown job status: {raw!r}")


TERMINAL_STATUSES: FrozenSet[JobStatus] = frozenset({
    JobStatus.COMPLETED,
    JobStatus.FAILED,
    JobStatus.TIMEOUT_REVIEW,
})


def is_terminal(status: JobStatus) -> bool:
    return status in TERMINAL_STATUSES


def _approved(job: "JobRecord") -> bool:
    return bool(job.approval_flag)


@dataclass(frozen=True)
class Transition:
    source: JobStatus
    stage: str
    on_success: JobStatus
    on_failure: JobStatus = JobStatus.FAILED
    # A job in `source` is only picked up when the guard passes
    guard: Callable[["JobRecord"], bool] | None = None

    def accepts(self, job: "JobRecord") -> bool:
        return self.guard is None or self.guard(job)


TRANSITIONS: dict[JobStatus, Transition] = {
    t.source: t
    for t in (
        Transition(JobStatus.CREATED, "initial_processing", JobStatus.AWAITING_APPROVAL),
        Transition(JobStatus.AWAITING_APPROVAL, "approved_processing", JobStatus.GENERATING_ASSETS, guard=_approved),
        Transition(JobStatus.GENERATING_ASSETS, "asset_generation", JobStatus.ASSETS_READY),
        Transition(JobStatus.ASSETS_READY, "final_assembly", JobStatus.COMPLETED),
    )
}

# Status writes that do not come from a stage handler's outcome
_EXTRA_EDGES: FrozenSet[tuple[JobStatus, JobStatus]] = frozenset({
    (JobStatus.AWAITING_APPROVAL, JobStatus.TIMEOUT_REVIEW),
})


def _allowed_edges() -> FrozenSet[tuple[JobStatus, JobStatus]]:
    edges = set(_EXTRA_EDGES)
    for t in TRANSITIONS.values():
        edges.add((t.source, t.on_success))
        edges.add((t.source, t.on_failure))
    # the error handler may fail any job that has not finished
    for status in JobStatus:
        if not is_terminal(status):
            edges.add((status, JobStatus.FAILED))
    return frozenset(edges)


ALLOWED_EDGES = _allowed_edges()


def can_transition(from_status: JobStatus, to_status: JobStatus) -> bool:
    if is_terminal(from_status):
        return False
    return (from_status, to_status) in ALLOWED_EDGES


def validate_transition(from_status: JobStatus, to_status: JobStatus) -> None:
    if not can_transition(from_status, to_status):
        raise InvalidStateTransitionError(from_status.value, to_status.value)


def transition_for(status: JobStatus) -> Transition:
    try:
        return TRANSITIONS[status]
    except KeyError:
        raise ValueError(f"No stage handler runs for status {status.value}") from None
