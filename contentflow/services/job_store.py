from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy import func, select, text
from sqlalchemy.orm import Session, sessionmaker

from contentflow.core.errors import JobNotFoundError, StaleJobError
from contentflow.core.state_machine import JobStatus, validate_transition
from contentflow.models.job import Job


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on round-trip; everything we write is UTC
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class ErrorInfo:
    message: str
    stage: str
    occurred_at: datetime
    kind: str | None = None


@dataclass(frozen=True)
class UnitCounters:
    total_units: int
    completed_units: int = 0


@dataclass(frozen=True)
class JobRecord:
    """Detached snapshot of a jobs row."""

    id: int
    source_url: str
    status: JobStatus
    status_changed_at: datetime
    created_at: datetime
    approval_flag: bool = False
    error_info: ErrorInfo | None = None
    counters: UnitCounters | None = None
    asset_refs: dict[str, Any] = field(default_factory=dict)
    payload: dict[str, Any] = field(default_factory=dict)
    last_warned_at: datetime | None = None


def _loads(raw: str | None) -> dict[str, Any]:
    try:
        data = json.loads(raw or "{}")
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _dumps(data: dict[str, Any]) -> str:
    return json.dumps(data or {}, ensure_ascii=False, default=str)


def to_record(job: Job) -> JobRecord:
    error_info = None
    if job.error_message is not None:
        error_info = ErrorInfo(
            message=job.error_message,
            stage=job.error_stage or "unknown",
            occurred_at=as_utc(job.error_occurred_at),
            kind=job.error_kind,
        )
    counters = None
    if job.total_units is not None:
        counters = UnitCounters(total_units=job.total_units, completed_units=job.completed_units or 0)

    return JobRecord(
        id=job.id,
        source_url=job.source_url,
        status=JobStatus.parse(job.status),
        status_changed_at=as_utc(job.status_changed_at),
        created_at=as_utc(job.created_at),
        approval_flag=bool(job.approval_flag),
        error_info=error_info,
        counters=counters,
        asset_refs=_loads(job.asset_refs_json),
        payload=_loads(job.payload_json),
        last_warned_at=as_utc(job.last_warned_at),
    )


_UPDATE_FIELDS = {"asset_refs", "payload", "counters", "error_info"}


class JobStore:
    """
    Durable job records, queryable by status.

    Every call opens its own session and commits before returning, so a
    process always reads its own writes.
    """

    def __init__(self, session_factory: sessionmaker, clock: Callable[[], datetime] = utcnow) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def _session(self) -> Session:
        return self._session_factory()

    def _load(self, db: Session, job_id: int, *, for_update: bool = False) -> Job:
        q = db.query(Job).filter(Job.id == job_id)
        if for_update:
            q = q.with_for_update()
        job = q.one_or_none()
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def create(self, source_url: str) -> JobRecord:
        now = self._clock()
        with self._session() as db:
            job = Job(
                source_url=source_url,
                status=JobStatus.CREATED.value,
                status_changed_at=now,
                created_at=now,
                approval_flag=False,
                asset_refs_json="{}",
                payload_json="{}",
            )
            db.add(job)
            db.commit()
            db.refresh(job)
            return to_record(job)

    def get(self, job_id: int) -> JobRecord:
        with self._session() as db:
            return to_record(self._load(db, job_id))

    def list_by_status(self, status: JobStatus) -> list[JobRecord]:
        status = JobStatus.parse(status)
        with self._session() as db:
            rows = db.query(Job).filter(Job.status == status.value).order_by(Job.id.asc()).all()
            return [to_record(r) for r in rows]

    def update_status(
        self,
        job_id: int,
        status: JobStatus,
        fields: dict[str, Any] | None = None,
        *,
        expected_status: JobStatus | None = None,
    ) -> JobRecord:
        """
        Write a new status plus optional fields:
          - asset_refs: merged into existing refs
          - payload: merged into existing payload
          - counters: UnitCounters
          - error_info: ErrorInfo (only kept when status is failed)

        With expected_status the write is a compare-and-set: StaleJobError
        if the job is no longer in that status.
        """
        status = JobStatus.parse(status)
        fields = fields or {}
        unknown = set(fields) - _UPDATE_FIELDS
        if unknown:
            raise ValueError(f"Unknown job fields: {', '.join(sorted(unknown))}")

        with self._session() as db:
            job = self._load(db, job_id, for_update=True)
            current = JobStatus.parse(job.status)
            if expected_status is not None and current != JobStatus.parse(expected_status):
                raise StaleJobError(job_id, JobStatus.parse(expected_status).value, current.value)
            validate_transition(current, status)

            job.status = status.value
            job.status_changed_at = self._clock()

            if "asset_refs" in fields:
                refs = _loads(job.asset_refs_json)
                refs.update(fields["asset_refs"] or {})
                job.asset_refs_json = _dumps(refs)

            if "payload" in fields:
                payload = _loads(job.payload_json)
                payload.update(fields["payload"] or {})
                job.payload_json = _dumps(payload)

            counters = fields.get("counters")
            if counters is not None:
                job.total_units = counters.total_units
                job.completed_units = counters.completed_units

            error_info = fields.get("error_info")
            if status == JobStatus.FAILED:
                if error_info is None:
                    raise ValueError("A failed job needs error_info")
                job.error_message = error_info.message
                job.error_stage = error_info.stage
                job.error_kind = error_info.kind
                job.error_occurred_at = error_info.occurred_at
            else:
                job.error_message = None
                job.error_stage = None
                job.error_kind = None
                job.error_occurred_at = None

            db.commit()
            db.refresh(job)
            return to_record(job)

    def set_approval(self, job_id: int, approved: bool = True) -> JobRecord:
        with self._session() as db:
            job = self._load(db, job_id)
            job.approval_flag = approved
            db.commit()
            db.refresh(job)
            return to_record(job)

    def mark_warned(self, job_id: int, at: datetime | None = None) -> JobRecord:
        with self._session() as db:
            job = self._load(db, job_id)
            job.last_warned_at = at or self._clock()
            db.commit()
            db.refresh(job)
            return to_record(job)

    def count_by_status(self) -> dict[JobStatus, int]:
        with self._session() as db:
            rows = db.execute(select(Job.status, func.count(Job.id)).group_by(Job.status)).all()
        counts = {s: 0 for s in JobStatus}
        for raw, n in rows:
            counts[JobStatus.parse(raw)] = int(n)
        return counts

    def ping(self) -> bool:
        with self._session() as db:
            return db.execute(text("SELECT 1")).scalar_one() == 1
