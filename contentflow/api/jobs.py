from __future__ import annotations

from datetime import datetime
from typing import Any, Callable

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from contentflow.api.deps import dispatch_dep, orchestrator_dep
from contentflow.core.errors import JobNotFoundError
from contentflow.core.state_machine import JobStatus
from contentflow.services.job_store import JobRecord
from contentflow.services.orchestrator import Orchestrator

router = APIRouter(prefix="/jobs", tags=["jobs"])


class CreateJobRequest(BaseModel):
    source_url: str = Field(min_length=1)


class CreateJobResponse(BaseModel):
    ok: bool
    job_id: int
    status: str
    task_id: str | None = None


class JobErrorOut(BaseModel):
    message: str
    stage: str
    kind: str | None = None
    occurred_at: datetime


class JobOut(BaseModel):
    ok: bool = True
    job_id: int
    source_url: str
    status: str
    status_changed_at: datetime
    created_at: datetime
    approval_flag: bool
    total_units: int | None = None
    completed_units: int | None = None
    asset_refs: dict[str, Any] = {}
    error: JobErrorOut | None = None


class JobListResponse(BaseModel):
    ok: bool
    count: int
    items: list[JobOut]


def _job_out(job: JobRecord) -> JobOut:
    error = None
    if job.error_info is not None:
        error = JobErrorOut(
            message=job.error_info.message,
            stage=job.error_info.stage,
            kind=job.error_info.kind,
            occurred_at=job.error_info.occurred_at,
        )
    return JobOut(
        job_id=job.id,
        source_url=job.source_url,
        status=job.status.value,
        status_changed_at=job.status_changed_at,
        created_at=job.created_at,
        approval_flag=job.approval_flag,
        total_units=job.counters.total_units if job.counters else None,
        completed_units=job.counters.completed_units if job.counters else None,
        asset_refs=job.asset_refs,
        error=error,
    )


def _get_or_404(orchestrator: Orchestrator, job_id: int) -> JobRecord:
    try:
        return orchestrator.store.get(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")


@router.post("", response_model=CreateJobResponse)
def create_job(
    req: CreateJobRequest,
    orchestrator: Orchestrator = Depends(orchestrator_dep),
    dispatch: Callable = Depends(dispatch_dep),
) -> CreateJobResponse:
    url = req.source_url.strip()
    if not url:
        raise HTTPException(status_code=400, detail="source_url is empty")

    job = orchestrator.store.create(url)
    # the worker runs initial processing; with the stage busy it waits for the next batch
    res = dispatch("process_single_unit", {"job_id": job.id})
    return CreateJobResponse(ok=True, job_id=job.id, status=job.status.value, task_id=getattr(res, "id", None))


@router.get("", response_model=JobListResponse)
def list_jobs(
    status: str = Query(...),
    orchestrator: Orchestrator = Depends(orchestrator_dep),
) -> JobListResponse:
    try:
        parsed = JobStatus.parse(status)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    items = [_job_out(j) for j in orchestrator.store.list_by_status(parsed)]
    return JobListResponse(ok=True, count=len(items), items=items)


@router.get("/{job_id}", response_model=JobOut)
def get_job(job_id: int, orchestrator: Orchestrator = Depends(orchestrator_dep)) -> JobOut:
    return _job_out(_get_or_404(orchestrator, job_id))


@router.post("/{job_id}/approve", response_model=JobOut)
def approve_job(job_id: int, orchestrator: Orchestrator = Depends(orchestrator_dep)) -> JobOut:
    job = _get_or_404(orchestrator, job_id)
    if job.status != JobStatus.AWAITING_APPROVAL:
        raise HTTPException(status_code=409, detail=f"Job is {job.status.value}, not awaiting approval")
    return _job_out(orchestrator.store.set_approval(job_id, True))
