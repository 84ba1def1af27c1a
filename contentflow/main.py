from typing import Any

from fastapi import Depends, FastAPI
from pydantic import BaseModel

from contentflow.api.deps import orchestrator_dep
from contentflow.api.jobs import router as jobs_router
from contentflow.core.config import settings
from contentflow.core.logging_setup import setup_logging
from contentflow.services.orchestrator import Orchestrator

setup_logging(settings.log_level)

app = FastAPI(title="Contentflow Pipeline API", version="0.1.0")
app.include_router(jobs_router)


class HealthResponse(BaseModel):
    ok: bool
    service: str
    version: str
    checks: dict[str, bool]
    checked_at: str


class StatsResponse(BaseModel):
    ok: bool
    stats: dict[str, Any]


@app.get("/health", response_model=HealthResponse)
def health(orchestrator: Orchestrator = Depends(orchestrator_dep)) -> HealthResponse:
    report = orchestrator.check_health()
    return HealthResponse(
        ok=report.healthy,
        service="api",
        version=app.version,
        checks=report.checks,
        checked_at=report.checked_at.isoformat(),
    )


@app.get("/stats", response_model=StatsResponse)
def stats(orchestrator: Orchestrator = Depends(orchestrator_dep)) -> StatsResponse:
    return StatsResponse(ok=True, stats=orchestrator.snapshot().to_dict())
