"""
Stage handlers: one per non-terminal status in the transition table.

A handler receives a job snapshot, performs the side effects for its stage
and returns a StageOutcome. It never writes to the job store; the
orchestrator applies the transition after reading the outcome. Every
collaborator call goes through a named step so a failure comes back as
Failure(kind, message, step) rather than a raw exception.

Handlers must be safe to re-run from scratch: a stage interrupted before
its status write is simply retried by the next batch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol, Union

from contentflow.core.errors import ErrorKind, classify_exception
from contentflow.core.state_machine import JobStatus
from contentflow.services.asset_pipeline import AssetPipeline
from contentflow.services.enhancement import EnhancedContent
from contentflow.services.job_store import JobRecord, UnitCounters
from contentflow.services.notifier import Notifier
from contentflow.services.youtube import VideoMetadata

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Success:
    updated_fields: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    error_kind: ErrorKind
    message: str
    step: str | None = None

    @property
    def ok(self) -> bool:
        return False


StageOutcome = Union[Success, Failure]
StageHandler = Callable[[JobRecord], StageOutcome]


class ContentExtractor(Protocol):
    def fetch_metadata(self, source_url: str) -> VideoMetadata:
        ...


class EnhancementEngine(Protocol):
    def enhance(self, metadata: dict[str, Any]) -> EnhancedContent:
        ...


class StepError(Exception):
    def __init__(self, step: str, cause: BaseException):
        self.step = step
        self.cause = cause
        super().__init__(f"{step}: {cause}")

    def to_failure(self) -> Failure:
        return Failure(classify_exception(self.cause), f"{self.step}: {self.cause}", self.step)


def run_step(step: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    try:
        return fn(*args, **kwargs)
    except Exception as e:
        raise StepError(step, e) from e


def invalid(message: str, step: str = "validate") -> Failure:
    return Failure(ErrorKind.VALIDATION_ERROR, message, step)


class BaseStageHandler:
    stage: str = "stage"

    def __init__(self, notifier: Notifier) -> None:
        self.notifier = notifier

    def __call__(self, job: JobRecord) -> StageOutcome:
        try:
            return self.run(job)
        except StepError as e:
            logger.warning("Job %s: %s step %s failed: %s", job.id, self.stage, e.step, e.cause)
            return e.to_failure()

    def run(self, job: JobRecord) -> StageOutcome:
        raise NotImplementedError

    def notify(self, event: str, job: JobRecord, **extra: Any) -> None:
        # notifications never decide a stage outcome
        try:
            self.notifier.send(event, {"job_id": job.id, "source_url": job.source_url, **extra})
        except Exception:
            logger.exception("Notification %s for job %s could not be sent", event, job.id)

    @staticmethod
    def enhanced_of(job: JobRecord) -> EnhancedContent | None:
        data = job.payload.get("enhanced")
        if not isinstance(data, dict) or not data.get("optimized_title"):
            return None
        return EnhancedContent.from_dict(data)


class InitialProcessing(BaseStageHandler):
    """created: metadata -> enhancement -> asset folder -> approval request."""

    stage = "initial_processing"

    def __init__(self, extractor: ContentExtractor, enhancer: EnhancementEngine, assets: AssetPipeline,
                 notifier: Notifier) -> None:
        super().__init__(notifier)
        self.extractor = extractor
        self.enhancer = enhancer
        self.assets = assets

    def run(self, job: JobRecord) -> StageOutcome:
        if not (job.source_url or "").strip():
            return invalid(f"Job {job.id} has no source_url")

        metadata: VideoMetadata = run_step("fetch_metadata", self.extractor.fetch_metadata, job.source_url)
        enhanced: EnhancedContent = run_step("enhance", self.enhancer.enhance, metadata.to_dict())
        folder = run_step("create_folder", self.assets.create_folder, job.id)

        self.notify(
            "approval_requested",
            job,
            title=enhanced.optimized_title,
            source_title=metadata.title,
            folder=folder,
        )
        return Success({
            "payload": {"metadata": metadata.to_dict(), "enhanced": enhanced.to_dict()},
            "asset_refs": {"folder": folder},
        })


class ApprovedProcessing(BaseStageHandler):
    """awaiting_approval with approval_flag: plan the asset units."""

    stage = "approved_processing"

    def __init__(self, assets: AssetPipeline, notifier: Notifier) -> None:
        super().__init__(notifier)
        self.assets = assets

    def run(self, job: JobRecord) -> StageOutcome:
        if not job.approval_flag:
            return invalid(f"Job {job.id} is not approved")
        enhanced = self.enhanced_of(job)
        if enhanced is None:
            return invalid(f"Job {job.id} has no enhanced content to build assets from")

        units = self.assets.plan_units(enhanced)
        self.notify("approved", job, title=enhanced.optimized_title, planned_assets=units)
        return Success({"counters": UnitCounters(total_units=units, completed_units=0)})


class AssetGeneration(BaseStageHandler):
    stage = "asset_generation"

    def __init__(self, assets: AssetPipeline, notifier: Notifier) -> None:
        super().__init__(notifier)
        self.assets = assets

    def run(self, job: JobRecord) -> StageOutcome:
        enhanced = self.enhanced_of(job)
        if enhanced is None:
            return invalid(f"Job {job.id} has no enhanced content to build assets from")

        refs = run_step("generate_assets", self.assets.generate, job.id, enhanced)
        done = 1 + len(refs.get("images") or [])
        total = job.counters.total_units if job.counters else done

        self.notify("assets_generated", job, title=enhanced.optimized_title, assets=f"{done}/{total}")
        return Success({
            "asset_refs": refs,
            "counters": UnitCounters(total_units=total, completed_units=done),
        })


class FinalAssembly(BaseStageHandler):
    stage = "final_assembly"

    def __init__(self, assets: AssetPipeline, notifier: Notifier) -> None:
        super().__init__(notifier)
        self.assets = assets

    def run(self, job: JobRecord) -> StageOutcome:
        if not job.asset_refs.get("thumbnail"):
            return invalid(f"Job {job.id} reached final assembly without generated assets")

        final_output = run_step("assemble", self.assets.assemble, job.id, job.payload, job.asset_refs)
        title = (job.payload.get("enhanced") or {}).get("optimized_title")
        self.notify("completed", job, title=title, final_output=final_output)
        return Success({"asset_refs": {"final_output": final_output}})


def build_stage_handlers(extractor: ContentExtractor, enhancer: EnhancementEngine, assets: AssetPipeline,
                         notifier: Notifier) -> dict[JobStatus, StageHandler]:
    return {
        JobStatus.CREATED: InitialProcessing(extractor, enhancer, assets, notifier),
        JobStatus.AWAITING_APPROVAL: ApprovedProcessing(assets, notifier),
        JobStatus.GENERATING_ASSETS: AssetGeneration(assets, notifier),
        JobStatus.ASSETS_READY: FinalAssembly(assets, notifier),
    }
