import os

# must be set before contentflow.core.config is imported anywhere
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.pop("TELEGRAM_BOT_TOKEN", None)

from datetime import datetime, timedelta, timezone  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from contentflow.core.errors import NotFoundError  # noqa: E402
from contentflow.db.base import Base  # noqa: E402
from contentflow.services.asset_pipeline import AssetPipeline  # noqa: E402
from contentflow.services.enhancement import EnhancedContent  # noqa: E402
from contentflow.services.error_handler import ErrorHandler  # noqa: E402
from contentflow.services.health import HealthAggregator  # noqa: E402
from contentflow.services.job_store import JobStore  # noqa: E402
from contentflow.services.leases import StageLeaseManager  # noqa: E402
from contentflow.services.orchestrator import Orchestrator  # noqa: E402
from contentflow.services.stage_handlers import build_stage_handlers  # noqa: E402
from contentflow.services.stats import StatsAggregator  # noqa: E402
from contentflow.services.timeout_monitor import TimeoutMonitor  # noqa: E402
from contentflow.services.youtube import VideoMetadata, extract_youtube_video_id  # noqa: E402

VIDEO_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    """Keeps every event; can be told to report failure or to raise."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []
        self.deliver = True
        self.raise_error = False

    def send(self, event: str, payload: dict[str, Any]) -> bool:
        if self.raise_error:
            raise RuntimeError("notifier exploded")
        self.events.append((event, payload))
        return self.deliver

    def of(self, event: str) -> list[dict[str, Any]]:
        return [p for e, p in self.events if e == event]


class FakeExtractor:
    def __init__(self) -> None:
        self.calls: list[str] = []
        self.broken_urls: set[str] = set()

    def fetch_metadata(self, source_url: str) -> VideoMetadata:
        self.calls.append(source_url)
        if source_url in self.broken_urls:
            raise RuntimeError("extractor crashed")
        video_id = extract_youtube_video_id(source_url)
        if video_id is None:
            raise NotFoundError(f"No video at {source_url}")
        return VideoMetadata(
            video_id=video_id,
            source_url=source_url,
            title="How sourdough works",
            description="A baker explains fermentation.",
            channel="Bread Lab",
            tags=["bread", "baking"],
            transcript="Flour and water ferment. Yeast makes gas. The dough rises.",
            transcript_source="captions",
        )

    def ping(self) -> bool:
        return True


class FakeEnhancer:
    def __init__(self) -> None:
        self.calls = 0

    def enhance(self, metadata: dict[str, Any]) -> EnhancedContent:
        self.calls += 1
        return EnhancedContent(
            optimized_title=f"{metadata['title']} in 5 minutes",
            description="Fermentation, explained.",
            script_sentences=["Flour and water ferment.", "Yeast makes gas.", "The dough rises."],
            image_prompts=["a bubbling starter jar", "dough rising in a bowl"],
            keywords=["sourdough"],
            provider="fake",
        )

    def ping(self) -> bool:
        return True


class MemoryStorage:
    """In-memory stand-in for S3AssetStorage."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}

    @staticmethod
    def job_prefix(job_id: int) -> str:
        return f"jobs/{job_id}"

    def create_folder(self, job_id: int) -> str:
        key = f"{self.job_prefix(job_id)}/"
        self.objects[key] = b""
        return f"mem://{key}"

    def put_bytes(self, key: str, data: bytes, content_type: str | None = None) -> str:
        self.objects[key] = data
        return f"mem://{key}"

    def ping(self) -> bool:
        return True


class FakeImages:
    def __init__(self) -> None:
        self.prompts: list[str] = []

    def render(self, prompt: str) -> bytes:
        self.prompts.append(prompt)
        return b"\x89PNG fake"


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(session_factory, clock) -> JobStore:
    return JobStore(session_factory, clock=clock)


@pytest.fixture
def leases(session_factory, clock) -> StageLeaseManager:
    return StageLeaseManager(session_factory, ttl_seconds=600, clock=clock)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def stats(clock) -> StatsAggregator:
    return StatsAggregator(clock=clock)


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def enhancer() -> FakeEnhancer:
    return FakeEnhancer()


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def assets(storage) -> AssetPipeline:
    return AssetPipeline(storage, FakeImages(), image_limit=4)


@pytest.fixture
def error_handler(store, stats, notifier, clock) -> ErrorHandler:
    return ErrorHandler(store, stats, notifier, clock=clock)


@pytest.fixture
def timeout_monitor(store, notifier, clock) -> TimeoutMonitor:
    return TimeoutMonitor(store, notifier, clock=clock)


@pytest.fixture
def orchestrator(store, leases, notifier, stats, extractor, enhancer, assets, error_handler, timeout_monitor):
    health = HealthAggregator({
        "content_source": extractor.ping,
        "job_store": store.ping,
        "asset_storage": assets.storage.ping,
        "enhancement_engine": enhancer.ping,
        "notifier": lambda: True,
    })
    return Orchestrator(
        store=store,
        handlers=build_stage_handlers(extractor, enhancer, assets, notifier),
        error_handler=error_handler,
        stats=stats,
        leases=leases,
        timeout_monitor=timeout_monitor,
        health=health,
        notifier=notifier,
    )
