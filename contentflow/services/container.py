"""
Wires the orchestrator to real collaborators from settings.

Workers, the API and the CLI all go through get_orchestrator(); tests build
an Orchestrator directly with fakes instead.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from functools import lru_cache

from contentflow.core.config import Settings, settings
from contentflow.db.session import SessionLocal
from contentflow.services.asset_pipeline import AssetPipeline, OpenAIImageGenerator
from contentflow.services.enhancement import OllamaEnhancementEngine, OpenAIEnhancementEngine
from contentflow.services.error_handler import ErrorHandler
from contentflow.services.health import HealthAggregator
from contentflow.services.job_store import JobStore
from contentflow.services.leases import StageLeaseManager
from contentflow.services.notifier import Notifier, NullNotifier, TelegramNotifier
from contentflow.services.ollama_client import OllamaClient
from contentflow.services.orchestrator import Orchestrator
from contentflow.services.stage_handlers import build_stage_handlers
from contentflow.services.stats import StatsAggregator
from contentflow.services.storage import S3AssetStorage
from contentflow.services.timeout_monitor import TimeoutMonitor
from contentflow.services.youtube import YouTubeContentExtractor

logger = logging.getLogger(__name__)


def build_notifier(cfg: Settings) -> Notifier:
    if cfg.telegram_bot_token and cfg.telegram_chat_id:
        return TelegramNotifier(cfg.telegram_bot_token, cfg.telegram_chat_id, timeout_s=cfg.telegram_timeout_sec)
    logger.warning("TELEGRAM_BOT_TOKEN / TELEGRAM_CHAT_ID not set; notifications are only logged")
    return NullNotifier()


def build_enhancer(cfg: Settings) -> OpenAIEnhancementEngine | OllamaEnhancementEngine:
    provider = (cfg.enhancement_provider or "openai").strip().lower()
    if provider == "ollama":
        return OllamaEnhancementEngine(OllamaClient(cfg.ollama_base_url), cfg.ollama_model)
    if provider == "openai":
        return OpenAIEnhancementEngine(
            cfg.openai_api_key,
            model=cfg.openai_model,
            timeout_sec=cfg.openai_timeout_sec,
            max_retries=cfg.openai_max_retries,
        )
    raise ValueError(f"Unknown ENHANCEMENT_PROVIDER: {cfg.enhancement_provider!r}")


def build_orchestrator(cfg: Settings = settings) -> Orchestrator:
    store = JobStore(SessionLocal)
    stats = StatsAggregator()
    notifier = build_notifier(cfg)

    extractor = YouTubeContentExtractor(timeout_sec=cfg.ytdlp_timeout_sec, language=cfg.transcript_language)
    enhancer = build_enhancer(cfg)
    storage = S3AssetStorage(
        bucket=cfg.s3_bucket,
        endpoint_url=cfg.s3_endpoint_url,
        public_endpoint=cfg.s3_public_endpoint,
        region=cfg.s3_region,
        access_key=cfg.s3_access_key,
        secret_key=cfg.s3_secret_key,
    )
    images = OpenAIImageGenerator(cfg.openai_api_key, model=cfg.openai_image_model, timeout_sec=cfg.openai_timeout_sec)
    assets = AssetPipeline(storage, images, image_limit=cfg.image_generation_limit)

    health = HealthAggregator({
        "content_source": extractor.ping,
        "job_store": store.ping,
        "asset_storage": storage.ping,
        "enhancement_engine": enhancer.ping,
        "notifier": notifier.ping,
    })

    return Orchestrator(
        store=store,
        handlers=build_stage_handlers(extractor, enhancer, assets, notifier),
        error_handler=ErrorHandler(store, stats, notifier),
        stats=stats,
        leases=StageLeaseManager(SessionLocal, ttl_seconds=cfg.stage_lease_ttl_sec),
        timeout_monitor=TimeoutMonitor(
            store,
            notifier,
            warn_after=timedelta(hours=cfg.timeout_warn_hours),
            escalate_after=timedelta(hours=cfg.timeout_escalate_hours),
        ),
        health=health,
        notifier=notifier,
    )


@lru_cache
def get_orchestrator() -> Orchestrator:
    # one per process, so the stats counters live as long as the worker
    return build_orchestrator()
