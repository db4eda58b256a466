"""Construction of the pipeline components from a Config."""

from __future__ import annotations

import logging
from typing import Optional

from autoposter.ai.rate_limiter import RateLimiter
from autoposter.ai.text_generation import OpenAITextGenerator
from autoposter.ai.translator import Translator
from autoposter.config import Config
from autoposter.extraction.article import ArticleExtractor
from autoposter.ingestion.feed_poller import FeedPoller
from autoposter.monitoring.health import MonitoringService
from autoposter.processing.content_processor import ContentProcessor
from autoposter.storage.base import Store
from autoposter.storage.postgres_schema import ensure_postgres_schema
from autoposter.storage.postgres_store import PostgresStore

logger = logging.getLogger(__name__)


def build_store(config: Config, *, ensure_schema: bool = True) -> PostgresStore:
    if ensure_schema:
        ensure_postgres_schema(config.pg_dsn)
    return PostgresStore(config.pg_dsn)


def build_translator(config: Config) -> Optional[Translator]:
    """Translator backed by the configured model, or None when no API key is set."""
    if not config.openai_api_key:
        return None
    return Translator(
        OpenAITextGenerator.from_config(config),
        target_language=config.target_language,
        default_max_tokens=config.ai_max_tokens,
    )


def build_rate_limiter(config: Config) -> RateLimiter:
    return RateLimiter(config.rate_max_concurrent, config.rate_min_interval_seconds)


def build_poller(config: Config, store: Store) -> FeedPoller:
    return FeedPoller(store, timeout=config.request_timeout, user_agent=config.user_agent)


def build_processor(
    config: Config,
    store: Store,
    translator: Translator,
    rate_limiter: Optional[RateLimiter] = None,
) -> ContentProcessor:
    extractor = ArticleExtractor(timeout=config.request_timeout, user_agent=config.user_agent)
    return ContentProcessor.from_config(
        config,
        store,
        extractor,
        translator,
        rate_limiter or build_rate_limiter(config),
    )


def build_monitoring(config: Config, store: Store, translator: Optional[Translator]) -> MonitoringService:
    return MonitoringService(
        store,
        translator,
        queue_alert_threshold=config.queue_alert_threshold,
        failure_rate_alert_pct=config.failure_rate_alert_pct,
    )
