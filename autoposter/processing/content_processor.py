"""Turn pending import records into posts.

Per record: lock -> extract -> translate (rate limited) -> validate -> hero
image -> slug + publish policy -> create post -> complete. Failures feed the
retry policy; the lock is always released.

Locks are advisory and time based: ``locked_at``/``locked_by`` on the record,
valid while ``now - locked_at < lock_timeout``. Acquisition is read then
write, so two workers can race; the unique source URL is what keeps posts
from being duplicated.
"""

from __future__ import annotations

import logging
import os
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import requests

from autoposter.ai.rate_limiter import RateLimiter
from autoposter.ai.translator import SEOMetadata, TranslatedArticle, Translator
from autoposter.config import DEFAULT_USER_AGENT, ConfigurationError
from autoposter.extraction.article import ArticleContent, ArticleExtractor
from autoposter.media.images import JPEG_MIME, download_image, image_filename, optimize_image
from autoposter.publishing.policy import resolve_publish_policy
from autoposter.publishing.slugs import FALLBACK_SLUG, generate_slug, generate_unique_slug
from autoposter.storage.base import Store, StoreError
from autoposter.storage.records import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_PROCESSING,
    ContentStyle,
    Feed,
    ImportRecord,
)

logger = logging.getLogger(__name__)

EXCERPT_MAX_CHARS = 300
META_TITLE_CHARS = 60
META_DESCRIPTION_CHARS = 160
MIN_TITLE_CHARS = 1
MIN_CONTENT_CHARS = 100
MIN_EXCERPT_CHARS = 20
ERROR_MESSAGE_MAX_CHARS = 2000


class ContentValidationError(Exception):
    """The rewritten article failed the quality gate."""


class ImportNotFoundError(Exception):
    pass


class LockUnavailableError(Exception):
    """Another worker holds a valid lock on the import record."""


@dataclass
class ProcessResult:
    processed: int = 0
    successful: int = 0
    failed: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)


def default_owner_id() -> str:
    return f"proc_{os.getpid()}_{int(time.time() * 1000)}"


def validate_translated_content(article: TranslatedArticle) -> ValidationResult:
    errors = []
    if len((article.title or "").strip()) < MIN_TITLE_CHARS:
        errors.append("Title is missing")
    if len(article.content or "") < MIN_CONTENT_CHARS:
        errors.append(f"Content is too short (min {MIN_CONTENT_CHARS} characters)")
    if len(article.excerpt or "") < MIN_EXCERPT_CHARS:
        errors.append(f"Excerpt is too short (min {MIN_EXCERPT_CHARS} characters)")
    return ValidationResult(valid=not errors, errors=errors)


def passthrough_article(article: ArticleContent) -> TranslatedArticle:
    """Untranslated article for feeds with ``translate_content`` off."""
    excerpt = (article.excerpt or "")[:EXCERPT_MAX_CHARS]
    return TranslatedArticle(
        title=article.title,
        content=article.content,
        excerpt=excerpt,
        seo=SEOMetadata(
            meta_title=(article.title or "")[:META_TITLE_CHARS],
            meta_description=excerpt[:META_DESCRIPTION_CHARS],
            keywords=[],
        ),
        tokens_used=0,
    )


class ContentProcessor:
    def __init__(
        self,
        store: Store,
        extractor: ArticleExtractor,
        translator: Translator,
        rate_limiter: RateLimiter,
        *,
        lock_timeout: timedelta = timedelta(milliseconds=300_000),
        max_retries: int = 3,
        owner_id: Optional[str] = None,
        now: Optional[Callable[[], datetime]] = None,
        image_session: Optional[requests.Session] = None,
        image_timeout: float = 15.0,
        image_max_width: int = 1200,
        image_quality: int = 85,
        user_agent: str = DEFAULT_USER_AGENT,
        schedule_min_hours: int = 1,
        schedule_max_hours: int = 48,
        locale: str = "hr",
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.extractor = extractor
        self.translator = translator
        self.rate_limiter = rate_limiter
        self.lock_timeout = lock_timeout
        self.max_retries = max_retries
        self.owner_id = owner_id or default_owner_id()
        self._now = now or (lambda: datetime.now(timezone.utc))
        self.image_session = image_session
        self.image_timeout = image_timeout
        self.image_max_width = image_max_width
        self.image_quality = image_quality
        self.user_agent = user_agent
        self.schedule_min_hours = schedule_min_hours
        self.schedule_max_hours = schedule_max_hours
        self.locale = locale
        self.rng = rng

    @classmethod
    def from_config(cls, config, store: Store, extractor: ArticleExtractor, translator: Translator, rate_limiter: RateLimiter):
        return cls(
            store,
            extractor,
            translator,
            rate_limiter,
            lock_timeout=timedelta(seconds=config.lock_timeout_seconds),
            max_retries=config.max_retries,
            image_timeout=config.image_timeout,
            image_max_width=config.image_max_width,
            image_quality=config.image_quality,
            user_agent=config.user_agent,
            schedule_min_hours=config.schedule_min_hours,
            schedule_max_hours=config.schedule_max_hours,
            locale=config.post_locale,
        )

    # Batch

    def process_pending_batch(self, batch_size: int = 5) -> ProcessResult:
        """Process up to ``batch_size`` pending imports, oldest first. Never raises for item failures."""
        result = ProcessResult()
        cutoff = self._now() - self.lock_timeout
        pending = self.store.find_pending_imports(lock_cutoff=cutoff, limit=batch_size)
        logger.info(f"Found {len(pending)} pending imports to process")

        for record in pending:
            if not self.acquire_lock(record.id):
                logger.info(f"Skipping import {record.id} - locked by another worker")
                continue

            result.processed += 1
            try:
                self.process_imported_post(record.id)
                result.successful += 1
            except Exception as e:
                result.failed += 1
                result.errors.append({"import_id": record.id, "error": str(e)})
                logger.error(f"Error processing import {record.id} ({record.original_url}): {e}")
                self.handle_processing_error(record.id, e)
            finally:
                self.release_lock(record.id)

        logger.info(
            f"Batch complete: {result.processed} processed, {result.successful} successful, {result.failed} failed"
        )
        return result

    def process_now(self, import_id: Any) -> Any:
        """Operator action: process one import immediately. Returns the new post id."""
        if not self.acquire_lock(import_id):
            if self.store.get_import(import_id) is None:
                raise ImportNotFoundError(f"Import record {import_id} not found")
            raise LockUnavailableError(f"Import {import_id} is locked by another worker")
        try:
            return self.process_imported_post(import_id)
        except Exception as e:
            self.handle_processing_error(import_id, e)
            raise
        finally:
            self.release_lock(import_id)

    # Locking

    def acquire_lock(self, import_id: Any) -> bool:
        try:
            record = self.store.get_import(import_id)
            if record is None:
                return False
            now = self._now()
            if (
                record.locked_at is not None
                and record.locked_by != self.owner_id
                and record.lock_is_valid(now, self.lock_timeout)
            ):
                return False
            self.store.update_import(import_id, locked_at=now, locked_by=self.owner_id)
            return True
        except Exception as e:
            logger.error(f"Error acquiring lock for import {import_id}: {e}")
            return False

    def release_lock(self, import_id: Any) -> None:
        try:
            self.store.update_import(import_id, locked_at=None, locked_by=None)
        except Exception as e:
            logger.error(f"Error releasing lock for import {import_id}: {e}")

    # Single item

    def process_imported_post(self, import_id: Any) -> Any:
        record = self.store.get_import(import_id)
        if record is None:
            raise ImportNotFoundError(f"Import record {import_id} not found")
        feed = self.store.get_feed(record.feed_id) if record.feed_id is not None else None
        if feed is None:
            raise ConfigurationError(f"Import {import_id} references missing feed {record.feed_id}")

        self.store.update_import(import_id, status=STATUS_PROCESSING)

        article = self.extractor.fetch_article_content(record.original_url)

        if feed.translate_content:
            style = self._load_style(record.content_style)
            translated = self.rate_limiter.submit(
                self.translator.translate_article, article.content, article.title, style
            )
        else:
            translated = passthrough_article(article)

        validation = validate_translated_content(translated)
        if not validation.valid:
            raise ContentValidationError("Content validation failed: " + "; ".join(validation.errors))

        image_url = article.featured_image or (record.metadata or {}).get("media")
        hero_image_id = self._attach_hero_image(image_url, translated.title)

        post_id = self._create_post(record, feed, translated, hero_image_id)

        self.store.update_import(
            import_id,
            status=STATUS_COMPLETED,
            post_id=post_id,
            error_message=None,
            translation_tokens=translated.tokens_used,
            processed_at=self._now(),
        )
        logger.info(f"Created post {post_id} from import {import_id}: {translated.title}")
        return post_id

    def _load_style(self, key: Optional[str]) -> Optional[ContentStyle]:
        if not key:
            return None
        try:
            style = self.store.get_content_style(key)
        except StoreError as e:
            logger.warning(f"Could not load content style '{key}', using default prompt: {e}")
            return None
        if style is None:
            logger.info(f"Content style '{key}' not found, using default prompt")
        return style

    def _attach_hero_image(self, image_url: Optional[str], alt: str) -> Optional[Any]:
        """Best effort: any failure leaves the post without a hero image."""
        if not image_url:
            return None
        try:
            raw = download_image(
                image_url,
                session=self.image_session,
                timeout=self.image_timeout,
                user_agent=self.user_agent,
            )
            image = optimize_image(raw, max_width=self.image_max_width, quality=self.image_quality)
            return self.store.create_media(
                data=image.data,
                filename=image_filename(image_url),
                mime_type=JPEG_MIME,
                alt=alt,
            )
        except Exception as e:
            logger.warning(f"Failed to attach hero image {image_url}: {e}")
            return None

    def _create_post(
        self, record: ImportRecord, feed: Feed, translated: TranslatedArticle, hero_image_id: Optional[Any]
    ) -> Any:
        base = generate_slug(translated.title) or FALLBACK_SLUG
        slug = generate_unique_slug(base, self.store.list_post_slugs())
        decision = resolve_publish_policy(
            feed.auto_publish,
            self._now(),
            min_hours=self.schedule_min_hours,
            max_hours=self.schedule_max_hours,
            rng=self.rng,
        )
        return self.store.create_post(
            {
                "title": translated.title,
                "slug": slug,
                "excerpt": (translated.excerpt or "")[:EXCERPT_MAX_CHARS],
                "content": translated.content,
                "status": decision.status,
                "published_at": decision.published_at,
                "meta": {
                    "title": translated.seo.meta_title,
                    "description": translated.seo.meta_description,
                    "keywords": list(translated.seo.keywords),
                    "image": hero_image_id,
                },
                "hero_image_id": hero_image_id,
                "category_ids": [feed.category_id] if feed.category_id is not None else [],
                "tag_ids": list(feed.tag_ids or []),
                "locale": self.locale,
                "source_url": record.original_url,
            }
        )

    # Retry policy

    def handle_processing_error(self, import_id: Any, error: BaseException) -> None:
        """Bump ``retry_count``; ``failed`` at the ceiling, back to ``pending`` otherwise."""
        try:
            record = self.store.get_import(import_id)
            if record is None:
                logger.warning(f"Import {import_id} disappeared before its error could be recorded")
                return
            retry_count = (record.retry_count or 0) + 1
            status = STATUS_FAILED if retry_count >= self.max_retries else STATUS_PENDING
            self.store.update_import(
                import_id,
                status=status,
                retry_count=retry_count,
                error_message=str(error)[:ERROR_MESSAGE_MAX_CHARS],
                processed_at=self._now(),
            )
            if status == STATUS_FAILED:
                logger.error(f"Import {import_id} failed permanently after {retry_count} attempts")
            else:
                logger.info(f"Import {import_id} will be retried ({retry_count}/{self.max_retries})")
        except Exception as e:
            logger.error(f"Failed to record processing error for import {import_id}: {e}")
