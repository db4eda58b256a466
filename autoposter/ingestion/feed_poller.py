"""Feed polling: fetch due feeds and queue new items as pending imports.

A feed is due when ``last_checked + check_interval`` has passed (or it was
never checked). Items are de-duplicated by normalized URL across all feeds,
and by identical original title within the same feed.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import feedparser
import requests

from autoposter.config import DEFAULT_USER_AGENT
from autoposter.ingestion.feed_types import FeedItem
from autoposter.ingestion.url_utils import normalize_url
from autoposter.storage.base import DuplicateImportError, Store
from autoposter.storage.records import Feed, NewImport

logger = logging.getLogger(__name__)

FEED_ACCEPT = "application/rss+xml, application/atom+xml, application/xml;q=0.9, text/xml;q=0.8, */*;q=0.5"


class FeedError(Exception):
    """A feed could not be fetched or parsed."""


class FeedNotFoundError(FeedError):
    pass


@dataclass
class FeedPollResult:
    feed_id: Any
    feed_name: str
    items_found: int = 0
    new_items: int = 0
    duplicates: int = 0


@dataclass
class PollResult:
    feeds_checked: int = 0
    new_items_found: int = 0
    duplicates_skipped: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["timestamp"] = self.timestamp.isoformat()
        return out


def _first_url(value: Any) -> Optional[str]:
    """media:content / media:thumbnail come back as a list of attribute dicts."""
    if not value:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return value.get("url") or value.get("href") or None
    if isinstance(value, (list, tuple)):
        for v in value:
            url = _first_url(v)
            if url:
                return url
    return None


def extract_media_url(entry: Any) -> Optional[str]:
    url = _first_url(entry.get("media_content"))
    if url:
        return url
    url = _first_url(entry.get("media_thumbnail"))
    if url:
        return url
    for enc in entry.get("enclosures") or []:
        if str(enc.get("type") or "").startswith("image/") and enc.get("href"):
            return enc.get("href")
    return None


def entry_to_item(entry: Any) -> FeedItem:
    content = ""
    blocks = entry.get("content") or []
    if blocks and isinstance(blocks[0], dict):
        content = blocks[0].get("value") or ""
    if not content:
        content = entry.get("summary") or ""
    categories = [t.get("term") for t in (entry.get("tags") or []) if t.get("term")]
    title = entry.get("title")
    link = entry.get("link")
    return FeedItem(
        title=str(title).strip() if title else None,
        link=str(link).strip() if link else None,
        published=entry.get("published") or entry.get("updated") or None,
        content=content,
        author=entry.get("author") or None,
        categories=categories,
        guid=entry.get("id") or None,
        media_url=extract_media_url(entry),
    )


class FeedPoller:
    def __init__(
        self,
        store: Store,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
        user_agent: str = DEFAULT_USER_AGENT,
        now: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], None] = time.sleep,
        feed_delay_range: tuple = (2.0, 3.0),
    ):
        self.store = store
        self.http = session or requests.Session()
        self.timeout = timeout
        self.user_agent = user_agent
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep
        self.feed_delay_range = feed_delay_range

    def poll_all_feeds(self) -> PollResult:
        """Poll all active feeds that are due for checking."""
        result = PollResult(timestamp=self._now())
        logger.info("Starting to poll all active feeds")

        feeds = self.store.list_active_feeds(limit=100)
        logger.info(f"Found {len(feeds)} active feeds")

        polled_any = False
        for feed in feeds:
            if not feed.is_due(self._now()):
                logger.info(f"Skipping {feed.name} - not due yet")
                continue

            if polled_any:
                # Space out outbound requests between feeds
                self._sleep(random.uniform(*self.feed_delay_range))
            polled_any = True

            try:
                logger.info(f"Polling feed: {feed.name}")
                feed_result = self.poll_feed(feed.id)
                result.feeds_checked += 1
                result.new_items_found += feed_result.new_items
                result.duplicates_skipped += feed_result.duplicates
                logger.info(f"{feed.name}: {feed_result.new_items} new, {feed_result.duplicates} duplicates")
            except Exception as e:
                result.errors.append({"feed_id": feed.id, "feed_name": feed.name, "error": str(e)})
                logger.error(f"Error polling {feed.name}: {e}")

        logger.info(f"Polling complete: {result.feeds_checked} feeds, {result.new_items_found} new items")
        return result

    def poll_feed(self, feed_id: Any) -> FeedPollResult:
        """Poll a single feed and queue its new items."""
        feed = self.store.get_feed(feed_id)
        if feed is None:
            raise FeedNotFoundError(f"Feed {feed_id} not found")
        if not feed.url:
            raise FeedError("Feed URL is missing")

        result = FeedPollResult(feed_id=feed.id, feed_name=feed.name or "Unknown")

        try:
            entries = self.fetch_entries(feed.url)
        except Exception as e:
            raise FeedError(f"Failed to parse feed {feed.url}: {e}") from e

        result.items_found = len(entries)
        for entry in entries[: max(0, feed.max_items_per_check or 5)]:
            item = entry_to_item(entry)
            if not item.link or not item.title:
                logger.info("Skipping item without link or title")
                continue

            if self.is_duplicate(item, feed.id):
                result.duplicates += 1
                continue

            try:
                self.queue_item(item, feed)
            except DuplicateImportError:
                # Another poller inserted the same URL since the check above
                result.duplicates += 1
                continue
            result.new_items += 1

        self.store.mark_feed_checked(
            feed.id,
            checked_at=self._now(),
            items_processed=(feed.items_processed or 0) + result.new_items,
        )
        return result

    def fetch_entries(self, url: str) -> List[Any]:
        parsed = self._fetch_and_parse(url)
        return list(parsed.entries or [])

    def _fetch_and_parse(self, url: str):
        resp = self.http.get(
            url,
            headers={"User-Agent": self.user_agent, "Accept": FEED_ACCEPT},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        parsed = feedparser.parse(resp.content)
        if parsed.bozo and not parsed.entries:
            raise FeedError(f"Malformed feed: {parsed.get('bozo_exception')}")
        return parsed

    def is_duplicate(self, item: FeedItem, feed_id: Any) -> bool:
        """Same normalized URL anywhere, or same original title from the same feed."""
        if not item.link:
            return False

        if self.store.find_import_by_url(normalize_url(item.link)) is not None:
            return True

        # Known false-positive risk: distinct articles sharing a headline in one feed.
        if item.title and self.store.find_import_by_title(feed_id, item.title) is not None:
            return True

        return False

    def queue_item(self, item: FeedItem, feed: Feed) -> None:
        self.store.create_import(
            NewImport(
                original_url=normalize_url(item.link or ""),
                original_title=item.title or "Untitled",
                feed_id=feed.id,
                metadata=item.to_metadata(),
            )
        )
        logger.info(f"Queued: {item.title}")

    def test_feed(self, url: str, *, preview: int = 5) -> Dict[str, Any]:
        """Fetch and parse a feed without touching the store."""
        parsed = self._fetch_and_parse(url)
        meta = parsed.feed or {}
        items = [entry_to_item(e) for e in (parsed.entries or [])]
        return {
            "feed_title": meta.get("title"),
            "feed_description": meta.get("description") or meta.get("subtitle"),
            "feed_link": meta.get("link"),
            "items_found": len(items),
            "latest_items": [
                {"title": it.title, "link": it.link, "published": it.published, "author": it.author}
                for it in items[:preview]
            ],
        }
