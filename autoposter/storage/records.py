"""Shared record types for feeds, the import queue and created posts."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

IMPORT_STATUSES = (STATUS_PENDING, STATUS_PROCESSING, STATUS_COMPLETED, STATUS_FAILED)

AUTO_PUBLISH_DRAFT = "draft"
AUTO_PUBLISH_SCHEDULED = "scheduled"
AUTO_PUBLISH_PUBLISHED = "published"

DEFAULT_CONTENT_STYLE = "short"


@dataclass
class Feed:
    """A polled RSS/Atom source and its import policy."""

    id: Any
    name: str
    url: str
    active: bool = True
    check_interval: int = 60  # minutes
    last_checked: Optional[datetime] = None
    items_processed: int = 0
    max_items_per_check: int = 5
    translate_content: bool = True
    auto_publish: str = AUTO_PUBLISH_DRAFT
    category_id: Optional[Any] = None
    tag_ids: List[Any] = field(default_factory=list)

    def next_check(self) -> Optional[datetime]:
        if self.last_checked is None:
            return None
        return self.last_checked + timedelta(minutes=self.check_interval or 60)

    def is_due(self, now: datetime) -> bool:
        next_check = self.next_check()
        return next_check is None or next_check <= now


@dataclass
class ImportRecord:
    """One queued article candidate.

    ``locked_at``/``locked_by`` form the advisory processing lock.
    """

    id: Any
    original_url: str
    original_title: str
    feed_id: Any
    status: str = STATUS_PENDING
    post_id: Optional[Any] = None
    error_message: Optional[str] = None
    retry_count: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)
    content_style: str = DEFAULT_CONTENT_STYLE
    translation_tokens: int = 0
    locked_at: Optional[datetime] = None
    locked_by: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def lock_is_valid(self, now: datetime, timeout: timedelta) -> bool:
        return self.locked_at is not None and now - self.locked_at < timeout


@dataclass(frozen=True)
class NewImport:
    """Data for an import record that does not exist yet."""

    original_url: str
    original_title: str
    feed_id: Any
    metadata: Dict[str, Any] = field(default_factory=dict)
    content_style: str = DEFAULT_CONTENT_STYLE


@dataclass(frozen=True)
class ContentStyle:
    """Operator-defined writing style for the AI rewrite."""

    key: str
    prompt: str
    max_tokens: int = 4096
