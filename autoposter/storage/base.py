"""Store interface consumed by the poller, the processor and monitoring.

Each query the pipeline needs is an explicit method, so implementations can
map equality, time-range and and/or filters to whatever their backend offers.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from autoposter.storage.records import ContentStyle, Feed, ImportRecord, NewImport


class StoreError(Exception):
    """Custom exception for store operations"""


class DuplicateImportError(StoreError):
    """An import record with the same normalized URL already exists."""


class Store(ABC):
    # Connectivity

    @abstractmethod
    def ping(self) -> bool:
        raise NotImplementedError

    # Feeds

    @abstractmethod
    def list_active_feeds(self, *, limit: int = 100) -> List[Feed]:
        """Active feeds, least recently checked first (never checked first)."""
        raise NotImplementedError

    @abstractmethod
    def list_feeds(self, *, limit: int = 100) -> List[Feed]:
        raise NotImplementedError

    @abstractmethod
    def get_feed(self, feed_id: Any) -> Optional[Feed]:
        raise NotImplementedError

    @abstractmethod
    def mark_feed_checked(self, feed_id: Any, *, checked_at: datetime, items_processed: int) -> None:
        raise NotImplementedError

    # Import queue

    @abstractmethod
    def get_import(self, import_id: Any) -> Optional[ImportRecord]:
        raise NotImplementedError

    @abstractmethod
    def find_import_by_url(self, original_url: str) -> Optional[ImportRecord]:
        raise NotImplementedError

    @abstractmethod
    def find_import_by_title(self, feed_id: Any, original_title: str) -> Optional[ImportRecord]:
        raise NotImplementedError

    @abstractmethod
    def create_import(self, item: NewImport) -> ImportRecord:
        """Insert a pending record; raises DuplicateImportError on URL conflict."""
        raise NotImplementedError

    @abstractmethod
    def find_pending_imports(self, *, lock_cutoff: datetime, limit: int) -> List[ImportRecord]:
        """Records waiting for a worker, oldest first.

        That is ``pending`` records, plus ``processing`` records left behind by a
        worker that died mid-item, whose lock is absent or older than ``lock_cutoff``.
        """
        raise NotImplementedError

    @abstractmethod
    def find_imports(
        self,
        *,
        statuses: Sequence[str],
        processed_after: Optional[datetime] = None,
        processed_before: Optional[datetime] = None,
        limit: int = 1000,
    ) -> List[ImportRecord]:
        raise NotImplementedError

    @abstractmethod
    def update_import(self, import_id: Any, **fields: Any) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete_import(self, import_id: Any) -> None:
        raise NotImplementedError

    @abstractmethod
    def count_imports(
        self,
        *,
        status: Optional[str] = None,
        feed_id: Optional[Any] = None,
        processed_after: Optional[datetime] = None,
    ) -> int:
        raise NotImplementedError

    @abstractmethod
    def sum_translation_tokens(self, *, processed_after: datetime) -> int:
        raise NotImplementedError

    # Content styles

    @abstractmethod
    def get_content_style(self, key: str) -> Optional[ContentStyle]:
        raise NotImplementedError

    # Posts and media

    @abstractmethod
    def list_post_slugs(self) -> Set[str]:
        raise NotImplementedError

    @abstractmethod
    def create_post(self, data: Dict[str, Any]) -> Any:
        """Create a post and return its id."""
        raise NotImplementedError

    @abstractmethod
    def create_media(self, *, data: bytes, filename: str, mime_type: str, alt: str) -> Any:
        """Register an uploaded asset and return its id."""
        raise NotImplementedError


IMPORT_UPDATABLE_FIELDS: Iterable[str] = (
    "status",
    "post_id",
    "error_message",
    "retry_count",
    "metadata",
    "content_style",
    "translation_tokens",
    "locked_at",
    "locked_by",
    "processed_at",
)
