"""Operator maintenance of the import queue."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from autoposter.storage.base import Store
from autoposter.storage.records import STATUS_COMPLETED, STATUS_FAILED, STATUS_PENDING

logger = logging.getLogger(__name__)


def reset_import(store: Store, import_id: Any) -> None:
    """Put a record back in the queue with error, retry and lock bookkeeping cleared."""
    store.update_import(
        import_id,
        status=STATUS_PENDING,
        error_message=None,
        retry_count=0,
        locked_at=None,
        locked_by=None,
        processed_at=None,
    )


def reprocess_failed(store: Store, *, now: datetime, days: Optional[int] = None, limit: int = 1000) -> int:
    """Reset failed imports (optionally only those processed in the last ``days``)."""
    after = now - timedelta(days=days) if days else None
    failed = store.find_imports(statuses=[STATUS_FAILED], processed_after=after, limit=limit)
    for record in failed:
        reset_import(store, record.id)
        logger.info(f"Reset import {record.id}: {record.original_title}")
    logger.info(f"Reset {len(failed)} failed imports to pending")
    return len(failed)


def cleanup_old_imports(store: Store, *, now: datetime, older_than_days: int, limit: int = 10_000) -> int:
    """Delete completed/failed imports processed more than ``older_than_days`` ago."""
    if older_than_days < 1:
        raise ValueError("older_than_days must be at least 1")
    cutoff = now - timedelta(days=older_than_days)
    old = store.find_imports(statuses=[STATUS_COMPLETED, STATUS_FAILED], processed_before=cutoff, limit=limit)
    for record in old:
        store.delete_import(record.id)
    logger.info(f"Deleted {len(old)} imports processed before {cutoff.isoformat()}")
    return len(old)
