"""Per-feed publish policy: post status and ``published_at``."""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from autoposter.storage.records import AUTO_PUBLISH_PUBLISHED, AUTO_PUBLISH_SCHEDULED

POST_STATUS_DRAFT = "draft"
POST_STATUS_PUBLISHED = "published"


@dataclass(frozen=True)
class PublishDecision:
    status: str
    published_at: Optional[datetime] = None


def resolve_publish_policy(
    auto_publish: str,
    now: datetime,
    *,
    min_hours: int = 1,
    max_hours: int = 48,
    rng: Optional[random.Random] = None,
) -> PublishDecision:
    """Map a feed's ``auto_publish`` setting to the new post's status.

    ``scheduled`` posts stay drafts with ``published_at`` a whole number of
    hours in [min_hours, max_hours] ahead; unknown values behave like ``draft``.
    """
    if auto_publish == AUTO_PUBLISH_PUBLISHED:
        return PublishDecision(status=POST_STATUS_PUBLISHED, published_at=now)
    if auto_publish == AUTO_PUBLISH_SCHEDULED:
        hours = (rng or random).randint(min_hours, max_hours)
        return PublishDecision(status=POST_STATUS_DRAFT, published_at=now + timedelta(hours=hours))
    return PublishDecision(status=POST_STATUS_DRAFT)
