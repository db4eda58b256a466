"""Shared ingestion data types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class FeedItem:
    """One entry of a parsed feed, before de-duplication.

    Article extraction happens later; this only carries what the feed itself
    provides.
    """

    title: Optional[str]
    link: Optional[str]
    published: Optional[str] = None
    content: str = ""
    author: Optional[str] = None
    categories: List[str] = field(default_factory=list)
    guid: Optional[str] = None
    media_url: Optional[str] = None

    def to_metadata(self) -> Dict[str, Any]:
        return {
            "rawContent": self.content,
            "author": self.author,
            "categories": list(self.categories),
            "pubDate": self.published,
            "media": self.media_url,
            "guid": self.guid,
        }
