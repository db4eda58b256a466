"""URL slugs for created posts."""

from __future__ import annotations

import re
import unicodedata
from typing import Collection

FALLBACK_SLUG = "post"

# Croatian letters that NFD does not decompose the way readers expect
_TRANSLITERATIONS = {
    "đ": "dj",
    "č": "c",
    "ć": "c",
    "š": "s",
    "ž": "z",
}

_INVALID_RE = re.compile(r"[^a-z0-9\s-]")
_WHITESPACE_RE = re.compile(r"\s+")
_DASHES_RE = re.compile(r"-+")


def generate_slug(title: str) -> str:
    slug = (title or "").lower()
    for src, dst in _TRANSLITERATIONS.items():
        slug = slug.replace(src, dst)
    slug = "".join(c for c in unicodedata.normalize("NFD", slug) if not unicodedata.combining(c))
    slug = _INVALID_RE.sub("", slug).strip()
    slug = _WHITESPACE_RE.sub("-", slug)
    slug = _DASHES_RE.sub("-", slug)
    return slug.strip("-")


def generate_unique_slug(base: str, existing: Collection[str]) -> str:
    """Return ``base`` if unused, otherwise the first free ``base-N`` (N >= 1)."""
    base = base or FALLBACK_SLUG
    if base not in existing:
        return base
    counter = 1
    while f"{base}-{counter}" in existing:
        counter += 1
    return f"{base}-{counter}"
