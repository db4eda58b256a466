"""Hero image download and re-encode."""

from __future__ import annotations

import io
import logging
import os
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import requests
from PIL import Image

from autoposter.config import DEFAULT_USER_AGENT

logger = logging.getLogger(__name__)

JPEG_MIME = "image/jpeg"
CHUNK_SIZE = 64 * 1024


class ImageError(Exception):
    pass


@dataclass(frozen=True)
class OptimizedImage:
    data: bytes
    width: int
    height: int
    mime_type: str = JPEG_MIME


def optimize_image(raw: bytes, *, max_width: int = 1200, quality: int = 85) -> OptimizedImage:
    """Scale down to ``max_width`` keeping aspect ratio (never enlarge) and re-encode as JPEG."""
    try:
        image = Image.open(io.BytesIO(raw))
        image.load()
    except (OSError, Image.DecompressionBombError) as e:
        raise ImageError(f"Unreadable image: {e}") from e

    image = image.convert("RGB")
    if image.width > max_width:
        height = max(1, round(image.height * max_width / image.width))
        image = image.resize((max_width, height), Image.LANCZOS)

    buf = io.BytesIO()
    image.save(buf, format="JPEG", quality=quality, optimize=True)
    return OptimizedImage(data=buf.getvalue(), width=image.width, height=image.height)


def download_image(
    url: str,
    *,
    session: Optional[requests.Session] = None,
    timeout: float = 15.0,
    user_agent: str = DEFAULT_USER_AGENT,
    max_bytes: int = 20_000_000,
) -> bytes:
    resp = (session or requests).get(url, headers={"User-Agent": user_agent}, timeout=timeout, stream=True)
    try:
        resp.raise_for_status()
        data = b""
        for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
            if not chunk:
                continue
            data += chunk
            if len(data) > max_bytes:
                raise ImageError(f"Image too large: more than {max_bytes} bytes")
    finally:
        resp.close()
    if not data:
        raise ImageError(f"Empty image response from {url}")
    return data


def image_filename(url: str, fallback: str = "image") -> str:
    """``<basename>.jpg`` derived from the source URL path."""
    name = os.path.basename(urlparse(url).path) or fallback
    stem = os.path.splitext(name)[0] or fallback
    return f"{stem}.jpg"
