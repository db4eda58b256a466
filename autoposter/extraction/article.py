"""Article fetch + extraction.

Extraction runs an ordered list of strategies; the first one that returns a
result wins. The heuristic strategy always produces something, so once the
page is fetched a best-effort ArticleContent is returned.
"""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional
from urllib.parse import urljoin, urlparse

import requests
import trafilatura
from bs4 import BeautifulSoup

from autoposter.config import DEFAULT_USER_AGENT

logger = logging.getLogger(__name__)

EXCERPT_CHARS = 300
PLACEHOLDER_CONTENT = "<p>Content could not be extracted.</p>"
HTML_ACCEPT = "text/html,application/xhtml+xml"
CHUNK_SIZE = 64 * 1024


class ExtractionError(Exception):
    """The article page could not be fetched."""


@dataclass(frozen=True)
class ArticleContent:
    title: str
    content: str
    excerpt: str
    featured_image: Optional[str] = None
    author: Optional[str] = None


_PRIVATE_NETS = [
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
]


def _is_private_ip(hostname: str) -> bool:
    try:
        ip = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return any(ip in net for net in _PRIVATE_NETS)


def validate_fetch_url(url: str) -> Optional[str]:
    """Return an error string if the URL should not be fetched."""
    try:
        p = urlparse(url)
    except ValueError:
        return "invalid_url"
    if p.scheme not in ("http", "https"):
        return "bad_scheme"
    host = (p.hostname or "").strip().lower()
    if not host:
        return "missing_host"
    if host in ("localhost", "localhost.localdomain"):
        return "blocked_host"
    if _is_private_ip(host):
        return "blocked_private_ip"
    return None


def _plain_text(html: str) -> str:
    return BeautifulSoup(html, "html.parser").get_text(" ", strip=True)


def find_og_image(soup: BeautifulSoup, base_url: str = "") -> Optional[str]:
    for attrs in ({"property": "og:image"}, {"name": "og:image"}, {"name": "twitter:image"}):
        tag = soup.find("meta", attrs=attrs)
        if tag and (tag.get("content") or "").strip():
            return urljoin(base_url, tag["content"].strip())
    return None


def extract_with_trafilatura(html: str, url: str) -> Optional[ArticleContent]:
    body = trafilatura.extract(
        html,
        url=url,
        output_format="html",
        include_comments=False,
        include_tables=True,
        include_images=False,
        include_formatting=True,
    )
    if not body:
        return None

    meta = trafilatura.extract_metadata(html, default_url=url)
    title = (getattr(meta, "title", None) or "").strip()
    description = (getattr(meta, "description", None) or "").strip()
    author = (getattr(meta, "author", None) or "").strip() or None
    image = (getattr(meta, "image", None) or "").strip() or None
    if not image:
        image = find_og_image(BeautifulSoup(html, "html.parser"), url)

    if not title:
        return None
    excerpt = description or _plain_text(body)[:EXCERPT_CHARS]
    return ArticleContent(title=title, content=body, excerpt=excerpt, featured_image=image, author=author)


def extract_with_heuristics(html: str, url: str) -> ArticleContent:
    soup = BeautifulSoup(html, "html.parser")

    title = ""
    h1 = soup.find("h1")
    if h1:
        title = h1.get_text(strip=True)
    if not title and soup.title and soup.title.string:
        title = soup.title.string.strip()
    title = title or "Untitled"

    content = ""
    for node in (soup.find("article"), soup.select_one(".content"), soup.find("main")):
        if node is not None:
            content = node.decode_contents().strip()
            if content:
                break
    content = content or PLACEHOLDER_CONTENT

    return ArticleContent(title=title, content=content, excerpt=title)


Strategy = Callable[[str, str], Optional[ArticleContent]]


class ArticleExtractor:
    def __init__(
        self,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
        user_agent: str = DEFAULT_USER_AGENT,
        max_bytes: int = 5_000_000,
        strategies: Optional[List[Strategy]] = None,
    ):
        self.http = session or requests.Session()
        self.timeout = timeout
        self.user_agent = user_agent
        self.max_bytes = max_bytes
        self.strategies: List[Strategy] = strategies or [extract_with_trafilatura, extract_with_heuristics]

    def fetch_html(self, url: str) -> str:
        err = validate_fetch_url(url)
        if err:
            raise ExtractionError(f"Refusing to fetch {url}: {err}")

        resp = self.http.get(
            url,
            headers={"User-Agent": self.user_agent, "Accept": HTML_ACCEPT},
            timeout=self.timeout,
            allow_redirects=True,
            stream=True,
        )
        try:
            if resp.status_code >= 300:
                raise ExtractionError(f"HTTP {resp.status_code}: {resp.reason}")

            # Stop reading as soon as the cap is passed
            content = b""
            for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                if not chunk:
                    continue
                content += chunk
                if len(content) > self.max_bytes:
                    raise ExtractionError(f"Page too large: more than {self.max_bytes} bytes")
        finally:
            resp.close()
        return content.decode(resp.encoding or "utf-8", errors="replace")

    def fetch_article_content(self, url: str) -> ArticleContent:
        """Fetch ``url`` and extract its main article."""
        try:
            html = self.fetch_html(url)
        except requests.RequestException as e:
            raise ExtractionError(f"Failed to fetch {url}: {e}") from e

        for strategy in self.strategies:
            try:
                result = strategy(html, url)
            except Exception as e:
                logger.warning(f"Extraction strategy {getattr(strategy, '__name__', strategy)} failed for {url}: {e}")
                continue
            if result is not None:
                return result

        return extract_with_heuristics(html, url)
