"""URL normalization used as the import de-duplication key."""

from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


TRACKING_QUERY_PARAMS = frozenset(
    {
        "ref",
        "source",
        "fbclid",
        "gclid",
        "mc_cid",
        "mc_eid",
    }
)
TRACKING_PREFIXES = ("utm_",)


def is_tracking_param(name: str) -> bool:
    return name in TRACKING_QUERY_PARAMS or name.startswith(TRACKING_PREFIXES)


def normalize_url(url: str) -> str:
    """Normalize a feed item link for dedup.

    - Drop tracking query parameters (utm_*, ref, source, fbclid, gclid, mc_cid, mc_eid)
    - Remove the fragment
    - Lowercase scheme + host and strip a leading ``www.``
    - Remove one trailing slash from the result

    Remaining query parameters keep their order. URLs that cannot be parsed
    are returned unchanged.
    """
    if not url:
        return url
    raw = url.strip()
    try:
        parts = urlsplit(raw)
        # Accessing port validates it (raises ValueError when malformed)
        parts.port
    except ValueError:
        return url
    if not parts.scheme or not parts.netloc:
        return url

    userinfo, at, hostport = parts.netloc.rpartition("@")
    hostport = hostport.lower()
    if hostport.startswith("www."):
        hostport = hostport[4:]
    netloc = f"{userinfo}{at}{hostport}"

    query = parts.query
    if query:
        kept = [(k, v) for k, v in parse_qsl(query, keep_blank_values=True) if not is_tracking_param(k)]
        query = urlencode(kept)

    normalized = urlunsplit((parts.scheme.lower(), netloc, parts.path, query, ""))
    if normalized.endswith("/"):
        normalized = normalized[:-1]
    return normalized
