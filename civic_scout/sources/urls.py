"""URL and identifier normalization for source canonical keys."""

import re
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

# Tracking parameters that vary per share but never change the page
TRACKING_PARAMS = frozenset({
    "_dt",
    "fbclid",
    "gclid",
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "modal",
    "ref",
    "mc_cid",
    "mc_eid",
})

_PROFILE_URLS = {
    "instagram": "https://www.instagram.com/{handle}",
    "twitter": "https://x.com/{handle}",
    "x": "https://x.com/{handle}",
    "facebook": "https://www.facebook.com/{handle}",
    "reddit": "https://www.reddit.com/user/{handle}",
    "tiktok": "https://www.tiktok.com/@{handle}",
    "bluesky": "https://bsky.app/profile/{handle}",
}

_WHITESPACE = re.compile(r"\s+")


def sanitize_url(url: str) -> str:
    """Normalize a URL so aliases of the same page compare equal.

    Lower-cases scheme and host, drops the fragment, tracking parameters
    and any trailing slash on the path. Non-tracking query parameters keep
    their original order.
    """
    parts = urlsplit(url.strip())
    query = [
        (k, v)
        for k, v in parse_qsl(parts.query, keep_blank_values=True)
        if k.lower() not in TRACKING_PARAMS
    ]
    path = parts.path.rstrip("/")
    return urlunsplit((
        parts.scheme.lower(),
        parts.netloc.lower(),
        path,
        urlencode(query),
        "",
    ))


def normalize_query(query: str) -> str:
    """Collapse whitespace and lower-case a search query."""
    return _WHITESPACE.sub(" ", query).strip().lower()


def normalize_handle(handle: str) -> str:
    return handle.strip().lstrip("@").lower()


def profile_url(platform: str, handle: str) -> str:
    """Public profile URL for a social account."""
    template = _PROFILE_URLS.get(platform.lower())
    handle = normalize_handle(handle)
    if template is None:
        return f"{platform.lower()}://{handle}"
    return template.format(handle=handle)


def canonical_value(kind: str, value: str, platform: str | None = None) -> str:
    """Normalized identity string for a source of the given kind."""
    if kind in ("web", "rss"):
        return sanitize_url(value)
    if kind == "query":
        return normalize_query(value)
    if kind == "social":
        if not platform:
            raise ValueError("social sources need a platform")
        return f"{platform.lower()}/{normalize_handle(value)}"
    raise ValueError(f"Unknown source kind: {kind}")


def canonical_key(
    city: str, kind: str, value: str, platform: str | None = None
) -> str:
    """Stable source identifier: ``{city}:{kind}:{normalized value}``."""
    return f"{city.lower()}:{kind}:{canonical_value(kind, value, platform)}"


_SOCIAL_HOSTS = frozenset({
    "instagram.com",
    "x.com",
    "twitter.com",
    "facebook.com",
    "reddit.com",
    "tiktok.com",
    "bsky.app",
})


def is_social_url(url: str) -> bool:
    """True for URLs on social platforms, which are tracked as accounts instead."""
    host = urlsplit(url).netloc.lower()
    if host.startswith("www."):
        host = host[4:]
    return host in _SOCIAL_HOSTS or any(host.endswith("." + h) for h in _SOCIAL_HOSTS)


def social_url_pattern() -> str:
    """Case-insensitive regex matching the same URLs as ``is_social_url``.

    Written for PostgreSQL's ``~*`` operator so the store can exclude social
    pages before applying a row limit.
    """
    hosts = "|".join(re.escape(h) for h in sorted(_SOCIAL_HOSTS))
    return rf"^[a-z]+://([^/?#]*\.)?({hosts})(:[0-9]+)?([/?#]|$)"
