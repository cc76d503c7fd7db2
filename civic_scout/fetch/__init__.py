"""Fetch collaborators: web pages, search, RSS feeds and social posts."""

from civic_scout.fetch.base import SocialFetcher, WebFetcher
from civic_scout.fetch.config import FetchConfig
from civic_scout.fetch.errors import (
    FetchError,
    FetchTimeoutError,
    NotFoundError,
    QueryError,
    RateLimitedError,
)
from civic_scout.fetch.mock import MockSocialFetcher, MockWebFetcher
from civic_scout.fetch.schemas import (
    FeedItem,
    FetchedPage,
    SearchResult,
    SocialFetchResult,
    SocialPost,
)

__all__ = [
    "FeedItem",
    "FetchConfig",
    "FetchError",
    "FetchTimeoutError",
    "FetchedPage",
    "MockSocialFetcher",
    "MockWebFetcher",
    "NotFoundError",
    "QueryError",
    "RateLimitedError",
    "SearchResult",
    "SocialFetchResult",
    "SocialFetcher",
    "SocialPost",
    "WebFetcher",
]
