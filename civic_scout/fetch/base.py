"""Fetcher protocols consumed by the scrape phase."""

from typing import Protocol, runtime_checkable

from civic_scout.fetch.schemas import (
    FeedItem,
    FetchedPage,
    SearchResult,
    SocialFetchResult,
    SocialPost,
)


@runtime_checkable
class WebFetcher(Protocol):
    """Pages, web search and RSS feeds. Failures raise FetchError subclasses."""

    async def fetch_page(self, url: str) -> FetchedPage: ...

    async def search(self, query: str, limit: int) -> list[SearchResult]: ...

    async def fetch_feed(self, url: str) -> list[FeedItem]: ...


@runtime_checkable
class SocialFetcher(Protocol):
    """Social account timelines and topic/hashtag search."""

    async def fetch_account(
        self, platform: str, handle: str, limit: int
    ) -> SocialFetchResult: ...

    async def search_topic(
        self, platform: str, topic: str, limit: int
    ) -> list[SocialPost]: ...
