"""
Mock fetchers for testing and development.

Serve canned pages, search results, feeds and social posts from
dictionaries, record every call, and raise configured FetchErrors. Used
by the test suite and by ``civic-scout run --mock``.
"""

from collections.abc import Callable
from datetime import datetime, timezone

from civic_scout.fetch.errors import FetchError, NotFoundError
from civic_scout.fetch.schemas import (
    FeedItem,
    FetchedPage,
    SearchResult,
    SocialFetchResult,
    SocialPost,
)
from civic_scout.sources.urls import profile_url


class MockWebFetcher:
    """In-memory WebFetcher.

    Args:
        pages: URL -> page text.
        redirects: requested URL -> final URL reported as canonical.
        search_results: query -> result URLs.
        feeds: feed URL -> items.
        failures: URL or query -> error raised instead of answering.
        on_fetch: called with the URL after each successful page fetch.
    """

    def __init__(
        self,
        pages: dict[str, str] | None = None,
        redirects: dict[str, str] | None = None,
        search_results: dict[str, list[str]] | None = None,
        feeds: dict[str, list[FeedItem]] | None = None,
        failures: dict[str, FetchError] | None = None,
        on_fetch: Callable[[str], None] | None = None,
    ) -> None:
        self.pages = dict(pages or {})
        self.redirects = dict(redirects or {})
        self.search_results = dict(search_results or {})
        self.feeds = dict(feeds or {})
        self.failures = dict(failures or {})
        self.on_fetch = on_fetch
        self.page_calls: list[str] = []
        self.search_calls: list[str] = []
        self.feed_calls: list[str] = []

    async def fetch_page(self, url: str) -> FetchedPage:
        self.page_calls.append(url)
        if url in self.failures:
            raise self.failures[url]
        final = self.redirects.get(url, url)
        if final not in self.pages:
            raise NotFoundError(f"no mock page for {url}", url=url)
        page = FetchedPage(requested_url=url, canonical_url=final, text=self.pages[final])
        if self.on_fetch is not None:
            self.on_fetch(url)
        return page

    async def search(self, query: str, limit: int) -> list[SearchResult]:
        self.search_calls.append(query)
        if query in self.failures:
            raise self.failures[query]
        return [SearchResult(url=u) for u in self.search_results.get(query, [])[:limit]]

    async def fetch_feed(self, url: str) -> list[FeedItem]:
        self.feed_calls.append(url)
        if url in self.failures:
            raise self.failures[url]
        if url not in self.feeds:
            raise NotFoundError(f"no mock feed for {url}", url=url)
        return list(self.feeds[url])


class MockSocialFetcher:
    """In-memory SocialFetcher keyed by (platform, handle) and topic."""

    def __init__(
        self,
        accounts: dict[tuple[str, str], list[SocialPost]] | None = None,
        topics: dict[str, list[SocialPost]] | None = None,
        failures: dict[str, FetchError] | None = None,
    ) -> None:
        self.accounts = dict(accounts or {})
        self.topics = dict(topics or {})
        self.failures = dict(failures or {})
        self.account_calls: list[tuple[str, str]] = []
        self.search_calls: list[tuple[str, str]] = []

    async def fetch_account(
        self, platform: str, handle: str, limit: int
    ) -> SocialFetchResult:
        self.account_calls.append((platform, handle))
        if handle in self.failures:
            raise self.failures[handle]
        posts = self.accounts.get((platform, handle))
        if posts is None:
            raise NotFoundError(f"no mock account {platform}/{handle}")
        return SocialFetchResult(
            canonical_url=profile_url(platform, handle),
            posts=posts[:limit],
        )

    async def search_topic(
        self, platform: str, topic: str, limit: int
    ) -> list[SocialPost]:
        self.search_calls.append((platform, topic))
        if topic in self.failures:
            raise self.failures[topic]
        return [p for p in self.topics.get(topic, []) if p.platform == platform][:limit]


def build_demo_fetchers(city: str) -> tuple[MockWebFetcher, MockSocialFetcher]:
    """Small self-consistent dataset for ``--mock`` runs."""
    now = datetime.now(timezone.utc)
    slug = city.lower().replace(" ", "")
    web = MockWebFetcher(
        pages={
            f"https://{slug}.example.org/news": (
                f"request: Volunteers needed to sort donations in {city} @ {city} Central Library\n"
                f"notice: Road closure on Main Street in {city} this weekend\n"
                f"query: {city} food shelf volunteer"
            ),
            f"https://{slug}.example.org/help": (
                f"aid_offer: Free groceries every Saturday at {city} Community Center @ {city} Community Center\n"
                f"event: Neighborhood cleanup in {city} @ Riverside Park"
            ),
            f"https://{slug}.example.org/volunteer": (
                f"event: Volunteer orientation at the {city} food shelf @ {city} Food Shelf"
            ),
        },
        search_results={
            f"{city.lower()} mutual aid": [f"https://{slug}.example.org/help"],
            f"{city.lower()} food shelf volunteer": [f"https://{slug}.example.org/volunteer"],
        },
    )
    social = MockSocialFetcher(
        topics={
            f"{slug}mutualaid": [
                SocialPost(
                    platform="instagram",
                    author=f"{slug}_fridge",
                    text=f"aid_offer: Community fridge restocked in {city} @ {city} Community Fridge",
                    posted_at=now,
                ),
            ],
        },
    )
    return web, social
