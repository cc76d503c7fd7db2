"""
HTTP-backed web fetcher: pages, web search and RSS feeds.

- HTML → clean text with BeautifulSoup (scripts, nav and footers removed)
- Search through a Serper-compatible JSON API
- Feeds parsed with feedparser
All transport failures are mapped onto the typed FetchError hierarchy.
"""

import logging
from datetime import datetime, timezone
from types import TracebackType

import feedparser
from bs4 import BeautifulSoup

from civic_scout.fetch.config import FetchConfig
from civic_scout.fetch.errors import (
    FetchError,
    FetchTimeoutError,
    NotFoundError,
    QueryError,
    RateLimitedError,
)
from civic_scout.fetch.http_client import (
    HTTPClient,
    HTTPClientError,
    RateLimitError,
    RetryConfig,
    TransportTimeoutError,
)
from civic_scout.fetch.schemas import FeedItem, FetchedPage, SearchResult

logger = logging.getLogger(__name__)

_STRIP_TAGS = ["script", "style", "nav", "footer", "header", "noscript", "form", "svg"]


def html_to_text(html: str) -> tuple[str, str]:
    """Return (title, visible text) for an HTML document."""
    soup = BeautifulSoup(html, "html.parser")
    title = soup.title.get_text(strip=True) if soup.title else ""
    for element in soup(_STRIP_TAGS):
        element.decompose()
    lines = (line.strip() for line in soup.get_text(separator="\n").splitlines())
    return title, "\n".join(line for line in lines if line)


def _map_error(e: HTTPClientError, url: str) -> FetchError:
    if isinstance(e, RateLimitError):
        return RateLimitedError(str(e), url=url)
    if isinstance(e, TransportTimeoutError):
        return FetchTimeoutError(str(e), url=url)
    if e.status_code in (404, 410):
        return NotFoundError(str(e), url=url)
    return FetchError(str(e), url=url)


class HttpWebFetcher:
    """
    Real web fetcher used outside mock mode.

    Usage:
        async with HttpWebFetcher(search_api_key=key) as fetcher:
            page = await fetcher.fetch_page("https://example.org/events")
    """

    def __init__(
        self,
        config: FetchConfig | None = None,
        search_api_url: str = "https://google.serper.dev/search",
        search_api_key: str | None = None,
        search_location: str | None = None,
    ) -> None:
        self._config = config or FetchConfig()
        self._search_api_url = search_api_url
        self._search_api_key = search_api_key
        self._search_location = search_location
        self._client = HTTPClient(
            RetryConfig(
                max_retries=self._config.max_retries,
                max_backoff_seconds=self._config.max_backoff_seconds,
            ),
            timeout=self._config.timeout,
            headers={"User-Agent": self._config.user_agent},
        )

    async def __aenter__(self) -> "HttpWebFetcher":
        await self._client.__aenter__()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self._client.__aexit__(exc_type, exc_val, exc_tb)

    async def fetch_page(self, url: str) -> FetchedPage:
        try:
            response = await self._client.get(url)
        except HTTPClientError as e:
            raise _map_error(e, url) from e

        content_type = response.headers.get("content-type", "")
        if "html" in content_type or not content_type:
            title, text = html_to_text(response.text)
        else:
            title, text = "", response.text

        return FetchedPage(
            requested_url=url,
            canonical_url=str(response.url),
            text=text[: self._config.max_page_chars],
            title=title,
        )

    async def search(self, query: str, limit: int) -> list[SearchResult]:
        if not self._search_api_key:
            raise QueryError("search API key not configured", url=query)

        body: dict = {"q": query, "num": limit}
        if self._search_location:
            body["location"] = self._search_location
        try:
            response = await self._client.post(
                self._search_api_url,
                json_body=body,
                headers={"X-API-KEY": self._search_api_key},
            )
            data = response.json()
        except HTTPClientError as e:
            raise QueryError(f"search failed for {query!r}: {e}", url=query) from e
        except ValueError as e:
            raise QueryError(f"search returned invalid JSON for {query!r}", url=query) from e

        results = []
        for item in data.get("organic", [])[:limit]:
            link = item.get("link")
            if link:
                results.append(
                    SearchResult(
                        url=link,
                        title=item.get("title", ""),
                        snippet=item.get("snippet", ""),
                    )
                )
        return results

    async def fetch_feed(self, url: str) -> list[FeedItem]:
        try:
            response = await self._client.get(url)
        except HTTPClientError as e:
            raise _map_error(e, url) from e

        feed = feedparser.parse(response.text)
        if feed.bozo and not feed.entries:
            raise FetchError(f"unparseable feed: {feed.bozo_exception}", url=url)

        items = []
        for entry in feed.entries[: self._config.max_feed_items]:
            link = entry.get("link")
            if not link:
                continue
            published = None
            if entry.get("published_parsed"):
                published = datetime(*entry.published_parsed[:6], tzinfo=timezone.utc)
            items.append(
                FeedItem(
                    url=link,
                    title=entry.get("title", ""),
                    summary=entry.get("summary", ""),
                    published_at=published,
                )
            )
        logger.debug("Feed %s yielded %d items", url, len(items))
        return items
