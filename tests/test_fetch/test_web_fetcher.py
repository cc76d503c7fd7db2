"""Tests for the HTTP client and web fetcher using respx."""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import respx

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
)
from civic_scout.fetch.web import HttpWebFetcher, html_to_text

SEARCH_URL = "https://search.example.com/search"

RSS = """<?xml version="1.0"?>
<rss version="2.0"><channel><title>News</title>
<item><title>Cleanup Saturday</title><link>https://powderhorn.example.org/cleanup</link>
<description>Bring gloves</description><pubDate>Sat, 31 May 2025 09:00:00 GMT</pubDate></item>
<item><title>No link</title></item>
</channel></rss>"""


@pytest.fixture
def no_sleep():
    with patch("civic_scout.fetch.http_client.asyncio.sleep", new=AsyncMock()) as sleep:
        yield sleep


@pytest.fixture
def fetch_config() -> FetchConfig:
    return FetchConfig(max_retries=0)


class TestHtmlToText:
    """HTML cleanup."""

    def test_strips_boilerplate(self) -> None:
        html = """
        <html><head><title> Powderhorn News </title><script>var x = 1;</script></head>
        <body><nav>Home | About</nav><h1>Cleanup</h1>
        <p>Saturday at the park.</p><footer>Copyright</footer></body></html>
        """
        title, text = html_to_text(html)
        assert title == "Powderhorn News"
        assert text.splitlines()[-2:] == ["Cleanup", "Saturday at the park."]
        for boilerplate in ("var x", "Home | About", "Copyright"):
            assert boilerplate not in text


class TestHTTPClient:
    """Retry behavior."""

    @respx.mock
    @pytest.mark.asyncio
    async def test_retries_server_errors(self, no_sleep: AsyncMock) -> None:
        route = respx.get("https://a.example.org").mock(
            side_effect=[httpx.Response(503), httpx.Response(200, text="ok")]
        )

        async with HTTPClient(RetryConfig(max_retries=2)) as client:
            response = await client.get("https://a.example.org")

        assert response.text == "ok"
        assert route.call_count == 2
        assert no_sleep.await_count == 1

    @respx.mock
    @pytest.mark.asyncio
    async def test_rate_limit_exhausted(self, no_sleep: AsyncMock) -> None:
        respx.get("https://a.example.org").mock(return_value=httpx.Response(429))

        async with HTTPClient(RetryConfig(max_retries=1)) as client:
            with pytest.raises(RateLimitError) as exc_info:
                await client.get("https://a.example.org")

        assert exc_info.value.status_code == 429

    @respx.mock
    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, no_sleep: AsyncMock) -> None:
        route = respx.get("https://a.example.org").mock(return_value=httpx.Response(404))

        async with HTTPClient(RetryConfig(max_retries=3)) as client:
            with pytest.raises(HTTPClientError):
                await client.get("https://a.example.org")

        assert route.call_count == 1
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_requires_context_manager(self) -> None:
        with pytest.raises(RuntimeError):
            await HTTPClient().get("https://a.example.org")

    def test_backoff_capped(self) -> None:
        config = RetryConfig(base_delay=1.0, max_backoff_seconds=5.0, jitter_factor=0.0)
        assert [config.calculate_backoff(a) for a in range(4)] == [1.0, 2.0, 4.0, 5.0]


class TestFetchPage:
    """Page fetching and error mapping."""

    @respx.mock
    @pytest.mark.asyncio
    async def test_follows_redirect(self, fetch_config: FetchConfig) -> None:
        respx.get("https://old.example.org/news").mock(
            return_value=httpx.Response(301, headers={"location": "https://new.example.org/news"})
        )
        respx.get("https://new.example.org/news").mock(
            return_value=httpx.Response(
                200,
                text="<html><title>News</title><p>Road closure</p></html>",
                headers={"content-type": "text/html"},
            )
        )

        async with HttpWebFetcher(fetch_config) as fetcher:
            page = await fetcher.fetch_page("https://old.example.org/news")

        assert page.requested_url == "https://old.example.org/news"
        assert page.canonical_url == "https://new.example.org/news"
        assert page.title == "News"
        assert "Road closure" in page.text

    @respx.mock
    @pytest.mark.asyncio
    async def test_plain_text_kept(self, fetch_config: FetchConfig) -> None:
        respx.get("https://a.example.org/notice.txt").mock(
            return_value=httpx.Response(200, text="<b>raw</b>", headers={"content-type": "text/plain"})
        )
        async with HttpWebFetcher(fetch_config) as fetcher:
            page = await fetcher.fetch_page("https://a.example.org/notice.txt")
        assert page.text == "<b>raw</b>"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, error_cls",
        [(404, NotFoundError), (410, NotFoundError), (429, RateLimitedError), (403, FetchError)],
    )
    async def test_status_mapping(self, fetch_config: FetchConfig, status: int, error_cls) -> None:
        with respx.mock:
            respx.get("https://a.example.org").mock(return_value=httpx.Response(status))
            async with HttpWebFetcher(fetch_config) as fetcher:
                with pytest.raises(error_cls) as exc_info:
                    await fetcher.fetch_page("https://a.example.org")
        assert exc_info.value.url == "https://a.example.org"

    @respx.mock
    @pytest.mark.asyncio
    async def test_timeout_mapping(self, fetch_config: FetchConfig) -> None:
        respx.get("https://a.example.org").mock(side_effect=httpx.ReadTimeout("slow"))
        async with HttpWebFetcher(fetch_config) as fetcher:
            with pytest.raises(FetchTimeoutError):
                await fetcher.fetch_page("https://a.example.org")


class TestSearch:
    """Search API calls."""

    @respx.mock
    @pytest.mark.asyncio
    async def test_results(self, fetch_config: FetchConfig) -> None:
        route = respx.post(SEARCH_URL).mock(
            return_value=httpx.Response(200, json={"organic": [
                {"link": "https://a.example.org", "title": "A", "snippet": "a"},
                {"title": "no link"},
                {"link": "https://b.example.org"},
            ]})
        )

        async with HttpWebFetcher(
            fetch_config, search_api_url=SEARCH_URL, search_api_key="key", search_location="minneapolis"
        ) as fetcher:
            results = await fetcher.search("food shelf", 5)

        assert [r.url for r in results] == ["https://a.example.org", "https://b.example.org"]
        request = route.calls.last.request
        assert request.headers["X-API-KEY"] == "key"
        assert json.loads(request.content)["location"] == "minneapolis"

    @pytest.mark.asyncio
    async def test_no_key_is_query_error(self, fetch_config: FetchConfig) -> None:
        async with HttpWebFetcher(fetch_config) as fetcher:
            with pytest.raises(QueryError):
                await fetcher.search("food shelf", 5)

    @respx.mock
    @pytest.mark.asyncio
    async def test_api_failure_is_query_error(self, fetch_config: FetchConfig) -> None:
        respx.post(SEARCH_URL).mock(return_value=httpx.Response(500))
        async with HttpWebFetcher(fetch_config, search_api_url=SEARCH_URL, search_api_key="k") as fetcher:
            with pytest.raises(QueryError):
                await fetcher.search("food shelf", 5)

    @respx.mock
    @pytest.mark.asyncio
    async def test_invalid_json_is_query_error(self, fetch_config: FetchConfig) -> None:
        respx.post(SEARCH_URL).mock(return_value=httpx.Response(200, text="not json"))
        async with HttpWebFetcher(fetch_config, search_api_url=SEARCH_URL, search_api_key="k") as fetcher:
            with pytest.raises(QueryError):
                await fetcher.search("food shelf", 5)


class TestFetchFeed:
    """RSS parsing."""

    @respx.mock
    @pytest.mark.asyncio
    async def test_parses_items(self, fetch_config: FetchConfig) -> None:
        respx.get("https://a.example.org/feed").mock(return_value=httpx.Response(200, text=RSS))

        async with HttpWebFetcher(fetch_config) as fetcher:
            items = await fetcher.fetch_feed("https://a.example.org/feed")

        assert len(items) == 1
        assert items[0].url == "https://powderhorn.example.org/cleanup"
        assert items[0].title == "Cleanup Saturday"
        assert items[0].published_at.year == 2025

    @respx.mock
    @pytest.mark.asyncio
    async def test_garbage_feed(self, fetch_config: FetchConfig) -> None:
        respx.get("https://a.example.org/feed").mock(
            return_value=httpx.Response(200, text="<<< not xml")
        )
        async with HttpWebFetcher(fetch_config) as fetcher:
            with pytest.raises(FetchError):
                await fetcher.fetch_feed("https://a.example.org/feed")
