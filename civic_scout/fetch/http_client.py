"""
HTTP layer with bounded retries for delegated network calls.

Provides:
- RetryConfig: exponential backoff with jitter
- HTTPClient: async client that retries 429/5xx and transport errors

Retrying lives here rather than in the scout: once this layer gives up,
the source is skipped for the run.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


@dataclass
class RetryConfig:
    """
    Backoff: min(max_backoff, base_delay * 2^attempt) * (1 + random(0, jitter_factor))
    """

    max_retries: int = 3
    max_backoff_seconds: float = 30.0
    base_delay: float = 1.0
    jitter_factor: float = 0.1

    def calculate_backoff(self, attempt: int) -> float:
        delay = min(self.base_delay * (2**attempt), self.max_backoff_seconds)
        return delay + delay * self.jitter_factor * random.random()


class HTTPClientError(Exception):
    """Request failed with a non-retryable status or after retries ran out."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class RateLimitError(HTTPClientError):
    """Still rate limited after all retries."""


class TransportTimeoutError(HTTPClientError):
    """Timed out on every attempt."""


class HTTPClient:
    """
    Async HTTP client with retry logic. Follows redirects so callers can
    read the final URL from ``response.url``.

    Example:
        async with HTTPClient(RetryConfig(max_retries=2)) as client:
            response = await client.get("https://example.org/events")
    """

    def __init__(
        self,
        retry_config: RetryConfig | None = None,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
    ):
        self.retry_config = retry_config or RetryConfig()
        self.timeout = timeout
        self._headers = headers or {}
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "HTTPClient":
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            headers=self._headers,
            follow_redirects=True,
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        return await self.request("GET", url, params=params, headers=headers)

    async def post(
        self,
        url: str,
        json_body: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        return await self.request("POST", url, json_body=json_body, headers=headers)

    async def request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """
        Execute a request, retrying retryable statuses and transport errors.

        Raises:
            RateLimitError: 429 on every attempt
            TransportTimeoutError: timed out on every attempt
            HTTPClientError: any other failure
        """
        if not self._client:
            raise RuntimeError("HTTPClient must be used as async context manager")

        attempts = self.retry_config.max_retries + 1
        last_status: int | None = None
        last_body: str | None = None

        for attempt in range(attempts):
            try:
                response = await self._client.request(
                    method, url, params=params, headers=headers, json=json_body
                )
            except (httpx.TimeoutException, httpx.ConnectError, httpx.ReadError) as e:
                if attempt < self.retry_config.max_retries:
                    backoff = self.retry_config.calculate_backoff(attempt)
                    logger.warning(
                        "%s for %s, attempt %d/%d, backing off %.2fs",
                        type(e).__name__, url, attempt + 1, attempts, backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                error_cls = (
                    TransportTimeoutError
                    if isinstance(e, httpx.TimeoutException)
                    else HTTPClientError
                )
                raise error_cls(
                    f"Request to {url} failed after {attempts} attempts: {e}"
                ) from e

            if response.status_code in RETRYABLE_STATUS:
                last_status = response.status_code
                last_body = response.text
                if attempt < self.retry_config.max_retries:
                    backoff = self.retry_config.calculate_backoff(attempt)
                    logger.warning(
                        "Status %d from %s, attempt %d/%d, backing off %.2fs",
                        response.status_code, url, attempt + 1, attempts, backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                error_cls = RateLimitError if last_status == 429 else HTTPClientError
                raise error_cls(
                    f"Request to {url} failed with status {last_status} after {attempts} attempts",
                    status_code=last_status,
                    response_body=last_body,
                )

            if response.status_code >= 400:
                raise HTTPClientError(
                    f"Request to {url} failed with status {response.status_code}",
                    status_code=response.status_code,
                    response_body=response.text,
                )

            return response

        raise HTTPClientError(
            f"Request to {url} failed after {attempts} attempts",
            status_code=last_status,
            response_body=last_body,
        )
