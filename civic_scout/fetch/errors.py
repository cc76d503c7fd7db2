"""Typed fetch failures.

The scout treats every subclass the same way (skip the source, count the
failure) but keeps the type so statistics and metrics can tell a dead
page from a throttled API.
"""


class FetchError(Exception):
    """Base class for fetch failures."""

    error_type = "error"

    def __init__(self, message: str, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class NotFoundError(FetchError):
    error_type = "not_found"


class RateLimitedError(FetchError):
    error_type = "rate_limited"


class FetchTimeoutError(FetchError):
    error_type = "timeout"


class QueryError(FetchError):
    """The search/query layer failed, as opposed to a single page fetch.

    Sources that hit this get their cadence backed off.
    """

    error_type = "query_error"
