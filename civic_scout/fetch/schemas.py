"""Data returned by fetch collaborators."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class FetchedPage:
    """Page text plus the URL it resolved to after redirects."""

    requested_url: str
    canonical_url: str
    text: str
    title: str = ""


@dataclass
class SearchResult:
    url: str
    title: str = ""
    snippet: str = ""


@dataclass
class FeedItem:
    url: str
    title: str = ""
    summary: str = ""
    published_at: datetime | None = None


@dataclass
class SocialPost:
    platform: str
    author: str
    text: str
    url: str = ""
    posted_at: datetime | None = None


@dataclass
class SocialFetchResult:
    """Posts from one account and the account's resolved profile URL."""

    canonical_url: str
    posts: list[SocialPost] = field(default_factory=list)

    def combined_text(self) -> str:
        return "\n\n".join(p.text for p in self.posts if p.text.strip())
