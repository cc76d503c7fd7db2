"""Data models for the sources module."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from civic_scout.sources.urls import canonical_key, canonical_value, profile_url


class SourceKind(str, Enum):
    """How a source's content is acquired."""

    WEB = "web"
    RSS = "rss"
    QUERY = "query"
    SOCIAL = "social"


class SourceRole(str, Enum):
    """Which scrape phase a source feeds.

    TENSION sources surface problems, RESPONSE sources surface help and
    resources. MIXED sources run with the problem phase.
    """

    TENSION = "tension"
    RESPONSE = "response"
    MIXED = "mixed"


class DiscoveryMethod(str, Enum):
    CURATED = "curated"
    GAP_ANALYSIS = "gap_analysis"
    SIGNAL_REFERENCE = "signal_reference"
    HASHTAG_DISCOVERY = "hashtag_discovery"
    SIGNAL_EXPANSION = "signal_expansion"


@dataclass
class Source:
    """A schedulable content origin scoped to one city.

    ``canonical_key`` is the stable identifier: ``{city}:{kind}:{value}``
    with the value normalized, so the same page, query or account never
    yields two sources. Sources are never deleted, only deactivated.
    """

    canonical_key: str
    city: str
    kind: SourceKind
    value: str
    url: str | None = None
    platform: str | None = None
    role: SourceRole = SourceRole.MIXED
    discovery_method: DiscoveryMethod = DiscoveryMethod.CURATED
    weight: float = 0.5
    cadence_hours: float | None = None
    active: bool = True
    quality_penalty: float = 1.0
    signals_produced: int = 0
    scrape_count: int = 0
    consecutive_empty_runs: int = 0
    consecutive_failures: int = 0
    last_scraped: datetime | None = None
    last_produced_signal: datetime | None = None
    gap_context: str | None = None
    created_at: datetime | None = None

    @classmethod
    def create(
        cls,
        city: str,
        kind: SourceKind,
        value: str,
        *,
        platform: str | None = None,
        url: str | None = None,
        **fields,
    ) -> "Source":
        """Build a source with its canonical key and normalized value filled in."""
        normalized = canonical_value(kind.value, value, platform)
        if url is None and kind in (SourceKind.WEB, SourceKind.RSS):
            url = normalized
        elif url is None and kind == SourceKind.SOCIAL:
            url = profile_url(platform, value)
        return cls(
            canonical_key=canonical_key(city, kind.value, value, platform),
            city=city,
            kind=kind,
            value=normalized,
            url=url,
            platform=platform,
            **fields,
        )

    @property
    def is_curated(self) -> bool:
        return self.discovery_method == DiscoveryMethod.CURATED

    @property
    def never_scraped(self) -> bool:
        return self.last_scraped is None
