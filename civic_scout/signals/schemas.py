"""Data models for extracted and stored signals."""

import hashlib
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum


class SignalKind(str, Enum):
    """Kinds of civic fact the extractor produces."""

    EVENT = "event"
    AID_OFFER = "aid_offer"
    REQUEST = "request"
    NOTICE = "notice"


# How long a signal stays live before reaping, by kind
SIGNAL_TTL_DAYS: dict[SignalKind, int] = {
    SignalKind.EVENT: 30,
    SignalKind.AID_OFFER: 60,
    SignalKind.REQUEST: 30,
    SignalKind.NOTICE: 90,
}

# Characters of body text included in the embedding input
EMBED_BODY_CHARS = 500


def content_hash(text: str) -> str:
    """SHA256 of page text, used to skip identical content within a run."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def normalize_title(title: str) -> str:
    return title.strip().lower()


@dataclass
class SignalCandidate:
    """One extractor output before deduplication and persistence."""

    kind: SignalKind
    title: str
    body: str = ""
    confidence: float = 0.5
    latitude: float | None = None
    longitude: float | None = None
    location_name: str | None = None
    actors: list[str] = field(default_factory=list)
    evidence: str = ""

    @property
    def normalized_title(self) -> str:
        return normalize_title(self.title)

    @property
    def has_location(self) -> bool:
        return (
            self.latitude is not None and self.longitude is not None
        ) or bool(self.location_name)

    def embed_text(self) -> str:
        """Text embedded for similarity: title plus the start of the body."""
        return f"{self.title} {self.body[:EMBED_BODY_CHARS]}".strip()


@dataclass
class ExtractionResult:
    """Extractor output for one piece of text."""

    signals: list[SignalCandidate] = field(default_factory=list)
    implied_queries: list[str] = field(default_factory=list)


@dataclass
class Signal:
    """A persisted signal with provenance back to its source.

    ``near_duplicate_of`` is set when the signal was stored inside the
    near-duplicate band; such signals await downstream review rather than
    being merged automatically.

    ``corroboration_count`` counts other sources that later reported the
    same thing; ``last_confirmed_at`` moves whenever any source, its own
    included, reports it again.
    """

    city: str
    kind: SignalKind
    title: str
    body: str
    source_key: str
    source_url: str
    confidence: float = 0.5
    evidence: str = ""
    embedding: list[float] | None = None
    latitude: float | None = None
    longitude: float | None = None
    location_name: str | None = None
    content_hash: str | None = None
    near_duplicate_of: str | None = None
    similarity: float | None = None
    implied_queries: list[str] = field(default_factory=list)
    review_status: str = "pending"
    corroboration_count: int = 0
    last_confirmed_at: datetime | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime | None = None
    expires_at: datetime | None = None

    @property
    def flagged(self) -> bool:
        return self.near_duplicate_of is not None

    @classmethod
    def from_candidate(
        cls,
        candidate: SignalCandidate,
        *,
        city: str,
        source_key: str,
        source_url: str,
        created_at: datetime,
        embedding: list[float] | None = None,
        page_hash: str | None = None,
        near_duplicate_of: str | None = None,
        similarity: float | None = None,
        implied_queries: list[str] | None = None,
    ) -> "Signal":
        return cls(
            city=city,
            kind=candidate.kind,
            title=candidate.title,
            body=candidate.body,
            source_key=source_key,
            source_url=source_url,
            confidence=candidate.confidence,
            evidence=candidate.evidence,
            embedding=embedding,
            latitude=candidate.latitude,
            longitude=candidate.longitude,
            location_name=candidate.location_name,
            content_hash=page_hash,
            near_duplicate_of=near_duplicate_of,
            similarity=similarity,
            implied_queries=list(implied_queries or []),
            created_at=created_at,
            expires_at=created_at + timedelta(days=SIGNAL_TTL_DAYS[candidate.kind]),
        )


@dataclass
class SignalReference:
    """A stored signal whose referenced page has no source yet."""

    signal_id: str
    url: str
    title: str = ""


@dataclass
class ReapStats:
    signals_reaped: int = 0
    actors_orphaned: int = 0
