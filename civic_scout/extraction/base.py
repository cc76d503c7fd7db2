"""Extractor protocol, supervisor-supplied rules, and a mock extractor."""

import re
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from civic_scout.signals.schemas import ExtractionResult, SignalCandidate, SignalKind


@runtime_checkable
class Extractor(Protocol):
    """Turns raw text into signal candidates and implied follow-up queries.

    Implementations must be side-effect free with respect to the scout:
    the same text and the same model output give the same result.
    """

    async def extract(self, text: str, source_url: str) -> ExtractionResult: ...


@dataclass(frozen=True)
class ExtractionRule:
    """A correction rule written by the supervisor and fed into extraction prompts."""

    instruction: str
    kind: SignalKind | None = None
    city: str | None = None


_KIND_PREFIX = re.compile(
    r"^(event|aid_offer|request|notice)\s*:\s*(.+)$", re.IGNORECASE
)
_QUERY_PREFIX = re.compile(r"^query\s*:\s*(.+)$", re.IGNORECASE)
_LOCATION = re.compile(r"@\s*([^|]+)$")


class MockExtractor:
    """Line-oriented extractor for mock runs and tests.

    Recognized lines::

        event: Community cleanup at Powderhorn Park @ Powderhorn Park
        aid_offer: Free groceries every Saturday
        query: food shelves south minneapolis

    Any ``@ place`` suffix becomes the location name. Other lines are
    ignored.
    """

    def __init__(self, min_confidence: float = 0.0) -> None:
        self.min_confidence = min_confidence
        self.calls: list[str] = []

    async def extract(self, text: str, source_url: str) -> ExtractionResult:
        self.calls.append(source_url)
        result = ExtractionResult()
        for raw in text.splitlines():
            line = raw.strip()
            query = _QUERY_PREFIX.match(line)
            if query:
                result.implied_queries.append(query.group(1).strip())
                continue
            match = _KIND_PREFIX.match(line)
            if not match:
                continue
            title = match.group(2).strip()
            location = None
            loc = _LOCATION.search(title)
            if loc:
                location = loc.group(1).strip()
                title = title[: loc.start()].strip()
            result.signals.append(
                SignalCandidate(
                    kind=SignalKind(match.group(1).lower()),
                    title=title,
                    body=line,
                    confidence=0.8,
                    location_name=location,
                    evidence=line,
                )
            )
        return result
