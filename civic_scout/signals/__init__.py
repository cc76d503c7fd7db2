"""Signals: typed civic facts extracted from source content."""

from civic_scout.signals.schemas import (
    ExtractionResult,
    ReapStats,
    Signal,
    SignalCandidate,
    SignalKind,
    SignalReference,
    content_hash,
    normalize_title,
)

__all__ = [
    "ExtractionResult",
    "ReapStats",
    "Signal",
    "SignalCandidate",
    "SignalKind",
    "SignalReference",
    "content_hash",
    "normalize_title",
]
