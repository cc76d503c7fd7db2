"""Sources: schedulable content origins tracked across runs."""

from civic_scout.sources.config import SourcesConfig
from civic_scout.sources.schemas import (
    DiscoveryMethod,
    Source,
    SourceKind,
    SourceRole,
)
from civic_scout.sources.urls import (
    canonical_key,
    canonical_value,
    is_social_url,
    normalize_query,
    profile_url,
    sanitize_url,
)

__all__ = [
    "DiscoveryMethod",
    "Source",
    "SourceKind",
    "SourceRole",
    "SourcesConfig",
    "canonical_key",
    "canonical_value",
    "is_social_url",
    "normalize_query",
    "profile_url",
    "sanitize_url",
]
