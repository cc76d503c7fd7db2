"""Tests for URL normalization and source identity."""

import re

import pytest

from civic_scout.sources.config import SourcesConfig
from civic_scout.sources.schemas import DiscoveryMethod, Source, SourceKind
from civic_scout.sources.urls import (
    canonical_key,
    is_social_url,
    normalize_query,
    profile_url,
    sanitize_url,
    social_url_pattern,
)
from tests.conftest import CITY


class TestSanitizeUrl:
    """Alias normalization."""

    @pytest.mark.parametrize(
        "url",
        [
            "https://Powderhorn.Example.org/news/",
            "https://powderhorn.example.org/news#top",
            "https://powderhorn.example.org/news?utm_source=fb&fbclid=abc",
            "  https://powderhorn.example.org/news  ",
        ],
    )
    def test_aliases_collapse(self, url: str) -> None:
        assert sanitize_url(url) == "https://powderhorn.example.org/news"

    def test_keeps_meaningful_params_in_order(self) -> None:
        url = "https://a.example.org/events?page=2&utm_medium=x&category=food"
        assert sanitize_url(url) == "https://a.example.org/events?page=2&category=food"


class TestCanonicalKey:
    """Source identity strings."""

    def test_web(self) -> None:
        assert (
            canonical_key(CITY, "web", "https://A.example.org/x/")
            == "minneapolis:web:https://a.example.org/x"
        )

    def test_query_normalized(self) -> None:
        assert canonical_key("Minneapolis", "query", "  Food   Shelf ") == "minneapolis:query:food shelf"

    def test_social_handle(self) -> None:
        assert (
            canonical_key(CITY, "social", "@PowderhornFridge", platform="Instagram")
            == "minneapolis:social:instagram/powderhornfridge"
        )

    def test_social_requires_platform(self) -> None:
        with pytest.raises(ValueError):
            canonical_key(CITY, "social", "fridge")

    def test_unknown_kind(self) -> None:
        with pytest.raises(ValueError):
            canonical_key(CITY, "carrier_pigeon", "x")


class TestHelpers:
    """Query, profile and social host helpers."""

    def test_normalize_query(self) -> None:
        assert normalize_query("  Rent\tHelp  NOW ") == "rent help now"

    def test_profile_url(self) -> None:
        assert profile_url("instagram", "@Fridge") == "https://www.instagram.com/fridge"
        assert profile_url("mastodon", "fridge") == "mastodon://fridge"

    @pytest.mark.parametrize(
        "url, expected",
        [
            ("https://www.instagram.com/p/abc", True),
            ("https://m.facebook.com/groups/x", True),
            ("https://bsky.app/profile/a", True),
            ("https://parks.example.org", False),
            ("https://notinstagram.com", False),
            ("https://x.com.example.org/post", False),
            ("HTTPS://Instagram.com", True),
        ],
    )
    def test_is_social_url(self, url: str, expected: bool) -> None:
        assert is_social_url(url) is expected
        # The SQL pattern used by the store agrees with the Python check
        assert bool(re.search(social_url_pattern(), url, re.IGNORECASE)) is expected


class TestSourceCreate:
    """Source construction."""

    def test_web_url_filled(self) -> None:
        source = Source.create(CITY, SourceKind.WEB, "https://A.example.org/news/")
        assert source.value == "https://a.example.org/news"
        assert source.url == "https://a.example.org/news"
        assert source.is_curated
        assert source.never_scraped

    def test_social_profile_url(self) -> None:
        source = Source.create(CITY, SourceKind.SOCIAL, "@Fridge", platform="instagram")
        assert source.value == "instagram/fridge"
        assert source.url == "https://www.instagram.com/fridge"

    def test_query_has_no_url(self) -> None:
        assert Source.create(CITY, SourceKind.QUERY, "Food Shelf").url is None

    def test_initial_weights(self) -> None:
        config = SourcesConfig()
        assert config.initial_weight_for(DiscoveryMethod.CURATED) == 0.5
        assert config.initial_weight_for(DiscoveryMethod.SIGNAL_REFERENCE) == 0.3
        assert config.initial_weight_for(DiscoveryMethod.SIGNAL_EXPANSION) == 0.2
