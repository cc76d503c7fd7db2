"""Extraction: turning fetched text into typed signal candidates."""

from civic_scout.extraction.base import ExtractionRule, Extractor, MockExtractor
from civic_scout.extraction.circuit_breaker import (
    CircuitOpenError,
    CircuitState,
    GenericCircuitBreaker,
)
from civic_scout.extraction.config import ExtractionConfig
from civic_scout.extraction.llm_extractor import LLMExtractor

__all__ = [
    "CircuitOpenError",
    "CircuitState",
    "ExtractionConfig",
    "ExtractionRule",
    "Extractor",
    "GenericCircuitBreaker",
    "LLMExtractor",
    "MockExtractor",
]
