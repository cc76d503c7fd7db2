"""Anthropic-backed extractor using tool_use for structured output.

The SDK import is deferred to the first call so mock runs and tests never
need credentials.
"""

import logging
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from civic_scout.extraction.base import ExtractionRule
from civic_scout.extraction.circuit_breaker import GenericCircuitBreaker
from civic_scout.extraction.config import ExtractionConfig
from civic_scout.signals.schemas import ExtractionResult, SignalCandidate, SignalKind

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You read public web pages and social posts about the city of {city} \
and extract concrete civic signals: events people can attend, offers of aid or \
resources, requests for help, and public notices. Only extract facts stated in \
the text. Ignore advertising, navigation and boilerplate. For each signal, give \
a short title, a one-paragraph body, a confidence between 0 and 1, any named \
organizations involved, and a location when the text names one. Also suggest up \
to {max_queries} web search queries that would find related resources in {city}."""

TOOL_NAME = "submit_signals"

TOOL_SCHEMA = {
    "name": TOOL_NAME,
    "description": "Submit the civic signals found in the text",
    "input_schema": {
        "type": "object",
        "properties": {
            "signals": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "kind": {"type": "string", "enum": [k.value for k in SignalKind]},
                        "title": {"type": "string"},
                        "body": {"type": "string"},
                        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                        "location_name": {"type": "string"},
                        "latitude": {"type": "number"},
                        "longitude": {"type": "number"},
                        "actors": {"type": "array", "items": {"type": "string"}},
                        "evidence": {"type": "string"},
                    },
                    "required": ["kind", "title", "confidence"],
                },
            },
            "implied_queries": {"type": "array", "items": {"type": "string"}},
        },
        "required": ["signals"],
    },
}


class _ExtractedSignal(BaseModel):
    kind: SignalKind
    title: str = Field(min_length=1)
    body: str = ""
    confidence: float = Field(ge=0.0, le=1.0)
    location_name: str | None = None
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    actors: list[str] = Field(default_factory=list)
    evidence: str = ""


class LLMExtractor:
    """Extracts signals with Claude behind a circuit breaker.

    ``rules`` and ``min_confidence`` come from the supervisor and are fixed
    for the extractor's lifetime.
    """

    def __init__(
        self,
        city: str,
        config: ExtractionConfig | None = None,
        rules: list[ExtractionRule] | None = None,
        min_confidence: float | None = None,
        api_key: str | None = None,
    ) -> None:
        self._city = city
        self._config = config or ExtractionConfig()
        self._rules = [r for r in (rules or []) if r.city in (None, city)]
        self._min_confidence = (
            self._config.min_confidence if min_confidence is None else min_confidence
        )
        self._api_key = api_key
        self._client: Any = None
        self._breaker = GenericCircuitBreaker(
            failure_threshold=self._config.circuit_failure_threshold,
            recovery_timeout=self._config.circuit_recovery_timeout,
            name="anthropic_extractor",
        )

    @property
    def breaker(self) -> GenericCircuitBreaker:
        return self._breaker

    def _get_client(self) -> Any:
        if self._client is None:
            import anthropic

            key = self._api_key
            if key is None and self._config.anthropic_api_key is not None:
                key = self._config.anthropic_api_key.get_secret_value()
            self._client = anthropic.AsyncAnthropic(
                api_key=key,
                timeout=self._config.timeout,
            )
        return self._client

    def _system_prompt(self) -> str:
        prompt = SYSTEM_PROMPT.format(
            city=self._city, max_queries=self._config.max_implied_queries
        )
        if self._rules:
            lines = []
            for rule in self._rules:
                scope = f" ({rule.kind.value} signals)" if rule.kind else ""
                lines.append(f"- {rule.instruction}{scope}")
            prompt += "\n\nCorrections from past review:\n" + "\n".join(lines)
        return prompt

    async def extract(self, text: str, source_url: str) -> ExtractionResult:
        """Extract signals from text. Raises on API failure or open circuit."""
        content = text[: self._config.max_input_chars]

        async def _call() -> dict[str, Any] | None:
            client = self._get_client()
            response = await client.messages.create(
                model=self._config.model,
                max_tokens=self._config.max_tokens,
                system=self._system_prompt(),
                messages=[{
                    "role": "user",
                    "content": f"Source: {source_url}\n\n{content}",
                }],
                tools=[TOOL_SCHEMA],
                tool_choice={"type": "tool", "name": TOOL_NAME},
            )
            for block in response.content:
                if block.type == "tool_use" and block.name == TOOL_NAME:
                    return block.input
            logger.warning("Extraction response for %s had no tool_use block", source_url)
            return None

        payload = await self._breaker.call(_call)
        return self.parse_payload(payload)

    def parse_payload(self, payload: dict[str, Any] | None) -> ExtractionResult:
        """Validate a tool payload, dropping malformed or low-confidence signals."""
        result = ExtractionResult()
        if not payload:
            return result

        for raw in payload.get("signals", []):
            try:
                item = _ExtractedSignal.model_validate(raw)
            except ValidationError as e:
                logger.debug("Dropping malformed signal: %s", e)
                continue
            if item.confidence < self._min_confidence:
                continue
            result.signals.append(SignalCandidate(**item.model_dump()))

        queries = [q.strip() for q in payload.get("implied_queries", []) if isinstance(q, str)]
        result.implied_queries = [q for q in queries if q][: self._config.max_implied_queries]
        return result
