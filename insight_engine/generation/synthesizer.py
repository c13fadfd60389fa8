"""
Insight Synthesizer

Builds a generation request from an AnalysisContext, runs it through the
primary route and, if that fails, once through the fallback route, then
parses the text into a structured Insight.
"""

from typing import Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

from loguru import logger

from insight_engine.core.config import Settings, settings
from insight_engine.core.errors import GenerationUnavailable
from insight_engine.core.models import (
    AnalysisContext,
    CatalogEntry,
    ConfidenceScore,
    Insight,
    Recommendation,
)
from insight_engine.generation.client import (
    ChatCompletionsGenerator,
    GenerationRequest,
    GenerationResponse,
    TextGenerator,
)
from insight_engine.generation.parser import parse_insight_response
from insight_engine.generation.prompts import build_generation_request


class ModelRoute:
    """One provider + model combination"""

    def __init__(self, generator: TextGenerator, model: str, provider: str = "") -> None:
        self.generator = generator
        self.model = model
        self.provider = provider or getattr(generator, "provider", "") or "unknown"

    @property
    def label(self) -> str:
        return f"{self.provider}:{self.model}"


def default_routes(config: Settings = settings) -> Tuple[ModelRoute, ModelRoute]:
    """Primary and fallback routes from settings"""
    primary = ModelRoute(
        generator=ChatCompletionsGenerator(
            config.PRIMARY_BASE_URL,
            api_key=config.PRIMARY_API_KEY,
            timeout=config.GENERATION_TIMEOUT,
            provider="openrouter",
        ),
        model=config.PRIMARY_MODEL,
        provider="openrouter",
    )
    fallback = ModelRoute(
        generator=ChatCompletionsGenerator(
            config.FALLBACK_BASE_URL,
            api_key=config.FALLBACK_API_KEY,
            timeout=config.GENERATION_TIMEOUT,
            provider="gemini",
        ),
        model=config.FALLBACK_MODEL,
        provider="gemini",
    )
    return primary, fallback


class InsightSynthesizer:
    """
    Context + confidence -> Insight, via an external text generator.

    Two routes are tried in order. Any ``success=False`` response, or an
    exception raised by a generator, moves on to the next route; when both
    fail ``GenerationUnavailable`` is raised. A response that arrives but
    cannot be parsed still yields an Insight (degraded, no recommendations).
    """

    def __init__(
        self,
        primary: ModelRoute,
        fallback: Optional[ModelRoute] = None,
        max_tokens: int = 1500,
        temperature: float = 0.7,
    ) -> None:
        self.routes: List[ModelRoute] = [primary] + ([fallback] if fallback else [])
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.syntheses = 0
        self.fallbacks_used = 0
        self.degraded_responses = 0
        self.last_request: Optional[GenerationRequest] = None
        logger.info(
            "InsightSynthesizer initialized (routes: {routes})",
            routes=", ".join(r.label for r in self.routes),
        )

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "InsightSynthesizer":
        primary, fallback = default_routes(config)
        return cls(primary, fallback, max_tokens=config.MAX_TOKENS, temperature=config.TEMPERATURE)

    async def _call_route(self, route: ModelRoute, request: GenerationRequest) -> GenerationResponse:
        routed = request.model_copy(update={"model": route.model})
        try:
            return await route.generator.generate(routed)
        except Exception as e:
            # CancelledError is a BaseException and passes through
            return GenerationResponse(success=False, error=f"{type(e).__name__}: {e}")

    async def generate_text(self, request: GenerationRequest) -> Tuple[str, str]:
        """
        Run ``request`` through the route chain.

        Returns:
            (text, route label) of the first successful route

        Raises:
            GenerationUnavailable: every route failed
        """
        attempts: List[str] = []

        for index, route in enumerate(self.routes):
            if index > 0:
                self.fallbacks_used += 1
                logger.warning(f"Falling back to {route.label}")

            response = await self._call_route(route, request)
            if response.success and response.text.strip():
                return response.text, route.label

            error = response.error or "empty response"
            attempts.append(f"{route.label}: {error}")
            logger.warning(f"Generation route {route.label} failed: {error}")

        raise GenerationUnavailable(attempts)

    async def synthesize(
        self,
        context: AnalysisContext,
        confidence: ConfidenceScore,
        catalog: Sequence[CatalogEntry] = (),
    ) -> Insight:
        """
        Synthesize one Insight for ``context``.

        Args:
            context: Aggregated analysis context
            confidence: Computed confidence (drives the tone instructions)
            catalog: Valid recommendation targets

        Returns:
            Insight; ``degraded`` is set when the response could not be parsed

        Raises:
            GenerationUnavailable: primary and fallback both failed
        """
        request = build_generation_request(
            context,
            confidence,
            catalog,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        self.last_request = request

        text, generated_by = await self.generate_text(request)
        self.syntheses += 1

        parsed = parse_insight_response(text, catalog)
        if parsed.degraded:
            self.degraded_responses += 1

        insight_id = str(uuid4())
        recommendations = tuple(
            Recommendation(
                id=f"{insight_id}-{rec.kind.value}-{index}",
                target_id=rec.target_id,
                label=rec.label,
                rationale=rec.rationale,
                kind=rec.kind,
            )
            for index, rec in enumerate(parsed.recommendations)
        )

        logger.info(
            "Synthesized insight {id} via {route}: {count} recommendations{degraded}",
            id=insight_id,
            route=generated_by,
            count=len(recommendations),
            degraded=" (degraded)" if parsed.degraded else "",
        )

        return Insight(
            id=insight_id,
            pattern_description=parsed.pattern_description,
            recommendations=recommendations,
            confidence_score=confidence,
            generated_by=generated_by,
            degraded=parsed.degraded,
        )

    def get_stats(self) -> Dict:
        return {
            "syntheses": self.syntheses,
            "fallbacks_used": self.fallbacks_used,
            "degraded_responses": self.degraded_responses,
            "routes": [r.label for r in self.routes],
        }
