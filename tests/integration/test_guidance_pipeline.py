"""
Integration tests for the guidance pipeline.

Covers the full path from raw session records to a toned, cached insight
with recorded lineage, plus the failure, coalescing and cancellation
behaviour around it.
"""

import asyncio
from typing import List, Optional

import pytest

from insight_engine.cache.guidance_cache import GuidanceCache
from insight_engine.confidence.validator import detect
from insight_engine.core.errors import GenerationUnavailable
from insight_engine.core.models import CatalogEntry, PracticeRef
from insight_engine.generation.client import GenerationRequest, GenerationResponse
from insight_engine.generation.synthesizer import InsightSynthesizer, ModelRoute
from insight_engine.pipeline.guidance_pipeline import GuidancePipeline, build_context
from insight_engine.provenance.lineage_store import LineageStore

CATALOG = [
    CatalogEntry(id="ifs", name="Internal Family Systems"),
    CatalogEntry(id="meditation", name="Meditation"),
]

RESPONSE = """PATTERN: You are clearly pleasing others to stay safe.
---
SHADOW WORK:
- [ifs] Internal Family Systems | Rationale: This will definitely reveal the pleaser.
---
NEXT STEPS:
- [meditation] Meditation | Rationale: Builds capacity to stay present.
"""

RECORDS = {
    "historyIFS": [
        {"id": "s1", "date": "2025-01-01T09:00:00Z", "partName": "Pleaser", "partFears": "Rejection"},
        {"id": "s2", "date": "2025-01-03T09:00:00Z", "partName": "Critic"},
    ],
}


class FakeGenerator:
    """Scripted generator; optionally blocks until released"""

    def __init__(
        self,
        text: str = RESPONSE,
        success: bool = True,
        gated: bool = False,
        cleanup_delay: float = 0.0,
    ) -> None:
        self.text = text
        self.cleanup_delay = cleanup_delay
        self.success = success
        self.release = asyncio.Event()
        self.started = asyncio.Event()
        self.cancelled = False
        self.requests: List[GenerationRequest] = []
        if not gated:
            self.release.set()

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        self.requests.append(request)
        self.started.set()
        try:
            await self.release.wait()
        except asyncio.CancelledError:
            self.cancelled = True
            if self.cleanup_delay:
                await asyncio.sleep(self.cleanup_delay)
            raise
        if not self.success:
            return GenerationResponse(success=False, error="HTTP 500")
        return GenerationResponse(success=True, text=self.text)


class FailingLineageStore(LineageStore):
    """Lineage store whose writes always fail"""

    async def record_insight(self, *args, **kwargs):
        raise RuntimeError("disk full")


def _pipeline(
    generator: FakeGenerator,
    fallback: Optional[FakeGenerator] = None,
    lineage_store: Optional[LineageStore] = None,
) -> GuidancePipeline:
    synthesizer = InsightSynthesizer(
        ModelRoute(generator, "model-a", provider="openrouter"),
        ModelRoute(fallback, "model-b", provider="gemini") if fallback else None,
    )
    return GuidancePipeline(synthesizer, lineage_store or LineageStore(), GuidanceCache())


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


class TestGuidancePipeline:
    """End-to-end guidance resolution"""

    @pytest.mark.asyncio
    async def test_full_flow_tones_records_and_caches(self) -> None:
        """Generated text is toned to confidence, lineage recorded, result cached"""
        pipeline = _pipeline(FakeGenerator())
        context = build_context(RECORDS, [PracticeRef(id="meditation", name="Meditation")])

        insight = await pipeline.get_guidance(context, CATALOG, user_id="u1")

        # Two sessions: exploratory confidence, so no definite language survives
        assert insight.confidence_score.value == pytest.approx(0.40)
        assert detect(insight.pattern_description).definite_markers == []
        for rec in insight.recommendations:
            assert detect(rec.rationale).definite_markers == []
        assert insight.tone_adjustments

        assert insight.lineage_id is not None
        synthesis = await pipeline.lineage_store.get_synthesis(insight.lineage_id)
        assert synthesis.user_id == "u1"
        assert len(synthesis.recommendations) == 2

        for rec in insight.recommendations:
            result = await pipeline.lineage_store.verify(rec.id)
            assert result.is_valid is True

        assert pipeline.cache.entry.insight == insight

    @pytest.mark.asyncio
    async def test_cache_hit_skips_generation(self) -> None:
        """Same context twice generates once"""
        generator = FakeGenerator()
        pipeline = _pipeline(generator)
        context = build_context(RECORDS)

        first = await pipeline.get_guidance(context, CATALOG)
        second = await pipeline.get_guidance(build_context(RECORDS), CATALOG)

        assert second == first
        assert len(generator.requests) == 1
        assert pipeline.get_stats()["cache_hits"] == 1

    @pytest.mark.asyncio
    async def test_changed_context_regenerates(self) -> None:
        """A new session invalidates the cached guidance"""
        generator = FakeGenerator()
        pipeline = _pipeline(generator)

        await pipeline.get_guidance(build_context(RECORDS), CATALOG)
        more = {"historyIFS": RECORDS["historyIFS"] + [{"id": "s3", "date": "2025-01-05"}]}
        await pipeline.get_guidance(build_context(more), CATALOG)

        assert len(generator.requests) == 2

    @pytest.mark.asyncio
    async def test_force_refresh(self) -> None:
        """force_refresh bypasses the cache"""
        generator = FakeGenerator()
        pipeline = _pipeline(generator)
        context = build_context(RECORDS)

        await pipeline.get_guidance(context, CATALOG)
        await pipeline.get_guidance(context, CATALOG, force_refresh=True)

        assert len(generator.requests) == 2

    @pytest.mark.asyncio
    async def test_generation_failure_writes_nothing(self) -> None:
        """Both routes failing raises and leaves cache and lineage untouched"""
        pipeline = _pipeline(FakeGenerator(success=False), FakeGenerator(success=False))

        with pytest.raises(GenerationUnavailable):
            await pipeline.get_guidance(build_context(RECORDS), CATALOG, user_id="u1")

        assert pipeline.cache.entry is None
        assert await pipeline.lineage_store.history("u1") == ([], 0)
        assert pipeline.get_stats()["generation_failures"] == 1

    @pytest.mark.asyncio
    async def test_fallback_route_used(self) -> None:
        """Primary failure is recovered by the fallback route"""
        pipeline = _pipeline(FakeGenerator(success=False), FakeGenerator())

        insight = await pipeline.get_guidance(build_context(RECORDS), CATALOG)

        assert insight.generated_by == "gemini:model-b"

    @pytest.mark.asyncio
    async def test_lineage_failure_still_returns(self) -> None:
        """Lineage errors are counted and logged, never returned to the caller"""
        pipeline = _pipeline(FakeGenerator(), lineage_store=FailingLineageStore())

        insight = await pipeline.get_guidance(build_context(RECORDS), CATALOG)

        assert insight.recommendations
        assert insight.lineage_id is None
        assert pipeline.get_stats()["lineage_failures"] == 1
        assert pipeline.cache.entry is not None

    @pytest.mark.asyncio
    async def test_degraded_insight_not_cached(self) -> None:
        """Unparseable responses are returned but neither cached nor recorded"""
        pipeline = _pipeline(FakeGenerator(text="Sorry, I cannot do that."))

        insight = await pipeline.get_guidance(build_context(RECORDS), CATALOG, user_id="u1")

        assert insight.degraded is True
        assert pipeline.cache.entry is None
        assert await pipeline.lineage_store.history("u1") == ([], 0)

    @pytest.mark.asyncio
    async def test_no_sessions_no_lineage(self) -> None:
        """Without sessions there is no evidence chain to record"""
        pipeline = _pipeline(FakeGenerator())

        insight = await pipeline.get_guidance(build_context({}), CATALOG, user_id="u1")

        assert insight.lineage_id is None
        assert insight.confidence_score.value == pytest.approx(0.30)


class TestConcurrency:
    """Single-flight coalescing and cancellation"""

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_synthesis(self) -> None:
        """Identical concurrent requests trigger one generation"""
        generator = FakeGenerator(gated=True)
        pipeline = _pipeline(generator)
        context = build_context(RECORDS)

        first = asyncio.create_task(pipeline.get_guidance(context, CATALOG))
        second = asyncio.create_task(pipeline.get_guidance(context, CATALOG))
        await generator.started.wait()
        await _settle()
        generator.release.set()

        results = await asyncio.gather(first, second)

        assert results[0].id == results[1].id
        assert len(generator.requests) == 1
        assert pipeline.get_stats()["coalesced"] == 1
        assert pipeline.get_stats()["in_flight"] == 0

    @pytest.mark.asyncio
    async def test_cancellation_writes_nothing(self) -> None:
        """A caller cancelled before generation completes leaves no trace"""
        generator = FakeGenerator(gated=True)
        pipeline = _pipeline(generator)

        task = asyncio.create_task(
            pipeline.get_guidance(build_context(RECORDS), CATALOG, user_id="u1")
        )
        await generator.started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        await _settle()

        assert generator.cancelled is True
        assert pipeline.cache.entry is None
        assert await pipeline.lineage_store.history("u1") == ([], 0)
        assert pipeline.get_stats()["in_flight"] == 0

    @pytest.mark.asyncio
    async def test_one_caller_leaving_does_not_cancel_others(self) -> None:
        """The shared synthesis survives while any caller still waits"""
        generator = FakeGenerator(gated=True)
        pipeline = _pipeline(generator)
        context = build_context(RECORDS)

        leaving = asyncio.create_task(pipeline.get_guidance(context, CATALOG))
        staying = asyncio.create_task(pipeline.get_guidance(context, CATALOG))
        await generator.started.wait()
        await _settle()

        leaving.cancel()
        with pytest.raises(asyncio.CancelledError):
            await leaving
        generator.release.set()

        insight = await staying

        assert generator.cancelled is False
        assert insight.recommendations
        assert pipeline.cache.entry is not None

    @pytest.mark.asyncio
    async def test_caller_after_cancellation_starts_fresh_synthesis(self) -> None:
        """A caller arriving while a cancelled synthesis tears down is not cancelled with it"""
        generator = FakeGenerator(gated=True, cleanup_delay=0.02)
        pipeline = _pipeline(generator)
        context = build_context(RECORDS)

        first = asyncio.create_task(pipeline.get_guidance(context, CATALOG))
        await generator.started.wait()
        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first

        second = asyncio.create_task(pipeline.get_guidance(context, CATALOG))
        await _settle()
        generator.release.set()

        insight = await second

        assert insight.recommendations
        assert len(generator.requests) == 2
        assert pipeline.get_stats()["coalesced"] == 0
        assert pipeline.cache.entry is not None
