"""Guidance pipeline orchestrating all stages"""

import asyncio
from datetime import datetime
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence

from loguru import logger

from insight_engine.cache.guidance_cache import GuidanceCache
from insight_engine.confidence.scorer import score_context
from insight_engine.confidence.toning import tone_insight
from insight_engine.context.aggregator import aggregate, describe_context, hash_context
from insight_engine.core.errors import GenerationUnavailable
from insight_engine.core.models import (
    AnalysisContext,
    CatalogEntry,
    ConfidenceScore,
    Insight,
    PracticeRef,
    SynthesisTrigger,
    TriggerType,
)
from insight_engine.generation.prompts import session_digest_lines
from insight_engine.generation.synthesizer import InsightSynthesizer
from insight_engine.normalization.session_normalizer import extract_sessions
from insight_engine.provenance.lineage_store import DEFAULT_USER_ID, LineageStore


class _InFlight:
    """One shared synthesis and the number of callers awaiting it"""

    def __init__(self, task: "asyncio.Task[Insight]") -> None:
        self.task = task
        self.waiters = 0


class GuidancePipeline:
    """
    Request/response guidance pipeline.

    Stage 0: Context - hash and cache check
    Stage 1: Confidence - score the evidence
    Stage 2: Synthesis - generate text (primary, then fallback route)
    Stage 3: Toning - validate and shift the text to the computed confidence
    Stage 4: Provenance - record lineage (best effort), then cache write-back

    Concurrent callers with the same context hash share one synthesis. A
    caller that cancels detaches only itself; the shared synthesis is
    cancelled when its last caller leaves. Nothing is written unless
    generation completed.
    """

    def __init__(
        self,
        synthesizer: InsightSynthesizer,
        lineage_store: LineageStore,
        cache: Optional[GuidanceCache] = None,
        user_id: str = DEFAULT_USER_ID,
    ) -> None:
        self.synthesizer = synthesizer
        self.lineage_store = lineage_store
        self.cache = cache if cache is not None else GuidanceCache()
        self.user_id = user_id
        self._inflight: Dict[str, _InFlight] = {}

        self.requests = 0
        self.cache_hits = 0
        self.syntheses = 0
        self.coalesced = 0
        self.generation_failures = 0
        self.lineage_failures = 0
        self.tone_corrections = 0
        logger.info("GuidancePipeline initialized")

    async def get_guidance(
        self,
        context: AnalysisContext,
        catalog: Sequence[CatalogEntry] = (),
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
        consistency: Optional[float] = None,
        force_refresh: bool = False,
    ) -> Insight:
        """
        Resolve guidance for ``context``, through the cache when possible.

        Args:
            context: Aggregated analysis context
            catalog: Valid recommendation targets
            user_id: Owner of the lineage records (defaults to the pipeline's)
            now: Reference time for recency scoring
            consistency: Optional 0-1 pattern consistency signal
            force_refresh: Skip the cache lookup

        Returns:
            Toned Insight (cached or freshly synthesized)

        Raises:
            GenerationUnavailable: both generation routes failed
        """
        self.requests += 1
        context_hash = hash_context(context)

        if not force_refresh:
            cached = self.cache.get(context_hash)
            if cached is not None:
                self.cache_hits += 1
                return cached.insight

        flight = self._inflight.get(context_hash)
        if flight is None:
            task = asyncio.ensure_future(
                self._run(context, context_hash, catalog, user_id or self.user_id, now, consistency)
            )
            flight = _InFlight(task)
            self._inflight[context_hash] = flight
            task.add_done_callback(lambda _t, h=context_hash, f=flight: self._forget(h, f))
        else:
            self.coalesced += 1
            logger.info(f"Joining in-flight synthesis for context {context_hash[:12]}")

        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task)
        finally:
            flight.waiters -= 1
            if flight.waiters == 0 and not flight.task.done():
                logger.info(f"Last caller left, cancelling synthesis for context {context_hash[:12]}")
                # Later callers must start a fresh flight, not join one being torn down
                self._forget(context_hash, flight)
                flight.task.cancel()

    def _forget(self, context_hash: str, flight: _InFlight) -> None:
        if self._inflight.get(context_hash) is flight:
            del self._inflight[context_hash]

    async def _run(
        self,
        context: AnalysisContext,
        context_hash: str,
        catalog: Sequence[CatalogEntry],
        user_id: str,
        now: Optional[datetime],
        consistency: Optional[float],
    ) -> Insight:
        confidence = score_context(context, now=now, consistency=consistency)
        logger.debug(
            "Confidence {value} ({level}) from {points} sessions",
            value=confidence.value,
            level=confidence.level.value,
            points=confidence.data_points,
        )

        try:
            insight = await self.synthesizer.synthesize(context, confidence, catalog)
        except GenerationUnavailable:
            self.generation_failures += 1
            logger.error(f"Guidance synthesis failed for context {context_hash[:12]}")
            raise

        self.syntheses += 1
        # Generation finished: record and cache the complete result even if
        # every caller goes away meanwhile
        return await asyncio.shield(
            self._finalize(insight, confidence, context, context_hash, catalog, user_id)
        )

    async def _finalize(
        self,
        insight: Insight,
        confidence: ConfidenceScore,
        context: AnalysisContext,
        context_hash: str,
        catalog: Sequence[CatalogEntry],
        user_id: str,
    ) -> Insight:
        toned = tone_insight(insight, confidence)
        if toned.tone_adjustments:
            self.tone_corrections += 1
            logger.info(
                "Tone corrected for insight {id}: {changes}",
                id=toned.id,
                changes="; ".join(toned.tone_adjustments),
            )

        if toned.recommendations and context.session_summaries:
            try:
                synthesis = await self.lineage_store.record_insight(
                    toned,
                    context,
                    user_id=user_id,
                    trigger=SynthesisTrigger(
                        type=TriggerType.USER_REQUESTED, insight_ids=(toned.id,)
                    ),
                    profile_context=describe_context(context),
                    catalog_size=len(catalog),
                    session_digest=session_digest_lines(context),
                )
                toned = toned.model_copy(update={"lineage_id": synthesis.synthesis_id})
            except Exception:
                self.lineage_failures += 1
                logger.exception(f"Lineage recording failed for insight {toned.id}")
        elif toned.degraded:
            logger.warning(f"Insight {toned.id} is degraded, lineage not recorded")

        if toned.degraded:
            logger.info("Degraded insight not cached")
        else:
            self.cache.put(context_hash, toned)

        return toned

    def get_stats(self) -> Dict[str, Any]:
        """Get pipeline statistics"""
        return {
            "requests": self.requests,
            "cache_hits": self.cache_hits,
            "syntheses": self.syntheses,
            "coalesced": self.coalesced,
            "generation_failures": self.generation_failures,
            "lineage_failures": self.lineage_failures,
            "tone_corrections": self.tone_corrections,
            "in_flight": len(self._inflight),
            "cache": self.cache.get_stats(),
            "synthesizer": self.synthesizer.get_stats(),
            "lineage": self.lineage_store.get_stats(),
        }


def build_context(
    records: Mapping[str, Any],
    practices: Iterable[PracticeRef] = (),
    insights: Iterable[Insight] = (),
) -> AnalysisContext:
    """Normalize raw storage records and aggregate them into a context"""
    return aggregate(extract_sessions(records), practices, insights)
