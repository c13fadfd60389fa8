"""
Lineage Store

Single source of truth for "why was I told this?". Records the evidence
chain behind every emitted recommendation (contributing sessions, detected
patterns, reasoning, confidence) and answers explanation and integrity
queries over it. Records are immutable once written; read queries never
mutate state.
"""

from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from loguru import logger

from insight_engine.core.models import (
    AnalysisContext,
    Insight,
    LineageExport,
    RecommendationExplanation,
    RecommendationKind,
    RecommendationLineage,
    Recommendation,
    SessionSummary,
    SourceExplanation,
    SynthesisExplanation,
    SynthesisHistoryEntry,
    SynthesisLineage,
    SynthesisRawInput,
    SynthesisRecommendationSummary,
    SynthesisTrigger,
    TriggerType,
    VerificationResult,
)

NO_SOURCES_ISSUE = "No contributing insights found"
NO_REASON_ISSUE = "No primary reason provided"
LOW_CONFIDENCE_WARNING = "Confidence score is below 0.5 (exploratory only)"
MISSING_LINEAGE_ISSUE = "No lineage data found for this recommendation"
EXPLORATORY_BELOW = 0.5

DEFAULT_USER_ID = "default"


def format_confidence(score: float) -> str:
    """Display label for a lineage confidence score"""
    if score >= 0.85:
        return "High confidence"
    if score >= 0.65:
        return "Medium-high confidence"
    if score >= 0.5:
        return "Moderate confidence"
    return "Lower confidence (exploratory)"


def integration_timing(kind: RecommendationKind, order: int) -> str:
    """When a recommendation fits into the user's practice sequence"""
    if kind is RecommendationKind.SHADOW_WORK:
        return "immediate" if order == 0 else "after-shadow"
    return "after-foundation"


def _build_lineage(
    recommendation: Recommendation,
    sources: Sequence[SessionSummary],
    reasoning: str,
    confidence: float,
    generated_by: str,
    detected_patterns: Iterable[str] = (),
    secondary_reasons: Sequence[str] = (),
    sequence_order: Optional[int] = None,
    timing: Optional[str] = None,
) -> RecommendationLineage:
    return RecommendationLineage(
        recommendation_id=recommendation.id,
        target_id=recommendation.target_id,
        label=recommendation.label,
        contributing_session_ids=frozenset(s.id for s in sources),
        source_kinds={s.id: s.label for s in sources},
        detected_patterns=frozenset(p for p in detected_patterns if p),
        primary_reason=reasoning,
        secondary_reasons=tuple(secondary_reasons),
        recommendation_type=recommendation.kind,
        sequence_order=sequence_order,
        integration_timing=timing,
        confidence_score=confidence,
        generated_by=generated_by,
    )


class LineageRepository(Protocol):
    """Persistence boundary for lineage records (whole-record writes only)"""

    async def save_recommendation(self, lineage: RecommendationLineage) -> None:
        ...

    async def get_recommendation(self, recommendation_id: str) -> Optional[RecommendationLineage]:
        ...

    async def save_synthesis(self, lineage: SynthesisLineage) -> None:
        ...

    async def get_synthesis(self, synthesis_id: str) -> Optional[SynthesisLineage]:
        ...

    async def list_syntheses(self, user_id: str, limit: int, offset: int) -> List[SynthesisLineage]:
        """Most recent first"""
        ...

    async def count_syntheses(self, user_id: str) -> int:
        ...

    async def all_syntheses(self) -> List[SynthesisLineage]:
        ...

    async def all_recommendations(self) -> Dict[str, RecommendationLineage]:
        ...

    async def clear(self) -> None:
        """Delete every lineage record"""
        ...


class InMemoryLineageRepository:
    """Process-local repository; lives as long as the owning LineageStore"""

    def __init__(self) -> None:
        self._recommendations: Dict[str, RecommendationLineage] = {}
        self._syntheses: Dict[str, SynthesisLineage] = {}

    async def save_recommendation(self, lineage: RecommendationLineage) -> None:
        self._recommendations[lineage.recommendation_id] = lineage

    async def get_recommendation(self, recommendation_id: str) -> Optional[RecommendationLineage]:
        return self._recommendations.get(recommendation_id)

    async def save_synthesis(self, lineage: SynthesisLineage) -> None:
        self._syntheses[lineage.synthesis_id] = lineage

    async def get_synthesis(self, synthesis_id: str) -> Optional[SynthesisLineage]:
        return self._syntheses.get(synthesis_id)

    async def list_syntheses(self, user_id: str, limit: int, offset: int) -> List[SynthesisLineage]:
        matching = [s for s in self._syntheses.values() if s.user_id == user_id]
        matching.sort(key=lambda s: s.created_at, reverse=True)
        return matching[offset:offset + limit]

    async def count_syntheses(self, user_id: str) -> int:
        return sum(1 for s in self._syntheses.values() if s.user_id == user_id)

    async def all_syntheses(self) -> List[SynthesisLineage]:
        return sorted(self._syntheses.values(), key=lambda s: s.created_at, reverse=True)

    async def all_recommendations(self) -> Dict[str, RecommendationLineage]:
        return dict(self._recommendations)

    async def clear(self) -> None:
        self._recommendations.clear()
        self._syntheses.clear()

    def get_stats(self) -> Dict[str, int]:
        return {
            "recommendations": len(self._recommendations),
            "syntheses": len(self._syntheses),
        }


class LineageStore:
    """
    Records and explains recommendation lineage.

    The repository is injected, so lifetime and persistence are decided
    by the caller (in-memory for tests, SQLite for the service).
    """

    def __init__(self, repository: Optional[LineageRepository] = None) -> None:
        self.repository = repository if repository is not None else InMemoryLineageRepository()
        self.recommendations_recorded = 0
        self.syntheses_recorded = 0
        logger.info(f"LineageStore initialized ({type(self.repository).__name__})")

    # ── Writes ───────────────────────────────────────────────────────────

    async def record(
        self,
        recommendation: Recommendation,
        sources: Sequence[SessionSummary],
        reasoning: str,
        confidence: float,
        generated_by: str,
        detected_patterns: Iterable[str] = (),
        secondary_reasons: Sequence[str] = (),
        sequence_order: Optional[int] = None,
        timing: Optional[str] = None,
    ) -> RecommendationLineage:
        """Record the evidence chain for one recommendation"""
        lineage = _build_lineage(
            recommendation,
            sources,
            reasoning,
            confidence,
            generated_by,
            detected_patterns=detected_patterns,
            secondary_reasons=secondary_reasons,
            sequence_order=sequence_order,
            timing=timing,
        )
        await self.repository.save_recommendation(lineage)
        self.recommendations_recorded += 1
        logger.debug(
            "Recorded lineage for {id} ({sources} sources)",
            id=lineage.recommendation_id,
            sources=len(lineage.contributing_session_ids),
        )
        return lineage

    async def record_synthesis(
        self,
        user_id: str,
        recommendations: Sequence[RecommendationLineage],
        generated_by: str,
        trigger: Optional[SynthesisTrigger] = None,
        synthesis_reasoning: str = "",
        overall_context: str = "",
        developmental_edge: str = "",
        raw_input: Optional[SynthesisRawInput] = None,
    ) -> SynthesisLineage:
        """Record a batch of recommendation lineages produced by one synthesis call"""
        lineage = SynthesisLineage(
            user_id=user_id,
            trigger=trigger or SynthesisTrigger(),
            recommendations=tuple(recommendations),
            synthesis_reasoning=synthesis_reasoning,
            overall_context=overall_context,
            developmental_edge=developmental_edge,
            generated_by=generated_by,
            raw_input=raw_input,
        )
        for rec in lineage.recommendations:
            await self.repository.save_recommendation(rec)
        await self.repository.save_synthesis(lineage)
        self.syntheses_recorded += 1
        logger.info(
            "Recorded synthesis lineage {id} for user={user}: {count} recommendations",
            id=lineage.synthesis_id,
            user=user_id,
            count=len(lineage.recommendations),
        )
        return lineage

    async def record_insight(
        self,
        insight: Insight,
        context: AnalysisContext,
        user_id: str = DEFAULT_USER_ID,
        trigger: Optional[SynthesisTrigger] = None,
        profile_context: str = "",
        catalog_size: Optional[int] = None,
        session_digest: Sequence[str] = (),
    ) -> SynthesisLineage:
        """
        Record lineage for every recommendation of a synthesized insight.

        All sessions of the context contributed to the synthesis; the
        insight's pattern and the context's pending patterns are the
        detected patterns.
        """
        sources = list(context.session_summaries)
        patterns = {insight.pattern_description, *context.pending_patterns}
        orders: Dict[RecommendationKind, int] = {}
        lineages: List[RecommendationLineage] = []

        for rec in insight.recommendations:
            order = orders.get(rec.kind, 0)
            orders[rec.kind] = order + 1
            lineages.append(
                _build_lineage(
                    rec,
                    sources,
                    rec.rationale,
                    insight.confidence_score.value,
                    insight.generated_by,
                    detected_patterns=patterns,
                    secondary_reasons=(f"Addresses pattern: {insight.pattern_description}",),
                    sequence_order=order,
                    timing=integration_timing(rec.kind, order),
                )
            )
            self.recommendations_recorded += 1

        return await self.record_synthesis(
            user_id=user_id,
            recommendations=lineages,
            generated_by=insight.generated_by,
            trigger=trigger or SynthesisTrigger(
                type=TriggerType.USER_REQUESTED, insight_ids=(insight.id,)
            ),
            synthesis_reasoning=insight.pattern_description,
            overall_context=profile_context,
            developmental_edge=context.developmental_markers.get("developmental_edge", ""),
            raw_input=SynthesisRawInput(
                session_summaries=tuple(session_digest),
                user_profile_context=profile_context or None,
                available_targets=catalog_size,
            ),
        )

    # ── Reads ────────────────────────────────────────────────────────────

    async def get_lineage(self, recommendation_id: str) -> Optional[RecommendationLineage]:
        return await self.repository.get_recommendation(recommendation_id)

    async def get_synthesis(self, synthesis_id: str) -> Optional[SynthesisLineage]:
        return await self.repository.get_synthesis(synthesis_id)

    async def explain_recommendation(
        self, recommendation_id: str
    ) -> Optional[RecommendationExplanation]:
        """Why this recommendation was made; None when no lineage exists"""
        lineage = await self.repository.get_recommendation(recommendation_id)
        if lineage is None:
            return None

        patterns = sorted(lineage.detected_patterns)
        sources = [
            SourceExplanation(
                session_id=session_id,
                wizard=lineage.source_kinds.get(session_id, "unknown"),
                patterns=patterns,
            )
            for session_id in sorted(lineage.contributing_session_ids)
        ]

        return RecommendationExplanation(
            recommendation_id=lineage.recommendation_id,
            recommendation=lineage.label or lineage.target_id,
            why_this=[r for r in (lineage.primary_reason, *lineage.secondary_reasons) if r],
            sources=sources,
            sequence=lineage.integration_timing or "As appropriate",
            confidence=format_confidence(lineage.confidence_score),
            confidence_score=lineage.confidence_score,
        )

    async def explain_synthesis(self, synthesis_id: str) -> Optional[SynthesisExplanation]:
        """Explain a whole synthesis call; None when unknown"""
        lineage = await self.repository.get_synthesis(synthesis_id)
        if lineage is None:
            return None

        return SynthesisExplanation(
            synthesis_id=lineage.synthesis_id,
            context=lineage.overall_context,
            developmental_edge=lineage.developmental_edge,
            recommendations=[
                SynthesisRecommendationSummary(
                    recommendation_id=rec.recommendation_id,
                    practice=rec.label or rec.target_id,
                    reason=rec.primary_reason,
                    sources=len(rec.contributing_session_ids),
                    confidence=format_confidence(rec.confidence_score),
                )
                for rec in lineage.recommendations
            ],
            overall_strategy=lineage.synthesis_reasoning,
        )

    async def history(
        self, user_id: str, limit: int = 10, offset: int = 0
    ) -> Tuple[List[SynthesisHistoryEntry], int]:
        """Page of a user's syntheses (most recent first) plus the total count"""
        syntheses = await self.repository.list_syntheses(user_id, limit, offset)
        total = await self.repository.count_syntheses(user_id)
        entries = [
            SynthesisHistoryEntry(
                synthesis_id=s.synthesis_id,
                created_at=s.created_at,
                recommendation_count=len(s.recommendations),
                developmental_edge=s.developmental_edge,
                trigger=s.trigger.type,
            )
            for s in syntheses
        ]
        return entries, total

    async def verify(self, recommendation_id: str) -> VerificationResult:
        """
        Integrity check for one recommendation's lineage.

        Zero sources or a blank primary reason make the lineage invalid.
        Low confidence is only a warning. Never raises for missing records.
        """
        lineage = await self.repository.get_recommendation(recommendation_id)
        if lineage is None:
            return VerificationResult(
                is_valid=False,
                issues=[MISSING_LINEAGE_ISSUE],
                summary="Recommendation has no recorded lineage",
            )

        issues: List[str] = []
        warnings: List[str] = []

        if not lineage.contributing_session_ids:
            issues.append(NO_SOURCES_ISSUE)
        if not lineage.primary_reason.strip():
            issues.append(NO_REASON_ISSUE)
        if lineage.confidence_score < EXPLORATORY_BELOW:
            warnings.append(LOW_CONFIDENCE_WARNING)

        is_valid = not issues
        if is_valid:
            summary = (
                f"Valid recommendation with {len(lineage.contributing_session_ids)} source(s)"
            )
        else:
            summary = f"Recommendation has {len(issues)} issue(s)"

        if issues:
            logger.warning(f"Lineage integrity issues for {recommendation_id}: {issues}")

        return VerificationResult(is_valid=is_valid, issues=issues, warnings=warnings, summary=summary)

    async def export(self, synthesis_id: Optional[str] = None) -> LineageExport:
        """
        Export stored lineage for inspection.

        With ``synthesis_id`` only that synthesis and its recommendations are
        included (empty when unknown); otherwise every synthesis and the full
        recommendation index.
        """
        if synthesis_id is not None:
            synthesis = await self.repository.get_synthesis(synthesis_id)
            if synthesis is None:
                return LineageExport()
            return LineageExport(
                syntheses=[synthesis],
                recommendations={r.recommendation_id: r for r in synthesis.recommendations},
            )

        return LineageExport(
            syntheses=await self.repository.all_syntheses(),
            recommendations=await self.repository.all_recommendations(),
        )

    async def clear(self) -> None:
        """Delete all recorded lineage (tests and resets)"""
        await self.repository.clear()
        logger.warning("All lineage data cleared")

    def get_stats(self) -> Dict:
        return {
            "recommendations_recorded": self.recommendations_recorded,
            "syntheses_recorded": self.syntheses_recorded,
        }
