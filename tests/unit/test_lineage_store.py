"""Unit tests for lineage recording, explanation and verification"""

from datetime import timedelta

import pytest

from insight_engine.context.aggregator import aggregate
from insight_engine.core.models import (
    ConfidenceScore,
    Insight,
    Recommendation,
    RecommendationKind,
    SynthesisLineage,
    TriggerType,
    utcnow,
)
from insight_engine.normalization.session_normalizer import normalize
from insight_engine.provenance.lineage_store import (
    LOW_CONFIDENCE_WARNING,
    MISSING_LINEAGE_ISSUE,
    NO_REASON_ISSUE,
    NO_SOURCES_ISSUE,
    InMemoryLineageRepository,
    LineageStore,
    format_confidence,
    integration_timing,
)


def _recommendation(rec_id: str = "r1", kind=RecommendationKind.SHADOW_WORK) -> Recommendation:
    return Recommendation(
        id=rec_id,
        target_id="ifs",
        label="Internal Family Systems",
        rationale="Meet the pleaser part.",
        kind=kind,
    )


@pytest.fixture
def sessions():
    """Two normalized sessions"""
    return [
        normalize({"id": "s1", "date": "2025-01-01", "partName": "Pleaser"}, "ifs"),
        normalize({"id": "s2", "date": "2025-01-02", "assessedStyle": "anxious"}, "attachment_assessment"),
    ]


@pytest.fixture
def store() -> LineageStore:
    """Lineage store over an in-memory repository"""
    return LineageStore(InMemoryLineageRepository())


class TestRecord:
    """Test recording single recommendations"""

    @pytest.mark.asyncio
    async def test_record_and_get(self, store: LineageStore, sessions) -> None:
        """Recorded lineage is returned unchanged"""
        lineage = await store.record(
            _recommendation(),
            sources=sessions,
            reasoning="Addresses people-pleasing",
            confidence=0.7,
            generated_by="openrouter:a",
            detected_patterns=["people-pleasing"],
        )

        fetched = await store.get_lineage("r1")

        assert fetched == lineage
        assert fetched.contributing_session_ids == frozenset({"s1", "s2"})
        assert fetched.source_kinds == {"s1": "ifs", "s2": "attachment_assessment"}
        assert fetched.detected_patterns == frozenset({"people-pleasing"})

    @pytest.mark.asyncio
    async def test_unknown_id(self, store: LineageStore) -> None:
        """Missing lineage reads as None"""
        assert await store.get_lineage("nope") is None
        assert await store.explain_recommendation("nope") is None
        assert await store.explain_synthesis("nope") is None


class TestVerify:
    """Test integrity verification"""

    @pytest.mark.asyncio
    async def test_no_sources_invalid(self, store: LineageStore) -> None:
        """Lineage with no contributing sessions is invalid"""
        await store.record(
            _recommendation(),
            sources=[],
            reasoning="Addresses people-pleasing",
            confidence=0.7,
            generated_by="openrouter:a",
        )

        result = await store.verify("r1")

        assert result.is_valid is False
        assert result.issues == [NO_SOURCES_ISSUE]

    @pytest.mark.asyncio
    async def test_blank_reason_invalid(self, store: LineageStore, sessions) -> None:
        """A blank primary reason is an issue"""
        await store.record(
            _recommendation(), sources=sessions, reasoning="  ", confidence=0.7, generated_by="x"
        )

        result = await store.verify("r1")

        assert result.issues == [NO_REASON_ISSUE]
        assert result.summary == "Recommendation has 1 issue(s)"

    @pytest.mark.asyncio
    async def test_low_confidence_is_warning(self, store: LineageStore, sessions) -> None:
        """Low confidence warns but stays valid"""
        await store.record(
            _recommendation(), sources=sessions, reasoning="Because", confidence=0.35, generated_by="x"
        )

        result = await store.verify("r1")

        assert result.is_valid is True
        assert result.warnings == [LOW_CONFIDENCE_WARNING]
        assert result.summary == "Valid recommendation with 2 source(s)"

    @pytest.mark.asyncio
    async def test_missing_lineage(self, store: LineageStore) -> None:
        """Unknown ids verify as invalid without raising"""
        result = await store.verify("nope")

        assert result.is_valid is False
        assert result.issues == [MISSING_LINEAGE_ISSUE]


class TestRecordInsight:
    """Test recording a synthesized insight"""

    @pytest.mark.asyncio
    async def test_records_every_recommendation(self, store: LineageStore, sessions) -> None:
        """Each recommendation gets lineage with ordering and timing"""
        insight = Insight(
            id="i1",
            pattern_description="You tend to please others.",
            recommendations=(
                _recommendation("i1-shadow_work-0"),
                _recommendation("i1-shadow_work-1"),
                _recommendation("i1-next_step-2", RecommendationKind.NEXT_STEP),
            ),
            confidence_score=ConfidenceScore(value=0.6, data_points=2),
            generated_by="openrouter:a",
        )
        context = aggregate(sessions)

        synthesis = await store.record_insight(
            insight,
            context,
            user_id="u1",
            profile_context="Current practice stack: none",
            catalog_size=4,
            session_digest=["ifs (2025-01-01): Worked with part: Pleaser"],
        )

        assert len(synthesis.recommendations) == 3
        assert synthesis.trigger.type == TriggerType.USER_REQUESTED
        assert synthesis.trigger.insight_ids == ("i1",)
        assert synthesis.raw_input.available_targets == 4
        assert synthesis.developmental_edge == ""

        first = await store.get_lineage("i1-shadow_work-0")
        second = await store.get_lineage("i1-shadow_work-1")
        third = await store.get_lineage("i1-next_step-2")
        assert (first.sequence_order, first.integration_timing) == (0, "immediate")
        assert (second.sequence_order, second.integration_timing) == (1, "after-shadow")
        assert (third.sequence_order, third.integration_timing) == (0, "after-foundation")
        assert "You tend to please others." in first.detected_patterns
        assert first.contributing_session_ids == context.session_ids

        assert await store.get_synthesis(synthesis.synthesis_id) == synthesis


class TestExplain:
    """Test explanation queries"""

    @pytest.mark.asyncio
    async def test_explain_recommendation(self, store: LineageStore, sessions) -> None:
        """Explanation lists reasons, sources and formatted confidence"""
        await store.record(
            _recommendation(),
            sources=sessions,
            reasoning="Addresses people-pleasing",
            confidence=0.9,
            generated_by="openrouter:a",
            detected_patterns=["people-pleasing"],
            secondary_reasons=["Builds self-trust"],
            timing="immediate",
        )

        explanation = await store.explain_recommendation("r1")

        assert explanation.recommendation == "Internal Family Systems"
        assert explanation.why_this == ["Addresses people-pleasing", "Builds self-trust"]
        assert [s.session_id for s in explanation.sources] == ["s1", "s2"]
        assert explanation.sources[0].wizard == "ifs"
        assert explanation.sources[0].patterns == ["people-pleasing"]
        assert explanation.sequence == "immediate"
        assert explanation.confidence == "High confidence"

    @pytest.mark.asyncio
    async def test_explain_synthesis(self, store: LineageStore, sessions) -> None:
        """Synthesis explanation summarizes each recommendation"""
        lineage = await store.record(
            _recommendation(), sources=sessions, reasoning="Because", confidence=0.55, generated_by="x"
        )
        synthesis = await store.record_synthesis(
            "u1",
            [lineage],
            generated_by="x",
            synthesis_reasoning="Start with shadow work",
            overall_context="Profile",
            developmental_edge="Holding paradox",
        )

        explanation = await store.explain_synthesis(synthesis.synthesis_id)

        assert explanation.overall_strategy == "Start with shadow work"
        assert explanation.developmental_edge == "Holding paradox"
        assert explanation.recommendations[0].sources == 2
        assert explanation.recommendations[0].confidence == "Moderate confidence"


class TestHistory:
    """Test synthesis history paging"""

    @pytest.mark.asyncio
    async def test_history_most_recent_first(self) -> None:
        """History pages newest first with a total count"""
        repository = InMemoryLineageRepository()
        store = LineageStore(repository)
        now = utcnow()
        for index in range(3):
            await repository.save_synthesis(
                SynthesisLineage(
                    synthesis_id=f"syn{index}",
                    user_id="u1",
                    generated_by="x",
                    created_at=now - timedelta(hours=index),
                )
            )
        await repository.save_synthesis(SynthesisLineage(user_id="other", generated_by="x"))

        entries, total = await store.history("u1", limit=2)
        rest, _ = await store.history("u1", limit=2, offset=2)

        assert total == 3
        assert [e.synthesis_id for e in entries] == ["syn0", "syn1"]
        assert [e.synthesis_id for e in rest] == ["syn2"]

    @pytest.mark.asyncio
    async def test_empty_history(self, store: LineageStore) -> None:
        """Unknown users have empty history"""
        assert await store.history("nobody") == ([], 0)


class TestExportAndClear:
    """Test lineage export and reset"""

    @pytest.mark.asyncio
    async def test_export_everything(self, store: LineageStore, sessions) -> None:
        """Export without an id returns every synthesis and the recommendation index"""
        first = await store.record_synthesis(
            "u1",
            [await store.record(_recommendation("r1"), sessions, "Reason", 0.6, "openrouter:a")],
            "openrouter:a",
        )
        second = await store.record_synthesis(
            "u2",
            [await store.record(_recommendation("r2"), sessions, "Reason", 0.6, "openrouter:a")],
            "openrouter:a",
        )

        exported = await store.export()

        assert {s.synthesis_id for s in exported.syntheses} == {first.synthesis_id, second.synthesis_id}
        assert set(exported.recommendations) == {"r1", "r2"}

    @pytest.mark.asyncio
    async def test_export_one_synthesis(self, store: LineageStore, sessions) -> None:
        """Export with an id is limited to that synthesis"""
        wanted = await store.record_synthesis(
            "u1",
            [await store.record(_recommendation("r1"), sessions, "Reason", 0.6, "openrouter:a")],
            "openrouter:a",
        )
        await store.record_synthesis(
            "u1",
            [await store.record(_recommendation("r2"), sessions, "Reason", 0.6, "openrouter:a")],
            "openrouter:a",
        )

        exported = await store.export(wanted.synthesis_id)

        assert exported.syntheses == [wanted]
        assert list(exported.recommendations) == ["r1"]

    @pytest.mark.asyncio
    async def test_export_unknown_synthesis(self, store: LineageStore) -> None:
        """Unknown synthesis ids export nothing"""
        exported = await store.export("missing")

        assert exported.syntheses == []
        assert exported.recommendations == {}

    @pytest.mark.asyncio
    async def test_clear(self, store: LineageStore, sessions) -> None:
        """Clearing removes every record"""
        await store.record_synthesis(
            "u1",
            [await store.record(_recommendation("r1"), sessions, "Reason", 0.6, "openrouter:a")],
            "openrouter:a",
        )

        await store.clear()

        assert await store.get_lineage("r1") is None
        assert await store.history("u1") == ([], 0)
        exported = await store.export()
        assert exported.syntheses == [] and exported.recommendations == {}


class TestFormatting:
    """Test display helpers"""

    def test_format_confidence(self) -> None:
        """Confidence labels by band"""
        assert format_confidence(0.85) == "High confidence"
        assert format_confidence(0.7) == "Medium-high confidence"
        assert format_confidence(0.5) == "Moderate confidence"
        assert format_confidence(0.3) == "Lower confidence (exploratory)"

    def test_integration_timing(self) -> None:
        """Shadow work leads, next steps follow"""
        assert integration_timing(RecommendationKind.SHADOW_WORK, 0) == "immediate"
        assert integration_timing(RecommendationKind.SHADOW_WORK, 2) == "after-shadow"
        assert integration_timing(RecommendationKind.NEXT_STEP, 0) == "after-foundation"
