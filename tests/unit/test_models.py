"""Unit tests for core data models"""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from insight_engine.core.errors import GenerationUnavailable
from insight_engine.core.models import (
    AnalysisContext,
    ConfidenceLevel,
    ConfidenceScore,
    Insight,
    InsightStatus,
    PracticeRef,
    RecommendationLineage,
    SessionKind,
    SessionSummary,
    ToneType,
    level_for_score,
    tone_for_score,
)


def _session(session_id: str, day: int) -> SessionSummary:
    return SessionSummary(
        id=session_id,
        kind=SessionKind.IFS,
        occurred_at=datetime(2025, 1, day, tzinfo=timezone.utc),
        key_facts=("Worked with part: Critic",),
    )


class TestConfidenceScore:
    """Test confidence score bounds and derived levels"""

    def test_levels_follow_thresholds(self) -> None:
        """0.75 and above is high, 0.50 and above medium, below that low"""
        assert level_for_score(0.75) == ConfidenceLevel.HIGH
        assert level_for_score(0.74) == ConfidenceLevel.MEDIUM
        assert level_for_score(0.50) == ConfidenceLevel.MEDIUM
        assert level_for_score(0.49) == ConfidenceLevel.LOW

    def test_tone_matches_level(self) -> None:
        """Tone register tracks the same thresholds"""
        assert tone_for_score(0.9) == ToneType.DEFINITIVE
        assert tone_for_score(0.6) == ToneType.OBSERVATIONAL
        assert tone_for_score(0.3) == ToneType.EXPLORATORY
        assert ConfidenceScore(value=0.6, data_points=5).tone == ToneType.OBSERVATIONAL

    def test_value_out_of_range_rejected(self) -> None:
        """Confidence outside [0, 1] is invalid"""
        with pytest.raises(ValidationError):
            ConfidenceScore(value=1.2)

    def test_score_is_immutable(self) -> None:
        """Scores are frozen"""
        confidence = ConfidenceScore(value=0.4)
        with pytest.raises(ValidationError):
            confidence.value = 0.9


class TestSessionSummary:
    """Test session summary constraints"""

    def test_requires_at_least_one_fact(self) -> None:
        """A summary without key facts is invalid"""
        with pytest.raises(ValidationError):
            SessionSummary(
                id="s1",
                kind=SessionKind.IFS,
                occurred_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
                key_facts=(),
            )

    def test_label_prefers_original_kind(self) -> None:
        """Unknown kinds keep their original label"""
        summary = SessionSummary(
            id="s1",
            kind=SessionKind.OTHER,
            kind_label="dreamJournal",
            occurred_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
            key_facts=("Completed a dreamJournal session",),
        )
        assert summary.label == "dreamJournal"
        assert _session("s2", 1).label == "ifs"


class TestAnalysisContext:
    """Test context helpers"""

    def test_latest_session_is_first(self) -> None:
        """Sessions are stored most recent first"""
        context = AnalysisContext(session_summaries=(_session("new", 5), _session("old", 1)))
        assert context.latest_session.id == "new"
        assert context.session_ids == frozenset({"new", "old"})

    def test_empty_context(self) -> None:
        """Empty context has no latest session"""
        context = AnalysisContext(practice_stack=frozenset({PracticeRef(id="p1")}))
        assert context.latest_session is None


class TestInsight:
    """Test insight lifecycle"""

    def test_mark_addressed_returns_copy(self) -> None:
        """Addressing an insight does not mutate the original"""
        insight = Insight(
            pattern_description="Avoids conflict",
            confidence_score=ConfidenceScore(value=0.5, data_points=5),
            generated_by="openrouter:test",
        )

        addressed = insight.mark_addressed()

        assert insight.status == InsightStatus.PENDING
        assert addressed.status == InsightStatus.ADDRESSED
        assert addressed.id == insight.id


class TestRecommendationLineage:
    """Test lineage record immutability"""

    def test_lineage_is_frozen(self) -> None:
        """Lineage records cannot be modified after creation"""
        lineage = RecommendationLineage(
            recommendation_id="r1",
            confidence_score=0.7,
            generated_by="openrouter:test",
        )
        with pytest.raises(ValidationError):
            lineage.primary_reason = "changed"


class TestGenerationUnavailable:
    """Test generation error"""

    def test_message_lists_attempts(self) -> None:
        """Error carries every failed route and is retryable"""
        error = GenerationUnavailable(["openrouter:a: HTTP 500", "gemini:b: timeout after 60.0s"])
        assert error.retryable is True
        assert "HTTP 500" in str(error)
        assert "timeout" in str(error)
        assert len(error.attempts) == 2
