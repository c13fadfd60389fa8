"""Unit tests for the confidence scorer"""

from datetime import datetime, timedelta, timezone

import pytest

from insight_engine.confidence.scorer import (
    CONFIDENCE_CEILING,
    CONFIDENCE_FLOOR,
    count_recent,
    score,
    score_context,
)
from insight_engine.context.aggregator import aggregate
from insight_engine.core.models import ConfidenceLevel, SessionKind, SessionSummary

NOW = datetime(2025, 6, 1, 12, tzinfo=timezone.utc)


def _sessions(count: int, days_ago: int = 30) -> list:
    return [
        SessionSummary(
            id=f"s{i}",
            kind=SessionKind.IFS,
            occurred_at=NOW - timedelta(days=days_ago, minutes=i),
            key_facts=("Worked with part: Critic",),
        )
        for i in range(count)
    ]


class TestScore:
    """Test volume tiers, recency and bounds"""

    @pytest.mark.parametrize(
        "sessions,expected",
        [(0, 0.30), (1, 0.30), (2, 0.40), (4, 0.40), (5, 0.50), (9, 0.50), (10, 0.65), (19, 0.65)],
    )
    def test_volume_tiers(self, sessions: int, expected: float) -> None:
        """Base confidence steps up with session count"""
        assert score(sessions).value == pytest.approx(expected)

    def test_open_tier_capped(self) -> None:
        """20+ sessions grow by 0.02 per session up to 0.85"""
        assert score(20).value == pytest.approx(0.85)
        assert score(19).value < score(20).value
        assert score(100).value == pytest.approx(0.85)

    def test_recency_bonus(self) -> None:
        """Five sessions in the last week add 0.10"""
        assert score(10, sessions_in_last_week=5).value == pytest.approx(0.75)
        assert score(10, sessions_in_last_week=4).value == pytest.approx(0.65)

    def test_ceiling(self) -> None:
        """Confidence never exceeds 0.95"""
        result = score(25, sessions_in_last_week=10)
        assert result.value == pytest.approx(CONFIDENCE_CEILING)
        assert result.level == ConfidenceLevel.HIGH

    def test_single_session_is_floor(self) -> None:
        """One session stays exploratory regardless of other signals"""
        result = score(1, sessions_in_last_week=1, related_insight_count=3, consistency=1.0)
        assert result.value == pytest.approx(CONFIDENCE_FLOOR)
        assert result.data_points == 1
        assert result.related_insights == 3

    def test_monotone_in_sessions(self) -> None:
        """More sessions never lower confidence"""
        values = [score(n).value for n in range(0, 60)]
        assert values == sorted(values)

    def test_monotone_in_recent_activity(self) -> None:
        """More recent sessions never lower confidence"""
        values = [score(12, sessions_in_last_week=r).value for r in range(0, 13)]
        assert values == sorted(values)

    def test_consistency_blend(self) -> None:
        """Consistency is blended in with weight 0.3"""
        assert score(10, consistency=1.0).value == pytest.approx(0.65 * 0.7 + 0.3)
        assert score(10, consistency=0.0).value >= CONFIDENCE_FLOOR

    def test_negative_inputs_clamped(self) -> None:
        """Negative counts are treated as zero"""
        result = score(-3, sessions_in_last_week=-1)
        assert result.value == pytest.approx(CONFIDENCE_FLOOR)
        assert result.data_points == 0


class TestScoreContext:
    """Test scoring over an aggregated context"""

    def test_counts_recent_sessions(self) -> None:
        """Sessions inside the window count towards the recency bonus"""
        sessions = _sessions(10, days_ago=2)
        assert count_recent(sessions, now=NOW) == 10

        result = score_context(aggregate(sessions), now=NOW)
        assert result.value == pytest.approx(0.75)
        assert result.data_points == 10

    def test_old_sessions_not_recent(self) -> None:
        """Sessions outside the window do not count"""
        sessions = _sessions(10, days_ago=30)
        assert count_recent(sessions, now=NOW) == 0
        assert score_context(aggregate(sessions), now=NOW).value == pytest.approx(0.65)
