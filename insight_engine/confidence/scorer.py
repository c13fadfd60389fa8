"""
Confidence Scorer

Derives a scalar confidence from how much evidence backs a pattern. The
shape is fixed: monotonically non-decreasing in session count and in recent
activity, never below 0.30 once any data exists and never above 0.95.
"""

from datetime import datetime, timedelta
from typing import Iterable, Optional

from insight_engine.core.config import settings
from insight_engine.core.models import AnalysisContext, ConfidenceScore, SessionSummary, utcnow

CONFIDENCE_FLOOR = 0.30
CONFIDENCE_CEILING = 0.95
VOLUME_CEILING = 0.85

# (minimum sessions, base confidence) for the tiers below the open-ended one
VOLUME_TIERS = (
    (10, 0.65),
    (5, 0.50),
    (2, 0.40),
)
OPEN_TIER_START = 20
OPEN_TIER_INTERCEPT = 0.50
OPEN_TIER_SLOPE = 0.02

CONSISTENCY_WEIGHT = 0.3
RECENCY_THRESHOLD = 5
RECENCY_BONUS = 0.10


def _volume_base(total_sessions: int) -> float:
    if total_sessions >= OPEN_TIER_START:
        return min(VOLUME_CEILING, OPEN_TIER_INTERCEPT + OPEN_TIER_SLOPE * total_sessions)
    for minimum, base in VOLUME_TIERS:
        if total_sessions >= minimum:
            return base
    return CONFIDENCE_FLOOR


def score(
    total_sessions: int,
    sessions_in_last_week: int = 0,
    related_insight_count: int = 0,
    consistency: Optional[float] = None,
) -> ConfidenceScore:
    """
    Score a pattern from data volume, recency and (optionally) consistency.

    Pure and deterministic. Fewer than two sessions is exploratory no
    matter what else is known.

    Args:
        total_sessions: Sessions the pattern was derived from
        sessions_in_last_week: Of those, how many happened in the recent window
        related_insight_count: Insights that point at the same pattern
        consistency: 0-1 repeatability of the pattern across sessions

    Returns:
        ConfidenceScore in [0.30, 0.95]
    """
    total_sessions = max(0, int(total_sessions))
    sessions_in_last_week = max(0, int(sessions_in_last_week))
    related_insight_count = max(0, int(related_insight_count))

    if total_sessions < 2:
        return ConfidenceScore(
            value=CONFIDENCE_FLOOR,
            data_points=total_sessions,
            related_insights=related_insight_count,
        )

    base = _volume_base(total_sessions)

    if consistency is not None:
        consistency = min(1.0, max(0.0, float(consistency)))
        base = base * (1 - CONSISTENCY_WEIGHT) + consistency * CONSISTENCY_WEIGHT

    if sessions_in_last_week >= RECENCY_THRESHOLD:
        base = min(CONFIDENCE_CEILING, base + RECENCY_BONUS)

    value = round(min(CONFIDENCE_CEILING, max(CONFIDENCE_FLOOR, base)), 4)
    return ConfidenceScore(
        value=value,
        data_points=total_sessions,
        related_insights=related_insight_count,
    )


def count_recent(
    summaries: Iterable[SessionSummary],
    now: Optional[datetime] = None,
    window: Optional[timedelta] = None,
) -> int:
    """Sessions that occurred within ``window`` before ``now``"""
    now = now or utcnow()
    cutoff = now - (window or settings.recent_window)
    return sum(1 for s in summaries if cutoff <= s.occurred_at <= now)


def score_context(
    context: AnalysisContext,
    now: Optional[datetime] = None,
    consistency: Optional[float] = None,
) -> ConfidenceScore:
    """Score an AnalysisContext using its session history and pending insights"""
    return score(
        total_sessions=len(context.session_summaries),
        sessions_in_last_week=count_recent(context.session_summaries, now=now),
        related_insight_count=len(context.pending_patterns),
        consistency=consistency,
    )
