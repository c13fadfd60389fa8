"""Context aggregation: sessions + practices + insights -> AnalysisContext"""

import hashlib
import json
from typing import Dict, Iterable, List, Optional

from loguru import logger

from insight_engine.core.models import (
    AnalysisContext,
    Insight,
    InsightStatus,
    PracticeRef,
    SessionKind,
    SessionSummary,
)

MAX_PRIMARY_CHALLENGES = 5
CHALLENGE_SCAN_SESSIONS = 5
CHALLENGE_KEYWORDS = ("fear", "pattern", "challenge", "struggle")


def _developmental_markers(sessions: List[SessionSummary]) -> Dict[str, str]:
    """
    Stage/edge from the most recent Kegan session, style from the most
    recent attachment session. ``sessions`` must be most recent first.
    Older sessions of a kind are never consulted, even for missing fields.
    """
    markers: Dict[str, str] = {}
    kegan = next((s for s in sessions if s.kind is SessionKind.KEGAN_ASSESSMENT), None)
    attachment = next((s for s in sessions if s.kind is SessionKind.ATTACHMENT_ASSESSMENT), None)

    if kegan is not None:
        interpretation = kegan.raw.get("overallInterpretation") or kegan.raw.get(
            "overall_interpretation"
        )
        if isinstance(interpretation, dict):
            stage = interpretation.get("centerOfGravity") or interpretation.get("center_of_gravity")
            edge = interpretation.get("developmentalEdge") or interpretation.get("developmental_edge")
            if stage:
                markers["developmental_stage"] = str(stage)
            if edge:
                markers["developmental_edge"] = str(edge)

    if attachment is not None:
        style = attachment.raw.get("assessedStyle") or attachment.raw.get("assessed_style")
        if style:
            markers["attachment_style"] = str(style)

    return markers


def _primary_challenges(
    pending_patterns: Iterable[str],
    sessions: List[SessionSummary],
) -> tuple:
    challenges: List[str] = []

    for pattern in pending_patterns:
        if pattern not in challenges:
            challenges.append(pattern)

    for session in sessions[:CHALLENGE_SCAN_SESSIONS]:
        for fact in session.key_facts:
            lowered = fact.lower()
            if any(keyword in lowered for keyword in CHALLENGE_KEYWORDS) and fact not in challenges:
                challenges.append(fact)

    return tuple(challenges[:MAX_PRIMARY_CHALLENGES])


def aggregate(
    sessions: Iterable[SessionSummary],
    practices: Iterable[PracticeRef] = (),
    insights: Iterable[Insight] = (),
) -> AnalysisContext:
    """
    Build an AnalysisContext from normalized sessions, the active practice
    stack and previously generated insights.

    Sessions are re-sorted most recent first (stable for equal timestamps).
    Never raises on odd historical data; entries that cannot be read are
    skipped with a warning.
    """
    ordered = sorted(sessions, key=lambda s: s.occurred_at, reverse=True)

    pending: List[str] = []
    for insight in insights:
        try:
            if insight.status is InsightStatus.PENDING and insight.pattern_description:
                pending.append(insight.pattern_description)
        except AttributeError as e:
            logger.warning(f"Skipping unreadable insight during aggregation: {e}")

    try:
        markers = _developmental_markers(ordered)
    except Exception as e:
        logger.warning(f"Could not derive developmental markers: {e}")
        markers = {}

    context = AnalysisContext(
        practice_stack=frozenset(practices),
        session_summaries=tuple(ordered),
        pending_patterns=frozenset(pending),
        developmental_markers=markers,
        primary_challenges=_primary_challenges(sorted(set(pending)), ordered),
    )

    logger.debug(
        "Aggregated context: {sessions} sessions, {practices} practices, {pending} pending patterns",
        sessions=len(context.session_summaries),
        practices=len(context.practice_stack),
        pending=len(context.pending_patterns),
    )
    return context


def hash_context(context: AnalysisContext) -> str:
    """
    Stable digest of the parts of a context that decide cache equivalence.

    Practice ids are sorted (set semantics). Of the session history only
    the count and the most recent session take part, so a new session or a
    different latest session always changes the hash.
    """
    latest: Optional[SessionSummary] = context.latest_session
    payload = {
        "practices": sorted(p.id for p in context.practice_stack),
        "session_count": len(context.session_summaries),
        "latest_session": (
            {"id": latest.id, "occurred_at": latest.occurred_at.isoformat()} if latest else None
        ),
        "pending_patterns": sorted(context.pending_patterns),
        "markers": sorted(context.developmental_markers.items()),
    }
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def describe_context(context: AnalysisContext) -> str:
    """Short profile paragraph for generation requests"""
    lines: List[str] = []

    if context.practice_stack:
        names = sorted(p.name or p.id for p in context.practice_stack)
        lines.append(f"Current practice stack: {', '.join(names)}")
        notes = sorted(
            f"{p.name or p.id}: {p.note}" for p in context.practice_stack if p.note
        )
        if notes:
            lines.append("Practice notes:")
            lines.extend(f"  - {note}" for note in notes)
    else:
        lines.append("Current practice stack: none")

    stage = context.developmental_markers.get("developmental_stage")
    if stage:
        lines.append(f"Developmental stage: {stage}")
    edge = context.developmental_markers.get("developmental_edge")
    if edge:
        lines.append(f"Developmental edge: {edge}")
    style = context.developmental_markers.get("attachment_style")
    if style:
        lines.append(f"Attachment style: {style}")

    if context.primary_challenges:
        lines.append("Primary challenges:")
        lines.extend(f"  - {c}" for c in context.primary_challenges)

    return "\n".join(lines)
