"""
Confidence-aware toning

Validate-then-shift over generated text: detect the certainty the text
claims, compare it with the computed confidence and rewrite it when they
disagree.
"""

from typing import List, Optional

from loguru import logger

from insight_engine.confidence import scorer, tonal_shifter, validator
from insight_engine.core.models import (
    ConfidenceScore,
    DataSufficiency,
    Insight,
    Recommendation,
    ToneType,
    ToningResult,
    ValidationResult,
)


def _needs_toning(validation: ValidationResult, confidence: float) -> bool:
    if not validation.is_valid:
        return True
    return (
        tonal_shifter.determine_tone(confidence) is not ToneType.DEFINITIVE
        and bool(validation.detection.definite_markers)
    )


def needs_toning(text: str, confidence: float, data_points: Optional[int] = None) -> bool:
    """
    True when ``text`` should be rewritten for ``confidence``.

    Invalid text always needs toning. Below the definitive register any
    definite marker does too, even when hedging dominates the text.
    """
    return _needs_toning(validator.validate(text, confidence, data_points), confidence)


def apply_toning(
    text: str,
    confidence: float,
    data_points: Optional[int] = None,
    auto_correct: bool = True,
    add_context: bool = True,
) -> ToningResult:
    """
    Validate ``text`` against ``confidence`` and shift it when needed.

    Args:
        text: Generated text
        confidence: Computed confidence in [0, 1]
        data_points: Sessions behind the confidence, for the small-sample guard
        auto_correct: Apply the tone shift (otherwise only report)
        add_context: Let the shifter add tone framing

    Returns:
        ToningResult with the toned text and the shift that produced it
    """
    validation = validator.validate(text, confidence, data_points)
    suggested_tone = tonal_shifter.determine_tone(confidence)

    toned_text = text
    shift = None

    if auto_correct and _needs_toning(validation, confidence):
        shift = tonal_shifter.shift(text, confidence, add_context=add_context)
        toned_text = shift.shifted_text
        if shift.changes_applied:
            logger.info(
                "Applied tone shift ({tone}): {changes}",
                tone=suggested_tone.value,
                changes="; ".join(shift.changes_applied),
            )

    return ToningResult(
        original_text=text,
        toned_text=toned_text,
        confidence=confidence,
        suggested_tone=suggested_tone,
        validation=validation,
        shift=shift,
    )


def tone_insight(insight: Insight, confidence: ConfidenceScore) -> Insight:
    """
    Tone an insight's pattern description and recommendation rationales.

    The pattern gets full tone framing; rationales are only rewritten.
    Every change is appended to ``tone_adjustments`` for audit.
    """
    adjustments: List[str] = list(insight.tone_adjustments)

    pattern_result = apply_toning(
        insight.pattern_description,
        confidence.value,
        data_points=confidence.data_points,
    )
    adjustments.extend(f"pattern: {c}" for c in pattern_result.changes_applied)

    recommendations: List[Recommendation] = []
    for rec in insight.recommendations:
        rationale_result = apply_toning(
            rec.rationale,
            confidence.value,
            data_points=confidence.data_points,
            add_context=False,
        )
        adjustments.extend(f"{rec.target_id}: {c}" for c in rationale_result.changes_applied)
        recommendations.append(rec.model_copy(update={"rationale": rationale_result.toned_text}))

    return insight.model_copy(
        update={
            "pattern_description": pattern_result.toned_text,
            "recommendations": tuple(recommendations),
            "tone": pattern_result.suggested_tone,
            "tone_adjustments": adjustments,
        }
    )


def generate_confidence_context(confidence: float, data_points: Optional[int] = None) -> str:
    """One-line, tone-appropriate note on how well-supported a pattern is"""
    tone = tonal_shifter.determine_tone(confidence)

    if tone is ToneType.EXPLORATORY:
        session_text = ""
        if data_points:
            session_text = f" after {data_points} session{'' if data_points == 1 else 's'}"
        return (
            f"**Early-stage pattern.** This is based on emerging data{session_text}. "
            "Additional sessions may clarify these insights."
        )
    if tone is ToneType.OBSERVATIONAL:
        return (
            "**Observed pattern.** This is based on multiple data points. "
            "Consider it a strong suggestion worth exploring further."
        )
    return (
        "**Supported by evidence.** This pattern is consistent across your data "
        "and warrants direct attention."
    )



def validate_data_sufficiency(
    total_sessions: int,
    sessions_in_last_week: int,
    related_insights: int,
    claimed: float,
) -> DataSufficiency:
    """
    Check a claimed confidence against what the data volume supports.

    ``gap`` is how far the claim overshoots the computed confidence
    (0 when the claim is supported).
    """
    computed = scorer.score(total_sessions, sessions_in_last_week, related_insights).value
    is_sufficient = claimed <= computed
    gap = 0.0 if is_sufficient else round(claimed - computed, 4)
    if not is_sufficient:
        logger.debug(f"Claimed confidence {claimed} exceeds supported {computed}")
    return DataSufficiency(is_sufficient=is_sufficient, recommended_confidence=computed, gap=gap)
