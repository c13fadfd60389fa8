"""
Confidence Validator

Checks that the certainty a piece of generated text *claims* matches the
confidence the data actually supports. Text is classified by counting
matches against fixed marker vocabularies, then compared to the computed
confidence through a mismatch table.
"""

import re
from typing import Dict, List, Optional, Pattern, Sequence

from loguru import logger

from insight_engine.core.models import (
    ConfidenceLevel,
    LanguageDetection,
    MismatchType,
    ValidationResult,
    level_for_score,
)

# Marker vocabularies. Multi-word phrases are matched as whole phrases.
DEFINITE_MARKERS: Sequence[str] = (
    "clearly", "definitely", "certainly", "unquestionably", "undoubtedly",
    "is demonstrating", "are showing", "exhibits", "displays",
    "proven", "established", "confirmed", "verified",
    "must", "will", "should definitely",
    "no doubt", "without question", "obviously",
    "strong evidence", "clear evidence",
)

EXPLORATORY_MARKERS: Sequence[str] = (
    "might", "may", "could", "possibly", "perhaps",
    "seems to", "appears to", "looks like",
    "noticing", "exploring", "investigating",
    "pattern worth exploring", "patterns worth exploring", "worth considering",
    "tentative", "preliminary", "early",
    "suggest", "propose", "consider",
    "limited data", "small sample", "insufficient evidence",
)

UNCERTAINTY_MARKERS: Sequence[str] = (
    "uncertain", "unclear", "ambiguous",
    "not sure", "can't say", "difficult to determine",
    "more data needed", "needs more evidence",
)

# Percentage claims at or above this value read as definite
DEFINITE_PERCENTAGE = 90

# A percentage claim may exceed the computed confidence by this many points
PERCENTAGE_TOLERANCE = 15

# Structural guard against small-sample overclaiming
MIN_DATA_POINTS = 3
SMALL_SAMPLE_CONFIDENCE_LIMIT = 0.70

# Exploratory markers beyond this count, with no definite ones, read as hedging
UNDERCONFIDENCE_MARKER_COUNT = 5


def compile_vocabulary(phrases: Sequence[str]) -> Pattern[str]:
    """One case-insensitive whole-word alternation, longest phrases first"""
    ordered = sorted(set(phrases), key=len, reverse=True)
    alternation = "|".join(re.escape(p).replace(r"\ ", r"\s+") for p in ordered)
    return re.compile(rf"\b(?:{alternation})\b", re.IGNORECASE)


VOCABULARY_PATTERNS: Dict[str, Pattern[str]] = {
    "definite": compile_vocabulary(DEFINITE_MARKERS),
    "exploratory": compile_vocabulary(EXPLORATORY_MARKERS),
    "uncertainty": compile_vocabulary(UNCERTAINTY_MARKERS),
}

PERCENTAGE_CLAIM = re.compile(
    r"(\d{1,3})\s*%\s*(?:confident|sure|certain|accurate|accuracy)\b",
    re.IGNORECASE,
)


def percentage_claims(text: str) -> List[int]:
    """Explicit numeric confidence claims such as "95% confident" """
    return [int(m.group(1)) for m in PERCENTAGE_CLAIM.finditer(text) if int(m.group(1)) > 0]


def _claimed_level(definite: int, hedged: int) -> ConfidenceLevel:
    if definite == 0 and hedged == 0:
        return ConfidenceLevel.UNKNOWN
    if definite > hedged:
        return ConfidenceLevel.HIGH
    if hedged > definite:
        return ConfidenceLevel.LOW
    return ConfidenceLevel.MEDIUM


def detect(text: str) -> LanguageDetection:
    """
    Classify the certainty register of ``text``.

    Uncertainty markers count towards the low (exploratory) side. Percentage
    claims of 90 or more count as definite markers.
    """
    text = text or ""

    definite = [m.group(0) for m in VOCABULARY_PATTERNS["definite"].finditer(text)]
    exploratory = [m.group(0) for m in VOCABULARY_PATTERNS["exploratory"].finditer(text)]
    uncertainty = [m.group(0) for m in VOCABULARY_PATTERNS["uncertainty"].finditer(text)]

    percentages = percentage_claims(text)
    definite.extend(
        m.group(0) for m in PERCENTAGE_CLAIM.finditer(text) if int(m.group(1)) >= DEFINITE_PERCENTAGE
    )

    hedged = len(exploratory) + len(uncertainty)

    return LanguageDetection(
        definite_markers=definite,
        exploratory_markers=exploratory,
        uncertainty_markers=uncertainty,
        percentage_claims=percentages,
        claimed_level=_claimed_level(len(definite), hedged),
        overconfidence_detected=any(p >= DEFINITE_PERCENTAGE for p in percentages),
        underconfidence_detected=(
            len(exploratory) > UNDERCONFIDENCE_MARKER_COUNT and not definite
        ),
    )


def validate(
    text: str,
    actual_confidence: float,
    data_points: Optional[int] = None,
) -> ValidationResult:
    """
    Compare the certainty claimed by ``text`` with ``actual_confidence``.

    Checks run in order and a later finding replaces an earlier suggestion:
    the level mismatch table, then explicit percentage claims, then the
    small-sample guard.

    Args:
        text: Generated text to check
        actual_confidence: Computed confidence in [0, 1]
        data_points: Optional count of sessions behind the confidence

    Returns:
        ValidationResult with the mismatch type and a suggestion if invalid
    """
    detection = detect(text)
    claimed = detection.claimed_level
    actual = level_for_score(actual_confidence)

    mismatch: Optional[MismatchType] = None
    suggestion: Optional[str] = None
    correction_points: Optional[int] = None

    if claimed is ConfidenceLevel.HIGH and actual in (ConfidenceLevel.MEDIUM, ConfidenceLevel.LOW):
        mismatch = MismatchType.OVERCONFIDENT
        suggestion = (
            f"Text claims high confidence but actual confidence is {actual.value}. "
            "Use exploratory language instead."
        )
    elif claimed is ConfidenceLevel.MEDIUM and actual is ConfidenceLevel.LOW:
        mismatch = MismatchType.OVERCONFIDENT
        suggestion = (
            "Text uses medium confidence but actual confidence is low. "
            "Consider more exploratory language."
        )
    elif claimed is ConfidenceLevel.LOW and actual is ConfidenceLevel.HIGH:
        mismatch = MismatchType.UNDERCONFIDENT
        suggestion = (
            "Text claims low confidence but actual confidence is high. "
            "Use more definitive language."
        )

    if detection.percentage_claims:
        claimed_pct = sum(detection.percentage_claims) / len(detection.percentage_claims)
        actual_pct = actual_confidence * 100
        if claimed_pct > actual_pct + PERCENTAGE_TOLERANCE:
            correction_points = round(claimed_pct - actual_pct)
            mismatch = MismatchType.OVERCONFIDENT
            suggestion = (
                f"Text claims {round(claimed_pct)}% confidence but actual is "
                f"{round(actual_pct)}%. Adjust claims down by ~{correction_points}%."
            )

    if (
        data_points is not None
        and data_points < MIN_DATA_POINTS
        and actual_confidence > SMALL_SAMPLE_CONFIDENCE_LIMIT
    ):
        mismatch = MismatchType.OVERCONFIDENT
        suggestion = (
            f"Only {data_points} data point(s) but confidence is {actual_confidence}. "
            "Consider toning down certainty."
        )

    if mismatch:
        logger.debug(
            "Confidence mismatch: claimed={claimed}, actual={actual}, type={type}",
            claimed=claimed.value,
            actual=actual.value,
            type=mismatch.value,
        )

    return ValidationResult(
        is_valid=mismatch is None,
        claimed_level=claimed,
        actual_level=actual,
        mismatch_type=mismatch,
        suggestion=suggestion,
        correction_points=correction_points,
        detection=detection,
    )

