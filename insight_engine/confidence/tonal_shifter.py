"""
Tonal Shifter

Rewrites generated text into the tone register its computed confidence
supports:

- LOW confidence (< 0.5): exploratory
  "I'm noticing some patterns worth exploring..."
- MEDIUM confidence (0.5-0.75): observational
  "You're showing signs of... Consider exploring..."
- HIGH confidence (>= 0.75): definitive
  "You are demonstrating... This suggests..."

Language only ever moves towards the computed confidence. Shifting text
that was already shifted to the same target changes nothing.
"""

import re
from typing import Dict, List, Optional, Pattern, Sequence

from insight_engine.confidence.validator import DEFINITE_MARKERS
from insight_engine.core.models import TonalShiftResult, ToneType, tone_for_score

# ── Tone vocabularies ────────────────────────────────────────────────────────
# The first word of each list is the replacement used when shifting into
# that tone.

TONE_CONFIGURATIONS: Dict[ToneType, Dict[str, Sequence[str]]] = {
    ToneType.EXPLORATORY: {
        "certainty_words": (
            "might", "could", "appears", "seems", "may",
            "worth exploring", "interesting pattern", "noticing", "consider",
        ),
        "action_words": (
            "explore", "investigate", "try", "observe", "notice", "pay attention to",
        ),
    },
    ToneType.OBSERVATIONAL: {
        "certainty_words": (
            "appears", "shows", "demonstrates", "suggests", "indicates",
            "points to", "likely", "tends to",
        ),
        "action_words": (
            "work with", "address", "develop", "strengthen", "practice",
        ),
    },
    ToneType.DEFINITIVE: {
        "certainty_words": (
            "clearly", "demonstrating", "shows", "confirms", "reveals", "indicates strongly",
        ),
        "action_words": (
            "practice", "integrate", "strengthen", "develop", "deepen",
        ),
    },
}

# Definite markers rewritten when the target tone is below definitive.
# Every definite marker has an entry for each non-definitive tone.
SOFTENERS: Dict[ToneType, Dict[str, str]] = {
    ToneType.EXPLORATORY: {
        "clearly": "possibly",
        "definitely": "possibly",
        "certainly": "possibly",
        "unquestionably": "possibly",
        "undoubtedly": "possibly",
        "obviously": "possibly",
        "no doubt": "possibly",
        "without question": "possibly",
        "is demonstrating": "may be showing",
        "are showing": "may be showing",
        "exhibits": "may show",
        "displays": "may show",
        "proven": "tentative",
        "established": "tentative",
        "confirmed": "tentative",
        "verified": "tentative",
        "must": "could",
        "will": "may",
        "should definitely": "could",
        "strong evidence": "early signs",
        "clear evidence": "early signs",
    },
    ToneType.OBSERVATIONAL: {
        "clearly": "likely",
        "definitely": "likely",
        "certainly": "likely",
        "unquestionably": "likely",
        "undoubtedly": "likely",
        "obviously": "likely",
        "no doubt": "likely",
        "without question": "likely",
        "is demonstrating": "appears to show",
        "are showing": "appear to show",
        "exhibits": "indicates",
        "displays": "indicates",
        "proven": "likely",
        "established": "likely",
        "confirmed": "likely",
        "verified": "likely",
        "must": "should",
        "will": "would",
        "should definitely": "should",
        "strong evidence": "consistent signs",
        "clear evidence": "consistent signs",
    },
}

EXPLORATORY_LEAD_IN = "I'm noticing some patterns worth exploring:"
EXPLORATORY_DISCLAIMER = (
    "This is early-stage data. Additional sessions may help clarify these patterns."
)
OBSERVATIONAL_FOOTNOTE = (
    "_based on multiple observations, but more data would strengthen these insights._"
)
OBSERVATIONAL_FOOTNOTE_BELOW = 0.65

EVIDENCE_FRAMING: Dict[ToneType, str] = {
    ToneType.EXPLORATORY: "based on early observations",
    ToneType.OBSERVATIONAL: "based on multiple observations",
    ToneType.DEFINITIVE: "based on consistent evidence",
}

ABSOLUTE_QUALIFIERS = re.compile(
    r"[ \t]*\b(?:absolutely|definitely|certainly|unquestionably)\b",
    re.IGNORECASE,
)
PERCENTAGE_SPANS = re.compile(
    r"[ \t]*\b\d{1,3}\s*%\s*(?:confident|sure|certain|accurate|accuracy)\b",
    re.IGNORECASE,
)

# Tone detection reruns after each replacement round; one round per tone
MAX_SHIFT_ROUNDS = len(ToneType)


def _phrase_pattern(phrases: Sequence[str]) -> Optional[Pattern[str]]:
    if not phrases:
        return None
    ordered = sorted(set(phrases), key=len, reverse=True)
    alternation = "|".join(re.escape(p).replace(r"\ ", r"\s+") for p in ordered)
    return re.compile(rf"\b(?:{alternation})\b", re.IGNORECASE)


def _match_case(original: str, replacement: str) -> str:
    if original[:1].isupper():
        return replacement[:1].upper() + replacement[1:]
    return replacement


def _tone_words(tone: ToneType) -> List[str]:
    config = TONE_CONFIGURATIONS[tone]
    return list(config["certainty_words"]) + list(config["action_words"])


_DEFINITE_PATTERN = _phrase_pattern(DEFINITE_MARKERS)
_TONE_PATTERNS: Dict[ToneType, Pattern[str]] = {
    tone: _phrase_pattern(_tone_words(tone)) for tone in ToneType
}


def determine_tone(confidence: float) -> ToneType:
    """<0.50 exploratory, <0.75 observational, otherwise definitive"""
    return tone_for_score(confidence)


def detect_tone(text: str) -> Optional[ToneType]:
    """
    Tone whose vocabulary occurs most often in ``text``.

    Ties go to the more certain tone. None when no tone vocabulary occurs.
    """
    best: Optional[ToneType] = None
    best_count = 0
    for tone in (ToneType.DEFINITIVE, ToneType.OBSERVATIONAL, ToneType.EXPLORATORY):
        count = len(_TONE_PATTERNS[tone].findall(text))
        if count > best_count:
            best, best_count = tone, count
    return best


def _strip_overconfident_claims(text: str) -> str:
    result = PERCENTAGE_SPANS.sub("", text)
    result = ABSOLUTE_QUALIFIERS.sub("", result)
    if result != text:
        result = re.sub(r"[ \t]{2,}", " ", result)
        result = re.sub(r"(?m)^[ \t]+", "", result)
        result = re.sub(r"[ \t]+([,.;:!?])", r"\1", result)
    return result


def _soften_definite_markers(text: str, target: ToneType) -> str:
    table = SOFTENERS[target]

    def _replace(match: "re.Match[str]") -> str:
        key = re.sub(r"\s+", " ", match.group(0).lower())
        return _match_case(match.group(0), table[key])

    return _DEFINITE_PATTERN.sub(_replace, text)


def _replace_tone_language(text: str, from_tone: ToneType, to_tone: ToneType) -> str:
    """Swap ``from_tone`` certainty/action words for the first word of ``to_tone``'s lists"""
    target_config = TONE_CONFIGURATIONS[to_tone]
    protected = {w.lower() for w in _tone_words(to_tone)}
    result = text

    for list_name in ("certainty_words", "action_words"):
        replacement = target_config[list_name][0]
        words = [
            w for w in TONE_CONFIGURATIONS[from_tone][list_name] if w.lower() not in protected
        ]
        pattern = _phrase_pattern(words)
        if pattern is None:
            continue
        result = pattern.sub(lambda m: _match_case(m.group(0), replacement), result)

    return result


def _add_confidence_context(text: str, tone: ToneType, confidence: float) -> str:
    parts: List[str] = []

    if tone is ToneType.EXPLORATORY:
        if not text.startswith(EXPLORATORY_LEAD_IN):
            parts.extend([EXPLORATORY_LEAD_IN, ""])
        parts.append(text)
        if not text.rstrip().endswith(EXPLORATORY_DISCLAIMER):
            parts.extend(["", EXPLORATORY_DISCLAIMER])
    elif tone is ToneType.OBSERVATIONAL and confidence < OBSERVATIONAL_FOOTNOTE_BELOW:
        parts.append(text)
        if OBSERVATIONAL_FOOTNOTE not in text:
            parts.extend(["", OBSERVATIONAL_FOOTNOTE])
    else:
        return text

    return "\n".join(parts)


def shift(
    text: str,
    target_confidence: float,
    current_tone: Optional[ToneType] = None,
    add_context: bool = True,
) -> TonalShiftResult:
    """
    Shift ``text`` into the tone supported by ``target_confidence``.

    Steps, in order:
    1. Below definitive: strip absolute qualifiers and "N% confident"
       spans, then soften the remaining definite markers.
    2. While the current tone (given, then detected) differs from the
       target, swap its vocabulary for the target's.
    3. Add tone framing (lead-in/disclaimer, evidence footnote) unless
       already present. Skipped when ``add_context`` is False.

    Args:
        text: Text to rewrite
        target_confidence: Computed confidence in [0, 1]
        current_tone: Known tone of ``text``; detected when omitted
        add_context: Whether to add tone framing

    Returns:
        TonalShiftResult; ``changes_applied`` is empty when nothing changed
    """
    target = determine_tone(target_confidence)
    changes: List[str] = []
    result = text or ""

    # Step 1: remove and soften overconfident language
    if target is not ToneType.DEFINITIVE:
        stripped = _strip_overconfident_claims(result)
        if stripped != result:
            changes.append("Removed overconfident percentage claims and absolute qualifiers")
            result = stripped

        softened = _soften_definite_markers(result, target)
        if softened != result:
            changes.append(f"Softened definite language for {target.value} tone")
            result = softened

    # Step 2: move remaining vocabulary towards the target tone
    tone = current_tone or detect_tone(result)
    for _ in range(MAX_SHIFT_ROUNDS):
        if tone is None or tone is target:
            break
        shifted = _replace_tone_language(result, tone, target)
        if shifted == result:
            break
        changes.append(f"Shifted tone from {tone.value} to {target.value}")
        result = shifted
        tone = detect_tone(result)

    # Step 3: framing
    if add_context:
        framed = _add_confidence_context(result, target, target_confidence)
        if framed != result:
            changes.append(f"Added {target.value} tone context")
            result = framed

    return TonalShiftResult(
        original_text=text or "",
        shifted_text=result,
        tone_used=target,
        changes_applied=changes,
    )


# ── Prompt instructions ──────────────────────────────────────────────────────


def build_tone_instructions(confidence: float) -> str:
    """System prompt section telling the generator which register to use"""
    tone = determine_tone(confidence)

    if tone is ToneType.EXPLORATORY:
        return (
            "## TONE: EXPLORATORY (Early Data)\n\n"
            "When confidence is low, use exploratory language:\n"
            '- Use "might," "could," "appears to," "seems," "worth exploring"\n'
            "- Avoid absolute statements or high percentages\n"
            "- Frame as patterns worth noticing, not conclusions\n"
            '- Example: "I\'m noticing a pattern here that might be worth exploring..."\n'
        )
    if tone is ToneType.OBSERVATIONAL:
        return (
            "## TONE: OBSERVATIONAL (Medium Data)\n\n"
            "When confidence is medium, use observational language:\n"
            '- Use "shows," "demonstrates," "suggests," "indicates," "tends to"\n'
            "- Ground claims in specific observations\n"
            '- Example: "You\'re showing a pattern of... Consider exploring..."\n'
            f'- Acknowledge: "{EVIDENCE_FRAMING[tone].capitalize()}..."\n'
        )
    return (
        "## TONE: DEFINITIVE (Strong Data)\n\n"
        "When confidence is high, use definitive language:\n"
        '- Use "clearly," "demonstrates," "shows"\n'
        "- Make clear, direct statements backed by evidence\n"
        '- Example: "You are demonstrating a clear pattern of..."\n'
        f'- State: "This {EVIDENCE_FRAMING[tone].replace("based on ", "")} suggests..."\n'
    )
