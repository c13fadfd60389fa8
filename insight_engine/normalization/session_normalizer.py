"""
Session Normalizer

Converts heterogeneous wizard session payloads into uniform SessionSummary
records. Normalization is total: historical data can be partial or malformed,
and every record still yields a summary (at worst a one-line generic fact).
"""

import hashlib
import json
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from loguru import logger

from insight_engine.core.models import EPOCH, SessionKind, SessionSummary

MAX_KEY_FACTS = 6

# Wizard storage keys -> session kind (keys as written by the web app)
STORAGE_KEY_KINDS: Dict[str, SessionKind] = {
    "historyBias": SessionKind.BIAS_DETECTIVE,
    "historyBiasFinder": SessionKind.BIAS_FINDER,
    "historyIFS": SessionKind.IFS,
    "historySO": SessionKind.SUBJECT_OBJECT,
    "history321": SessionKind.THREE_TWO_ONE,
    "historyKegan": SessionKind.KEGAN_ASSESSMENT,
    "historyAttachment": SessionKind.ATTACHMENT_ASSESSMENT,
    "historyBigMind": SessionKind.BIG_MIND,
    "somaticPracticeHistory": SessionKind.SOMATIC_GENERATOR,
    "memoryReconHistory": SessionKind.MEMORY_RECONSOLIDATION,
    "polarityMapperSessions": SessionKind.POLARITY_MAPPER,
    "historyPS": SessionKind.PERSPECTIVE_SHIFTER,
    "eightZonesHistory": SessionKind.EIGHT_ZONES,
    "adaptiveCycleHistory": SessionKind.ADAPTIVE_CYCLE,
    "insightPracticeMapSession": SessionKind.INSIGHT_PRACTICE_MAP,
    "historyRelational": SessionKind.RELATIONAL_PATTERN,
    "roleAlignmentSessions": SessionKind.ROLE_ALIGNMENT,
    "meditationWizardSessions": SessionKind.MEDITATION_WIZARD,
    "integralBodyArchitectSessions": SessionKind.INTEGRAL_BODY_ARCHITECT,
    "dynamicWorkoutSessions": SessionKind.DYNAMIC_WORKOUT,
}

# camelCase wizard type names used on the client side
_CLIENT_KIND_NAMES: Dict[str, SessionKind] = {
    "biasDetective": SessionKind.BIAS_DETECTIVE,
    "biasFinder": SessionKind.BIAS_FINDER,
    "subjectObject": SessionKind.SUBJECT_OBJECT,
    "threeTwoOne": SessionKind.THREE_TWO_ONE,
    "keganAssessment": SessionKind.KEGAN_ASSESSMENT,
    "attachmentAssessment": SessionKind.ATTACHMENT_ASSESSMENT,
    "bigMind": SessionKind.BIG_MIND,
    "somaticGenerator": SessionKind.SOMATIC_GENERATOR,
    "memoryReconsolidation": SessionKind.MEMORY_RECONSOLIDATION,
    "polarityMapper": SessionKind.POLARITY_MAPPER,
    "perspectiveShifter": SessionKind.PERSPECTIVE_SHIFTER,
    "eightZones": SessionKind.EIGHT_ZONES,
    "adaptiveCycle": SessionKind.ADAPTIVE_CYCLE,
    "insightPracticeMap": SessionKind.INSIGHT_PRACTICE_MAP,
    "relationalPattern": SessionKind.RELATIONAL_PATTERN,
    "roleAlignment": SessionKind.ROLE_ALIGNMENT,
    "meditationWizard": SessionKind.MEDITATION_WIZARD,
    "integralBodyArchitect": SessionKind.INTEGRAL_BODY_ARCHITECT,
    "dynamicWorkout": SessionKind.DYNAMIC_WORKOUT,
}

DISPLAY_NAMES: Dict[SessionKind, str] = {
    SessionKind.BIAS_DETECTIVE: "Bias Detective",
    SessionKind.BIAS_FINDER: "Bias Finder",
    SessionKind.IFS: "Internal Family Systems",
    SessionKind.SUBJECT_OBJECT: "Subject-Object Explorer",
    SessionKind.THREE_TWO_ONE: "3-2-1 Shadow Work",
    SessionKind.KEGAN_ASSESSMENT: "Kegan Developmental Assessment",
    SessionKind.ATTACHMENT_ASSESSMENT: "Attachment Assessment",
    SessionKind.BIG_MIND: "Big Mind Process",
    SessionKind.SOMATIC_GENERATOR: "Somatic Practice Generator",
    SessionKind.MEMORY_RECONSOLIDATION: "Memory Reconsolidation",
    SessionKind.POLARITY_MAPPER: "Polarity Mapper",
    SessionKind.PERSPECTIVE_SHIFTER: "Perspective Shifter",
    SessionKind.EIGHT_ZONES: "Eight Zones (AQAL)",
    SessionKind.ADAPTIVE_CYCLE: "Adaptive Cycle Mapper",
    SessionKind.INSIGHT_PRACTICE_MAP: "Insight Practice Map",
    SessionKind.RELATIONAL_PATTERN: "Relational Pattern Tracker",
    SessionKind.ROLE_ALIGNMENT: "Role Alignment",
    SessionKind.MEDITATION_WIZARD: "Meditation Wizard",
    SessionKind.INTEGRAL_BODY_ARCHITECT: "Integral Body Architect",
    SessionKind.DYNAMIC_WORKOUT: "Dynamic Workout Architect",
}

ADAPTIVE_CYCLE_PHASES = {
    "r": "Growth/Exploitation",
    "K": "Conservation",
    "Ω": "Release/Collapse",
    "α": "Reorganization",
}

_TIMESTAMP_FIELDS = ("date", "completedAt", "timestamp", "createdAt")


# ── Field access helpers ─────────────────────────────────────────────────────

def _snake(key: str) -> str:
    return "".join(f"_{c.lower()}" if c.isupper() else c for c in key)


def _get(raw: Any, *path: str) -> Any:
    """Walk a nested path, accepting camelCase or snake_case keys. Missing -> None."""
    current = raw
    for key in path:
        if not isinstance(current, Mapping):
            return None
        if key in current:
            current = current[key]
        else:
            current = current.get(_snake(key))
    return current


def _text(value: Any, limit: Optional[int] = None) -> Optional[str]:
    if value is None or isinstance(value, (dict, list, tuple)):
        return None
    text = str(value).strip()
    if not text:
        return None
    return text[:limit] if limit else text


def _names(values: Any, *name_keys: str) -> Optional[str]:
    """Join a list of strings or named objects into 'a, b, c'."""
    if not isinstance(values, (list, tuple)) or not values:
        return None
    keys = name_keys or ("name",)
    names: List[str] = []
    for item in values:
        if isinstance(item, Mapping):
            label = next((_text(_get(item, k)) for k in keys if _text(_get(item, k))), None)
        else:
            label = _text(item)
        if label:
            names.append(label)
    return ", ".join(names) if names else None


def _count(values: Any) -> Optional[int]:
    return len(values) if isinstance(values, (list, tuple)) else None


# ── Kind-specific extraction ─────────────────────────────────────────────────

Extractor = Callable[[Mapping[str, Any]], List[str]]


def _facts(*pairs: tuple) -> List[str]:
    """Keep 'label: value' facts whose value is present."""
    return [f"{label}: {value}" for label, value in pairs if value]


def _bias_detective(raw: Mapping[str, Any]) -> List[str]:
    return _facts(
        ("Identified biases", _names(_get(raw, "identifiedBiases"))),
        ("Decision context", _text(_get(raw, "decision"), 100)),
    )


def _bias_finder(raw: Mapping[str, Any]) -> List[str]:
    return _facts(
        ("Target decision", _text(_get(raw, "targetDecision"), 100)),
        ("Investigated biases", _names(_get(raw, "hypotheses"), "biasName", "name")),
    )


def _ifs(raw: Mapping[str, Any]) -> List[str]:
    return _facts(
        ("Worked with part", _text(_get(raw, "partName"))),
        ("Part role", _text(_get(raw, "partRole"))),
        ("Part fears", _text(_get(raw, "partFears"))),
        ("Positive intent", _text(_get(raw, "positiveIntent"))),
    )


def _subject_object(raw: Mapping[str, Any]) -> List[str]:
    return _facts(
        ("Pattern explored", _text(_get(raw, "pattern"))),
        ("Subject to", _text(_get(raw, "subjectToStatement"))),
        ("Costs", _names(_get(raw, "costs"))),
    )


def _three_two_one(raw: Mapping[str, Any]) -> List[str]:
    return _facts(
        ("Trigger", _text(_get(raw, "trigger"))),
        ("Integration", _text(_get(raw, "integration"), 150)),
    )


def _kegan(raw: Mapping[str, Any]) -> List[str]:
    return _facts(
        ("Developmental stage", _text(_get(raw, "overallInterpretation", "centerOfGravity"))),
        ("Growth edge", _text(_get(raw, "overallInterpretation", "developmentalEdge"), 150)),
    )


def _attachment(raw: Mapping[str, Any]) -> List[str]:
    return _facts(("Attachment style", _text(_get(raw, "assessedStyle"))))


def _big_mind(raw: Mapping[str, Any]) -> List[str]:
    return _facts(("Explored voices", _names(_get(raw, "exploredVoices"))))


def _somatic(raw: Mapping[str, Any]) -> List[str]:
    count = _count(_get(raw, "practices"))
    return [f"Generated {count} somatic practices"] if count is not None else []


def _memory_reconsolidation(raw: Mapping[str, Any]) -> List[str]:
    return _facts(
        ("Target belief", _text(_get(raw, "targetBelief"))),
        ("Contradiction found", _text(_get(raw, "contradictionExperience"), 100)),
    )


def _polarity(raw: Mapping[str, Any]) -> List[str]:
    pole1 = _text(_get(raw, "polePair", "pole1"))
    pole2 = _text(_get(raw, "polePair", "pole2"))
    return [f"Polarity: {pole1} / {pole2}"] if pole1 and pole2 else []


def _perspective_shifter(raw: Mapping[str, Any]) -> List[str]:
    facts = _facts(("Situation", _text(_get(raw, "situation"), 100)))
    count = _count(_get(raw, "perspectives"))
    if count is not None:
        facts.append(f"Explored {count} perspectives")
    return facts


def _eight_zones(raw: Mapping[str, Any]) -> List[str]:
    return _facts(
        ("AQAL analysis", _text(_get(raw, "focalQuestion"), 100)),
        ("Blind spots", _names(_get(raw, "blindSpots"))),
    )


def _adaptive_cycle(raw: Mapping[str, Any]) -> List[str]:
    facts = _facts(("System analyzed", _text(_get(raw, "systemToAnalyze"))))
    phase = _text(_get(raw, "diagnosedPhase"))
    if phase and _get(raw, "phaseAnalysis"):
        facts.append(f"Current phase: {ADAPTIVE_CYCLE_PHASES.get(phase, phase)}")
    return facts


def _insight_practice_map(raw: Mapping[str, Any]) -> List[str]:
    facts = _facts(("Current insight stage", _text(_get(raw, "currentStage"))))
    cycles = _text(_get(raw, "cycleCount"))
    if cycles:
        facts.append(f"Completed {cycles} cycles")
    return facts


def _relational(raw: Mapping[str, Any]) -> List[str]:
    facts: List[str] = []
    count = _count(_get(raw, "exploredRelationships"))
    if count is not None:
        facts.append(f"Explored {count} relationship patterns")
    facts.extend(_facts(("Core patterns", _names(_get(raw, "analysis", "corePatterns")))))
    return facts


def _role_alignment(raw: Mapping[str, Any]) -> List[str]:
    roles = _get(raw, "roles")
    if not isinstance(roles, (list, tuple)) or not roles:
        return []
    scores = [
        float(_get(r, "valueScore"))
        for r in roles
        if isinstance(_get(r, "valueScore"), (int, float))
    ]
    if not scores:
        return [f"Assessed {len(roles)} roles"]
    return [f"Assessed {len(roles)} roles, avg alignment: {sum(scores) / len(scores):.1f}/10"]


def _meditation(raw: Mapping[str, Any]) -> List[str]:
    return _facts(("Selected meditation", _text(_get(raw, "selectedMeditation", "name"))))


def _integral_body(raw: Mapping[str, Any]) -> List[str]:
    return ["Created weekly body practice plan"] if _get(raw, "weeklyPlan") else []


def _dynamic_workout(raw: Mapping[str, Any]) -> List[str]:
    return ["Generated workout program"] if _get(raw, "workoutProgram") else []


EXTRACTORS: Dict[SessionKind, Extractor] = {
    SessionKind.BIAS_DETECTIVE: _bias_detective,
    SessionKind.BIAS_FINDER: _bias_finder,
    SessionKind.IFS: _ifs,
    SessionKind.SUBJECT_OBJECT: _subject_object,
    SessionKind.THREE_TWO_ONE: _three_two_one,
    SessionKind.KEGAN_ASSESSMENT: _kegan,
    SessionKind.ATTACHMENT_ASSESSMENT: _attachment,
    SessionKind.BIG_MIND: _big_mind,
    SessionKind.SOMATIC_GENERATOR: _somatic,
    SessionKind.MEMORY_RECONSOLIDATION: _memory_reconsolidation,
    SessionKind.POLARITY_MAPPER: _polarity,
    SessionKind.PERSPECTIVE_SHIFTER: _perspective_shifter,
    SessionKind.EIGHT_ZONES: _eight_zones,
    SessionKind.ADAPTIVE_CYCLE: _adaptive_cycle,
    SessionKind.INSIGHT_PRACTICE_MAP: _insight_practice_map,
    SessionKind.RELATIONAL_PATTERN: _relational,
    SessionKind.ROLE_ALIGNMENT: _role_alignment,
    SessionKind.MEDITATION_WIZARD: _meditation,
    SessionKind.INTEGRAL_BODY_ARCHITECT: _integral_body,
    SessionKind.DYNAMIC_WORKOUT: _dynamic_workout,
}


# ── Public API ───────────────────────────────────────────────────────────────

def resolve_kind(source_kind: Union[SessionKind, str, None]) -> SessionKind:
    """Accept enum values, snake_case values or client-side camelCase names."""
    if isinstance(source_kind, SessionKind):
        return source_kind
    if not source_kind:
        return SessionKind.OTHER
    key = str(source_kind).strip()
    if key in _CLIENT_KIND_NAMES:
        return _CLIENT_KIND_NAMES[key]
    if key in STORAGE_KEY_KINDS:
        return STORAGE_KEY_KINDS[key]
    try:
        return SessionKind(key)
    except ValueError:
        return SessionKind.OTHER


def kind_from_storage_key(key: str) -> Union[SessionKind, str]:
    """Map a wizard storage key to its kind, or a cleaned-up label if unknown."""
    if key in STORAGE_KEY_KINDS:
        return STORAGE_KEY_KINDS[key]
    label = key
    for token in ("Sessions", "Session", "history", "History"):
        label = label.replace(token, "")
    return label or key


def display_name(kind: SessionKind, label: str = "") -> str:
    return DISPLAY_NAMES.get(kind, label or kind.value)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO strings (with or without Z), epoch seconds/millis or datetimes."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def _occurred_at(raw: Mapping[str, Any]) -> datetime:
    for field in _TIMESTAMP_FIELDS:
        parsed = parse_timestamp(_get(raw, field))
        if parsed is not None:
            return parsed
    return EPOCH


def _session_id(raw: Mapping[str, Any], kind_label: str, occurred_at: datetime) -> str:
    explicit = _text(_get(raw, "id")) or _text(_get(raw, "sessionId"))
    if explicit:
        return explicit
    payload = json.dumps(raw, sort_keys=True, default=str)
    digest = hashlib.sha256(
        f"{kind_label}|{occurred_at.isoformat()}|{payload}".encode()
    ).hexdigest()
    return f"session_{digest[:16]}"


def _minimal_summary(
    kind: SessionKind, label: str, payload: Any, position: Optional[int]
) -> SessionSummary:
    # Payload and position keep distinct unreadable records from sharing an id
    discriminator = {"payload": repr(payload)[:200], "position": position}
    return SessionSummary(
        id=_session_id(discriminator, label, EPOCH),
        kind=kind,
        kind_label=label if kind is SessionKind.OTHER else "",
        occurred_at=EPOCH,
        key_facts=(f"Completed a {display_name(kind, label)} session",),
        raw={},
    )


def normalize(
    raw_session: Any,
    source_kind: Union[SessionKind, str, None],
    position: Optional[int] = None,
) -> SessionSummary:
    """
    Normalize one raw wizard session into a SessionSummary.

    Never raises: missing fields, unknown kinds and non-mapping payloads all
    produce a summary with a generic "Completed a ... session" fact.
    ``position`` is the record's index within its storage key.
    """
    kind = resolve_kind(source_kind)
    label = str(source_kind.value if isinstance(source_kind, SessionKind) else source_kind or "unknown")

    if not isinstance(raw_session, Mapping):
        logger.debug(f"Non-mapping {label} session payload, using minimal summary")
        return _minimal_summary(kind, label, raw_session, position)

    try:
        raw = dict(raw_session)
        extractor = EXTRACTORS.get(kind)
        facts = [f for f in (extractor(raw) if extractor else []) if f][:MAX_KEY_FACTS]
        if not facts:
            facts = [f"Completed a {display_name(kind, label)} session"]

        occurred_at = _occurred_at(raw)
        return SessionSummary(
            id=_session_id(raw, label, occurred_at),
            kind=kind,
            kind_label=label if kind is SessionKind.OTHER else "",
            occurred_at=occurred_at,
            key_facts=tuple(facts),
            raw=raw,
        )
    except Exception as e:
        logger.warning(f"Failed to normalize {label} session: {e}")
        return _minimal_summary(kind, label, raw_session, position)


def extract_sessions(records: Mapping[str, Any]) -> List[SessionSummary]:
    """
    Normalize a storage dump (storage key -> session or list of sessions).

    Returns summaries sorted most recent first.
    """
    summaries: List[SessionSummary] = []
    for key, payload in records.items():
        kind = kind_from_storage_key(key)
        items: Iterable[Any] = payload if isinstance(payload, (list, tuple)) else [payload]
        for position, item in enumerate(items):
            summaries.append(normalize(item, kind, position))

    summaries.sort(key=lambda s: s.occurred_at, reverse=True)
    logger.debug(f"Extracted {len(summaries)} sessions from {len(records)} storage keys")
    return summaries


def summarize_for_prompt(summaries: List[SessionSummary]) -> str:
    """Human-readable digest of session history, grouped by wizard kind."""
    if not summaries:
        return "No wizard sessions completed yet."

    lines = [f"User has completed {len(summaries)} wizard sessions:"]

    grouped: Dict[str, List[SessionSummary]] = {}
    for summary in summaries:
        grouped.setdefault(display_name(summary.kind, summary.kind_label), []).append(summary)

    for name, group in grouped.items():
        plural = "s" if len(group) > 1 else ""
        lines.append("")
        lines.append(f"**{name}** ({len(group)} session{plural}):")
        # Most recent session of the group carries the facts
        for fact in group[0].key_facts:
            lines.append(f"  - {fact}")
        if len(group) > 1:
            lines.append(f"  - (Completed {len(group)} times, showing most recent)")

    return "\n".join(lines)
