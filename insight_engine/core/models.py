"""Core data models for the insight synthesis and lineage engine"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


# Thresholds shared by the validator (confidence levels) and the tonal
# shifter (tone registers).
HIGH_CONFIDENCE_THRESHOLD = 0.75
MEDIUM_CONFIDENCE_THRESHOLD = 0.50

# Sentinel used when a session carries no usable timestamp
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class SessionKind(str, Enum):
    """Wizard session kinds produced by the surrounding application"""

    BIAS_DETECTIVE = "bias_detective"
    BIAS_FINDER = "bias_finder"
    IFS = "ifs"
    SUBJECT_OBJECT = "subject_object"
    THREE_TWO_ONE = "three_two_one"
    KEGAN_ASSESSMENT = "kegan_assessment"
    ATTACHMENT_ASSESSMENT = "attachment_assessment"
    BIG_MIND = "big_mind"
    SOMATIC_GENERATOR = "somatic_generator"
    MEMORY_RECONSOLIDATION = "memory_reconsolidation"
    POLARITY_MAPPER = "polarity_mapper"
    PERSPECTIVE_SHIFTER = "perspective_shifter"
    EIGHT_ZONES = "eight_zones"
    ADAPTIVE_CYCLE = "adaptive_cycle"
    INSIGHT_PRACTICE_MAP = "insight_practice_map"
    RELATIONAL_PATTERN = "relational_pattern"
    ROLE_ALIGNMENT = "role_alignment"
    MEDITATION_WIZARD = "meditation_wizard"
    INTEGRAL_BODY_ARCHITECT = "integral_body_architect"
    DYNAMIC_WORKOUT = "dynamic_workout"
    OTHER = "other"


class ConfidenceLevel(str, Enum):
    """Categorical confidence level (claimed by text or computed from data)"""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    UNKNOWN = "unknown"


class ToneType(str, Enum):
    """Rhetorical certainty register of generated text"""

    EXPLORATORY = "exploratory"
    OBSERVATIONAL = "observational"
    DEFINITIVE = "definitive"


class MismatchType(str, Enum):
    OVERCONFIDENT = "overconfident"
    UNDERCONFIDENT = "underconfident"


class InsightStatus(str, Enum):
    PENDING = "pending"
    ADDRESSED = "addressed"


class RecommendationKind(str, Enum):
    """Reflection work vs. action work"""

    SHADOW_WORK = "shadow_work"
    NEXT_STEP = "next_step"


class TriggerType(str, Enum):
    """What caused a synthesis call"""

    NEW_INSIGHT = "new_insight"
    BATCH_INSIGHTS = "batch_insights"
    USER_REQUESTED = "user_requested"
    PERIODIC = "periodic"


def level_for_score(score: float) -> ConfidenceLevel:
    """Map a numeric confidence to high / medium / low"""
    if score >= HIGH_CONFIDENCE_THRESHOLD:
        return ConfidenceLevel.HIGH
    if score >= MEDIUM_CONFIDENCE_THRESHOLD:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def tone_for_score(score: float) -> ToneType:
    """Map a numeric confidence to the tone register it supports"""
    if score >= HIGH_CONFIDENCE_THRESHOLD:
        return ToneType.DEFINITIVE
    if score >= MEDIUM_CONFIDENCE_THRESHOLD:
        return ToneType.OBSERVATIONAL
    return ToneType.EXPLORATORY


# ========== SESSIONS & CONTEXT ==========


class SessionSummary(BaseModel):
    """
    Uniform summary of one completed wizard session.

    Created by the session normalizer; immutable once created.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    kind: SessionKind
    kind_label: str = ""              # original kind string when kind is OTHER
    occurred_at: datetime
    key_facts: tuple[str, ...] = Field(min_length=1, max_length=6)
    raw: dict[str, Any] = Field(default_factory=dict)

    @property
    def label(self) -> str:
        return self.kind_label or self.kind.value


class PracticeRef(BaseModel):
    """Reference to a practice in the user's active stack"""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    module: Optional[str] = None      # body / mind / spirit / shadow
    note: Optional[str] = None


class AnalysisContext(BaseModel):
    """
    Everything one analysis request knows about the user.

    Built fresh per request and never mutated. Two contexts are
    cache-equivalent iff their structural hash matches.
    """

    model_config = ConfigDict(frozen=True)

    practice_stack: frozenset[PracticeRef] = frozenset()
    session_summaries: tuple[SessionSummary, ...] = ()    # most recent first
    pending_patterns: frozenset[str] = frozenset()
    developmental_markers: dict[str, str] = Field(default_factory=dict)
    primary_challenges: tuple[str, ...] = ()

    @property
    def latest_session(self) -> Optional[SessionSummary]:
        return self.session_summaries[0] if self.session_summaries else None

    @property
    def session_ids(self) -> frozenset[str]:
        return frozenset(s.id for s in self.session_summaries)


class ConfidenceScore(BaseModel):
    """Numeric confidence plus the volume of evidence behind it"""

    model_config = ConfigDict(frozen=True)

    value: float = Field(ge=0.0, le=1.0)
    data_points: int = Field(default=0, ge=0)
    related_insights: int = Field(default=0, ge=0)

    @property
    def level(self) -> ConfidenceLevel:
        return level_for_score(self.value)

    @property
    def tone(self) -> ToneType:
        return tone_for_score(self.value)


# ========== INSIGHTS ==========


class CatalogEntry(BaseModel):
    """A valid recommendation target (practice, wizard, ...)"""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    category: Optional[str] = None


class Recommendation(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    target_id: str
    label: str
    rationale: str
    kind: RecommendationKind = RecommendationKind.NEXT_STEP


class Insight(BaseModel):
    """
    Synthesized pattern + ordered recommendation set.

    Produced once per synthesis call. ``status`` moves from pending to
    addressed when the user acts on it.
    """

    id: str = Field(default_factory=_new_id)
    pattern_description: str
    recommendations: tuple[Recommendation, ...] = ()
    confidence_score: ConfidenceScore
    generated_by: str
    created_at: datetime = Field(default_factory=utcnow)
    status: InsightStatus = InsightStatus.PENDING
    tone: Optional[ToneType] = None
    tone_adjustments: list[str] = Field(default_factory=list)
    lineage_id: Optional[str] = None
    degraded: bool = False            # response arrived but could not be parsed

    def mark_addressed(self) -> "Insight":
        return self.model_copy(update={"status": InsightStatus.ADDRESSED})


# ========== CONFIDENCE VALIDATION & TONE ==========


class LanguageDetection(BaseModel):
    """Confidence markers found in a piece of text"""

    definite_markers: list[str] = Field(default_factory=list)
    exploratory_markers: list[str] = Field(default_factory=list)
    uncertainty_markers: list[str] = Field(default_factory=list)
    percentage_claims: list[int] = Field(default_factory=list)
    claimed_level: ConfidenceLevel = ConfidenceLevel.UNKNOWN
    overconfidence_detected: bool = False
    underconfidence_detected: bool = False


class ValidationResult(BaseModel):
    is_valid: bool
    claimed_level: ConfidenceLevel
    actual_level: ConfidenceLevel
    mismatch_type: Optional[MismatchType] = None
    suggestion: Optional[str] = None
    correction_points: Optional[int] = None   # how far a percentage claim overshoots
    detection: LanguageDetection

    @property
    def mismatch_found(self) -> bool:
        return self.mismatch_type is not None


class TonalShiftResult(BaseModel):
    original_text: str
    shifted_text: str
    tone_used: ToneType
    changes_applied: list[str] = Field(default_factory=list)


class ToningResult(BaseModel):
    """Outcome of validate-then-shift on one piece of generated text"""

    original_text: str
    toned_text: str
    confidence: float
    suggested_tone: ToneType
    validation: ValidationResult
    shift: Optional[TonalShiftResult] = None

    @property
    def changes_applied(self) -> list[str]:
        return list(self.shift.changes_applied) if self.shift else []


class DataSufficiency(BaseModel):
    """Whether data volume supports a claimed confidence"""

    is_sufficient: bool
    recommended_confidence: float
    gap: float = 0.0


# ========== LINEAGE ==========


class RecommendationLineage(BaseModel):
    """Evidence chain behind one recommendation. Immutable."""

    model_config = ConfigDict(frozen=True)

    recommendation_id: str
    target_id: str = ""
    label: str = ""
    contributing_session_ids: frozenset[str] = frozenset()
    source_kinds: dict[str, str] = Field(default_factory=dict)   # session id -> kind
    detected_patterns: frozenset[str] = frozenset()
    primary_reason: str = ""
    secondary_reasons: tuple[str, ...] = ()
    recommendation_type: RecommendationKind = RecommendationKind.NEXT_STEP
    sequence_order: Optional[int] = None
    integration_timing: Optional[str] = None
    confidence_score: float = Field(ge=0.0, le=1.0)
    generated_by: str
    created_at: datetime = Field(default_factory=utcnow)


class SynthesisTrigger(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: TriggerType = TriggerType.USER_REQUESTED
    insight_ids: tuple[str, ...] = ()


class SynthesisRawInput(BaseModel):
    """Context summary actually sent to the generator"""

    model_config = ConfigDict(frozen=True)

    session_summaries: tuple[str, ...] = ()
    user_profile_context: Optional[str] = None
    available_targets: Optional[int] = None


class SynthesisLineage(BaseModel):
    """All recommendation lineages produced by one synthesis call. Immutable."""

    model_config = ConfigDict(frozen=True)

    synthesis_id: str = Field(default_factory=_new_id)
    user_id: str
    trigger: SynthesisTrigger = SynthesisTrigger()
    recommendations: tuple[RecommendationLineage, ...] = ()
    synthesis_reasoning: str = ""
    overall_context: str = ""
    developmental_edge: str = ""
    generated_by: str
    created_at: datetime = Field(default_factory=utcnow)
    raw_input: Optional[SynthesisRawInput] = None


class SourceExplanation(BaseModel):
    session_id: str
    wizard: str
    patterns: list[str] = Field(default_factory=list)


class RecommendationExplanation(BaseModel):
    """User-facing answer to "why was I told this?" """

    recommendation_id: str
    recommendation: str
    why_this: list[str]
    sources: list[SourceExplanation]
    sequence: str
    confidence: str
    confidence_score: float


class SynthesisRecommendationSummary(BaseModel):
    recommendation_id: str
    practice: str
    reason: str
    sources: int
    confidence: str


class SynthesisExplanation(BaseModel):
    synthesis_id: str
    context: str
    developmental_edge: str
    recommendations: list[SynthesisRecommendationSummary]
    overall_strategy: str


class SynthesisHistoryEntry(BaseModel):
    synthesis_id: str
    created_at: datetime
    recommendation_count: int
    developmental_edge: str
    trigger: TriggerType


class VerificationResult(BaseModel):
    """Integrity check over one recommendation lineage (always data, never raised)"""

    is_valid: bool
    issues: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    summary: str = ""


class LineageExport(BaseModel):
    """Snapshot of stored lineage for inspection and debugging"""

    syntheses: list[SynthesisLineage] = Field(default_factory=list)
    recommendations: dict[str, RecommendationLineage] = Field(default_factory=dict)


# ========== CACHE ==========


class CachedGuidance(BaseModel):
    """Single active guidance entry. Replaced whole, never merged."""

    model_config = ConfigDict(frozen=True)

    insight: Insight
    cached_at: datetime
    context_hash: str
