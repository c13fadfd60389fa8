"""Core data models and configuration"""

from insight_engine.core.models import (
    AnalysisContext,
    CatalogEntry,
    ConfidenceLevel,
    ConfidenceScore,
    Insight,
    InsightStatus,
    PracticeRef,
    Recommendation,
    RecommendationLineage,
    SessionKind,
    SessionSummary,
    SynthesisLineage,
    ToneType,
)
from insight_engine.core.config import settings
from insight_engine.core.errors import GenerationUnavailable

__all__ = [
    "AnalysisContext",
    "CatalogEntry",
    "ConfidenceLevel",
    "ConfidenceScore",
    "Insight",
    "InsightStatus",
    "PracticeRef",
    "Recommendation",
    "RecommendationLineage",
    "SessionKind",
    "SessionSummary",
    "SynthesisLineage",
    "ToneType",
    "settings",
    "GenerationUnavailable",
]
