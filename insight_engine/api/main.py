"""FastAPI application for guidance retrieval and lineage explanation"""

import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, Field

from insight_engine import __version__
from insight_engine.cache.guidance_cache import GuidanceCache
from insight_engine.confidence.toning import generate_confidence_context
from insight_engine.context.aggregator import aggregate
from insight_engine.core.config import settings
from insight_engine.core.errors import GenerationUnavailable
from insight_engine.core.models import CatalogEntry, Insight, PracticeRef
from insight_engine.generation.synthesizer import InsightSynthesizer
from insight_engine.normalization.session_source import JsonFileSessionSource, load_summaries
from insight_engine.pipeline.guidance_pipeline import GuidancePipeline, build_context
from insight_engine.provenance.lineage_store import DEFAULT_USER_ID, LineageStore
from insight_engine.storage.sqlite_store import SQLiteLineageRepository


# Global state
repository: SQLiteLineageRepository = None
lineage_store: LineageStore = None
pipeline: GuidancePipeline = None
session_source: Optional[JsonFileSessionSource] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan (startup/shutdown)"""
    global repository, lineage_store, pipeline, session_source

    logger.remove()
    logger.add(sys.stderr, level=settings.LOG_LEVEL)

    # Startup
    repository = SQLiteLineageRepository(settings.DB_PATH)
    await repository.connect()

    lineage_store = LineageStore(repository)
    pipeline = GuidancePipeline(
        InsightSynthesizer.from_settings(settings),
        lineage_store,
        GuidanceCache(ttl=settings.guidance_ttl),
    )
    session_source = None
    if settings.SESSION_DUMP_PATH:
        session_source = JsonFileSessionSource(settings.SESSION_DUMP_PATH)
        logger.info(f"Reading stored sessions from {settings.SESSION_DUMP_PATH}")

    yield

    # Shutdown
    await repository.close()


app = FastAPI(
    title="Insight Synthesis & Lineage Engine",
    description="Confidence-calibrated guidance with recommendation lineage",
    version=__version__,
    lifespan=lifespan,
)


# Request models
class GuidanceRequest(BaseModel):
    """Raw session records plus the user's current practice context"""
    userId: str = DEFAULT_USER_ID
    records: Dict[str, Any] = Field(default_factory=dict)
    practices: List[PracticeRef] = Field(default_factory=list)
    insights: List[Insight] = Field(default_factory=list)
    catalog: List[CatalogEntry] = Field(default_factory=list)
    forceRefresh: bool = False


class VerifyRequest(BaseModel):
    recommendationId: Optional[str] = None


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, **extra},
    )


def _require_lineage_store() -> LineageStore:
    if not lineage_store:
        raise HTTPException(status_code=503, detail="Lineage store not initialized")
    return lineage_store


# Endpoints
@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "name": "Insight Synthesis & Lineage Engine",
        "version": __version__,
        "status": "running",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    if not pipeline or not lineage_store:
        raise HTTPException(status_code=503, detail="System not ready")

    return {"status": "healthy"}


@app.post("/guidance")
async def get_guidance(request: GuidanceRequest):
    """
    Resolve guidance for the supplied session history.

    Normalizes the raw records, aggregates them with practices and pending
    insights, and answers from the cache when the context is unchanged.
    Without request records the configured session dump is used instead.
    """
    if not pipeline:
        raise HTTPException(status_code=503, detail="Pipeline not initialized")

    if not request.records and session_source:
        sessions = await load_summaries(session_source)
        context = aggregate(sessions, request.practices, request.insights)
    else:
        context = build_context(request.records, request.practices, request.insights)

    try:
        insight = await pipeline.get_guidance(
            context,
            request.catalog,
            user_id=request.userId,
            force_refresh=request.forceRefresh,
        )
    except GenerationUnavailable as e:
        return _error(503, str(e), retryable=True)

    return {
        "success": True,
        "insight": insight.model_dump(mode="json"),
        "confidenceContext": generate_confidence_context(
            insight.confidence_score.value, insight.confidence_score.data_points
        ),
    }


@app.get("/explain/recommendation/{recommendation_id}")
async def explain_recommendation(recommendation_id: str):
    """Why a recommendation was made"""
    store = _require_lineage_store()
    explanation = await store.explain_recommendation(recommendation_id)
    if explanation is None:
        return _error(404, "No explanation available for this recommendation")

    return {
        "success": True,
        "explanation": {
            "recommendationId": explanation.recommendation_id,
            "recommendation": explanation.recommendation,
            "whyThis": explanation.why_this,
            "sources": [
                {"sessionId": s.session_id, "wizard": s.wizard, "patterns": s.patterns}
                for s in explanation.sources
            ],
            "sequence": explanation.sequence,
            "confidence": explanation.confidence,
            "confidenceScore": explanation.confidence_score,
        },
    }


@app.get("/explain/synthesis/{synthesis_id}")
async def explain_synthesis(synthesis_id: str):
    """Explain every recommendation produced by one synthesis"""
    store = _require_lineage_store()
    explanation = await store.explain_synthesis(synthesis_id)
    if explanation is None:
        return _error(404, "No explanation available for this synthesis")

    return {
        "success": True,
        "explanation": {
            "synthesisId": explanation.synthesis_id,
            "context": explanation.context,
            "developmentalEdge": explanation.developmental_edge,
            "recommendations": [
                {
                    "recommendationId": r.recommendation_id,
                    "practice": r.practice,
                    "reason": r.reason,
                    "sources": r.sources,
                    "confidence": r.confidence,
                }
                for r in explanation.recommendations
            ],
            "overallStrategy": explanation.overall_strategy,
        },
    }


@app.get("/explain/lineage/{recommendation_id}")
async def get_lineage(recommendation_id: str):
    """Raw lineage record for a recommendation"""
    store = _require_lineage_store()
    lineage = await store.get_lineage(recommendation_id)
    if lineage is None:
        return _error(404, "Lineage data not found")

    return {"success": True, "lineage": lineage.model_dump(mode="json")}


@app.get("/explain/history/{user_id}")
async def get_history(user_id: str, limit: int = 10, offset: int = 0):
    """User's synthesis history, most recent first"""
    store = _require_lineage_store()
    if limit < 1 or offset < 0:
        return _error(400, "limit must be positive and offset non-negative")

    entries, total = await store.history(user_id, limit=limit, offset=offset)
    return {
        "success": True,
        "syntheses": [
            {
                "synthesisId": e.synthesis_id,
                "generatedAt": e.created_at.isoformat(),
                "recommendationCount": e.recommendation_count,
                "developmentalEdge": e.developmental_edge,
                "trigger": e.trigger.value,
            }
            for e in entries
        ],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


@app.post("/explain/verify")
async def verify_lineage(request: Optional[VerifyRequest] = None):
    """
    Integrity check for a recommendation's lineage.

    Always 200 for a well-formed request, including unknown ids.
    """
    store = _require_lineage_store()
    if request is None or not request.recommendationId:
        return _error(400, "recommendationId is required")

    result = await store.verify(request.recommendationId)
    return {
        "success": True,
        "isValid": result.is_valid,
        "issues": result.issues,
        "warnings": result.warnings,
        "summary": result.summary,
    }


@app.get("/stats")
async def get_stats():
    """Get system statistics"""
    if not pipeline or not repository:
        raise HTTPException(status_code=503, detail="System not initialized")

    return {
        "pipeline": pipeline.get_stats(),
        "storage": await repository.get_stats(),
    }
