"""Prompt construction for insight synthesis"""

from typing import List, Sequence

from insight_engine.confidence.tonal_shifter import build_tone_instructions
from insight_engine.context.aggregator import describe_context
from insight_engine.core.models import AnalysisContext, CatalogEntry, ConfidenceScore
from insight_engine.generation.client import ChatMessage, GenerationRequest
from insight_engine.normalization.session_normalizer import summarize_for_prompt

SYSTEM_PROMPT = (
    "You are an expert at analyzing personal development sessions and "
    "suggesting transformative practices. You only recommend practices from "
    "the catalog you are given, and you never claim more certainty than the "
    "data supports."
)

RESPONSE_FORMAT = """Please analyze this history and provide:

1. DETECTED PATTERN (1-2 sentences): What core pattern emerges across these sessions?

2. SHADOW WORK RECOMMENDATIONS (reflection/inquiry practices to understand the pattern deeper):
   - List 2-3 practices from the catalog
   - For each: [practice-id] Practice Name | Rationale: why it helps

3. NEXT STEPS (action practices to work with this pattern):
   - List 2-3 practices from the catalog
   - For each: [practice-id] Practice Name | Rationale: why it helps

Format your response EXACTLY as:
PATTERN: <detected pattern>
---
SHADOW WORK:
- [practice-id] Practice Name | Rationale: <rationale>
---
NEXT STEPS:
- [practice-id] Practice Name | Rationale: <rationale>"""


def format_catalog(catalog: Sequence[CatalogEntry]) -> str:
    if not catalog:
        return "(no practices available)"
    lines: List[str] = []
    for entry in catalog:
        category = f" ({entry.category})" if entry.category else ""
        lines.append(f"- [{entry.id}] {entry.name}{category}")
    return "\n".join(lines)


def session_digest_lines(context: AnalysisContext) -> List[str]:
    """One line per session, recorded as the raw input of a synthesis"""
    return [
        f"{s.label} ({s.occurred_at.date().isoformat()}): {'; '.join(s.key_facts)}"
        for s in context.session_summaries
    ]


def build_user_prompt(
    context: AnalysisContext,
    confidence: ConfidenceScore,
    catalog: Sequence[CatalogEntry],
) -> str:
    sections = [
        "Session History:",
        summarize_for_prompt(list(context.session_summaries)),
        "",
        "User Context:",
        describe_context(context),
    ]

    if context.pending_patterns:
        sections.append("")
        sections.append("Patterns already surfaced and not yet addressed:")
        sections.extend(f"  - {p}" for p in sorted(context.pending_patterns))

    sections.extend(
        [
            "",
            "Available Practices:",
            format_catalog(catalog),
            "",
            f"Data confidence: {confidence.value:.2f} "
            f"(from {confidence.data_points} sessions)",
            "",
            build_tone_instructions(confidence.value),
            RESPONSE_FORMAT,
        ]
    )
    return "\n".join(sections)


def build_generation_request(
    context: AnalysisContext,
    confidence: ConfidenceScore,
    catalog: Sequence[CatalogEntry],
    max_tokens: int = 1500,
    temperature: float = 0.7,
) -> GenerationRequest:
    """Request without a model; each route fills in its own"""
    return GenerationRequest(
        system_prompt=SYSTEM_PROMPT,
        messages=[ChatMessage(role="user", content=build_user_prompt(context, confidence, catalog))],
        max_tokens=max_tokens,
        temperature=temperature,
    )
