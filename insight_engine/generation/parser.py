"""Tolerant parser for generated insight text"""

import re
from typing import Dict, List, Optional, Sequence, Tuple

from loguru import logger
from pydantic import BaseModel, Field

from insight_engine.core.models import CatalogEntry, RecommendationKind

NO_PATTERN_DETECTED = "No pattern detected"

SECTION_DELIMITER = re.compile(r"^\s*-{3,}\s*$", re.MULTILINE)
PATTERN_LINE = re.compile(r"PATTERN:[ \t]*(\S.*?)[ \t]*$", re.IGNORECASE | re.MULTILINE)
RECOMMENDATION_LINE = re.compile(r"^\s*[-•*]\s*(.+?)\s*\|\s*Rationale:\s*(.+?)\s*$", re.IGNORECASE)
EXPLICIT_ID = re.compile(r"^\[([^\]]+)\]\s*(.*)$")

# Section position -> kind, used when a section carries no heading
POSITIONAL_KINDS = {1: RecommendationKind.SHADOW_WORK, 2: RecommendationKind.NEXT_STEP}


class ParsedRecommendation(BaseModel):
    target_id: str
    label: str
    rationale: str
    kind: RecommendationKind


class ParsedResponse(BaseModel):
    pattern_description: str
    recommendations: List[ParsedRecommendation] = Field(default_factory=list)
    dropped_labels: List[str] = Field(default_factory=list)
    degraded: bool = False


def resolve_label(label: str, catalog: Sequence[CatalogEntry]) -> Optional[CatalogEntry]:
    """
    Match a generated label to a catalog entry.

    Explicit ids win: a ``[id]`` prefix or a label that is exactly an id.
    Otherwise the name is matched case-insensitively as a substring in
    either direction. Returns None when nothing matches.
    """
    by_id: Dict[str, CatalogEntry] = {e.id.lower(): e for e in catalog}
    name = label.strip()

    explicit = EXPLICIT_ID.match(name)
    if explicit:
        entry = by_id.get(explicit.group(1).strip().lower())
        if entry:
            return entry
        name = explicit.group(2).strip()

    if name.lower() in by_id:
        return by_id[name.lower()]

    needle = name.lower()
    if not needle:
        return None
    for entry in catalog:
        candidate = entry.name.strip().lower()
        if candidate and (needle in candidate or candidate in needle):
            return entry
    return None


def _section_kind(section: str, position: int) -> RecommendationKind:
    heading = section.strip().splitlines()[0].upper() if section.strip() else ""
    if "SHADOW" in heading:
        return RecommendationKind.SHADOW_WORK
    if "NEXT" in heading:
        return RecommendationKind.NEXT_STEP
    return POSITIONAL_KINDS.get(position, RecommendationKind.NEXT_STEP)


def _recommendation_lines(section: str) -> List[Tuple[str, str]]:
    lines = []
    for line in section.splitlines():
        match = RECOMMENDATION_LINE.match(line)
        if match:
            lines.append((match.group(1).strip(), match.group(2).strip()))
    return lines


def parse_insight_response(text: str, catalog: Sequence[CatalogEntry]) -> ParsedResponse:
    """
    Parse ``PATTERN: ...`` plus ``---``-delimited recommendation sections.

    Unmatched labels are dropped. A response without a PATTERN line is
    degraded: sentinel description and no recommendations.
    """
    text = text or ""
    pattern_match = PATTERN_LINE.search(text)
    if not pattern_match:
        logger.warning("Generated response has no PATTERN line, returning degraded insight")
        return ParsedResponse(pattern_description=NO_PATTERN_DETECTED, degraded=True)

    sections = SECTION_DELIMITER.split(text)
    recommendations: List[ParsedRecommendation] = []
    dropped: List[str] = []
    seen = set()

    for position, section in enumerate(sections):
        kind = _section_kind(section, position)
        for label, rationale in _recommendation_lines(section):
            entry = resolve_label(label, catalog)
            if entry is None:
                dropped.append(label)
                continue
            if (entry.id, kind) in seen:
                continue
            seen.add((entry.id, kind))
            recommendations.append(
                ParsedRecommendation(
                    target_id=entry.id,
                    label=entry.name,
                    rationale=rationale,
                    kind=kind,
                )
            )

    if dropped:
        logger.info(f"Dropped {len(dropped)} recommendation(s) outside the catalog: {dropped}")

    return ParsedResponse(
        pattern_description=pattern_match.group(1).strip(),
        recommendations=recommendations,
        dropped_labels=dropped,
    )
