"""Session normalization: raw wizard payloads to uniform summaries"""

from insight_engine.normalization.session_normalizer import (
    extract_sessions,
    kind_from_storage_key,
    normalize,
    summarize_for_prompt,
)
from insight_engine.normalization.session_source import (
    InMemorySessionSource,
    JsonFileSessionSource,
    SessionSource,
)

__all__ = [
    "extract_sessions",
    "kind_from_storage_key",
    "normalize",
    "summarize_for_prompt",
    "InMemorySessionSource",
    "JsonFileSessionSource",
    "SessionSource",
]
