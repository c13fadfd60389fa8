"""Read-only access to stored wizard sessions"""

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List, Protocol, Union

from loguru import logger

from insight_engine.core.models import SessionSummary
from insight_engine.normalization.session_normalizer import extract_sessions


class SessionSource(Protocol):
    """Anything that can enumerate raw session records keyed by storage key"""

    async def load_records(self) -> Dict[str, Any]:
        ...


class InMemorySessionSource:
    """Session source over an already-loaded mapping (API payloads, tests)"""

    def __init__(self, records: Dict[str, Any]) -> None:
        self.records = dict(records)

    async def load_records(self) -> Dict[str, Any]:
        return dict(self.records)


class JsonFileSessionSource:
    """
    Session source backed by an exported JSON dump.

    The dump is a single object mapping wizard storage keys (``historyIFS``,
    ``polarityMapperSessions``, ...) to a session or a list of sessions.
    A missing or unreadable file yields no records.
    """

    def __init__(self, path: Union[Path, str]) -> None:
        self.path = Path(path)

    async def load_records(self) -> Dict[str, Any]:
        return await asyncio.to_thread(self._read)

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            logger.warning(f"Session dump not found: {self.path}")
            return {}

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read session dump {self.path}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.warning(f"Session dump {self.path} is not an object, ignoring")
            return {}

        return data


async def load_summaries(source: SessionSource) -> List[SessionSummary]:
    """Load and normalize every session a source knows about, most recent first"""
    records = await source.load_records()
    return extract_sessions(records)
