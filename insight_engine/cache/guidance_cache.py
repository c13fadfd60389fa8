"""Single-entry, content-hash-keyed guidance cache"""

from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from loguru import logger

from insight_engine.core.models import CachedGuidance, Insight, utcnow

DEFAULT_TTL = timedelta(hours=24)


class GuidanceCache:
    """
    Holds the one current guidance entry.

    An entry is served only while ``now - cached_at <= ttl`` and only for
    the exact context hash it was stored under; anything else is a miss.
    ``put`` always replaces the previous entry.
    """

    def __init__(
        self,
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.ttl = ttl
        self.clock = clock
        self._entry: Optional[CachedGuidance] = None
        self.hits = 0
        self.misses = 0
        logger.info(f"GuidanceCache initialized (ttl={ttl})")

    @property
    def entry(self) -> Optional[CachedGuidance]:
        return self._entry

    def get(self, context_hash: str) -> Optional[CachedGuidance]:
        """Cached guidance for ``context_hash``, or None on a miss"""
        entry = self._entry

        if entry is None:
            self.misses += 1
            logger.debug("Guidance cache miss (empty)")
            return None

        if entry.context_hash != context_hash:
            self.misses += 1
            logger.info("Guidance cache miss (context changed)")
            return None

        age = self.clock() - entry.cached_at
        if age > self.ttl:
            self.misses += 1
            logger.info(f"Guidance cache miss (expired, age={age})")
            return None

        self.hits += 1
        logger.info(f"Guidance cache hit (age={age})")
        return entry

    def put(self, context_hash: str, insight: Insight) -> CachedGuidance:
        """Replace the cached entry unconditionally"""
        self._entry = CachedGuidance(
            insight=insight,
            cached_at=self.clock(),
            context_hash=context_hash,
        )
        logger.debug(f"Guidance cached for context {context_hash[:12]}")
        return self._entry

    def clear(self) -> None:
        self._entry = None

    def get_stats(self) -> Dict:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "has_entry": self._entry is not None,
        }
