"""Unit tests for the guidance cache"""

from datetime import datetime, timedelta, timezone

from insight_engine.cache.guidance_cache import GuidanceCache
from insight_engine.core.models import ConfidenceScore, Insight


class FakeClock:
    """Manually advanced clock"""

    def __init__(self) -> None:
        self.now = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


def _insight(pattern: str = "Avoids conflict") -> Insight:
    return Insight(
        pattern_description=pattern,
        confidence_score=ConfidenceScore(value=0.5, data_points=5),
        generated_by="openrouter:test",
    )


class TestGuidanceCache:
    """Test hash matching and TTL expiry"""

    def test_empty_cache_misses(self) -> None:
        """Nothing cached is a miss"""
        cache = GuidanceCache()
        assert cache.get("abc") is None
        assert cache.get_stats() == {"hits": 0, "misses": 1, "has_entry": False}

    def test_hit_for_same_hash(self) -> None:
        """Same hash within TTL is served"""
        clock = FakeClock()
        cache = GuidanceCache(clock=clock)
        insight = _insight()

        cache.put("abc", insight)
        clock.advance(timedelta(hours=23))
        entry = cache.get("abc")

        assert entry is not None
        assert entry.insight == insight
        assert entry.context_hash == "abc"

    def test_miss_for_different_hash(self) -> None:
        """A changed context is never served stale guidance"""
        cache = GuidanceCache(clock=FakeClock())
        cache.put("abc", _insight())
        assert cache.get("def") is None

    def test_expiry(self) -> None:
        """Entries older than the TTL are misses; exactly TTL is still served"""
        clock = FakeClock()
        cache = GuidanceCache(ttl=timedelta(hours=24), clock=clock)
        cache.put("abc", _insight())

        clock.advance(timedelta(hours=24))
        assert cache.get("abc") is not None

        clock.advance(timedelta(seconds=1))
        assert cache.get("abc") is None

    def test_put_replaces(self) -> None:
        """Only one entry is held"""
        cache = GuidanceCache(clock=FakeClock())
        cache.put("abc", _insight("first"))
        cache.put("def", _insight("second"))

        assert cache.get("abc") is None
        assert cache.get("def").insight.pattern_description == "second"

    def test_clear(self) -> None:
        """Clearing drops the entry"""
        cache = GuidanceCache(clock=FakeClock())
        cache.put("abc", _insight())
        cache.clear()
        assert cache.entry is None
