"""
Process-wide caches for the scored survey batch and the raw NPS responses.

Each cache holds one entry: ``"all_surveys"`` stores the complete list of
enriched records, ``"nps_data"`` the NPS response rows, each with
the time it was written.  Entries older than the TTL read as misses.  Only a
fully computed batch is ever stored; there is no partial invalidation and no
lock, so concurrent recomputations simply overwrite each other.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

import structlog

from app.config import get_settings

logger = structlog.get_logger("panel_health.score_cache")

T = TypeVar("T")

ALL_SURVEYS_KEY = "all_surveys"
NPS_DATA_KEY = "nps_data"


@dataclass(frozen=True)
class CachedResultSet(Generic[T]):
    data: T
    timestamp: float


class ScoreCache(Generic[T]):
    """Single-key TTL cache; ``clock`` is injectable for tests."""

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        key: str = ALL_SURVEYS_KEY,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError(f"Cache TTL must be positive, got {ttl_seconds}")
        self.ttl_seconds = ttl_seconds
        self.key = key
        self._clock = clock
        self._entry: Optional[CachedResultSet[T]] = None

    def get(self) -> Optional[T]:
        """Return the cached data, or ``None`` if absent or expired."""
        entry = self._entry
        if entry is None:
            logger.debug("score_cache_miss", key=self.key, reason="empty")
            return None

        age = self._clock() - entry.timestamp
        if age >= self.ttl_seconds:
            logger.debug(
                "score_cache_miss",
                key=self.key,
                reason="expired",
                age_seconds=round(age, 1),
            )
            return None

        logger.debug("score_cache_hit", key=self.key, age_seconds=round(age, 1))
        return entry.data

    def set(self, data: T) -> None:
        self._entry = CachedResultSet(data=data, timestamp=self._clock())
        logger.info("score_cache_set", key=self.key, ttl_seconds=self.ttl_seconds)

    def invalidate(self) -> None:
        self._entry = None
        logger.info("score_cache_invalidated", key=self.key)

    @property
    def entry(self) -> Optional[CachedResultSet[T]]:
        return self._entry


_score_cache: Optional[ScoreCache[Any]] = None


def get_score_cache() -> ScoreCache[Any]:
    """The process-wide cache, created on first use with the configured TTL."""
    global _score_cache
    if _score_cache is None:
        _score_cache = ScoreCache(get_settings().SCORE_CACHE_TTL_SECONDS)
    return _score_cache


_nps_cache: Optional[ScoreCache[Any]] = None


def get_nps_cache() -> ScoreCache[Any]:
    """The process-wide NPS response cache (``NPS_CACHE_TTL_SECONDS``)."""
    global _nps_cache
    if _nps_cache is None:
        _nps_cache = ScoreCache(
            get_settings().NPS_CACHE_TTL_SECONDS, key=NPS_DATA_KEY
        )
    return _nps_cache
