import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Hashable, Optional

from config import STATS_CACHE_TTL_MINUTES

logger = logging.getLogger(__name__)

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

@dataclass
class CacheEntry:
    data: Any
    timestamp: datetime

class StatisticsCache:
    """
    Process-local TTL cache for computed user statistics.

    One instance is created at application start and handed to the
    aggregator; tests build their own. Entries are never persisted.
    """

    def __init__(self, ttl: Optional[timedelta] = None, clock: Optional[Callable[[], datetime]] = None):
        self.ttl = ttl if ttl is not None else timedelta(minutes=STATS_CACHE_TTL_MINUTES)
        self._clock = clock or utcnow
        self._entries: Dict[Hashable, CacheEntry] = {}

    def is_expired(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.timestamp >= self.ttl

    def get(self, key: Hashable) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self.is_expired(entry):
            logger.debug(f"Statistics cache entry expired for {key}")
            self._entries.pop(key, None)
            return None
        return entry.data

    def set(self, key: Hashable, value: Any) -> None:
        self._entries[key] = CacheEntry(data=value, timestamp=self._clock())

    def invalidate(self, key: Hashable) -> None:
        if self._entries.pop(key, None) is not None:
            logger.debug(f"Statistics cache entry invalidated for {key}")

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

class DashboardCountsStore:
    """
    Last task counts the dashboard showed to each user.

    Workspace views read from here to cross-check their own counts.
    """

    def __init__(self):
        self._counts: Dict[Hashable, Any] = {}

    def publish(self, user_id: Hashable, counts: Any) -> None:
        self._counts[user_id] = counts

    def get(self, user_id: Hashable) -> Optional[Any]:
        return self._counts.get(user_id)

    def clear(self) -> None:
        self._counts.clear()
