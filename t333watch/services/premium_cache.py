"""
Premium status cache.

Premium checks run on most authenticated requests, so the live database
lookup is cached per user for a short TTL. Writers of ``premium_flag``
invalidate the user's entry so the next read recomputes.

The cache is a process-wide object handed to routes through
``get_premium_cache`` so tests can swap it via ``app.dependency_overrides``.
"""

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

from t333watch.config import Config
from t333watch.db.users import get_premium_flag

logger = logging.getLogger(__name__)


class PremiumStatusCache:
    """TTL cache of user id -> premium status."""

    def __init__(
        self,
        loader: Callable[[str], bool] = get_premium_flag,
        ttl_seconds: float = Config.PREMIUM_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[bool, float]] = {}
        # Bumped on invalidate so a load racing an invalidation is not stored
        self._versions: dict[str, int] = {}
        self._lock = threading.Lock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self, user_id: str) -> bool:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is not None:
                value, expires_at = entry
                if now < expires_at:
                    return value
                del self._entries[user_id]
            version = self._versions.get(user_id, 0)

        # Loader runs outside the lock; it does network I/O
        value = bool(self._loader(user_id))

        with self._lock:
            if self._versions.get(user_id, 0) == version:
                self._entries[user_id] = (value, self._clock() + self._ttl)
            else:
                logger.debug(f"Premium status for {user_id} invalidated during load; not caching")
        return value

    def invalidate(self, user_id: str) -> None:
        with self._lock:
            self._entries.pop(user_id, None)
            self._versions[user_id] = self._versions.get(user_id, 0) + 1
        logger.debug(f"Invalidated premium status cache for user {user_id}")

    def clear(self) -> None:
        with self._lock:
            for user_id in self._entries:
                self._versions[user_id] = self._versions.get(user_id, 0) + 1
            self._entries.clear()
        logger.info("Cleared premium status cache")

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {"cached_users": len(self._entries), "ttl_seconds": self._ttl}


_premium_cache = PremiumStatusCache()


def get_premium_cache() -> PremiumStatusCache:
    """FastAPI dependency returning the process-wide premium status cache."""
    return _premium_cache
