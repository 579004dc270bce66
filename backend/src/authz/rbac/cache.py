"""In-memory cache for resolved authorization contexts with TTL support."""

import os
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional
from datetime import datetime, timedelta
from dataclasses import dataclass

from .models import AuthorizationContext, utc_now

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
ContextLoader = Callable[[], Awaitable[Optional[AuthorizationContext]]]


@dataclass
class CacheEntry:
    """Cache entry with TTL tracking."""

    value: AuthorizationContext
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class PermissionCache:
    """
    Per-user cache of resolved AuthorizationContext objects.

    Cache invalidation occurs:
    - Automatically when TTL expires (5 min default)
    - Manually after role assignment/revocation (invalidate)
    - Manually after a role definition changes (invalidate_all)

    Refresh is pull-based: nothing reloads in the background, the next
    authorization check for the user fetches again.

    Loads for the same user go through a per-user lock, so concurrent
    misses trigger a single store round-trip. An invalidation that lands
    while a load is in flight bumps that user's generation; a load that
    started under an older generation returns its result to its caller but
    never writes it into the cache. Locks and generations only live while
    a load is pending, and expired entries are swept at most once per TTL.
    """

    def __init__(
        self,
        ttl: Optional[timedelta] = None,
        clock: Optional[Clock] = None,
    ):
        """Initialize cache with TTL from argument or environment."""
        if ttl is None:
            ttl_minutes = int(os.environ.get("AUTHZ_USER_CACHE_TTL_MINUTES", "5"))
            ttl = timedelta(minutes=ttl_minutes)

        self.ttl = ttl
        self._clock = clock or utc_now
        self._entries: Dict[str, CacheEntry] = {}
        self._generations: Dict[str, int] = {}
        self._global_generation = 0
        self._locks: Dict[str, asyncio.Lock] = {}
        self._pending: Dict[str, int] = {}
        self._next_sweep: Optional[datetime] = None

        self._hits = 0
        self._misses = 0
        self._invalidations = 0

        logger.info(f"PermissionCache initialized with TTL: {self.ttl}")

    # =========================================================================
    # Core operations
    # =========================================================================

    def get(self, user_id: str) -> Optional[AuthorizationContext]:
        """Return the cached context, or None on a miss or expired entry."""
        entry = self._entries.get(user_id)
        if entry is None:
            self._misses += 1
            return None
        if entry.is_expired(self._clock()):
            del self._entries[user_id]
            self._misses += 1
            return None
        self._hits += 1
        return entry.value

    def put(self, user_id: str, context: AuthorizationContext):
        """Cache a context, overwriting any existing entry."""
        now = self._clock()
        if self._next_sweep is None or now >= self._next_sweep:
            self.cleanup_expired()
            self._next_sweep = now + self.ttl
        self._entries[user_id] = CacheEntry(value=context, expires_at=now + self.ttl)

    def invalidate(self, user_id: str):
        """Drop a single user's entry. The next get() is guaranteed a miss."""
        if user_id in self._pending:
            self._generations[user_id] = self._generations.get(user_id, 0) + 1
        self._invalidations += 1
        if self._entries.pop(user_id, None) is not None:
            logger.debug(f"Invalidated permission cache for user: {user_id}")

    def invalidate_all(self):
        """Flush every entry, used when a role's permission map changes."""
        self._global_generation += 1
        self._invalidations += 1
        count = len(self._entries)
        self._entries.clear()
        logger.info(f"Invalidated all permission cache entries ({count})")

    async def get_or_load(
        self, user_id: str, loader: ContextLoader
    ) -> Optional[AuthorizationContext]:
        """
        Return the cached context or load, cache and return a fresh one.

        Args:
            user_id: User identifier
            loader: Coroutine factory that resolves the context from the store

        Returns:
            The context, or None if the loader could not resolve one
        """
        cached = self.get(user_id)
        if cached is not None:
            return cached

        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._pending[user_id] = self._pending.get(user_id, 0) + 1
        try:
            async with lock:
                # Another task may have filled the entry while we waited.
                entry = self._entries.get(user_id)
                if entry is not None and not entry.is_expired(self._clock()):
                    self._hits += 1
                    return entry.value

                token = self._generation_token(user_id)
                context = await loader()
                if context is None:
                    return None

                if token == self._generation_token(user_id):
                    self.put(user_id, context)
                else:
                    logger.debug(
                        f"Discarding context for {user_id}: invalidated during load"
                    )
                return context
        finally:
            self._release(user_id)

    def _release(self, user_id: str):
        remaining = self._pending[user_id] - 1
        if remaining:
            self._pending[user_id] = remaining
            return
        del self._pending[user_id]
        self._locks.pop(user_id, None)
        self._generations.pop(user_id, None)

    def _generation_token(self, user_id: str) -> tuple:
        return (self._global_generation, self._generations.get(user_id, 0))

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_stats(self) -> Dict:
        """Get cache statistics for monitoring."""
        now = self._clock()
        return {
            "userCacheSize": len(self._entries),
            "userCacheExpired": sum(
                1 for e in self._entries.values() if e.is_expired(now)
            ),
            "hits": self._hits,
            "misses": self._misses,
            "invalidations": self._invalidations,
        }

    def cleanup_expired(self) -> int:
        """Remove expired entries."""
        now = self._clock()
        expired = [k for k, v in self._entries.items() if v.is_expired(now)]
        for k in expired:
            del self._entries[k]

        if expired:
            logger.debug(f"Cleaned up {len(expired)} expired permission cache entries")
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)
