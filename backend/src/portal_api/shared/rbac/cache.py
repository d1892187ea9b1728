"""In-memory cache of resolved user permissions with TTL support."""

import os
import asyncio
import logging
from typing import Dict, Optional, Any
from datetime import datetime, timedelta, timezone
from dataclasses import dataclass

from .models import PermissionMap
from .resolver import PermissionResolver

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _consume_exception(task: asyncio.Task):
    # A resolution whose waiters were all cancelled must not log "never retrieved"
    if not task.cancelled():
        task.exception()


@dataclass
class CacheEntry:
    """Cache entry with TTL tracking."""

    value: Any
    expires_at: datetime

    @property
    def is_expired(self) -> bool:
        return _utcnow() >= self.expires_at


class PermissionCache:
    """
    Per-user memoization of the resolver with a fixed TTL.

    Cache invalidation occurs:
    - Automatically when TTL expires
    - When a role or assignment changes (via ``invalidate``)
    - Platform-wide via ``invalidate_all`` (superadmin only, expensive)

    A read racing with a role change may see the old permissions until the
    entry is invalidated or expires; the TTL bounds that window.

    Concurrent misses for the same user share a single in-flight resolution.
    """

    def __init__(self, resolver: PermissionResolver, ttl: Optional[timedelta] = None):
        """Initialize cache; the TTL defaults to RBAC_PERMISSION_CACHE_TTL_SECONDS or 5 minutes."""
        if ttl is None:
            ttl = timedelta(
                seconds=float(os.environ.get("RBAC_PERMISSION_CACHE_TTL_SECONDS", "300"))
            )
        self.resolver = resolver
        self.ttl = ttl

        self._entries: Dict[str, CacheEntry] = {}
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._lock = asyncio.Lock()
        self._hits = 0
        self._misses = 0
        self._closed = False

        logger.info(f"PermissionCache initialized with TTL: {ttl.total_seconds():.0f}s")

    @staticmethod
    def _key(user_id: str) -> str:
        return f"permissions:{user_id}"

    async def get(self, user_id: str) -> PermissionMap:
        """
        Get the resolved permissions for a user, resolving on a miss.

        Raises:
            ActorNotFoundError: If the user does not exist
            StoreTimeoutError: If resolution timed out
        """
        key = self._key(user_id)

        async with self._lock:
            entry = self._entries.get(key)
            if entry and not entry.is_expired:
                self._hits += 1
                return entry.value

            self._misses += 1
            task = self._in_flight.get(key)
            if task is None:
                task = asyncio.create_task(self._resolve(key, user_id))
                task.add_done_callback(_consume_exception)
                self._in_flight[key] = task
            else:
                logger.debug(f"Joining in-flight permission resolution for {user_id}")

        # Cancelling one waiter must not cancel the shared resolution
        return await asyncio.shield(task)

    async def _resolve(self, key: str, user_id: str) -> PermissionMap:
        task = asyncio.current_task()
        try:
            permissions = await self.resolver.resolve(user_id)
        except BaseException:
            self._release(key, task)
            raise

        async with self._lock:
            # An invalidation during resolution drops the in-flight marker;
            # in that case the result is returned but not stored.
            if self._in_flight.get(key) is task:
                del self._in_flight[key]
                if not self._closed:
                    self._entries[key] = CacheEntry(
                        value=permissions, expires_at=_utcnow() + self.ttl
                    )
        return permissions

    def _release(self, key: str, task: Optional[asyncio.Task]):
        # Called without awaiting, so no other task can interleave here
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

    async def invalidate(self, user_id: str):
        """Invalidate the cached permissions of a single user."""
        key = self._key(user_id)
        async with self._lock:
            self._entries.pop(key, None)
            self._in_flight.pop(key, None)
        logger.debug(f"Invalidated permission cache: {user_id}")

    async def invalidate_all(self):
        """Invalidate all cached permissions."""
        async with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._in_flight.clear()
        logger.info(f"Invalidated all permission caches ({count} entries)")

    def get_stats(self) -> Dict:
        """Get cache statistics for monitoring."""
        return {
            "size": len(self._entries),
            "expired": sum(1 for e in self._entries.values() if e.is_expired),
            "hits": self._hits,
            "misses": self._misses,
            "inFlight": len(self._in_flight),
            "ttlSeconds": self.ttl.total_seconds(),
        }

    async def cleanup_expired(self) -> int:
        """Remove expired entries. Returns the number removed."""
        async with self._lock:
            expired = [k for k, v in self._entries.items() if v.is_expired]
            for k in expired:
                del self._entries[k]

        if expired:
            logger.debug(f"Cleaned up {len(expired)} expired permission cache entries")
        return len(expired)

    async def close(self):
        """Release cached state at shutdown."""
        async with self._lock:
            self._closed = True
            self._entries.clear()
            self._in_flight.clear()
        logger.info("PermissionCache closed")
