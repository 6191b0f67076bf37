"""
Cache backend contract and in-memory backend for the Eligibility Service.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, Optional, Set, Tuple

from shared.logging import get_logger


class CacheBackend(ABC):
    """Key/value store for serialized evaluation results."""

    supports_tags: bool = False

    async def start(self):
        """Open connections. No-op for process-local backends."""

    async def stop(self):
        """Release connections. No-op for process-local backends."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the cached value, or None when absent or expired."""

    @abstractmethod
    async def put(self, key: str, value: str, ttl: int, tags: Iterable[str] = ()) -> None:
        """Store a value for ``ttl`` seconds, associated with ``tags``."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove a key. Returns whether it existed."""

    @abstractmethod
    async def invalidate_tag(self, tag: str) -> int:
        """Remove every key associated with a tag. Returns the number removed."""

    @abstractmethod
    async def flush_namespace(self) -> int:
        """Remove every key owned by this backend. Returns the number removed."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Whether a live value is stored under ``key``."""

    @abstractmethod
    async def stats(self) -> Dict[str, Any]:
        """Backend statistics."""


class InMemoryCache(CacheBackend):
    """Process-local cache with TTL and tag index."""

    supports_tags = True

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.logger = get_logger("eligibility.cache.memory")
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float, Tuple[str, ...]]] = {}
        self._tags: Dict[str, Set[str]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at, _ = entry
            if expires_at <= self._clock():
                self._remove(key)
                return None
            return value

    async def put(self, key: str, value: str, ttl: int, tags: Iterable[str] = ()) -> None:
        async with self._lock:
            self._remove(key)
            tag_list = tuple(tags)
            self._entries[key] = (value, self._clock() + ttl, tag_list)
            for tag in tag_list:
                self._tags.setdefault(tag, set()).add(key)

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._remove(key)

    async def invalidate_tag(self, tag: str) -> int:
        async with self._lock:
            keys = self._tags.pop(tag, set())
            removed = sum(1 for key in list(keys) if self._remove(key))
            self.logger.debug("Invalidated tag", tag=tag, count=removed)
            return removed

    async def flush_namespace(self) -> int:
        async with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._tags.clear()
            return count

    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None

    async def stats(self) -> Dict[str, Any]:
        async with self._lock:
            now = self._clock()
            live = sum(1 for _, expires_at, _ in self._entries.values() if expires_at > now)
            return {
                "backend": "memory",
                "entries": live,
                "tags": len(self._tags),
                "supports_tags": self.supports_tags,
            }

    def _remove(self, key: str) -> bool:
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        for tag in entry[2]:
            members = self._tags.get(tag)
            if members is not None:
                members.discard(key)
                if not members:
                    del self._tags[tag]
        return True
