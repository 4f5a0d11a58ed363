"""
Domain-scoped TTL cache for vision, knowledge (RAG) and full assessment results.

Entries are only ever replaced wholesale. Values are copied on the way in and
on the way out, so nothing outside the store can mutate a stored result.
"""

from __future__ import annotations

import copy
import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

import redis.asyncio as redis  # type: ignore

from ..config import Settings
from .fingerprint import hash_image, hash_query

logger = logging.getLogger(__name__)

__all__ = [
    "CacheBackend",
    "CacheDomain",
    "CacheEntry",
    "CacheStore",
    "MemoryCacheBackend",
    "RedisCacheBackend",
    "build_cache_backend",
]

Clock = Callable[[], float]


class CacheDomain(str, Enum):
    VISION = "vision"
    RAG = "rag"
    ASSESSMENT = "assessment"


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    stored_at: float
    expires_at: float
    domain: CacheDomain

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at

    def to_json(self) -> str:
        return json.dumps(
            {
                "value": self.value,
                "stored_at": self.stored_at,
                "expires_at": self.expires_at,
                "domain": self.domain.value,
            },
            default=str,
        )

    @classmethod
    def from_json(cls, raw: str) -> "CacheEntry":
        data = json.loads(raw)
        return cls(
            value=data.get("value"),
            stored_at=float(data.get("stored_at") or 0.0),
            expires_at=float(data.get("expires_at") or 0.0),
            domain=CacheDomain(data.get("domain")),
        )


class CacheBackend(ABC):
    @abstractmethod
    async def get(self, key: str) -> Optional[CacheEntry]:
        ...

    @abstractmethod
    async def set(self, key: str, entry: CacheEntry, ttl_ms: int) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def clear(self) -> None:
        ...

    @abstractmethod
    async def size(self) -> int:
        ...

    async def close(self) -> None:
        return None


class MemoryCacheBackend(CacheBackend):
    """Process-local dict with lazy expiry and a sweep every ``sweep_every`` writes."""

    def __init__(self, *, sweep_every: int = 50, clock: Clock = time.time) -> None:
        self._entries: Dict[str, CacheEntry] = {}
        self._sweep_every = max(1, sweep_every)
        self._writes = 0
        self._clock = clock

    async def get(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return None
        return entry

    async def set(self, key: str, entry: CacheEntry, ttl_ms: int) -> None:
        self._entries[key] = entry
        self._writes += 1
        if self._writes % self._sweep_every == 0:
            self.sweep()

    def sweep(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("cache.sweep removed=%d", len(expired))
        return len(expired)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def clear(self) -> None:
        self._entries.clear()

    async def size(self) -> int:
        return len(self._entries)


class RedisCacheBackend(CacheBackend):
    """Shared backend so several API instances see the same cached results."""

    def __init__(self, url: str, *, prefix: str = "damage-cache", clock: Clock = time.time) -> None:
        self._prefix = prefix.rstrip(":")
        self._client = redis.from_url(url, decode_responses=True)
        self._clock = clock

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def get(self, key: str) -> Optional[CacheEntry]:
        raw = await self._client.get(self._key(key))
        if raw is None:
            return None
        entry = CacheEntry.from_json(raw)
        if entry.is_expired(self._clock()):
            await self._client.delete(self._key(key))
            return None
        return entry

    async def set(self, key: str, entry: CacheEntry, ttl_ms: int) -> None:
        await self._client.set(self._key(key), entry.to_json(), px=max(1, int(ttl_ms)))

    async def delete(self, key: str) -> None:
        await self._client.delete(self._key(key))

    async def clear(self) -> None:
        keys = [key async for key in self._client.scan_iter(match=f"{self._prefix}:*")]
        if keys:
            await self._client.delete(*keys)

    async def size(self) -> int:
        count = 0
        async for _ in self._client.scan_iter(match=f"{self._prefix}:*"):
            count += 1
        return count

    async def close(self) -> None:
        await self._client.aclose()


def build_cache_backend(settings: Settings) -> CacheBackend:
    if settings.cache_backend == "redis":
        return RedisCacheBackend(settings.redis_url)
    return MemoryCacheBackend(sweep_every=settings.cache_sweep_every)


class CacheStore:
    """Backend errors degrade to a miss on read and are dropped on write."""

    def __init__(
        self,
        *,
        enabled: bool = True,
        ttl_ms: int = 300000,
        backend: Optional[CacheBackend] = None,
        clock: Clock = time.time,
    ) -> None:
        self.enabled = enabled
        self.ttl_ms = ttl_ms
        self._clock = clock
        self._backend = backend or MemoryCacheBackend(clock=clock)
        self._hits = 0
        self._misses = 0

    @classmethod
    def from_settings(cls, settings: Settings, backend: Optional[CacheBackend] = None) -> "CacheStore":
        return cls(
            enabled=settings.enable_caching,
            ttl_ms=settings.cache_ttl_ms,
            backend=backend or build_cache_backend(settings),
        )

    hash_image = staticmethod(hash_image)
    hash_query = staticmethod(hash_query)

    def default_ttl_ms(self, domain: CacheDomain) -> int:
        # Knowledge-base content changes far less often than individual photos.
        if domain is CacheDomain.RAG:
            return self.ttl_ms * 2
        return self.ttl_ms

    @staticmethod
    def _key(domain: CacheDomain, key: str) -> str:
        return f"{domain.value}_{key}"

    async def get(self, domain: CacheDomain, key: str) -> Optional[Any]:
        if not self.enabled:
            return None
        try:
            entry = await self._backend.get(self._key(domain, key))
        except Exception as exc:
            logger.warning("cache.get.failed domain=%s error=%s", domain.value, exc, exc_info=exc)
            entry = None
        if entry is None or entry.domain is not domain:
            self._misses += 1
            return None
        self._hits += 1
        return copy.deepcopy(entry.value)

    async def set(self, domain: CacheDomain, key: str, value: Any, ttl_ms: Optional[int] = None) -> None:
        if not self.enabled:
            return
        effective_ttl = ttl_ms if ttl_ms is not None else self.default_ttl_ms(domain)
        now = self._clock()
        entry = CacheEntry(
            value=copy.deepcopy(value),
            stored_at=now,
            expires_at=now + effective_ttl / 1000,
            domain=domain,
        )
        try:
            await self._backend.set(self._key(domain, key), entry, effective_ttl)
        except Exception as exc:
            logger.warning("cache.set.failed domain=%s error=%s", domain.value, exc, exc_info=exc)

    async def clear(self) -> None:
        await self._backend.clear()
        self._hits = 0
        self._misses = 0

    async def size(self) -> int:
        return await self._backend.size()

    def stats(self) -> Dict[str, float]:
        total = self._hits + self._misses
        return {
            "hitRate": (self._hits / total) * 100 if total else 0.0,
            "hits": self._hits,
            "misses": self._misses,
            "total": total,
        }

    async def close(self) -> None:
        await self._backend.close()
