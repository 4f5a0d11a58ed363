"""
In-process fixed-window rate limiting.

Counters live in this process only; running several workers multiplies the
effective limit by the worker count.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Tuple

from fastapi import Request

logger = logging.getLogger(__name__)

__all__ = ["FixedWindowRateLimiter", "RateLimitEntry", "RateLimitInfo", "client_key"]


@dataclass
class RateLimitEntry:
    count: int
    reset_time: float


@dataclass
class RateLimitInfo:
    limit: int
    remaining: int
    reset_at: float
    retry_after: int

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at)),
        }
        if self.retry_after:
            headers["Retry-After"] = str(self.retry_after)
        return headers


def client_key(request: Request) -> str:
    """Forwarded address when behind a proxy, otherwise the peer address."""

    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}"
    host = request.client.host if request.client else "unknown"
    return f"ip:{host}"


class FixedWindowRateLimiter:
    def __init__(self, *, limit: int, window_s: int, clock: Callable[[], float] = time.time) -> None:
        self.limit = limit
        self.window_s = window_s
        self._clock = clock
        self._entries: Dict[str, RateLimitEntry] = {}

    def _purge(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if entry.reset_time <= now]
        for key in expired:
            del self._entries[key]

    def hit(self, key: str) -> Tuple[bool, RateLimitInfo]:
        """Count one request for ``key``; returns ``(allowed, info)``."""

        now = self._clock()
        self._purge(now)
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = RateLimitEntry(count=0, reset_time=now + self.window_s)
        entry.count += 1

        if entry.count > self.limit:
            retry_after = max(1, math.ceil(entry.reset_time - now))
            logger.warning("rate_limit.exceeded key=%s limit=%d retry_after=%d", key, self.limit, retry_after)
            return False, RateLimitInfo(limit=self.limit, remaining=0, reset_at=entry.reset_time, retry_after=retry_after)
        return True, RateLimitInfo(
            limit=self.limit,
            remaining=self.limit - entry.count,
            reset_at=entry.reset_time,
            retry_after=0,
        )

    def __len__(self) -> int:
        return len(self._entries)
