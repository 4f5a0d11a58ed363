from __future__ import annotations

from damage_assessor.services.rate_limit import FixedWindowRateLimiter


class _Clock:
    def __init__(self) -> None:
        self.now = 10_000.0

    def __call__(self) -> float:
        return self.now


def test_requests_within_limit_are_allowed() -> None:
    limiter = FixedWindowRateLimiter(limit=3, window_s=60, clock=_Clock())

    results = [limiter.hit("ip:1.2.3.4") for _ in range(3)]

    assert all(allowed for allowed, _ in results)
    assert [info.remaining for _, info in results] == [2, 1, 0]


def test_request_over_limit_is_blocked_with_retry_after() -> None:
    clock = _Clock()
    limiter = FixedWindowRateLimiter(limit=2, window_s=60, clock=clock)
    limiter.hit("k")
    limiter.hit("k")

    clock.now += 15
    allowed, info = limiter.hit("k")

    assert not allowed
    assert info.retry_after == 45
    headers = info.headers()
    assert headers["Retry-After"] == "45"
    assert headers["X-RateLimit-Remaining"] == "0"
    assert headers["X-RateLimit-Limit"] == "2"


def test_window_resets_after_expiry() -> None:
    clock = _Clock()
    limiter = FixedWindowRateLimiter(limit=1, window_s=60, clock=clock)
    limiter.hit("k")
    assert limiter.hit("k")[0] is False

    clock.now += 61

    assert limiter.hit("k")[0] is True
    assert len(limiter) == 1


def test_clients_are_counted_separately() -> None:
    limiter = FixedWindowRateLimiter(limit=1, window_s=60, clock=_Clock())

    assert limiter.hit("ip:a")[0]
    assert limiter.hit("ip:b")[0]
    assert not limiter.hit("ip:a")[0]
