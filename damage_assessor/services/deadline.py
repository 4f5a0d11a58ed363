"""Uniform "call with deadline" wrapper used at every AI call site."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from ..errors import AssessmentError, ErrorKind
from .providers.base import to_assessment_error

T = TypeVar("T")

__all__ = ["StageOutcome", "StageStatus", "call_with_deadline"]


class StageStatus(str, Enum):
    OK = "ok"
    TIMEOUT = "timeout"
    ERROR = "error"


@dataclass(frozen=True)
class StageOutcome(Generic[T]):
    stage: str
    status: StageStatus
    latency_ms: int
    value: Optional[T] = None
    error: Optional[BaseException] = None
    cached: bool = False

    @property
    def ok(self) -> bool:
        return self.status is StageStatus.OK

    def to_error(self, timeout_ms: int) -> AssessmentError:
        if self.status is StageStatus.TIMEOUT:
            return AssessmentError(ErrorKind.AI_TIMEOUT, f"{self.stage} stage exceeded {timeout_ms}ms")
        if self.error is None:
            return AssessmentError(ErrorKind.UNEXPECTED, f"{self.stage} stage failed")
        return to_assessment_error(self.error, stage=self.stage)


async def call_with_deadline(
    factory: Callable[[], Awaitable[T]],
    *,
    timeout_ms: int,
    stage: str,
) -> StageOutcome[T]:
    """
    Race ``factory()`` against ``timeout_ms``. Expiry cancels the underlying
    call and yields a TIMEOUT outcome; any other exception yields ERROR.
    Cancellation of the caller is never swallowed.
    """

    start = time.perf_counter()

    def _elapsed() -> int:
        return int((time.perf_counter() - start) * 1000)

    try:
        value = await asyncio.wait_for(factory(), timeout=timeout_ms / 1000)
    except asyncio.TimeoutError as exc:
        return StageOutcome(stage=stage, status=StageStatus.TIMEOUT, latency_ms=_elapsed(), error=exc)
    except Exception as exc:
        return StageOutcome(stage=stage, status=StageStatus.ERROR, latency_ms=_elapsed(), error=exc)
    return StageOutcome(stage=stage, status=StageStatus.OK, latency_ms=_elapsed(), value=value)
