"""Rolling latency windows per operation, reported by /api/stats."""

from __future__ import annotations

from collections import deque
from typing import Deque, Dict, Optional

__all__ = ["PerformanceMonitor"]


class PerformanceMonitor:
    def __init__(self, window: int = 100) -> None:
        self._window = window
        self._metrics: Dict[str, Deque[float]] = {}

    def record(self, operation: str, value_ms: float) -> None:
        values = self._metrics.get(operation)
        if values is None:
            values = self._metrics[operation] = deque(maxlen=self._window)
        values.append(float(value_ms))

    def summary(self, operation: str) -> Optional[Dict[str, float]]:
        values = self._metrics.get(operation)
        if not values:
            return None
        return {
            "avg": sum(values) / len(values),
            "min": min(values),
            "max": max(values),
            "count": len(values),
        }

    def all(self) -> Dict[str, Dict[str, float]]:
        result: Dict[str, Dict[str, float]] = {}
        for operation in self._metrics:
            summary = self.summary(operation)
            if summary is not None:
                result[operation] = summary
        return result
