from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..errors import AssessmentError


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class Performance(BaseModel):
    total_time_ms: float = Field(default=0.0, ge=0.0)
    cached: bool = False
    stages: Dict[str, int] = Field(default_factory=dict, description="Per-stage latency in milliseconds")


class PipelineResult(BaseModel):
    success: bool
    vision_analysis: str = ""
    industry_sources: List[Dict[str, Any]] = Field(default_factory=list)
    enhanced_assessment: str = ""
    confidence_score: float = Field(default=0.0, ge=0.0, le=1.0)
    timestamp: str = Field(default_factory=utc_timestamp)
    performance: Performance = Field(default_factory=Performance)
    error: Optional[str] = None
    error_code: Optional[str] = None
    details: Optional[str] = None

    @classmethod
    def failure(cls, exc: AssessmentError, *, total_time_ms: float = 0.0) -> "PipelineResult":
        # Never carries partially populated fields from a failed stage.
        return cls(
            success=False,
            error=exc.message,
            error_code=exc.kind.value,
            details=exc.details,
            performance=Performance(total_time_ms=total_time_ms, cached=False),
        )
