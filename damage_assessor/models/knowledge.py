from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .assessment import Performance


class KnowledgeSearchResult(BaseModel):
    success: bool
    query: str = ""
    response: str = ""
    results: List[Dict[str, Any]] = Field(default_factory=list)
    total_results: int = 0
    performance: Performance = Field(default_factory=Performance)
    error: Optional[str] = None
    error_code: Optional[str] = None
    details: Optional[str] = None
