"""Direct knowledge-base search."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from ..models.knowledge import KnowledgeSearchResult
from ..services.knowledge_search import KnowledgeService
from .dependencies import api_rate_limit, get_knowledge_service

router = APIRouter(prefix="/api", tags=["knowledge"])


@router.get(
    "/knowledge-search",
    response_model=KnowledgeSearchResult,
    dependencies=[Depends(api_rate_limit)],
)
async def knowledge_search(
    response: Response,
    q: Optional[str] = Query(default=None),
    service: KnowledgeService = Depends(get_knowledge_service),
) -> KnowledgeSearchResult:
    status_code, result = await service.search(q)
    response.status_code = status_code
    return result


__all__ = ["router"]
