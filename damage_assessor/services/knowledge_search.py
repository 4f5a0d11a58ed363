"""Cached, batched, deadline-bounded knowledge-base lookups."""

from __future__ import annotations

import logging
import time
from typing import Optional, Tuple

from ..config import Settings
from ..errors import AssessmentError, ErrorKind
from ..models.assessment import Performance
from ..models.knowledge import KnowledgeSearchResult
from .cache_store import CacheDomain, CacheStore
from .deadline import StageOutcome, StageStatus, call_with_deadline
from .performance import PerformanceMonitor
from .providers.base import AIProvider, KnowledgeResult
from .request_batcher import RequestBatcher

logger = logging.getLogger(__name__)

__all__ = ["KnowledgeService"]

SEARCH_LIMIT = 5
SEARCH_SCORE_THRESHOLD = 0.5


class KnowledgeService:
    def __init__(
        self,
        *,
        settings: Settings,
        cache: CacheStore,
        batcher: RequestBatcher,
        provider: AIProvider,
        monitor: Optional[PerformanceMonitor] = None,
    ) -> None:
        self.settings = settings
        self.cache = cache
        self.batcher = batcher
        self.provider = provider
        self.monitor = monitor or PerformanceMonitor()

    async def lookup(
        self,
        query: str,
        *,
        limit: int,
        score_threshold: float,
        timeout_ms: int,
    ) -> StageOutcome[KnowledgeResult]:
        query_hash = self.cache.hash_query(query)
        cached = await self.cache.get(CacheDomain.RAG, query_hash)
        if cached is not None:
            logger.debug("knowledge.cache_hit query_hash=%s", query_hash)
            return StageOutcome(
                stage="knowledge",
                status=StageStatus.OK,
                latency_ms=0,
                value=KnowledgeResult.from_dict(cached),
                cached=True,
            )

        async def _search() -> StageOutcome[KnowledgeResult]:
            return await call_with_deadline(
                lambda: self.provider.search_knowledge(query, limit=limit, score_threshold=score_threshold),
                timeout_ms=timeout_ms,
                stage="knowledge",
            )

        outcome = await self.batcher.run(f"rag:{query_hash}", _search)
        if outcome.ok and outcome.value is not None:
            await self.cache.set(CacheDomain.RAG, query_hash, outcome.value.to_dict())
        return outcome

    async def search(self, query: Optional[str]) -> Tuple[int, KnowledgeSearchResult]:
        """Backs ``GET /api/knowledge-search``."""

        start = time.perf_counter()
        cleaned = (query or "").strip()
        try:
            if not cleaned:
                raise AssessmentError(
                    ErrorKind.INVALID_FIELD,
                    "Query parameter 'q' is required",
                    message="Invalid query",
                )
            if len(cleaned) > self.settings.max_query_length:
                raise AssessmentError(
                    ErrorKind.INVALID_FIELD,
                    f"Query exceeds {self.settings.max_query_length} characters",
                    message="Invalid query",
                )
            timeout_ms = self.settings.knowledge_search_timeout_ms
            outcome = await self.lookup(
                cleaned,
                limit=SEARCH_LIMIT,
                score_threshold=SEARCH_SCORE_THRESHOLD,
                timeout_ms=timeout_ms,
            )
            if not outcome.ok or outcome.value is None:
                if outcome.error is not None:
                    logger.error(
                        "knowledge.search.failed status=%s error=%s",
                        outcome.status.value,
                        outcome.error,
                        exc_info=outcome.error,
                    )
                raise outcome.to_error(timeout_ms)
        except AssessmentError as exc:
            elapsed = _elapsed_ms(start)
            logger.warning("knowledge.search.rejected kind=%s details=%s", exc.kind.value, exc.details)
            return exc.status_code, KnowledgeSearchResult(
                success=False,
                query=cleaned,
                error=exc.message,
                error_code=exc.kind.value,
                details=exc.details,
                performance=Performance(total_time_ms=elapsed),
            )

        elapsed = _elapsed_ms(start)
        self.monitor.record("knowledge_search", elapsed)
        knowledge = outcome.value
        return 200, KnowledgeSearchResult(
            success=True,
            query=cleaned,
            response=knowledge.response,
            results=knowledge.data,
            total_results=len(knowledge.data),
            performance=Performance(total_time_ms=elapsed, cached=outcome.cached),
        )


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)
