"""Service layer for the damage assessment API."""

from .assessment_pipeline import AssessmentPipeline  # noqa: F401
from .cache_store import CacheDomain, CacheStore  # noqa: F401
from .conversation_pipeline import ConversationPipeline  # noqa: F401
from .image_validator import ImageValidator  # noqa: F401
from .knowledge_search import KnowledgeService  # noqa: F401
from .performance import PerformanceMonitor  # noqa: F401
from .rate_limit import FixedWindowRateLimiter  # noqa: F401
from .request_batcher import RequestBatcher  # noqa: F401

__all__ = [
    "AssessmentPipeline",
    "CacheDomain",
    "CacheStore",
    "ConversationPipeline",
    "FixedWindowRateLimiter",
    "ImageValidator",
    "KnowledgeService",
    "PerformanceMonitor",
    "RequestBatcher",
]
