"""Request/response models for the HTTP surface."""

from .assessment import Performance, PipelineResult  # noqa: F401
from .conversation import (  # noqa: F401
    ConversationContext,
    ConversationRequest,
    ConversationResult,
    ConversationTurn,
    PriorAssessment,
)
from .knowledge import KnowledgeSearchResult  # noqa: F401

__all__ = [
    "ConversationContext",
    "ConversationRequest",
    "ConversationResult",
    "ConversationTurn",
    "KnowledgeSearchResult",
    "Performance",
    "PipelineResult",
    "PriorAssessment",
]
