"""AI provider bindings selected by configuration."""

from __future__ import annotations

from ...config import Settings
from .base import (  # noqa: F401
    AIProvider,
    ChatMessage,
    KnowledgeResult,
    ProviderError,
    ProviderRateLimitError,
    ProviderResourceError,
    ProviderUnavailableError,
    VisionResult,
    to_assessment_error,
)
from .http import HTTPAIProvider
from .mock import MockAIProvider


def build_provider(settings: Settings) -> AIProvider:
    if settings.ai_provider == "http":
        return HTTPAIProvider(
            base_url=settings.ollama_host,
            rag_url=settings.rag_url,
            vision_model=settings.vision_model,
            language_model=settings.language_model,
            rag_dataset=settings.rag_dataset,
            timeout=settings.provider_timeout_s,
        )
    return MockAIProvider()


__all__ = [
    "AIProvider",
    "ChatMessage",
    "HTTPAIProvider",
    "KnowledgeResult",
    "MockAIProvider",
    "ProviderError",
    "ProviderRateLimitError",
    "ProviderResourceError",
    "ProviderUnavailableError",
    "VisionResult",
    "build_provider",
    "to_assessment_error",
]
