"""Shared FastAPI dependencies: app.state accessors and rate limit guards."""

from __future__ import annotations

from typing import Any

from fastapi import Request, Response

from ..config import Settings
from ..errors import AssessmentError, ErrorKind
from ..services.assessment_pipeline import AssessmentPipeline
from ..services.conversation_pipeline import ConversationPipeline
from ..services.knowledge_search import KnowledgeService
from ..services.rate_limit import FixedWindowRateLimiter, client_key


def _state(request: Request, name: str) -> Any:
    value = getattr(request.app.state, name, None)
    if value is None:
        raise AssessmentError(ErrorKind.AI_UNAVAILABLE, f"{name} is not initialised")
    return value


def get_settings(request: Request) -> Settings:
    return _state(request, "settings")


def get_assessment_pipeline(request: Request) -> AssessmentPipeline:
    return _state(request, "assessment")


def get_conversation_pipeline(request: Request) -> ConversationPipeline:
    return _state(request, "conversation")


def get_knowledge_service(request: Request) -> KnowledgeService:
    return _state(request, "knowledge")


def _enforce(request: Request, response: Response, limiter_name: str, message: str) -> None:
    settings: Settings = _state(request, "settings")
    if not settings.rate_limit_enabled:
        return
    limiter: FixedWindowRateLimiter = _state(request, limiter_name)
    allowed, info = limiter.hit(client_key(request))
    if not allowed:
        raise AssessmentError(
            ErrorKind.RATE_LIMITED,
            f"Too many requests. Try again in {info.retry_after} seconds.",
            message=message,
            headers=info.headers(),
        )
    response.headers.update(info.headers())


async def api_rate_limit(request: Request, response: Response) -> None:
    _enforce(request, response, "api_limiter", "Rate limit exceeded")


async def ai_rate_limit(request: Request, response: Response) -> None:
    _enforce(request, response, "ai_limiter", "AI service rate limit exceeded")


__all__ = [
    "ai_rate_limit",
    "api_rate_limit",
    "get_assessment_pipeline",
    "get_conversation_pipeline",
    "get_knowledge_service",
    "get_settings",
]
