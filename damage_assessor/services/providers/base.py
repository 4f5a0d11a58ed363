"""Capability contract every AI binding must satisfy."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from ...errors import AssessmentError, ErrorKind

__all__ = [
    "AIProvider",
    "ChatMessage",
    "KnowledgeResult",
    "ProviderError",
    "ProviderRateLimitError",
    "ProviderResourceError",
    "ProviderUnavailableError",
    "VisionResult",
    "to_assessment_error",
]


class ProviderError(Exception):
    """Upstream AI call failed for an uncategorised reason."""


class ProviderUnavailableError(ProviderError):
    """Binding is missing, misconfigured or unreachable."""


class ProviderRateLimitError(ProviderError):
    """Upstream provider throttled the request."""


class ProviderResourceError(ProviderError):
    """Provider ran out of memory or rejected the payload size."""


@dataclass(slots=True)
class VisionResult:
    description: str
    confidence: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"description": self.description, "confidence": self.confidence}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "VisionResult":
        return cls(description=str(payload.get("description") or ""), confidence=payload.get("confidence"))


@dataclass(slots=True)
class KnowledgeResult:
    response: str = ""
    data: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.response and not self.data

    def to_dict(self) -> Dict[str, Any]:
        return {"response": self.response, "data": [dict(item) for item in self.data]}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "KnowledgeResult":
        data = [dict(item) for item in payload.get("data") or [] if isinstance(item, dict)]
        return cls(response=str(payload.get("response") or ""), data=data)


@dataclass(slots=True)
class ChatMessage:
    role: str
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@runtime_checkable
class AIProvider(Protocol):
    """The three calls the pipelines depend on."""

    async def classify_image(self, image: bytes, prompt: str) -> VisionResult:
        ...

    async def search_knowledge(self, query: str, *, limit: int = 3, score_threshold: float = 0.7) -> KnowledgeResult:
        ...

    async def generate_text(self, messages: List[ChatMessage], *, max_tokens: Optional[int] = None) -> str:
        ...


def to_assessment_error(exc: BaseException, *, stage: str) -> AssessmentError:
    """Translate a provider exception into the response taxonomy."""

    if isinstance(exc, AssessmentError):
        return exc
    if isinstance(exc, ProviderUnavailableError):
        return AssessmentError(ErrorKind.AI_UNAVAILABLE, f"{stage} provider is not available")
    if isinstance(exc, ProviderRateLimitError):
        return AssessmentError(ErrorKind.RATE_LIMITED, f"{stage} provider is rate limiting requests")
    if isinstance(exc, ProviderResourceError):
        return AssessmentError(ErrorKind.INSUFFICIENT_RESOURCES, f"{stage} provider ran out of resources")
    return AssessmentError(ErrorKind.UNEXPECTED, f"{stage} stage failed")
