"""
httpx-backed provider talking to an Ollama-compatible host for vision and text
generation, and to a JSON retrieval endpoint for knowledge search.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from .base import (
    ChatMessage,
    KnowledgeResult,
    ProviderError,
    ProviderRateLimitError,
    ProviderResourceError,
    ProviderUnavailableError,
    VisionResult,
)

logger = logging.getLogger(__name__)

_UNAVAILABLE_STATUSES = {404, 502, 503}
_RESOURCE_STATUSES = {413, 507}


def _raise_for_status(response: httpx.Response, *, operation: str) -> None:
    status = response.status_code
    if status < 400:
        return
    if status == 429:
        raise ProviderRateLimitError(f"{operation} rate limited (HTTP 429)")
    if status in _UNAVAILABLE_STATUSES:
        raise ProviderUnavailableError(f"{operation} unavailable (HTTP {status})")
    if status in _RESOURCE_STATUSES:
        raise ProviderResourceError(f"{operation} rejected payload (HTTP {status})")
    raise ProviderError(f"{operation} failed (HTTP {status})")


@dataclass
class HTTPAIProvider:
    base_url: str
    rag_url: str
    vision_model: str
    language_model: str
    rag_dataset: str
    timeout: float
    _client: Optional[httpx.AsyncClient] = None

    def __post_init__(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)

    async def _post(self, url: str, payload: Dict[str, Any], *, operation: str) -> Dict[str, Any]:
        client = self._client
        if client is None:
            raise ProviderUnavailableError(f"{operation} client is closed")
        try:
            response = await client.post(url, json=payload)
        except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
            raise ProviderUnavailableError(f"{operation} unreachable: {exc}") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"{operation} transport error: {exc}") from exc
        _raise_for_status(response, operation=operation)
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(f"{operation} returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise ProviderError(f"{operation} returned unexpected payload")
        return data

    async def classify_image(self, image: bytes, prompt: str) -> VisionResult:
        payload = {
            "model": self.vision_model,
            "prompt": prompt,
            "images": [base64.b64encode(image).decode("ascii")],
            "stream": False,
            "options": {"temperature": 0.2},
        }
        data = await self._post(f"{self.base_url}/api/generate", payload, operation="vision")
        description = str(data.get("response") or data.get("description") or "").strip()
        confidence = data.get("confidence")
        return VisionResult(
            description=description,
            confidence=float(confidence) if isinstance(confidence, (int, float)) else None,
        )

    async def search_knowledge(self, query: str, *, limit: int = 3, score_threshold: float = 0.7) -> KnowledgeResult:
        payload = {
            "dataset": self.rag_dataset,
            "query": query,
            "limit": limit,
            "score_threshold": score_threshold,
        }
        data = await self._post(f"{self.rag_url}/search", payload, operation="knowledge")
        return KnowledgeResult.from_dict(data)

    async def generate_text(self, messages: List[ChatMessage], *, max_tokens: Optional[int] = None) -> str:
        options: Dict[str, Any] = {"temperature": 0.2}
        if max_tokens:
            options["num_predict"] = max_tokens
        payload = {
            "model": self.language_model,
            "messages": [message.to_dict() for message in messages],
            "stream": False,
            "options": options,
        }
        data = await self._post(f"{self.base_url}/api/chat", payload, operation="generation")
        message = data.get("message")
        if isinstance(message, dict) and message.get("content"):
            return str(message["content"])
        return str(data.get("response") or "")

    async def health(self) -> bool:
        """Return True when the Ollama host answers its tag listing."""

        client = self._client
        if client is None:
            return False
        try:
            response = await client.get(f"{self.base_url}/api/tags")
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("provider.health.unreachable base_url=%s error=%s", self.base_url, exc)
            return False
        return True

    async def aclose(self) -> None:
        client = self._client
        self._client = None
        if client is not None:
            await client.aclose()
