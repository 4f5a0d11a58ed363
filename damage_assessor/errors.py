"""Error taxonomy shared by the pipelines and the HTTP layer."""

from __future__ import annotations

from enum import Enum
from typing import Dict, Optional, Tuple

__all__ = ["ErrorKind", "AssessmentError", "describe"]


class ErrorKind(str, Enum):
    INVALID_BODY = "invalid_body"
    INVALID_FIELD = "invalid_field"
    INVALID_FORMAT = "invalid_format"
    INVALID_BASE64 = "invalid_base64"
    INVALID_SIGNATURE = "invalid_signature"
    TYPE_MISMATCH = "type_mismatch"
    STRUCTURE_INVALID = "structure_invalid"
    TOO_LARGE = "too_large"
    AI_UNAVAILABLE = "ai_unavailable"
    AI_TIMEOUT = "ai_timeout"
    RATE_LIMITED = "rate_limited"
    INSUFFICIENT_RESOURCES = "insufficient_resources"
    UNEXPECTED = "unexpected"


# kind -> (HTTP status, stable client-facing label)
_TAXONOMY: Dict[ErrorKind, Tuple[int, str]] = {
    ErrorKind.INVALID_BODY: (400, "Invalid request body"),
    ErrorKind.INVALID_FIELD: (400, "Invalid image field"),
    ErrorKind.INVALID_FORMAT: (400, "Invalid image format"),
    ErrorKind.INVALID_BASE64: (400, "Invalid base64 encoding"),
    ErrorKind.INVALID_SIGNATURE: (400, "Invalid image signature"),
    ErrorKind.TYPE_MISMATCH: (400, "Image type mismatch"),
    ErrorKind.STRUCTURE_INVALID: (400, "Invalid image structure"),
    ErrorKind.TOO_LARGE: (413, "File too large"),
    ErrorKind.AI_UNAVAILABLE: (503, "AI service unavailable"),
    ErrorKind.AI_TIMEOUT: (504, "Request timeout"),
    ErrorKind.RATE_LIMITED: (429, "Rate limit exceeded"),
    ErrorKind.INSUFFICIENT_RESOURCES: (507, "Insufficient resources"),
    ErrorKind.UNEXPECTED: (500, "Assessment failed"),
}


def describe(kind: ErrorKind) -> Tuple[int, str]:
    return _TAXONOMY[kind]


class AssessmentError(Exception):
    """Terminal request failure carrying its HTTP status and curated details."""

    def __init__(
        self,
        kind: ErrorKind,
        details: str,
        *,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        default_status, default_message = describe(kind)
        self.kind = kind
        self.message = message or default_message
        self.status_code = status_code or default_status
        self.details = details
        self.headers = dict(headers or {})
        super().__init__(f"{self.kind.value}: {details}")
