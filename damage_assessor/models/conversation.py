from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .assessment import Performance


class ConversationTurn(BaseModel):
    role: str
    content: str


class PriorAssessment(BaseModel):
    model_config = ConfigDict(extra="allow")

    vision_analysis: Optional[str] = None
    enhanced_assessment: Optional[str] = None
    confidence_score: Optional[float] = None


class ConversationContext(BaseModel):
    """Client-held conversation state; camelCase keys from the web client are accepted."""

    model_config = ConfigDict(populate_by_name=True)

    previous_assessment: Optional[PriorAssessment] = Field(default=None, alias="previousAssessment")
    rag_context: List[Dict[str, Any]] = Field(default_factory=list, alias="ragContext")
    conversation_history: List[ConversationTurn] = Field(default_factory=list, alias="conversationHistory")


class ConversationRequest(BaseModel):
    question: Optional[str] = None
    context: Optional[ConversationContext] = None

    @field_validator("question")
    @classmethod
    def _strip_question(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None


class ConversationResult(BaseModel):
    success: bool
    response: str = ""
    confidence_score: float = Field(default=0.0, ge=0.0, le=1.0)
    industry_sources: List[Dict[str, Any]] = Field(default_factory=list)
    suggested_questions: List[str] = Field(default_factory=list)
    performance: Performance = Field(default_factory=Performance)
    error: Optional[str] = None
    error_code: Optional[str] = None
    details: Optional[str] = None
