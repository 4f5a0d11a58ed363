"""Follow-up Q&A grounded in a prior assessment and the knowledge base."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import ValidationError

from ..config import Settings
from ..errors import AssessmentError, ErrorKind
from ..models.assessment import Performance
from ..models.conversation import ConversationContext, ConversationRequest, ConversationResult
from .cache_store import CacheStore
from .deadline import StageOutcome, call_with_deadline
from .fingerprint import simple_hash
from .knowledge_search import KnowledgeService
from .performance import PerformanceMonitor
from .providers.base import AIProvider, ChatMessage, KnowledgeResult
from .request_batcher import RequestBatcher

logger = logging.getLogger(__name__)

__all__ = [
    "ConfidenceWeights",
    "ConversationPipeline",
    "DAMAGE_KEYWORDS",
    "SUGGESTED_QUESTIONS",
    "build_contextual_query",
    "identify_damage_type",
]

FALLBACK_REPLY = "I'd be happy to help with that. Could you provide more details?"
FAILURE_MESSAGE = "Failed to process conversation request"
HISTORY_TURNS = 3
SUGGESTION_COUNT = 3
KNOWLEDGE_LIMIT = 3
KNOWLEDGE_SCORE_THRESHOLD = 0.7
MAX_REPLY_TOKENS = 500
_INPUT_ERRORS = frozenset({ErrorKind.INVALID_BODY, ErrorKind.INVALID_FIELD})

# First match wins, in this order.
DAMAGE_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "water": ("water", "flood", "leak"),
    "fire": ("fire", "smoke", "burn"),
    "mold": ("mold", "fungus", "moisture"),
    "structural": ("crack", "foundation", "structural"),
}

SUGGESTED_QUESTIONS: Dict[str, List[str]] = {
    "water": [
        "What immediate steps should I take to prevent further water damage?",
        "How long does water damage restoration typically take?",
        "Will my insurance cover this type of water damage?",
        "What are the potential health risks from water damage?",
    ],
    "fire": [
        "What safety precautions should I take around fire damage?",
        "Can smoke damage be completely removed?",
        "What's the typical timeline for fire damage restoration?",
        "How do I document fire damage for insurance?",
    ],
    "mold": [
        "Is this type of mold dangerous to my health?",
        "How can I prevent mold from spreading?",
        "What professional mold remediation involves?",
        "Can I safely clean small mold areas myself?",
    ],
    "structural": [
        "Is this structural damage safe to be around?",
        "What emergency measures should I take?",
        "How urgent is it to repair structural damage?",
        "What are the costs for this type of structural repair?",
    ],
    "general": [
        "What's the estimated cost range for these repairs?",
        "How should I document this damage for insurance?",
        "Are there any safety concerns I should know about?",
        "What's the typical timeline for this type of repair?",
    ],
}

SYSTEM_PROMPT_TEMPLATE = """You are a professional damage assessment specialist having a conversation with a property owner.

Key guidelines:
- Be conversational, helpful, and empathetic
- Reference the uploaded image when relevant
- Provide specific, actionable advice based on industry knowledge
- Always end with a follow-up question to continue the conversation
- Keep responses concise but thorough (2-3 paragraphs max)
- Use a professional but friendly tone

Industry Knowledge Available:
{knowledge}
{prior}"""

PRIOR_ASSESSMENT_TEMPLATE = """
Previous Damage Assessment:
Vision Analysis: {vision}
Assessment: {assessment}
"""

USER_PROMPT_TEMPLATE = """Question about damage: {question}

Please provide a helpful response that:
1. Addresses their specific question
2. References relevant industry knowledge
3. Considers the damage shown in their image
4. Ends with an engaging follow-up question"""


@dataclass(frozen=True)
class ConfidenceWeights:
    base: float = 0.7
    sources_bonus: float = 0.1
    prior_weight: float = 0.2
    ceiling: float = 0.95

    def score(self, has_sources: bool, prior_confidence: Optional[float]) -> float:
        confidence = self.base
        if has_sources:
            confidence += self.sources_bonus
        if prior_confidence:
            confidence = min(self.ceiling, confidence + prior_confidence * self.prior_weight)
        return round(min(1.0, max(0.0, confidence)), 2)


def build_contextual_query(question: str, context: Optional[ConversationContext]) -> str:
    query = question
    if context is None:
        return query
    prior = context.previous_assessment
    if prior is not None and prior.vision_analysis:
        query = f"Based on {prior.vision_analysis}: {question}"
    if context.conversation_history:
        recent = "\n".join(
            f"{turn.role}: {turn.content}" for turn in context.conversation_history[-HISTORY_TURNS:]
        )
        query = f"Previous conversation:\n{recent}\n\nCurrent question: {query}"
    return query


def identify_damage_type(text: str, keywords: Mapping[str, Sequence[str]] = DAMAGE_KEYWORDS) -> str:
    lowered = text.lower()
    for category, words in keywords.items():
        if any(word in lowered for word in words):
            return category
    return "general"


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)


class ConversationPipeline:
    def __init__(
        self,
        *,
        settings: Settings,
        cache: CacheStore,
        batcher: RequestBatcher,
        provider: AIProvider,
        knowledge: Optional[KnowledgeService] = None,
        monitor: Optional[PerformanceMonitor] = None,
        weights: Optional[ConfidenceWeights] = None,
        suggested_questions: Optional[Mapping[str, List[str]]] = None,
    ) -> None:
        self.settings = settings
        self.batcher = batcher
        self.provider = provider
        self.monitor = monitor or PerformanceMonitor()
        self.knowledge = knowledge or KnowledgeService(
            settings=settings,
            cache=cache,
            batcher=batcher,
            provider=provider,
            monitor=self.monitor,
        )
        self.weights = weights or ConfidenceWeights()
        self.suggested_questions = dict(suggested_questions or SUGGESTED_QUESTIONS)

    async def respond(self, payload: Any) -> Tuple[int, ConversationResult]:
        """Backs ``POST /api/conversation``; returns ``(http_status, result)``."""

        start = time.perf_counter()
        try:
            request = self._parse(payload)
            result = await self.converse(request.question or "", request.context, start=start)
        except AssessmentError as exc:
            elapsed = _elapsed_ms(start)
            if exc.kind in _INPUT_ERRORS:
                logger.info("conversation.rejected kind=%s details=%s", exc.kind.value, exc.details)
                status_code, error = exc.status_code, exc.message
            else:
                # Upstream failures collapse to one 500; error_code keeps the cause.
                logger.error("conversation.failed kind=%s details=%s", exc.kind.value, exc.details)
                status_code, error = 500, FAILURE_MESSAGE
            return status_code, ConversationResult(
                success=False,
                error=error,
                error_code=exc.kind.value,
                details=exc.details,
                performance=Performance(total_time_ms=elapsed),
            )
        except Exception as exc:
            elapsed = _elapsed_ms(start)
            logger.exception("conversation.unexpected error=%s", exc)
            return 500, ConversationResult(
                success=False,
                error=FAILURE_MESSAGE,
                error_code=ErrorKind.UNEXPECTED.value,
                details="An unexpected error occurred while answering the question",
                performance=Performance(total_time_ms=elapsed),
            )

        self.monitor.record("conversation", result.performance.total_time_ms)
        return 200, result

    async def converse(
        self,
        question: str,
        context: Optional[ConversationContext] = None,
        *,
        start: Optional[float] = None,
    ) -> ConversationResult:
        start = time.perf_counter() if start is None else start
        question = question.strip()
        if not question:
            raise AssessmentError(ErrorKind.INVALID_FIELD, "Field 'question' is required", message="Question is required")

        stages: Dict[str, int] = {}
        knowledge = await self._knowledge(build_contextual_query(question, context), stages)
        sources = list(knowledge.data)
        # Client-echoed context fills the sources list but never earns the bonus.
        if not sources and context is not None:
            sources = [dict(item) for item in context.rag_context]

        reply = await self._reply(question, knowledge, context, stages)

        prior = context.previous_assessment if context is not None else None
        category = identify_damage_type((prior.vision_analysis if prior is not None else None) or question)
        suggestions = self.suggested_questions.get(category) or self.suggested_questions.get("general") or []

        return ConversationResult(
            success=True,
            response=reply,
            confidence_score=self.weights.score(bool(knowledge.data), prior.confidence_score if prior is not None else None),
            industry_sources=sources,
            suggested_questions=list(suggestions[:SUGGESTION_COUNT]),
            performance=Performance(total_time_ms=_elapsed_ms(start), cached=False, stages=stages),
        )

    @staticmethod
    def _parse(payload: Any) -> ConversationRequest:
        if not isinstance(payload, dict):
            raise AssessmentError(ErrorKind.INVALID_BODY, "Request body must be a JSON object")
        try:
            return ConversationRequest.model_validate(payload)
        except ValidationError as exc:
            raise AssessmentError(ErrorKind.INVALID_BODY, f"Malformed conversation request: {exc.error_count()} error(s)") from exc

    async def _knowledge(self, query: str, stages: Dict[str, int]) -> KnowledgeResult:
        outcome = await self.knowledge.lookup(
            query,
            limit=KNOWLEDGE_LIMIT,
            score_threshold=KNOWLEDGE_SCORE_THRESHOLD,
            timeout_ms=self.settings.stage_timeout_ms,
        )
        stages["knowledge_ms"] = outcome.latency_ms
        if not outcome.ok or outcome.value is None:
            logger.warning(
                "conversation.rag.degraded status=%s error=%s",
                outcome.status.value,
                outcome.error,
                exc_info=outcome.error,
            )
            return KnowledgeResult()
        return outcome.value

    async def _reply(
        self,
        question: str,
        knowledge: KnowledgeResult,
        context: Optional[ConversationContext],
        stages: Dict[str, int],
    ) -> str:
        messages = build_conversation_messages(question, knowledge, context)
        prompt_hash = simple_hash("\n".join(message.content for message in messages))
        timeout_ms = self.settings.stage_timeout_ms

        async def _generate() -> StageOutcome[str]:
            return await call_with_deadline(
                lambda: self.provider.generate_text(messages, max_tokens=MAX_REPLY_TOKENS),
                timeout_ms=timeout_ms,
                stage="generation",
            )

        outcome = await self.batcher.run(f"conversation:{prompt_hash}", _generate)
        stages["generation_ms"] = outcome.latency_ms
        if not outcome.ok:
            logger.error(
                "conversation.generation.failed status=%s error=%s",
                outcome.status.value,
                outcome.error,
                exc_info=outcome.error,
            )
            raise outcome.to_error(timeout_ms)
        return (outcome.value or "").strip() or FALLBACK_REPLY


def build_conversation_messages(
    question: str,
    knowledge: KnowledgeResult,
    context: Optional[ConversationContext],
) -> List[ChatMessage]:
    prior_block = ""
    prior = context.previous_assessment if context is not None else None
    if prior is not None:
        prior_block = PRIOR_ASSESSMENT_TEMPLATE.format(
            vision=prior.vision_analysis or "not available",
            assessment=prior.enhanced_assessment or "not available",
        )
    system = SYSTEM_PROMPT_TEMPLATE.format(
        knowledge=knowledge.response or "No matching industry guidance was retrieved.",
        prior=prior_block,
    )
    return [
        ChatMessage(role="system", content=system),
        ChatMessage(role="user", content=USER_PROMPT_TEMPLATE.format(question=question)),
    ]
