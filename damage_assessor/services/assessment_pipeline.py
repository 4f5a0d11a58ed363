"""
Photo assessment orchestration: validate → vision → knowledge → generation.

Stages run strictly in order because each prompt embeds the previous stage's
output. Vision and generation failures abort the request; a knowledge-base
failure only degrades it. Results are written through to the cache, failures
never are.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Tuple

from ..config import Settings
from ..errors import AssessmentError, ErrorKind
from ..models.assessment import Performance, PipelineResult, utc_timestamp
from . import envelope
from .cache_store import CacheDomain, CacheStore
from .deadline import StageOutcome, call_with_deadline
from .fingerprint import simple_hash
from .image_validator import ImageAsset, ImageValidator
from .knowledge_search import KnowledgeService
from .performance import PerformanceMonitor
from .providers.base import AIProvider, ChatMessage, KnowledgeResult, VisionResult
from .request_batcher import RequestBatcher

logger = logging.getLogger(__name__)

__all__ = ["AssessmentPipeline", "build_assessment_messages", "build_knowledge_query"]

VISION_PROMPT = (
    "Analyze this water damage image. Describe the type of damage, affected materials, severity level, "
    "and any visible issues like staining, warping, or mold."
)

KNOWLEDGE_QUERY_TEMPLATE = "water damage {description} remediation guidelines IICRC standards"
KNOWLEDGE_LIMIT = 3
KNOWLEDGE_SCORE_THRESHOLD = 0.7

ASSESSMENT_SYSTEM_PROMPT = (
    "You are a certified water damage restoration expert. Combine the vision analysis with industry "
    "guidelines to provide comprehensive assessment with specific remediation steps, timeline, and "
    "compliance requirements."
)

ASSESSMENT_USER_TEMPLATE = """Vision Analysis: {vision}

Industry Guidelines: {guidelines}

Provide detailed professional assessment with: 1) Damage classification 2) Required actions \
3) Estimated timeline 4) Equipment needed 5) Insurance documentation requirements."""

NO_GUIDELINES_INSTRUCTION = (
    "No industry guidelines were retrieved for this damage. Base the assessment on standard practices "
    "(IICRC S500 water damage restoration) and say so where it matters."
)


def build_knowledge_query(description: str) -> str:
    return KNOWLEDGE_QUERY_TEMPLATE.format(description=" ".join(description.split()))


def _format_guidelines(knowledge: KnowledgeResult) -> str:
    if knowledge.empty:
        return NO_GUIDELINES_INSTRUCTION
    lines: List[str] = []
    if knowledge.response:
        lines.append(knowledge.response.strip())
    for item in knowledge.data:
        source = item.get("source") or "unknown source"
        content = item.get("content") or item.get("text") or ""
        lines.append(f"- {source}: {content}".rstrip(": "))
    return "\n".join(lines)


def build_assessment_messages(description: str, knowledge: KnowledgeResult) -> List[ChatMessage]:
    return [
        ChatMessage(role="system", content=ASSESSMENT_SYSTEM_PROMPT),
        ChatMessage(
            role="user",
            content=ASSESSMENT_USER_TEMPLATE.format(vision=description, guidelines=_format_guidelines(knowledge)),
        ),
    ]


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)


class AssessmentPipeline:
    def __init__(
        self,
        *,
        settings: Settings,
        cache: CacheStore,
        batcher: RequestBatcher,
        provider: AIProvider,
        knowledge: Optional[KnowledgeService] = None,
        validator: Optional[ImageValidator] = None,
        monitor: Optional[PerformanceMonitor] = None,
    ) -> None:
        self.settings = settings
        self.cache = cache
        self.batcher = batcher
        self.provider = provider
        self.monitor = monitor or PerformanceMonitor()
        self.validator = validator or ImageValidator.from_settings(settings)
        self.knowledge = knowledge or KnowledgeService(
            settings=settings,
            cache=cache,
            batcher=batcher,
            provider=provider,
            monitor=self.monitor,
        )

    async def assess(self, payload: Any) -> Tuple[int, PipelineResult]:
        """Run one request end to end; returns ``(http_status, result)``."""

        start = time.perf_counter()
        stages: Dict[str, int] = {}
        try:
            result = await self._run(payload, start, stages)
        except AssessmentError as exc:
            elapsed = _elapsed_ms(start)
            self.monitor.record("assessment_failed", elapsed)
            if exc.status_code >= 500:
                logger.error(
                    "pipeline.failed kind=%s status=%s details=%s",
                    exc.kind.value,
                    exc.status_code,
                    exc.details,
                )
            else:
                logger.info("pipeline.rejected kind=%s details=%s", exc.kind.value, exc.details)
            return exc.status_code, PipelineResult.failure(exc, total_time_ms=elapsed)
        except Exception as exc:
            elapsed = _elapsed_ms(start)
            logger.exception("pipeline.unexpected error=%s", exc)
            failure = AssessmentError(ErrorKind.UNEXPECTED, "An unexpected error occurred while assessing the image")
            return failure.status_code, PipelineResult.failure(failure, total_time_ms=elapsed)

        self.monitor.record("assessment_cached" if result.performance.cached else "assessment", result.performance.total_time_ms)
        return 200, result

    def load_image(self, payload: Any) -> ImageAsset:
        """Envelope checks, size ceilings, base64 decode and byte-level validation."""

        if not isinstance(payload, dict):
            raise AssessmentError(ErrorKind.INVALID_BODY, "Request body must be a JSON object")
        image = payload.get("image")
        if not isinstance(image, str):
            raise AssessmentError(ErrorKind.INVALID_FIELD, "Field 'image' must be a data URI string")

        header = envelope.parse_data_uri(image)
        if header is None:
            raise AssessmentError(ErrorKind.INVALID_FORMAT, "Image must be a base64 data URI (data:image/<type>;base64,...)")
        if header.mime_type not in self.settings.allowed_types:
            raise AssessmentError(
                ErrorKind.INVALID_FORMAT,
                f"Unsupported image type {header.mime_type}; allowed: {', '.join(self.settings.allowed_types)}",
            )
        # Checked before decoding so oversized payloads cost nothing.
        if len(image) > self.settings.max_file_size:
            raise AssessmentError(
                ErrorKind.TOO_LARGE,
                f"Encoded image exceeds {self.settings.max_file_size} bytes",
            )

        try:
            buffer = envelope.decode_image_data(image[header.payload_offset :])
        except envelope.InvalidBase64Error as exc:
            raise AssessmentError(ErrorKind.INVALID_BASE64, "Image payload is not valid base64") from exc
        if len(buffer) > self.settings.max_decoded_size:
            raise AssessmentError(
                ErrorKind.TOO_LARGE,
                f"Decoded image exceeds {self.settings.max_decoded_size} bytes",
            )

        outcome = self.validator.validate(buffer, header.mime_type)
        if not outcome.valid:
            raise AssessmentError(outcome.error_kind or ErrorKind.STRUCTURE_INVALID, outcome.message or "Invalid image")
        return ImageAsset(outcome.sanitized_buffer, header.mime_type, outcome.detected_mime)

    async def _run(self, payload: Any, start: float, stages: Dict[str, int]) -> PipelineResult:
        asset = self.load_image(payload)
        image_hash = asset.content_hash
        logger.info(
            "pipeline.image.accepted",
            extra={
                "image_hash": image_hash,
                "mime_type": asset.detected_mime,
                "bytes": len(asset),
                "dimensions": asset.dimensions,
            },
        )

        cached = await self.cache.get(CacheDomain.ASSESSMENT, image_hash)
        if cached is not None:
            result = PipelineResult.model_validate(cached)
            # Response time of this request; no stage ran, so no stage timings.
            result.timestamp = utc_timestamp()
            result.performance = Performance(total_time_ms=_elapsed_ms(start), cached=True)
            logger.info("pipeline.assessment.cache_hit", extra={"image_hash": image_hash})
            return result

        vision = await self._vision(asset, image_hash, stages)
        knowledge = await self._knowledge(vision, stages)
        assessment_text = await self._generate(vision, knowledge, image_hash, stages)

        result = PipelineResult(
            success=True,
            vision_analysis=vision.description,
            industry_sources=list(knowledge.data),
            enhanced_assessment=assessment_text,
            confidence_score=self._confidence(vision),
            performance=Performance(total_time_ms=_elapsed_ms(start), cached=False, stages=dict(stages)),
        )
        await self.cache.set(CacheDomain.ASSESSMENT, image_hash, result.model_dump())
        return result

    async def _vision(self, asset: ImageAsset, image_hash: str, stages: Dict[str, int]) -> VisionResult:
        cached = await self.cache.get(CacheDomain.VISION, image_hash)
        if cached is not None:
            logger.info("pipeline.vision.cache_hit", extra={"image_hash": image_hash})
            stages["vision_ms"] = 0
            return VisionResult.from_dict(cached)

        timeout_ms = self.settings.stage_timeout_ms

        async def _classify() -> StageOutcome[VisionResult]:
            return await call_with_deadline(
                lambda: self.provider.classify_image(asset.data, VISION_PROMPT),
                timeout_ms=timeout_ms,
                stage="vision",
            )

        outcome = await self.batcher.run(f"vision:{image_hash}", _classify)
        stages["vision_ms"] = outcome.latency_ms
        vision = self._require(outcome, timeout_ms)
        if not vision.description.strip():
            raise AssessmentError(ErrorKind.UNEXPECTED, "Vision analysis returned an empty description")
        await self.cache.set(CacheDomain.VISION, image_hash, vision.to_dict())
        return vision

    async def _knowledge(self, vision: VisionResult, stages: Dict[str, int]) -> KnowledgeResult:
        if not self.settings.enable_autorag:
            return KnowledgeResult()
        outcome = await self.knowledge.lookup(
            build_knowledge_query(vision.description),
            limit=KNOWLEDGE_LIMIT,
            score_threshold=KNOWLEDGE_SCORE_THRESHOLD,
            timeout_ms=self.settings.stage_timeout_ms,
        )
        stages["knowledge_ms"] = outcome.latency_ms
        if not outcome.ok or outcome.value is None:
            # Enrichment only: continue from vision alone.
            logger.warning(
                "pipeline.rag.degraded status=%s error=%s",
                outcome.status.value,
                outcome.error,
                exc_info=outcome.error,
            )
            return KnowledgeResult()
        return outcome.value

    async def _generate(
        self,
        vision: VisionResult,
        knowledge: KnowledgeResult,
        image_hash: str,
        stages: Dict[str, int],
    ) -> str:
        messages = build_assessment_messages(vision.description, knowledge)
        prompt_hash = simple_hash("\n".join(message.content for message in messages))
        timeout_ms = self.settings.stage_timeout_ms

        async def _generate_text() -> StageOutcome[str]:
            return await call_with_deadline(
                lambda: self.provider.generate_text(messages),
                timeout_ms=timeout_ms,
                stage="generation",
            )

        outcome = await self.batcher.run(f"generation:{image_hash}:{prompt_hash}", _generate_text)
        stages["generation_ms"] = outcome.latency_ms
        text = (self._require(outcome, timeout_ms) or "").strip()
        if not text:
            raise AssessmentError(ErrorKind.UNEXPECTED, "Text generation returned an empty response")
        return text

    @staticmethod
    def _require(outcome: StageOutcome[Any], timeout_ms: int) -> Any:
        if outcome.ok:
            return outcome.value
        logger.error(
            "pipeline.%s.failed status=%s error=%s",
            outcome.stage,
            outcome.status.value,
            outcome.error,
            exc_info=outcome.error,
        )
        raise outcome.to_error(timeout_ms)

    def _confidence(self, vision: VisionResult) -> float:
        score = vision.confidence if vision.confidence is not None else self.settings.confidence_threshold
        return min(1.0, max(0.0, float(score)))
