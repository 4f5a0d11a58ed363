"""Follow-up conversation endpoint."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Request, Response

from ..models.conversation import ConversationResult
from ..services.conversation_pipeline import ConversationPipeline
from .dependencies import ai_rate_limit, api_rate_limit, get_conversation_pipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["conversation"])


@router.post(
    "/conversation",
    response_model=ConversationResult,
    dependencies=[Depends(api_rate_limit), Depends(ai_rate_limit)],
)
async def conversation(
    request: Request,
    response: Response,
    pipeline: ConversationPipeline = Depends(get_conversation_pipeline),
) -> ConversationResult:
    raw = await request.body()
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        logger.info("conversation.invalid_json error=%s", exc)
        # Non-dict payloads are rejected by the pipeline as invalid_body.
        payload = None

    status_code, result = await pipeline.respond(payload)
    response.status_code = status_code
    return result


__all__ = ["router"]
