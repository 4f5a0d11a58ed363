"""Photo upload endpoint running the full assessment pipeline."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Request, Response

from ..errors import AssessmentError, ErrorKind
from ..models.assessment import PipelineResult
from ..services.assessment_pipeline import AssessmentPipeline
from .dependencies import ai_rate_limit, api_rate_limit, get_assessment_pipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["assessment"])


@router.post(
    "/assess-damage",
    response_model=PipelineResult,
    dependencies=[Depends(api_rate_limit), Depends(ai_rate_limit)],
)
async def assess_damage(
    request: Request,
    response: Response,
    pipeline: AssessmentPipeline = Depends(get_assessment_pipeline),
) -> PipelineResult:
    # Parsed by hand so malformed JSON maps onto the pipeline's own taxonomy.
    raw = await request.body()
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        failure = AssessmentError(ErrorKind.INVALID_BODY, "Request body is not valid JSON")
        logger.info("assessment.invalid_json error=%s", exc)
        response.status_code = failure.status_code
        return PipelineResult.failure(failure)

    status_code, result = await pipeline.assess(payload)
    response.status_code = status_code
    return result


__all__ = ["router"]
