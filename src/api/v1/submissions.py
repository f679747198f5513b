"""Submitter actions: register, draft and finalise a submission."""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, status

from dependencies.pipeline import Services
from schemas.api import ApiResponse
from schemas.submissions import (
    DraftRequest,
    DraftResult,
    FinalizeRequest,
    FinalizeResult,
    SubmissionCreate,
    SubmissionRecord,
)


router = APIRouter(prefix="/submissions", tags=["submissions"])

logger = logging.getLogger(__name__)


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=ApiResponse[dict[str, str]],
)
async def register_submission(
    payload: SubmissionCreate, services: Services
) -> ApiResponse[dict[str, str]]:
    submission_id = payload.id or uuid.uuid4().hex
    services.records.add(
        SubmissionRecord(
            id=submission_id,
            metadata=payload.metadata,
            track=payload.track,
            approved_facts=payload.approved_facts,
        )
    )
    return ApiResponse(data={"submission_id": submission_id}, message="Submission registered")


@router.post("/draft", response_model=ApiResponse[DraftResult])
async def draft_submission(
    payload: DraftRequest, services: Services
) -> ApiResponse[DraftResult]:
    """Generate grounds for the selected concerns and return the draft document."""
    result = await services.pipeline.draft(
        payload.submission_id,
        payload.concern_keys,
        custom_grounds=payload.custom_grounds,
        style_sample=payload.style_sample,
        priority=payload.priority_keys,
    )
    return ApiResponse(data=result, message="Draft generated")


@router.post("/finalize", response_model=ApiResponse[FinalizeResult])
async def finalize_submission(
    payload: FinalizeRequest, services: Services
) -> ApiResponse[FinalizeResult]:
    """Apply edits, render the PDF and queue the e-mail to the council."""
    result = await services.pipeline.finalize(payload.submission_id, payload.edits)
    return ApiResponse(data=result, message="Submission finalised and queued for delivery")
