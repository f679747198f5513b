"""Bulk campaign endpoints: create, run, watch progress, cancel, retry."""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, BackgroundTasks, status

from core.exceptions import CampaignStateError
from dependencies.pipeline import Services
from schemas.api import ApiResponse
from schemas.delivery import (
    CampaignCreate,
    CampaignProgress,
    CampaignStatus,
    DeliveryJobRead,
    TestSendRequest,
)


router = APIRouter(prefix="/campaigns", tags=["campaigns"])

logger = logging.getLogger(__name__)


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=ApiResponse[CampaignProgress],
)
async def create_campaign(
    payload: CampaignCreate, services: Services
) -> ApiResponse[CampaignProgress]:
    campaign_id = await services.campaigns.create_campaign(payload)
    progress = await services.campaigns.get_progress(campaign_id)
    return ApiResponse(data=progress, message="Campaign created")


@router.post(
    "/{campaign_id}/send",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=ApiResponse[CampaignProgress],
)
async def send_campaign(
    campaign_id: uuid.UUID, services: Services, background_tasks: BackgroundTasks
) -> ApiResponse[CampaignProgress]:
    """Start sending in the background; poll /progress to follow it."""
    progress = await services.campaigns.get_progress(campaign_id)
    if progress.status not in (CampaignStatus.DRAFT, CampaignStatus.SENDING):
        raise CampaignStateError(
            f"Campaign {campaign_id} is {progress.status} and cannot be sent"
        )
    background_tasks.add_task(services.campaigns.run_campaign, campaign_id)
    return ApiResponse(data=progress, message="Campaign sending started")


@router.get("/{campaign_id}/progress", response_model=ApiResponse[CampaignProgress])
async def campaign_progress(
    campaign_id: uuid.UUID, services: Services
) -> ApiResponse[CampaignProgress]:
    progress = await services.campaigns.get_progress(campaign_id)
    return ApiResponse(data=progress, message="Campaign progress")


@router.post("/{campaign_id}/cancel", response_model=ApiResponse[CampaignProgress])
async def cancel_campaign(
    campaign_id: uuid.UUID, services: Services
) -> ApiResponse[CampaignProgress]:
    """Stop further batches. Jobs already being sent still finish."""
    progress = await services.campaigns.cancel_campaign(campaign_id)
    return ApiResponse(data=progress, message="Campaign cancellation requested")


@router.post("/{campaign_id}/test", response_model=ApiResponse[dict[str, int]])
async def send_test_emails(
    campaign_id: uuid.UUID, payload: TestSendRequest, services: Services
) -> ApiResponse[dict[str, int]]:
    sent = await services.campaigns.send_test_emails(campaign_id, payload.recipients)
    return ApiResponse(data={"sent": len(sent)}, message="Test emails sent")


@router.get("/{campaign_id}/failed", response_model=ApiResponse[list[DeliveryJobRead]])
async def list_failed_jobs(
    campaign_id: uuid.UUID, services: Services
) -> ApiResponse[list[DeliveryJobRead]]:
    jobs = await services.campaigns.list_failed_jobs(campaign_id)
    return ApiResponse(
        data=[DeliveryJobRead.model_validate(job) for job in jobs],
        message=f"{len(jobs)} failed job(s)",
    )


@router.post(
    "/jobs/{job_id}/resend",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=ApiResponse[None],
)
async def resend_job(job_id: uuid.UUID, services: Services) -> ApiResponse[None]:
    await services.campaigns.resend(job_id)
    logger.info("Resend requested for delivery job %s", job_id)
    return ApiResponse(message="Job re-queued")
