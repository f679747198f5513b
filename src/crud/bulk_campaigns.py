"""CRUD operations for bulk campaigns."""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models.bulk_campaigns import BulkCampaign
from models.delivery_jobs import DeliveryJob
from schemas.delivery import CampaignStatus


async def create_campaign(
    db: AsyncSession, campaign: BulkCampaign, jobs: Sequence[DeliveryJob]
) -> BulkCampaign:
    """Insert the campaign and its expanded jobs in one transaction."""
    db.add(campaign)
    await db.flush()
    db.add_all(jobs)
    await db.commit()
    await db.refresh(campaign)
    return campaign


async def get_campaign(db: AsyncSession, campaign_id: uuid.UUID) -> BulkCampaign | None:
    return await db.get(BulkCampaign, campaign_id)


async def set_status(
    db: AsyncSession,
    campaign_id: uuid.UUID,
    status: CampaignStatus,
    *,
    now: datetime,
    expected: Sequence[CampaignStatus] | None = None,
) -> bool:
    values: dict[str, object] = {"status": status.value}
    if status is CampaignStatus.SENDING:
        values["started_at"] = now
    elif status in (CampaignStatus.COMPLETED, CampaignStatus.CANCELLED):
        values["completed_at"] = now

    stmt = (
        update(BulkCampaign)
        .execution_options(synchronize_session=False)
        .where(BulkCampaign.id == campaign_id)
    )
    if expected:
        stmt = stmt.where(BulkCampaign.status.in_([s.value for s in expected]))
    result = await db.execute(stmt.values(**values))
    await db.commit()
    return result.rowcount == 1  # type: ignore[attr-defined]


async def request_cancel(db: AsyncSession, campaign_id: uuid.UUID) -> bool:
    result = await db.execute(
        update(BulkCampaign)
        .execution_options(synchronize_session=False)
        .where(
            BulkCampaign.id == campaign_id,
            BulkCampaign.status.in_([CampaignStatus.DRAFT.value, CampaignStatus.SENDING.value]),
        )
        .values(cancel_requested=True)
    )
    await db.commit()
    return result.rowcount == 1  # type: ignore[attr-defined]


async def is_cancel_requested(db: AsyncSession, campaign_id: uuid.UUID) -> bool:
    result = await db.execute(
        select(BulkCampaign.cancel_requested).where(BulkCampaign.id == campaign_id)
    )
    return bool(result.scalar_one_or_none())


async def list_campaign_ids_by_status(
    db: AsyncSession, status: CampaignStatus
) -> list[uuid.UUID]:
    result = await db.execute(select(BulkCampaign.id).where(BulkCampaign.status == status.value))
    return list(result.scalars().all())
