"""CRUD operations for delivery jobs.

Status changes are conditional UPDATEs on the expected current status and
report whether a row matched, so two workers can never both move the same
job forward.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models.delivery_jobs import DeliveryJob
from schemas.delivery import DeliveryJobCreate, DeliveryStatus


def build_job(data: DeliveryJobCreate, *, default_max_attempts: int, now: datetime) -> DeliveryJob:
    return DeliveryJob(
        id=uuid.uuid4(),
        recipient=data.recipient,
        cc=list(data.cc),
        reply_to=data.reply_to,
        subject=data.subject,
        body_text=data.body_text,
        body_html=data.body_html,
        attachments=[a.to_json() for a in data.attachments],
        status=DeliveryStatus.PENDING.value,
        attempt_count=0,
        max_attempts=data.max_attempts or default_max_attempts,
        next_attempt_at=now,
        priority=data.priority,
        email_type=data.email_type,
        submission_id=data.submission_id,
        campaign_id=data.campaign_id,
        campaign_position=data.campaign_position,
        created_at=now,
        updated_at=now,
    )


async def create_job(
    db: AsyncSession, data: DeliveryJobCreate, *, default_max_attempts: int, now: datetime
) -> DeliveryJob:
    job = build_job(data, default_max_attempts=default_max_attempts, now=now)
    db.add(job)
    await db.commit()
    await db.refresh(job)
    return job


async def get_job(db: AsyncSession, job_id: uuid.UUID) -> DeliveryJob | None:
    return await db.get(DeliveryJob, job_id)


async def list_due_job_ids(
    db: AsyncSession, now: datetime, limit: int
) -> list[uuid.UUID]:
    """Pending jobs whose time has come, highest priority first, then oldest.

    A campaign job's first attempt belongs to the campaign runner, so those are
    left out until they have been tried once.
    """
    query = (
        select(DeliveryJob.id)
        .where(
            DeliveryJob.status == DeliveryStatus.PENDING.value,
            DeliveryJob.next_attempt_at <= now,
            or_(DeliveryJob.campaign_position.is_(None), DeliveryJob.attempt_count > 0),
        )
        .order_by(
            DeliveryJob.priority.desc(),
            DeliveryJob.created_at,
            DeliveryJob.campaign_position,
        )
        .limit(limit)
    )
    result = await db.execute(query)
    return list(result.scalars().all())


async def claim_job(db: AsyncSession, job_id: uuid.UUID, now: datetime) -> bool:
    """Atomically move a due job from pending to processing."""
    result = await db.execute(
        update(DeliveryJob)
        .execution_options(synchronize_session=False)
        .where(
            DeliveryJob.id == job_id,
            DeliveryJob.status == DeliveryStatus.PENDING.value,
            DeliveryJob.next_attempt_at <= now,
        )
        .values(status=DeliveryStatus.PROCESSING.value, updated_at=now)
    )
    await db.commit()
    return result.rowcount == 1  # type: ignore[attr-defined]


async def mark_sent(
    db: AsyncSession,
    job_id: uuid.UUID,
    *,
    attempt_count: int,
    provider_message_id: str | None,
    now: datetime,
) -> bool:
    result = await db.execute(
        update(DeliveryJob)
        .execution_options(synchronize_session=False)
        .where(DeliveryJob.id == job_id, DeliveryJob.status == DeliveryStatus.PROCESSING.value)
        .values(
            status=DeliveryStatus.SENT.value,
            attempt_count=attempt_count,
            provider_message_id=provider_message_id,
            last_error=None,
            sent_at=now,
            updated_at=now,
        )
    )
    await db.commit()
    return result.rowcount == 1  # type: ignore[attr-defined]


async def mark_retry(
    db: AsyncSession,
    job_id: uuid.UUID,
    *,
    attempt_count: int,
    error: str,
    next_attempt_at: datetime,
    now: datetime,
) -> bool:
    result = await db.execute(
        update(DeliveryJob)
        .execution_options(synchronize_session=False)
        .where(DeliveryJob.id == job_id, DeliveryJob.status == DeliveryStatus.PROCESSING.value)
        .values(
            status=DeliveryStatus.PENDING.value,
            attempt_count=attempt_count,
            last_error=error,
            next_attempt_at=next_attempt_at,
            updated_at=now,
        )
    )
    await db.commit()
    return result.rowcount == 1  # type: ignore[attr-defined]


async def mark_failed(
    db: AsyncSession, job_id: uuid.UUID, *, attempt_count: int, error: str, now: datetime
) -> bool:
    result = await db.execute(
        update(DeliveryJob)
        .execution_options(synchronize_session=False)
        .where(DeliveryJob.id == job_id, DeliveryJob.status == DeliveryStatus.PROCESSING.value)
        .values(
            status=DeliveryStatus.FAILED.value,
            attempt_count=attempt_count,
            last_error=error,
            updated_at=now,
        )
    )
    await db.commit()
    return result.rowcount == 1  # type: ignore[attr-defined]


async def reset_for_resend(db: AsyncSession, job_id: uuid.UUID, now: datetime) -> bool:
    """Failed back to pending with a fresh attempt budget."""
    result = await db.execute(
        update(DeliveryJob)
        .execution_options(synchronize_session=False)
        .where(DeliveryJob.id == job_id, DeliveryJob.status == DeliveryStatus.FAILED.value)
        .values(
            status=DeliveryStatus.PENDING.value,
            attempt_count=0,
            last_error=None,
            next_attempt_at=now,
            updated_at=now,
            # hand the job to the poller rather than the campaign runner
            campaign_position=None,
        )
    )
    await db.commit()
    return result.rowcount == 1  # type: ignore[attr-defined]


async def release_stale_claims(db: AsyncSession, *, older_than: datetime, now: datetime) -> int:
    """Return jobs left in processing by a dead worker to pending."""
    result = await db.execute(
        update(DeliveryJob)
        .execution_options(synchronize_session=False)
        .where(
            DeliveryJob.status == DeliveryStatus.PROCESSING.value,
            DeliveryJob.updated_at < older_than,
        )
        .values(status=DeliveryStatus.PENDING.value, next_attempt_at=now, updated_at=now)
    )
    await db.commit()
    return int(result.rowcount or 0)  # type: ignore[attr-defined]


async def list_failed_jobs(
    db: AsyncSession, *, campaign_id: uuid.UUID | None = None, limit: int = 100
) -> Sequence[DeliveryJob]:
    query = select(DeliveryJob).where(DeliveryJob.status == DeliveryStatus.FAILED.value)
    if campaign_id is not None:
        query = query.where(DeliveryJob.campaign_id == campaign_id)
    query = query.order_by(DeliveryJob.updated_at.desc()).limit(limit)
    result = await db.execute(query)
    return result.scalars().all()


async def count_by_status(db: AsyncSession, campaign_id: uuid.UUID) -> dict[str, int]:
    result = await db.execute(
        select(DeliveryJob.status, func.count(DeliveryJob.id))
        .where(DeliveryJob.campaign_id == campaign_id)
        .group_by(DeliveryJob.status)
    )
    counts = {s.value: 0 for s in DeliveryStatus}
    for status, count in result.all():
        counts[status] = int(count)
    return counts


async def list_unsent_campaign_job_ids(
    db: AsyncSession, campaign_id: uuid.UUID
) -> list[uuid.UUID]:
    """Campaign jobs never attempted yet, in submission order."""
    result = await db.execute(
        select(DeliveryJob.id)
        .where(
            DeliveryJob.campaign_id == campaign_id,
            DeliveryJob.status == DeliveryStatus.PENDING.value,
            DeliveryJob.attempt_count == 0,
            DeliveryJob.campaign_position.is_not(None),
        )
        .order_by(DeliveryJob.campaign_position, DeliveryJob.created_at)
    )
    return list(result.scalars().all())
