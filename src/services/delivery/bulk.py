"""Bulk campaigns: expand recipients into jobs, then send in ordered batches."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.exceptions import CampaignNotFound, CampaignStateError
from crud import bulk_campaigns as campaigns_crud
from crud import delivery_jobs as jobs_crud
from models.bulk_campaigns import BulkCampaign
from models.delivery_jobs import DeliveryJob
from schemas.delivery import (
    CampaignCreate,
    CampaignProgress,
    CampaignStatus,
    DeliveryJobCreate,
    DeliveryStatus,
)
from services.delivery.queue import DeliveryQueue


logger = logging.getLogger(__name__)

NAME_PLACEHOLDER = "{{name}}"
MAX_TEST_RECIPIENTS = 4
TEST_SUBJECT_PREFIX = "[TEST] "

BatchHook = Callable[[int, CampaignProgress], Awaitable[None]]
SleepFn = Callable[[float], Awaitable[None]]


def personalise(template: str | None, name: str | None) -> str | None:
    if template is None:
        return None
    return template.replace(NAME_PLACEHOLDER, (name or "").strip())


def chunked(items: Sequence[uuid.UUID], size: int) -> list[list[uuid.UUID]]:
    size = max(size, 1)
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


class BulkCampaignService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        queue: DeliveryQueue,
        *,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._session_factory = session_factory
        self._queue = queue
        self._config = queue.config
        self._sleep = sleep
        self._cancel_events: dict[uuid.UUID, asyncio.Event] = {}

    async def create_campaign(self, data: CampaignCreate) -> uuid.UUID:
        """Store the campaign and one pending job per distinct recipient."""
        now = self._queue.now()
        campaign = BulkCampaign(
            id=uuid.uuid4(),
            name=data.name,
            subject=data.subject,
            body_text=data.body_text,
            body_html=data.body_html,
            reply_to=data.reply_to,
            status=CampaignStatus.DRAFT.value,
            cancel_requested=False,
            created_at=now,
        )

        seen: set[str] = set()
        jobs: list[DeliveryJob] = []
        for recipient in data.recipients:
            address = recipient.email.strip()
            if address.lower() in seen:
                continue
            seen.add(address.lower())
            jobs.append(
                jobs_crud.build_job(
                    DeliveryJobCreate(
                        recipient=address,
                        reply_to=data.reply_to,
                        subject=personalise(data.subject, recipient.name) or data.subject,
                        body_text=personalise(data.body_text, recipient.name) or "",
                        body_html=personalise(data.body_html, recipient.name),
                        email_type="campaign",
                        campaign_id=campaign.id,
                        campaign_position=len(jobs),
                    ),
                    default_max_attempts=self._config.max_attempts,
                    now=now,
                )
            )
        campaign.total_recipients = len(jobs)

        async with self._session_factory() as db:
            await campaigns_crud.create_campaign(db, campaign, jobs)
        logger.info("Created campaign %s with %d recipients", campaign.id, len(jobs))
        return campaign.id

    async def _get_campaign(self, db: AsyncSession, campaign_id: uuid.UUID) -> BulkCampaign:
        campaign = await campaigns_crud.get_campaign(db, campaign_id)
        if campaign is None:
            raise CampaignNotFound(f"Campaign {campaign_id} not found")
        return campaign

    async def get_progress(self, campaign_id: uuid.UUID) -> CampaignProgress:
        async with self._session_factory() as db:
            campaign = await self._get_campaign(db, campaign_id)
            counts = await jobs_crud.count_by_status(db, campaign_id)
        total = campaign.total_recipients
        sent = counts[DeliveryStatus.SENT.value]
        failed = counts[DeliveryStatus.FAILED.value]
        done = sent + failed
        return CampaignProgress(
            campaign_id=campaign_id,
            status=CampaignStatus(campaign.status),
            total=total,
            sent=sent,
            failed=failed,
            pending=total - done,
            in_flight=counts[DeliveryStatus.PROCESSING.value],
            percent_complete=round(100.0 * done / total, 1) if total else 100.0,
        )

    async def _cancel_requested(self, campaign_id: uuid.UUID, event: asyncio.Event) -> bool:
        if event.is_set():
            return True
        async with self._session_factory() as db:
            return await campaigns_crud.is_cancel_requested(db, campaign_id)

    async def _send_batch(self, batch: list[uuid.UUID]) -> None:
        semaphore = asyncio.Semaphore(max(self._config.bulk_send_concurrency, 1))

        async def send_one(job_id: uuid.UUID) -> None:
            async with semaphore:
                await self._queue.process_job(job_id)

        await asyncio.gather(*(send_one(job_id) for job_id in batch))

    async def run_campaign(
        self,
        campaign_id: uuid.UUID,
        *,
        on_batch_complete: BatchHook | None = None,
    ) -> CampaignProgress:
        """Send every unsent job of a campaign in batches, in order.

        Cancellation is checked before each batch; a batch already started
        runs to completion.
        """
        # Registered first so the sweep treats the campaign as owned here
        event = self._cancel_events.setdefault(campaign_id, asyncio.Event())
        cancelled = False
        try:
            now = self._queue.now()
            async with self._session_factory() as db:
                campaign = await self._get_campaign(db, campaign_id)
                if campaign.status not in (
                    CampaignStatus.DRAFT.value,
                    CampaignStatus.SENDING.value,
                ):
                    raise CampaignStateError(
                        f"Campaign {campaign_id} is {campaign.status} and cannot be sent"
                    )
                await campaigns_crud.set_status(db, campaign_id, CampaignStatus.SENDING, now=now)
                job_ids = await jobs_crud.list_unsent_campaign_job_ids(db, campaign_id)

            batches = chunked(job_ids, self._config.bulk_batch_size)
            logger.info(
                "Campaign %s: sending %d job(s) in %d batch(es)",
                campaign_id,
                len(job_ids),
                len(batches),
            )
            for index, batch in enumerate(batches, start=1):
                if await self._cancel_requested(campaign_id, event):
                    cancelled = True
                    logger.info("Campaign %s cancelled before batch %d", campaign_id, index)
                    break
                await self._send_batch(batch)
                progress = await self.get_progress(campaign_id)
                logger.info(
                    "Campaign %s batch %d/%d done: sent=%d failed=%d pending=%d",
                    campaign_id,
                    index,
                    len(batches),
                    progress.sent,
                    progress.failed,
                    progress.pending,
                )
                if on_batch_complete is not None:
                    await on_batch_complete(index, progress)
                if index < len(batches):
                    await self._sleep(self._config.bulk_batch_delay_seconds)
        finally:
            self._cancel_events.pop(campaign_id, None)

        if cancelled:
            async with self._session_factory() as db:
                await campaigns_crud.set_status(
                    db, campaign_id, CampaignStatus.CANCELLED, now=self._queue.now()
                )
        else:
            await self._complete_if_done(campaign_id)
        return await self.get_progress(campaign_id)

    async def cancel_campaign(self, campaign_id: uuid.UUID) -> CampaignProgress:
        """Stop scheduling new batches; jobs already processing finish."""
        async with self._session_factory() as db:
            campaign = await self._get_campaign(db, campaign_id)
            if campaign.status == CampaignStatus.DRAFT.value:
                await campaigns_crud.request_cancel(db, campaign_id)
                await campaigns_crud.set_status(
                    db, campaign_id, CampaignStatus.CANCELLED, now=self._queue.now()
                )
            elif campaign.status == CampaignStatus.SENDING.value:
                await campaigns_crud.request_cancel(db, campaign_id)
            else:
                raise CampaignStateError(
                    f"Campaign {campaign_id} is {campaign.status} and cannot be cancelled"
                )
        event = self._cancel_events.get(campaign_id)
        if event is not None:
            event.set()
        logger.info("Cancel requested for campaign %s", campaign_id)
        return await self.get_progress(campaign_id)

    async def _complete_if_done(self, campaign_id: uuid.UUID) -> bool:
        progress = await self.get_progress(campaign_id)
        if progress.pending:
            return False
        async with self._session_factory() as db:
            changed = await campaigns_crud.set_status(
                db,
                campaign_id,
                CampaignStatus.COMPLETED,
                now=self._queue.now(),
                expected=[CampaignStatus.SENDING],
            )
        if changed:
            logger.info(
                "Campaign %s completed: sent=%d failed=%d",
                campaign_id,
                progress.sent,
                progress.failed,
            )
        return changed

    async def refresh_campaign_status(self) -> int:
        """Settle sending campaigns that no runner in this process owns.

        A campaign with jobs never attempted (its runner died with an earlier
        process) or a pending cancel is resumed with ``run_campaign``; the rest
        are marked completed once no job is left pending. Returns how many
        campaigns completed.
        """
        async with self._session_factory() as db:
            sending = await campaigns_crud.list_campaign_ids_by_status(db, CampaignStatus.SENDING)
        completed = 0
        for campaign_id in sending:
            if campaign_id in self._cancel_events:
                continue  # still being run in this process
            async with self._session_factory() as db:
                unsent = await jobs_crud.list_unsent_campaign_job_ids(db, campaign_id)
                cancel = await campaigns_crud.is_cancel_requested(db, campaign_id)
            if unsent or cancel:
                logger.info(
                    "Resuming campaign %s with %d unsent job(s)", campaign_id, len(unsent)
                )
                progress = await self.run_campaign(campaign_id)
                if progress.status is CampaignStatus.COMPLETED:
                    completed += 1
            elif await self._complete_if_done(campaign_id):
                completed += 1
        return completed

    async def send_test_emails(
        self, campaign_id: uuid.UUID, recipients: Sequence[str]
    ) -> list[str]:
        """Send "[TEST]" copies right away. Campaign counts are untouched."""
        addresses = [r.strip() for r in recipients if r.strip()]
        if not 1 <= len(addresses) <= MAX_TEST_RECIPIENTS:
            raise CampaignStateError(
                f"Test sends need between 1 and {MAX_TEST_RECIPIENTS} recipients"
            )
        async with self._session_factory() as db:
            campaign = await self._get_campaign(db, campaign_id)

        message_ids: list[str] = []
        for address in addresses:
            job = DeliveryJob(
                recipient=address,
                cc=[],
                reply_to=campaign.reply_to,
                subject=personalise(campaign.subject, "Test Recipient") or campaign.subject,
                body_text=personalise(campaign.body_text, "Test Recipient") or "",
                body_html=personalise(campaign.body_html, "Test Recipient"),
                attachments=[],
            )
            message = self._queue.build_message(job, subject_prefix=TEST_SUBJECT_PREFIX)
            message_ids.append(await self._queue.transport.send(message))
        logger.info("Sent %d test email(s) for campaign %s", len(message_ids), campaign_id)
        return message_ids

    async def list_failed_jobs(self, campaign_id: uuid.UUID) -> Sequence[DeliveryJob]:
        return await self._queue.list_failed_jobs(campaign_id=campaign_id)

    async def resend(self, job_id: uuid.UUID) -> None:
        await self._queue.resend(job_id)
