"""Persistent e-mail delivery queue.

Job lifecycle::

    pending -> processing -> sent
                          -> pending   (transient failure, retried later)
                          -> failed    (permanent failure or out of attempts)

Every transition is a conditional UPDATE (see ``crud.delivery_jobs``), so a
job is claimed by exactly one worker and ``process_job`` is safe to call
twice for the same id.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import DeliveryConfig
from core.email import EmailMessage, MailPermanentError, MailTransientError, MailTransport
from core.exceptions import DeliveryJobNotFound
from crud import delivery_jobs as jobs_crud
from models.delivery_jobs import DeliveryJob
from schemas.delivery import Attachment, DeliveryJobCreate, DeliveryStatus
from services.interfaces import FailureNotifier, LoggingFailureNotifier


logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(UTC)


class DeliveryQueue:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        transport: MailTransport,
        config: DeliveryConfig,
        *,
        notifier: FailureNotifier | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._transport = transport
        self._config = config
        self._notifier = notifier or LoggingFailureNotifier()
        self._clock = clock

    @property
    def config(self) -> DeliveryConfig:
        return self._config

    @property
    def transport(self) -> MailTransport:
        return self._transport

    def now(self) -> datetime:
        return self._clock()

    def backoff_delay(self, attempt_count: int) -> timedelta:
        """Wait after the ``attempt_count``-th failed attempt."""
        cfg = self._config
        seconds = cfg.backoff_base_seconds * (2 ** max(attempt_count - 1, 0))
        return timedelta(seconds=min(seconds, cfg.backoff_max_seconds))

    def build_message(self, job: DeliveryJob, *, subject_prefix: str = "") -> EmailMessage:
        return EmailMessage(
            to=[job.recipient],
            sender=self._config.sender_address,
            subject=f"{subject_prefix}{job.subject}",
            text=job.body_text,
            html=job.body_html,
            reply_to=job.reply_to or self._config.reply_to,
            cc=list(job.cc or []),
            attachments=[Attachment.from_json(a) for a in job.attachments or []],
        )

    async def enqueue(self, job: DeliveryJobCreate) -> uuid.UUID:
        async with self._session_factory() as db:
            created = await jobs_crud.create_job(
                db, job, default_max_attempts=self._config.max_attempts, now=self.now()
            )
        logger.info(
            "Enqueued %s email job %s (priority %d)", job.email_type, created.id, job.priority
        )
        return created.id

    async def get_job(self, job_id: uuid.UUID) -> DeliveryJob:
        async with self._session_factory() as db:
            job = await jobs_crud.get_job(db, job_id)
        if job is None:
            raise DeliveryJobNotFound(f"Delivery job {job_id} not found")
        return job

    async def process_job(self, job_id: uuid.UUID) -> DeliveryStatus | None:
        """Claim and send one job.

        Returns the job's new status, or None when the job was not claimable
        (already taken, not due, or terminal).
        """
        async with self._session_factory() as db:
            if not await jobs_crud.claim_job(db, job_id, self.now()):
                return None
            job = await jobs_crud.get_job(db, job_id)
            if job is None:  # pragma: no cover - deleted between claim and load
                return None
            message = self.build_message(job)
            attempt = job.attempt_count + 1

            try:
                message_id = await self._transport.send(message)
            except MailPermanentError as e:
                return await self._fail(db, job, attempt, f"permanent: {e.message}")
            except MailTransientError as e:
                return await self._retry_or_fail(db, job, attempt, f"transient: {e.message}")
            except Exception as e:  # noqa: BLE001 - unknown transport errors are retried
                logger.exception("Unexpected error sending job %s", job_id)
                return await self._retry_or_fail(db, job, attempt, f"unexpected: {e}")

            await jobs_crud.mark_sent(
                db,
                job_id,
                attempt_count=attempt,
                provider_message_id=message_id,
                now=self.now(),
            )
        logger.info("Delivery job %s sent on attempt %d", job_id, attempt)
        return DeliveryStatus.SENT

    async def _retry_or_fail(
        self, db: AsyncSession, job: DeliveryJob, attempt: int, error: str
    ) -> DeliveryStatus:
        if attempt >= job.max_attempts:
            return await self._fail(db, job, attempt, error)
        now = self.now()
        next_at = now + self.backoff_delay(attempt)
        await jobs_crud.mark_retry(
            db, job.id, attempt_count=attempt, error=error, next_attempt_at=next_at, now=now
        )
        logger.warning(
            "Delivery job %s attempt %d/%d failed (%s); retrying at %s",
            job.id,
            attempt,
            job.max_attempts,
            error,
            next_at.isoformat(),
        )
        return DeliveryStatus.PENDING

    async def _fail(
        self, db: AsyncSession, job: DeliveryJob, attempt: int, error: str
    ) -> DeliveryStatus:
        await jobs_crud.mark_failed(db, job.id, attempt_count=attempt, error=error, now=self.now())
        await db.refresh(job)
        logger.error(
            "Delivery job %s failed after %d attempt(s): %s", job.id, attempt, error
        )
        await self._notifier.job_failed(job)
        return DeliveryStatus.FAILED

    async def process_next(self) -> uuid.UUID | None:
        """Process the most urgent due job, if any. Returns its id."""
        async with self._session_factory() as db:
            candidates = await jobs_crud.list_due_job_ids(
                db, self.now(), limit=max(self._config.poll_batch, 1)
            )
        for job_id in candidates:
            if await self.process_job(job_id) is not None:
                return job_id
        return None

    async def process_due(self, limit: int | None = None) -> int:
        """Process up to ``limit`` due jobs one after another."""
        async with self._session_factory() as db:
            due = await jobs_crud.list_due_job_ids(
                db, self.now(), limit=limit or self._config.poll_batch
            )
        processed = 0
        for job_id in due:
            if await self.process_job(job_id) is not None:
                processed += 1
        if processed:
            logger.info("Delivery poll processed %d job(s)", processed)
        return processed

    async def release_stale_claims(self, older_than: timedelta = timedelta(minutes=15)) -> int:
        now = self.now()
        async with self._session_factory() as db:
            released = await jobs_crud.release_stale_claims(
                db, older_than=now - older_than, now=now
            )
        if released:
            logger.warning("Released %d delivery job(s) stuck in processing", released)
        return released

    async def list_failed_jobs(
        self, *, campaign_id: uuid.UUID | None = None, limit: int = 100
    ) -> Sequence[DeliveryJob]:
        async with self._session_factory() as db:
            return await jobs_crud.list_failed_jobs(db, campaign_id=campaign_id, limit=limit)

    async def resend(self, job_id: uuid.UUID) -> None:
        """Put a failed job back in the queue with a fresh attempt budget."""
        async with self._session_factory() as db:
            if await jobs_crud.reset_for_resend(db, job_id, self.now()):
                logger.info("Delivery job %s re-queued for resend", job_id)
                return
            job = await jobs_crud.get_job(db, job_id)
        if job is None:
            raise DeliveryJobNotFound(f"Delivery job {job_id} not found")
        logger.info("Resend ignored for job %s in status %s", job_id, job.status)
