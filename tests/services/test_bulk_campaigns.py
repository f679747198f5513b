"""Tests for bulk campaign creation, batching, cancellation and test sends."""

from __future__ import annotations

import uuid
from datetime import timedelta

import pytest

from core.exceptions import CampaignNotFound, CampaignStateError
from crud import bulk_campaigns as campaigns_crud
from crud import delivery_jobs as jobs_crud
from schemas.delivery import CampaignCreate, CampaignRecipient, CampaignStatus
from services.delivery.bulk import BulkCampaignService, chunked, personalise


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def _campaign(count: int, **kwargs) -> CampaignCreate:
    defaults = {
        "name": "Currumbin Valley objection drive",
        "subject": "Have your say on COM/2025/271",
        "body_text": "Hi {{name}}, submissions close soon.",
        "recipients": [
            CampaignRecipient(email=f"resident{i}@example.com", name=f"Resident {i}")
            for i in range(count)
        ],
    }
    defaults.update(kwargs)
    return CampaignCreate(**defaults)


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def service(session_factory, make_queue, transport, sleep) -> BulkCampaignService:
    return BulkCampaignService(session_factory, make_queue(transport), sleep=sleep)


class TestCreate:
    @pytest.mark.asyncio
    async def test_duplicate_recipients_are_dropped(self, service) -> None:
        data = _campaign(
            0,
            recipients=[
                CampaignRecipient(email="a@example.com"),
                CampaignRecipient(email=" A@Example.com "),
                CampaignRecipient(email="b@example.com"),
            ],
        )

        campaign_id = await service.create_campaign(data)
        progress = await service.get_progress(campaign_id)

        assert progress.total == 2
        assert progress.pending == 2
        assert progress.status is CampaignStatus.DRAFT

    @pytest.mark.asyncio
    async def test_unknown_campaign(self, service) -> None:
        with pytest.raises(CampaignNotFound):
            await service.get_progress(uuid.uuid4())


class TestRunCampaign:
    """Batches go out in order and the counts always add up."""

    @pytest.mark.asyncio
    async def test_sends_in_batches_with_consistent_progress(
        self, service, transport, sleep
    ) -> None:
        campaign_id = await service.create_campaign(_campaign(120))
        seen: list[tuple[int, int, int, int, int]] = []

        async def on_batch(index, progress) -> None:
            seen.append((index, progress.sent, progress.failed, progress.pending, progress.total))

        final = await service.run_campaign(campaign_id, on_batch_complete=on_batch)

        assert [s[0] for s in seen] == [1, 2, 3]
        assert [s[1] for s in seen] == [50, 100, 120]
        for _, sent, failed, pending, total in seen:
            assert sent + failed + pending == total == 120
        assert final.status is CampaignStatus.COMPLETED
        assert final.percent_complete == 100.0
        # no pause after the last batch
        assert len(sleep.delays) == 2
        assert transport.sent[0].to == ["resident0@example.com"]
        assert transport.sent[0].text == "Hi Resident 0, submissions close soon."
        assert transport.sent[-1].to == ["resident119@example.com"]

    @pytest.mark.asyncio
    async def test_failures_are_counted(self, service, transport) -> None:
        transport.script = ["ok", "permanent", "transient", "ok"]
        campaign_id = await service.create_campaign(_campaign(4))

        progress = await service.run_campaign(campaign_id)

        assert (progress.sent, progress.failed, progress.pending) == (2, 1, 1)
        assert progress.sent + progress.failed + progress.pending == progress.total
        # the transient job is left to the poller, so the campaign stays open
        assert progress.status is CampaignStatus.SENDING
        failed = await service.list_failed_jobs(campaign_id)
        assert [j.recipient for j in failed] == ["resident1@example.com"]

    @pytest.mark.asyncio
    async def test_completes_once_retries_finish(self, service, make_queue, transport, clock) -> None:
        transport.script = ["transient"]
        campaign_id = await service.create_campaign(_campaign(2))
        await service.run_campaign(campaign_id)

        clock.advance(hours=1)
        await make_queue(transport).process_due()

        assert await service.refresh_campaign_status() == 1
        progress = await service.get_progress(campaign_id)
        assert progress.status is CampaignStatus.COMPLETED
        assert progress.sent == 2

    @pytest.mark.asyncio
    async def test_cancel_before_next_batch(self, service, transport) -> None:
        campaign_id = await service.create_campaign(_campaign(120))

        async def cancel_after_first(index, progress) -> None:
            if index == 1:
                await service.cancel_campaign(campaign_id)

        progress = await service.run_campaign(campaign_id, on_batch_complete=cancel_after_first)

        assert progress.status is CampaignStatus.CANCELLED
        assert progress.sent == 50
        assert progress.pending == 70
        assert transport.calls == 50

    @pytest.mark.asyncio
    async def test_cancelled_campaign_cannot_be_sent(self, service) -> None:
        campaign_id = await service.create_campaign(_campaign(3))
        progress = await service.cancel_campaign(campaign_id)
        assert progress.status is CampaignStatus.CANCELLED

        with pytest.raises(CampaignStateError):
            await service.run_campaign(campaign_id)
        with pytest.raises(CampaignStateError):
            await service.cancel_campaign(campaign_id)


class TestRestartRecovery:
    """A campaign whose runner died with its process is picked up by the sweep."""

    @pytest.mark.asyncio
    async def test_orphaned_campaign_is_resumed(
        self, service, session_factory, make_queue, transport, clock
    ) -> None:
        campaign_id = await service.create_campaign(_campaign(3))
        async with session_factory() as db:
            await campaigns_crud.set_status(db, campaign_id, CampaignStatus.SENDING, now=clock.now)
            first, *_ = await jobs_crud.list_unsent_campaign_job_ids(db, campaign_id)
            await jobs_crud.claim_job(db, first, clock.now)

        queue = make_queue(transport)
        clock.advance(minutes=20)
        assert await queue.release_stale_claims(timedelta(minutes=15)) == 1
        # first attempts are never taken by the poller
        assert await queue.process_due() == 0

        assert await service.refresh_campaign_status() == 1

        progress = await service.get_progress(campaign_id)
        assert progress.status is CampaignStatus.COMPLETED
        assert (progress.sent, progress.failed, progress.pending) == (3, 0, 0)
        assert len(transport.sent) == 3

    @pytest.mark.asyncio
    async def test_orphaned_cancel_is_settled(self, service, session_factory, transport, clock) -> None:
        campaign_id = await service.create_campaign(_campaign(2))
        async with session_factory() as db:
            await campaigns_crud.set_status(db, campaign_id, CampaignStatus.SENDING, now=clock.now)
            await campaigns_crud.request_cancel(db, campaign_id)

        assert await service.refresh_campaign_status() == 0

        progress = await service.get_progress(campaign_id)
        assert progress.status is CampaignStatus.CANCELLED
        assert transport.sent == []


class TestTestEmails:
    @pytest.mark.asyncio
    async def test_prefixed_and_not_counted(self, service, transport) -> None:
        campaign_id = await service.create_campaign(_campaign(5))

        ids = await service.send_test_emails(campaign_id, ["me@example.com", "you@example.com"])

        assert len(ids) == 2
        assert all(m.subject.startswith("[TEST] ") for m in transport.sent)
        assert transport.sent[0].text == "Hi Test Recipient, submissions close soon."
        progress = await service.get_progress(campaign_id)
        assert (progress.total, progress.sent, progress.pending) == (5, 0, 5)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("count", [0, 5])
    async def test_recipient_limits(self, service, count: int) -> None:
        campaign_id = await service.create_campaign(_campaign(1))

        with pytest.raises(CampaignStateError):
            await service.send_test_emails(
                campaign_id, [f"t{i}@example.com" for i in range(count)]
            )


class TestResend:
    @pytest.mark.asyncio
    async def test_failed_job_resent_by_poller(self, service, make_queue, transport) -> None:
        transport.script = ["permanent"]
        campaign_id = await service.create_campaign(_campaign(1))
        await service.run_campaign(campaign_id)
        (failed,) = await service.list_failed_jobs(campaign_id)

        await service.resend(failed.id)
        await make_queue(transport).process_due()

        progress = await service.get_progress(campaign_id)
        assert (progress.sent, progress.failed) == (1, 0)


def test_personalise_and_chunked() -> None:
    assert personalise("Dear {{name}}", None) == "Dear "
    assert personalise(None, "x") is None
    ids = [uuid.uuid4() for _ in range(5)]
    assert [len(c) for c in chunked(ids, 2)] == [2, 2, 1]
