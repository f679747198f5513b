"""Tests for the background delivery scheduler."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from core import scheduler as scheduler_module
from core.scheduler import (
    STALE_CLAIM_AGE,
    run_campaign_sweep,
    run_delivery_poll,
    run_stale_claim_release,
    setup_scheduler,
)


def _queue(interval: int = 30) -> MagicMock:
    queue = MagicMock()
    queue.config.poll_interval_seconds = interval
    queue.process_due = AsyncMock(return_value=0)
    queue.release_stale_claims = AsyncMock(return_value=0)
    return queue


class TestSetupScheduler:
    def test_registers_the_three_jobs(self) -> None:
        sched = setup_scheduler(_queue(interval=45), MagicMock())

        jobs = {job.id: job for job in sched.get_jobs()}
        assert set(jobs) == {"delivery_poll", "campaign_sweep", "release_stale_claims"}
        assert jobs["delivery_poll"].trigger.interval.total_seconds() == 45
        assert jobs["delivery_poll"].max_instances == 1
        assert jobs["delivery_poll"].coalesce is True
        assert scheduler_module.scheduler is sched


class TestScheduledJobs:
    """Job wrappers log failures instead of killing the scheduler."""

    @pytest.mark.asyncio
    async def test_poll_processes_due_jobs(self) -> None:
        queue = _queue()
        await run_delivery_poll(queue)
        queue.process_due.assert_awaited_once_with()

    @pytest.mark.asyncio
    async def test_poll_failure_is_logged(self, caplog) -> None:
        queue = _queue()
        queue.process_due.side_effect = RuntimeError("database unavailable")

        await run_delivery_poll(queue)

        assert "Delivery poll failed: database unavailable" in caplog.text

    @pytest.mark.asyncio
    async def test_sweep_refreshes_campaigns(self, caplog) -> None:
        campaigns = MagicMock()
        campaigns.refresh_campaign_status = AsyncMock(return_value=2)

        with caplog.at_level("INFO", logger="core.scheduler"):
            await run_campaign_sweep(campaigns)

        assert "2 campaign(s) completed" in caplog.text

    @pytest.mark.asyncio
    async def test_stale_release_uses_fifteen_minute_cutoff(self) -> None:
        queue = _queue()
        await run_stale_claim_release(queue)
        queue.release_stale_claims.assert_awaited_once_with(STALE_CLAIM_AGE)
