"""Shared test fixtures for pytest.

ENVIRONMENT is forced to ``test`` before any application module is imported
so settings never read a local .env file and the app runs in mock mode.
"""

import dataclasses
import os


os.environ["ENVIRONMENT"] = "test"
os.environ.setdefault("GENERATION_MOCK_MODE", "true")
os.environ.setdefault("EMAIL_PROVIDER", "disabled")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from collections.abc import AsyncGenerator, Callable
from datetime import UTC, date, datetime, timedelta

import pytest
import pytest_asyncio
from pydantic_ai import models
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from core.config import DeliveryConfig
from core.email import EmailMessage, MailPermanentError, MailTransientError
from models import Base
from schemas.documents import SubmissionMetadata, SubmitterDetails
from services.delivery.queue import DeliveryQueue


# Block any real model requests in tests
models.ALLOW_MODEL_REQUESTS = False


class FakeClock:
    """Controllable UTC clock for queue tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 10, 18, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeTransport:
    """Records sent messages; ``script`` decides each send's outcome.

    Entries are ``"ok"``, ``"transient"`` or ``"permanent"`` and are consumed
    in order; when exhausted every send succeeds.
    """

    def __init__(self, script: list[str] | None = None) -> None:
        self.script = list(script or [])
        self.sent: list[EmailMessage] = []
        self.calls = 0

    async def send(self, message: EmailMessage) -> str:
        self.calls += 1
        outcome = self.script.pop(0) if self.script else "ok"
        if outcome == "transient":
            raise MailTransientError("HTTP 503: try later")
        if outcome == "permanent":
            raise MailPermanentError("HTTP 400: bad recipient")
        self.sent.append(message)
        return f"msg-{self.calls}"


class RecordingNotifier:
    def __init__(self) -> None:
        self.failed: list[str] = []

    async def job_failed(self, job) -> None:
        self.failed.append(str(job.id))


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """In-memory sqlite shared by every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    await engine.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def delivery_config() -> DeliveryConfig:
    return DeliveryConfig(
        max_attempts=3,
        backoff_base_seconds=60.0,
        backoff_max_seconds=600.0,
        poll_batch=50,
        bulk_batch_size=50,
        bulk_batch_delay_seconds=0.0,
        bulk_send_concurrency=1,
        sender_address="noreply@example.org",
    )


@pytest.fixture
def make_queue(
    session_factory: async_sessionmaker[AsyncSession],
    delivery_config: DeliveryConfig,
    clock: FakeClock,
    notifier: RecordingNotifier,
) -> Callable[..., DeliveryQueue]:
    def _make(transport: FakeTransport, **overrides: object) -> DeliveryQueue:
        config = dataclasses.replace(delivery_config, **overrides)
        return DeliveryQueue(
            session_factory, transport, config, notifier=notifier, clock=clock
        )

    return _make


@pytest.fixture
def submission_metadata() -> SubmissionMetadata:
    return SubmissionMetadata(
        council_name="Gold Coast City Council",
        council_email="mail@council.example.gov.au",
        recipient_name="Chief Executive Officer",
        site_address="940 Currumbin Creek Road, Currumbin Valley",
        application_number="COM/2025/271",
        lot_number="2",
        plan_number="RP123456",
        submitter=SubmitterDetails(
            first_name="Jordan",
            last_name="Smith",
            residential_address="12 Valley Road",
            suburb="Currumbin Valley",
            state="QLD",
            postcode="4223",
            email="jordan@example.com",
        ),
        submission_date=date(2026, 10, 18),
    )
