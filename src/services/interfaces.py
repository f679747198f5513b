"""Collaborator interfaces consumed by the submission pipeline.

These protocols keep the pipeline independent of where concern templates and
submission records live, which text-generation vendor is used and who gets
told about failed deliveries. In-memory implementations are provided for
development and tests.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Protocol

from core.exceptions import SubmissionNotFound
from schemas.documents import RenderedArtifact, SubmissionDocument
from schemas.generation import (
    GenerationResult,
    ProviderPrompt,
    ProviderResponse,
    ProviderUsed,
    SelectedConcern,
    ValidationOutcome,
    ValidationStatus,
)
from schemas.submissions import SubmissionRecord, SubmissionStatus


if TYPE_CHECKING:
    from models.delivery_jobs import DeliveryJob

logger = logging.getLogger(__name__)


class ConcernTemplateStore(Protocol):
    """Read-only lookup of concern texts by key."""

    async def get_concerns(self, keys: Sequence[str]) -> dict[str, str]:
        """Return ``{key: full_text}`` for every known key in ``keys``."""
        ...


class SubmissionRecordStore(Protocol):
    async def get_submission(self, submission_id: str) -> SubmissionRecord: ...

    async def save_generation(self, submission_id: str, result: GenerationResult) -> None: ...

    async def save_validation(self, submission_id: str, outcome: ValidationOutcome) -> None: ...

    async def save_document(self, submission_id: str, document: SubmissionDocument) -> None: ...

    async def save_artifact(
        self, submission_id: str, artifact: RenderedArtifact, delivery_job_id: str | None
    ) -> None: ...

    async def mark_pending(self, submission_id: str, reason: str) -> None: ...


class TextGenerationProvider(Protocol):
    """One text-generation vendor (or the offline mock)."""

    name: ProviderUsed
    model_id: str

    async def generate(self, prompt: ProviderPrompt) -> ProviderResponse: ...


class FailureNotifier(Protocol):
    """Told about every delivery job that reaches the terminal failed state."""

    async def job_failed(self, job: DeliveryJob) -> None: ...


async def resolve_selected_concerns(
    store: ConcernTemplateStore,
    keys: Iterable[str],
    priority: Sequence[str] | None = None,
) -> tuple[SelectedConcern, ...]:
    """Look up the selected concerns and put them in output order.

    Keys named in ``priority`` come first in that order, the rest keep the
    order they were selected in. Duplicates are dropped and unknown keys are
    skipped with a warning.
    """
    selected = list(dict.fromkeys(k for k in keys if k))
    if priority:
        rank = {k: i for i, k in enumerate(dict.fromkeys(priority))}
        selected.sort(key=lambda k: (0, rank[k]) if k in rank else (1, 0))

    texts = await store.get_concerns(selected)
    resolved: list[SelectedConcern] = []
    for key in selected:
        text = texts.get(key)
        if not text or not text.strip():
            logger.warning("Selected concern %s has no template text; skipping", key)
            continue
        resolved.append(SelectedConcern(key=key, full_text=text))
    return tuple(resolved)


class InMemoryConcernStore:
    def __init__(self, concerns: Mapping[str, str] | None = None) -> None:
        self._concerns = dict(concerns or {})

    async def get_concerns(self, keys: Sequence[str]) -> dict[str, str]:
        return {k: self._concerns[k] for k in keys if k in self._concerns}


class InMemorySubmissionStore:
    """Keeps submission records in a dict keyed by id."""

    def __init__(self, records: Iterable[SubmissionRecord] = ()) -> None:
        self._records = {r.id: r for r in records}

    def add(self, record: SubmissionRecord) -> None:
        self._records[record.id] = record

    async def get_submission(self, submission_id: str) -> SubmissionRecord:
        record = self._records.get(submission_id)
        if record is None:
            raise SubmissionNotFound(f"Submission {submission_id} not found")
        return record

    async def save_generation(self, submission_id: str, result: GenerationResult) -> None:
        record = await self.get_submission(submission_id)
        record.last_generation = result

    async def save_validation(self, submission_id: str, outcome: ValidationOutcome) -> None:
        record = await self.get_submission(submission_id)
        record.last_validation = outcome
        if outcome.status is ValidationStatus.REJECTED:
            record.status = SubmissionStatus.REJECTED

    async def save_document(self, submission_id: str, document: SubmissionDocument) -> None:
        record = await self.get_submission(submission_id)
        record.document = document
        record.status = SubmissionStatus.GENERATED
        record.pending_reason = None

    async def save_artifact(
        self, submission_id: str, artifact: RenderedArtifact, delivery_job_id: str | None
    ) -> None:
        record = await self.get_submission(submission_id)
        record.artifact = artifact
        record.status = SubmissionStatus.FINALIZED
        record.pending_reason = None
        if delivery_job_id:
            record.delivery_job_ids.append(delivery_job_id)

    async def mark_pending(self, submission_id: str, reason: str) -> None:
        record = await self.get_submission(submission_id)
        record.status = SubmissionStatus.PENDING
        record.pending_reason = reason


class LoggingFailureNotifier:
    """Default notifier: an error-level log line operators can alert on."""

    async def job_failed(self, job: DeliveryJob) -> None:
        logger.error(
            "Delivery job %s failed permanently after %s attempts: %s",
            job.id,
            job.attempt_count,
            job.last_error,
            extra={"delivery_job_id": str(job.id), "email_type": job.email_type},
        )
