"""Submission record as seen by the pipeline."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field

from schemas.documents import RenderedArtifact, SubmissionDocument, SubmissionMetadata
from schemas.generation import GenerationMetadata, GenerationResult, ValidationOutcome


class SubmissionStatus(StrEnum):
    DRAFT = "draft"
    GENERATED = "generated"
    REJECTED = "rejected"
    PENDING = "pending"
    FINALIZED = "finalized"


class SubmissionRecord(BaseModel):
    id: str
    metadata: SubmissionMetadata
    track: str | None = None
    approved_facts: str = ""
    status: SubmissionStatus = SubmissionStatus.DRAFT
    last_generation: GenerationResult | None = None
    last_validation: ValidationOutcome | None = None
    document: SubmissionDocument | None = None
    artifact: RenderedArtifact | None = None
    pending_reason: str | None = None
    delivery_job_ids: list[str] = Field(default_factory=list)

    def generation_metadata(self) -> GenerationMetadata:
        meta = self.metadata
        return GenerationMetadata(
            recipient=meta.recipient_name or meta.council_name,
            subject=meta.subject,
            application_number=meta.application_number,
            site_address=meta.site_address,
            track=self.track,
        )


class DraftResult(BaseModel):
    submission_id: str
    document: SubmissionDocument
    markdown: str
    word_count: int
    warnings: list[str] = Field(default_factory=list)


class FinalizeResult(BaseModel):
    submission_id: str
    filename: str
    page_count: int
    engine_used: str
    delivery_job_id: str


class SubmissionCreate(BaseModel):
    id: str | None = Field(default=None, min_length=1, max_length=64)
    metadata: SubmissionMetadata
    track: str | None = None
    approved_facts: str = ""


class DraftRequest(BaseModel):
    submission_id: str
    concern_keys: list[str] = Field(..., min_length=1)
    priority_keys: list[str] | None = None
    style_sample: str | None = Field(default=None, max_length=20000)
    custom_grounds: str | None = Field(default=None, max_length=20000)


class FinalizeRequest(BaseModel):
    submission_id: str
    edits: dict[str, str] = Field(default_factory=dict)
