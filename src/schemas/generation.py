"""Schemas for grounds generation and content validation."""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ProviderUsed(StrEnum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    MOCK = "mock"


class GenerationMetadata(BaseModel):
    """Application identifiers the model may reference in the grounds."""

    recipient: str = Field(..., description="Addressee, e.g. the council CEO")
    subject: str
    application_number: str
    site_address: str
    track: str | None = Field(default=None, description="Submission track, if any")

    model_config = ConfigDict(frozen=True, extra="forbid")


class SelectedConcern(BaseModel):
    key: str = Field(..., min_length=1)
    full_text: str

    model_config = ConfigDict(frozen=True, extra="forbid")


class GenerationRequest(BaseModel):
    """Everything one generation attempt needs. Built fresh per attempt."""

    metadata: GenerationMetadata
    approved_facts: str = ""
    selected_concerns: tuple[SelectedConcern, ...] = ()
    style_sample: str | None = None
    custom_grounds: str | None = None
    word_limit: int = Field(default=2500, gt=0)
    allowed_links: tuple[str, ...] = ()

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("style_sample", "custom_grounds")
    @classmethod
    def _blank_to_none(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v


class TokenUsage(BaseModel):
    prompt: int = 0
    completion: int = 0

    model_config = ConfigDict(frozen=True)


class AttemptRecord(BaseModel):
    """One provider attempt, kept as the audit trail of a generation."""

    provider: ProviderUsed
    model_id: str
    attempt: int
    outcome: Literal["success", "transient", "schema", "permanent", "circuit_open"]
    detail: str | None = None

    model_config = ConfigDict(frozen=True)


class GenerationResult(BaseModel):
    provider_used: ProviderUsed
    model_id: str
    raw_text: str
    token_usage: TokenUsage = TokenUsage()
    attempt_count: int = Field(..., ge=1)
    attempts: tuple[AttemptRecord, ...] = ()

    model_config = ConfigDict(frozen=True)


class ValidationStatus(StrEnum):
    PASS = "pass"
    REJECTED = "rejected"


class Violation(BaseModel):
    rule: Literal[
        "word_limit",
        "min_utilization",
        "forbidden_pattern",
        "link_allow_list",
        "data_preservation",
    ]
    detail: str

    model_config = ConfigDict(frozen=True)


class ValidationConstraints(BaseModel):
    """Per-call constraints for the content validator."""

    word_limit: int = Field(default=2500, gt=0)
    min_utilization: float = Field(default=0.1, ge=0.0, le=1.0)
    allowed_links: tuple[str, ...] = ()
    extra_banned_phrases: tuple[str, ...] = ()
    source_texts: tuple[str, ...] = Field(
        default=(),
        description="Concern texts whose measurements should survive verbatim",
    )

    model_config = ConfigDict(frozen=True)


class ValidationOutcome(BaseModel):
    status: ValidationStatus
    sanitized_text: str = ""
    violations: tuple[Violation, ...] = ()
    warnings: tuple[Violation, ...] = ()
    word_count: int = 0

    model_config = ConfigDict(frozen=True)

    @property
    def passed(self) -> bool:
        return self.status is ValidationStatus.PASS


class ProviderPrompt(BaseModel):
    """What a provider adapter receives. ``request`` is kept for offline providers."""

    system: str
    user: str
    request: GenerationRequest

    model_config = ConfigDict(frozen=True)


class ProviderResponse(BaseModel):
    """Raw model output before the orchestrator extracts the text field."""

    text: str
    model_id: str
    token_usage: TokenUsage = TokenUsage()

    model_config = ConfigDict(frozen=True)
