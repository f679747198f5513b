"""Schemas for the canonical submission document and its rendered artifact."""

from __future__ import annotations

from datetime import date
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SectionType(StrEnum):
    HEADER = "header"
    LABEL = "label"
    VALUE = "value"
    DECLARATION = "declaration"


class Section(BaseModel):
    """One fixed block of the submission.

    ``label`` is only used by value and declaration sections; ``level`` only
    by headers.
    """

    key: str
    type: SectionType
    editable: bool = False
    content: str = ""
    label: str | None = None
    level: int = Field(default=2, ge=1, le=4)

    model_config = ConfigDict(frozen=True)

    def to_markdown(self) -> str:
        if self.type is SectionType.HEADER:
            return f"{'#' * self.level} {self.content}"
        if self.type is SectionType.LABEL:
            return f"**{self.content}**"
        if self.label:
            return f"**{self.label}:** {self.content}"
        return self.content


class SubmitterDetails(BaseModel):
    first_name: str
    last_name: str
    residential_address: str
    suburb: str
    state: str
    postcode: str
    email: str
    postal_address_same: bool = True
    postal_address: str | None = None
    postal_suburb: str | None = None
    postal_state: str | None = None
    postal_postcode: str | None = None
    postal_email: str | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class SubmissionMetadata(BaseModel):
    """Identifiers and addressee details that the document reproduces verbatim."""

    council_name: str
    council_email: str | None = None
    recipient_name: str | None = Field(
        default=None, description="Named addressee, e.g. the council CEO"
    )
    recipient_title: str | None = None
    site_address: str
    application_number: str
    lot_number: str | None = None
    plan_number: str | None = None
    submitter: SubmitterDetails
    submission_date: date
    position: str = "Objecting"

    model_config = ConfigDict(frozen=True)

    @property
    def subject(self) -> str:
        return f"Objection to Development Application {self.application_number}"


class DeclarationTemplate(BaseModel):
    """Fixed declaration boilerplate. Only the signature fields are editable."""

    heading: str = "Declaration"
    intro: str = "I understand and acknowledge that:"
    statements: tuple[str, ...] = (
        "The information provided in this submission is true and correct",
        "This submission is not confidential and may be published by the council",
    )
    agreement: str = "By submitting this form electronically, I agree with the declaration above."

    model_config = ConfigDict(frozen=True)


DEFAULT_DECLARATION = DeclarationTemplate()


class SubmissionDocument(BaseModel):
    fixed_sections: tuple[Section, ...]
    grounds_body: str
    custom_grounds: str | None = None

    model_config = ConfigDict(frozen=True)

    @field_validator("custom_grounds")
    @classmethod
    def _blank_to_none(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()

    @property
    def title(self) -> str:
        for section in self.fixed_sections:
            if section.type is SectionType.HEADER and section.level == 1:
                return section.content
        return "Submission"

    def section(self, key: str) -> Section | None:
        for s in self.fixed_sections:
            if s.key == key:
                return s
        return None

    def grounds_markdown(self) -> str:
        """Custom grounds (as numbered ground 1) followed by the generated body."""
        parts: list[str] = []
        if self.custom_grounds:
            parts.append("### 1. Grounds raised by the submitter")
            parts.append(self.custom_grounds)
        if self.grounds_body.strip():
            parts.append(self.grounds_body.strip())
        return "\n\n".join(parts)

    def to_markdown(self) -> str:
        """Assemble the canonical body: fixed sections, grounds, declaration."""
        head = [
            s.to_markdown()
            for s in self.fixed_sections
            if s.type is not SectionType.DECLARATION
        ]
        tail = [
            s.to_markdown()
            for s in self.fixed_sections
            if s.type is SectionType.DECLARATION
        ]
        blocks = [*head, "---", self.grounds_markdown(), "---", *tail]
        return "\n\n".join(b for b in blocks if b)


class RenderEngine(StrEnum):
    PRIMARY = "primary"
    FALLBACK = "fallback"


class RenderedArtifact(BaseModel):
    binary: bytes = Field(repr=False)
    mime_type: str = "application/pdf"
    page_count: int = Field(..., ge=1)
    engine_used: RenderEngine
    filename: str = "submission.pdf"

    model_config = ConfigDict(frozen=True)
