"""Schemas for outbound e-mail jobs and bulk campaigns."""

from __future__ import annotations

import base64
import uuid
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DeliveryStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"


class CampaignStatus(StrEnum):
    DRAFT = "draft"
    SENDING = "sending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Attachment(BaseModel):
    filename: str
    content: bytes = Field(repr=False)
    content_type: str = "application/pdf"

    model_config = ConfigDict(frozen=True)

    def to_json(self) -> dict[str, str]:
        """Form persisted in the ``attachments`` JSON column."""
        return {
            "filename": self.filename,
            "content_type": self.content_type,
            "content_b64": base64.b64encode(self.content).decode("ascii"),
        }

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> Attachment:
        return cls(
            filename=data["filename"],
            content_type=data.get("content_type", "application/octet-stream"),
            content=base64.b64decode(data["content_b64"]),
        )


class DeliveryJobCreate(BaseModel):
    recipient: str = Field(..., min_length=3, max_length=320)
    cc: list[str] = Field(default_factory=list)
    reply_to: str | None = None
    subject: str = Field(..., min_length=1, max_length=998)
    body_text: str
    body_html: str | None = None
    attachments: list[Attachment] = Field(default_factory=list)
    priority: int = 0
    max_attempts: int | None = Field(default=None, ge=1)
    email_type: str = "submission"
    submission_id: str | None = None
    campaign_id: uuid.UUID | None = None
    campaign_position: int | None = None

    @field_validator("recipient", "reply_to")
    @classmethod
    def _strip(cls, v: str | None) -> str | None:
        return v.strip() if v else v


class DeliveryJobRead(BaseModel):
    id: uuid.UUID
    recipient: str
    subject: str
    status: DeliveryStatus
    attempt_count: int
    max_attempts: int
    next_attempt_at: datetime
    last_error: str | None = None
    email_type: str
    campaign_id: uuid.UUID | None = None
    sent_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class CampaignRecipient(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    name: str | None = None


class CampaignCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    subject: str = Field(..., min_length=1, max_length=998)
    body_text: str
    body_html: str | None = None
    reply_to: str | None = None
    recipients: list[CampaignRecipient] = Field(..., min_length=1)


class CampaignProgress(BaseModel):
    """Counts for one campaign. ``sent + failed + pending == total`` always.

    ``pending`` covers every non-terminal job, including ``in_flight``
    (currently processing) ones.
    """

    campaign_id: uuid.UUID
    status: CampaignStatus
    total: int
    sent: int
    failed: int
    pending: int
    in_flight: int = 0
    percent_complete: float = 0.0

    model_config = ConfigDict(frozen=True)


class TestSendRequest(BaseModel):
    recipients: list[str] = Field(..., min_length=1, max_length=4)
