"""Bulk e-mail campaign model."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


if TYPE_CHECKING:  # pragma: no cover - only for type checking
    from .delivery_jobs import DeliveryJob


class BulkCampaign(Base):
    """A message sent to many recipients.

    Recipients are expanded into one ``DeliveryJob`` each when the campaign is
    created; the campaign row only tracks lifecycle and the cancel flag.
    """

    __tablename__ = "bulk_campaigns"
    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'sending', 'completed', 'cancelled')",
            name="ck_bulk_campaigns_status",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    subject: Mapped[str] = mapped_column(String(998), nullable=False)
    body_text: Mapped[str] = mapped_column(Text, nullable=False)
    body_html: Mapped[str | None] = mapped_column(Text, nullable=True)
    reply_to: Mapped[str | None] = mapped_column(String(320), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    total_recipients: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cancel_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    jobs: Mapped[list[DeliveryJob]] = relationship(
        "DeliveryJob", back_populates="campaign", passive_deletes=True
    )

    def __repr__(self) -> str:
        return f"<BulkCampaign(id={self.id}, status={self.status}, total={self.total_recipients})>"
