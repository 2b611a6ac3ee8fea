"""
Merchant onboarding and webhook ledger models.
"""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from core.domain.merchant import ApplicationStatus, SubmissionStatus

from .base import Base, TimestampMixin


class WebhookEventStatus:
    """Processing state of a ledger record."""

    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


class MerchantApplication(Base, TimestampMixin):
    """Onboarding application that grants an organization a gateway account."""

    __tablename__ = "merchant_applications"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    organization_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    external_application_id: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )
    external_account_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    status: Mapped[str] = mapped_column(
        String(50),
        default=ApplicationStatus.CREATED.value,
        nullable=False,
    )
    submission_status: Mapped[str] = mapped_column(
        String(50),
        default=SubmissionStatus.DRAFT.value,
        nullable=False,
    )
    underwriting_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    submission_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return f"<MerchantApplication(id={self.id}, status={self.status})>"


class WebhookEventRecord(Base, TimestampMixin):
    """Idempotency ledger entry for one gateway webhook delivery id."""

    __tablename__ = "webhook_events"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    event_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    external_application_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    organization_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    status: Mapped[str] = mapped_column(
        String(50),
        default=WebhookEventStatus.PENDING,
        nullable=False,
    )
    result: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Delivery metadata
    raw_payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    signature: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    source_ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("ix_webhook_events_status_created", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<WebhookEventRecord(event_id={self.event_id}, status={self.status})>"
