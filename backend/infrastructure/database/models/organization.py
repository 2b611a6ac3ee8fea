"""
Organization database model.
"""

from typing import Optional
from uuid import uuid4

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from core.domain.merchant import MerchantStatus
from core.plans import BASE_TIER

from .base import Base, TimestampMixin


class Organization(Base, TimestampMixin):
    """Nonprofit tenant that accepts donations and holds a platform subscription."""

    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Merchant account (set by onboarding webhooks)
    merchant_status: Mapped[str] = mapped_column(
        String(50),
        default=MerchantStatus.NOT_STARTED.value,
        nullable=False,
    )
    merchant_account_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    ready_to_charge: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Platform subscription entitlement
    subscription_tier: Mapped[str] = mapped_column(
        String(50),
        default=BASE_TIER,
        nullable=False,
    )
    subscription_status: Mapped[str] = mapped_column(
        String(50),
        default="inactive",
        nullable=False,
    )
    gateway_customer_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Tier-gated configuration, kept across downgrades
    custom_domain: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    custom_domain_ssl_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, tier={self.subscription_tier})>"
