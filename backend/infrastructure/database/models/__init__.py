"""
SQLAlchemy database models.
"""

from .base import Base, TimestampMixin
from .billing import PaymentInstrument, Subscription
from .merchant import MerchantApplication, WebhookEventRecord, WebhookEventStatus
from .organization import Organization

__all__ = [
    "Base",
    "TimestampMixin",
    "Organization",
    "MerchantApplication",
    "WebhookEventRecord",
    "WebhookEventStatus",
    "PaymentInstrument",
    "Subscription",
]
