"""
API request and response schemas.
"""

from .billing import (
    MerchantApplicationCreate,
    MerchantApplicationResponse,
    MerchantSubmissionResponse,
    PaymentMethodCreate,
    PaymentMethodListResponse,
    PaymentMethodResponse,
    PriorityUpdate,
    RenewalResultResponse,
    RenewalRunResponse,
    SubscriptionCreate,
    SubscriptionResponse,
    SubscriptionStatusResponse,
)
from .webhooks import WebhookAckResponse

__all__ = [
    "MerchantApplicationCreate",
    "MerchantApplicationResponse",
    "MerchantSubmissionResponse",
    "PaymentMethodCreate",
    "PaymentMethodListResponse",
    "PaymentMethodResponse",
    "PriorityUpdate",
    "RenewalResultResponse",
    "RenewalRunResponse",
    "SubscriptionCreate",
    "SubscriptionResponse",
    "SubscriptionStatusResponse",
    "WebhookAckResponse",
]
