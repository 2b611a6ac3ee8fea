# Domain Entities
# Pure business rules with no external dependencies
from .billing import (
    BillingInterval,
    InstrumentStatus,
    InstrumentType,
    OrganizationSubscriptionStatus,
    RetryDecision,
    RetryPolicy,
    SubscriptionStatus,
    advance_billing_date,
    ensure_utc,
    next_action,
    order_instruments,
)
from .merchant import (
    STATUS_PRIORITY,
    ApplicationStatus,
    EventType,
    MerchantStatus,
    StatusUpdate,
    SubmissionStatus,
    UnderwritingStatus,
    check_transition,
    map_event_to_status,
)

__all__ = [
    "ApplicationStatus",
    "SubmissionStatus",
    "UnderwritingStatus",
    "MerchantStatus",
    "EventType",
    "STATUS_PRIORITY",
    "StatusUpdate",
    "map_event_to_status",
    "check_transition",
    "SubscriptionStatus",
    "OrganizationSubscriptionStatus",
    "BillingInterval",
    "InstrumentStatus",
    "InstrumentType",
    "RetryPolicy",
    "RetryDecision",
    "next_action",
    "advance_billing_date",
    "order_instruments",
    "ensure_utc",
]
