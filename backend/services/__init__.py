"""
Service layer for business logic.

Services take an AsyncSession (and a PaymentGateway where they charge)
and are constructed per request or per scheduler cycle.
"""

from services.merchant_onboarding import MerchantOnboardingService
from services.merchant_webhooks import WebhookOutcome, WebhookProcessor
from services.organizations import OrganizationService
from services.payment_methods import PaymentMethodService
from services.payment_orchestrator import PaymentAttemptOrchestrator, PaymentOutcome
from services.subscription_billing import RenewalResult, SubscriptionBillingService
from services.webhook_ledger import DeliveryContext, IdempotencyLedger

__all__ = [
    "DeliveryContext",
    "IdempotencyLedger",
    "MerchantOnboardingService",
    "OrganizationService",
    "PaymentAttemptOrchestrator",
    "PaymentMethodService",
    "PaymentOutcome",
    "RenewalResult",
    "SubscriptionBillingService",
    "WebhookOutcome",
    "WebhookProcessor",
]
