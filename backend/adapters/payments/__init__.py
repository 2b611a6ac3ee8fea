"""Payment adapters for gateway charges and merchant onboarding."""

from .gettrx_adapter import (
    GettrxAdapter,
    GettrxAPIError,
    GettrxAuthError,
    GettrxError,
    GettrxTimeoutError,
    GettrxWebhookError,
    WebhookEvent,
    create_gettrx_adapter,
    validate_webhook_payload,
)

__all__ = [
    "GettrxAdapter",
    "WebhookEvent",
    "GettrxError",
    "GettrxAPIError",
    "GettrxAuthError",
    "GettrxTimeoutError",
    "GettrxWebhookError",
    "create_gettrx_adapter",
    "validate_webhook_payload",
]
