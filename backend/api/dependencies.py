"""
API dependencies: internal API key check and service wiring.
"""

import logging
import secrets
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.payments.gettrx_adapter import create_gettrx_adapter
from core.interfaces.services import PaymentGateway
from infrastructure.config import get_settings
from infrastructure.database import async_session_maker, get_db
from services.merchant_onboarding import MerchantOnboardingService
from services.payment_methods import PaymentMethodService
from services.subscription_billing import SubscriptionBillingService

logger = logging.getLogger(__name__)


async def require_internal_api_key(
    x_internal_api_key: Annotated[Optional[str], Header(alias="X-Internal-Api-Key")] = None,
) -> None:
    """
    Guard for management endpoints.

    Compares the header to the configured key in constant time. An
    unconfigured key disables the endpoints rather than leaving them open.
    """
    expected_key = get_settings().internal_api_key
    if not expected_key:
        logger.error("Internal API key not configured; management endpoint refused")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Internal API key not configured",
        )

    if not x_internal_api_key or not secrets.compare_digest(x_internal_api_key, expected_key):
        logger.warning("Invalid internal API key attempt")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid X-Internal-Api-Key",
            headers={"WWW-Authenticate": "Header"},
        )


def get_payment_gateway() -> PaymentGateway:
    """Payment gateway used by request handlers."""
    return create_gettrx_adapter()


def get_session_factory():
    """Session factory for work that opens its own transactions (renewal passes)."""
    return async_session_maker


def get_payment_method_service(
    db: AsyncSession = Depends(get_db),
) -> PaymentMethodService:
    return PaymentMethodService(
        db, failure_threshold=get_settings().payment_method_failure_threshold
    )


def get_subscription_billing_service(
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> SubscriptionBillingService:
    return SubscriptionBillingService(db, gateway)


def get_onboarding_service(
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> MerchantOnboardingService:
    return MerchantOnboardingService(db, gateway)
