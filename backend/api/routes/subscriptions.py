"""
Subscription billing routes.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError

from api.dependencies import (
    get_payment_gateway,
    get_session_factory,
    get_subscription_billing_service,
    require_internal_api_key,
)
from api.middleware.rate_limit import get_rate_limit, limiter
from api.schemas.billing import (
    RenewalResultResponse,
    RenewalRunResponse,
    SubscriptionCreate,
    SubscriptionResponse,
    SubscriptionStatusResponse,
)
from core.interfaces.services import PaymentGateway
from services.organizations import OrganizationNotFoundError
from services.renewal_scheduler import RenewalSchedulerService
from services.subscription_billing import (
    NoPaymentMethodError,
    PaymentFailedError,
    PlanNotFoundError,
    SubscriptionBillingService,
    SubscriptionNotFoundError,
    SubscriptionStateError,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    tags=["Subscriptions"],
    dependencies=[Depends(require_internal_api_key)],
)


@router.post(
    "/organizations/{org_id}/subscriptions",
    response_model=SubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(get_rate_limit("management"))
async def create_subscription(
    request: Request,
    org_id: str,
    body: SubscriptionCreate,
    service: SubscriptionBillingService = Depends(get_subscription_billing_service),
):
    """Charge the first period and start a subscription."""
    try:
        subscription = await service.create_subscription(
            org_id, body.plan_code, body.preferred_payment_method_id
        )
    except OrganizationNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")
    except PlanNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except SubscriptionStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except NoPaymentMethodError as e:
        raise HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=str(e))
    except PaymentFailedError as e:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail=f"Payment failed after {e.attempted} attempt(s): {e}",
        )
    return SubscriptionResponse.model_validate(subscription)


@router.get(
    "/organizations/{org_id}/subscriptions",
    response_model=SubscriptionStatusResponse,
)
async def get_subscription_status(
    org_id: str,
    service: SubscriptionBillingService = Depends(get_subscription_billing_service),
):
    """Live subscriptions and payment method availability."""
    status_data = await service.get_subscription_status(org_id)
    return SubscriptionStatusResponse(
        organization_id=status_data["organization_id"],
        subscriptions=[
            SubscriptionResponse.model_validate(s) for s in status_data["subscriptions"]
        ],
        has_payment_methods=status_data["has_payment_methods"],
        payment_method_count=status_data["payment_method_count"],
    )


@router.post("/subscriptions/{subscription_id}/renew", response_model=RenewalResultResponse)
async def renew_subscription(
    subscription_id: str,
    service: SubscriptionBillingService = Depends(get_subscription_billing_service),
):
    """Run one billing cycle for a subscription now."""
    try:
        result = await service.process_renewal(subscription_id)
    except SubscriptionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except SQLAlchemyError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to persist renewal",
        )
    return RenewalResultResponse(**result.to_dict())


@router.post("/subscriptions/{subscription_id}/cancel", response_model=SubscriptionResponse)
async def cancel_subscription(
    subscription_id: str,
    service: SubscriptionBillingService = Depends(get_subscription_billing_service),
):
    """Cancel a subscription and return the organization to the base tier."""
    try:
        subscription = await service.cancel_subscription(subscription_id)
    except SubscriptionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except SubscriptionStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return SubscriptionResponse.model_validate(subscription)


@router.post("/billing/renewals/run", response_model=RenewalRunResponse)
@limiter.limit(get_rate_limit("renewal_run"))
async def run_renewals(
    request: Request,
    gateway: PaymentGateway = Depends(get_payment_gateway),
    session_factory=Depends(get_session_factory),
):
    """Run one scheduler pass over every due subscription."""
    scheduler = RenewalSchedulerService(gateway=gateway, session_factory=session_factory)
    summary = await scheduler.process_due_renewals()
    return RenewalRunResponse(
        processed=summary["processed"],
        renewed=summary["renewed"],
        failed=summary["failed"],
        downgraded=summary["downgraded"],
        errors=summary["errors"],
        results=[RenewalResultResponse(**r) for r in summary["results"]],
    )
