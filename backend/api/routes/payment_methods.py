"""
Payment method management routes.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError

from api.dependencies import get_payment_method_service, require_internal_api_key
from api.middleware.rate_limit import get_rate_limit, limiter
from api.schemas.billing import (
    PaymentMethodCreate,
    PaymentMethodListResponse,
    PaymentMethodResponse,
    PriorityUpdate,
)
from services.organizations import OrganizationNotFoundError, OrganizationService
from services.payment_methods import (
    DuplicatePaymentMethodError,
    PaymentMethodNotFoundError,
    PaymentMethodService,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/organizations/{org_id}/payment-methods",
    tags=["Payment Methods"],
    dependencies=[Depends(require_internal_api_key)],
)


async def _ensure_organization(service: PaymentMethodService, org_id: str) -> None:
    try:
        await OrganizationService(service.db).get(org_id)
    except OrganizationNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")


async def _commit(service: PaymentMethodService) -> None:
    try:
        await service.db.commit()
    except SQLAlchemyError as e:
        await service.db.rollback()
        logger.error("Failed to save payment method change: %s", e, exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save payment method",
        )


@router.get("", response_model=PaymentMethodListResponse)
async def list_payment_methods(
    org_id: str,
    service: PaymentMethodService = Depends(get_payment_method_service),
):
    """List active payment methods in the order they will be charged."""
    await _ensure_organization(service, org_id)
    instruments = await service.list_active(org_id)
    return PaymentMethodListResponse(
        payment_methods=[PaymentMethodResponse.model_validate(i) for i in instruments],
        total=len(instruments),
    )


@router.post("", response_model=PaymentMethodResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(get_rate_limit("management"))
async def add_payment_method(
    request: Request,
    org_id: str,
    body: PaymentMethodCreate,
    service: PaymentMethodService = Depends(get_payment_method_service),
):
    """Store a tokenized card or bank account."""
    await _ensure_organization(service, org_id)
    try:
        instrument = await service.add(
            organization_id=org_id,
            provider_payment_method_id=body.provider_payment_method_id,
            instrument_type=body.instrument_type.value,
            card_brand=body.card_brand,
            last4=body.last4,
            exp_month=body.exp_month,
            exp_year=body.exp_year,
            nickname=body.nickname,
            priority=body.priority,
            is_default=body.is_default,
        )
    except DuplicatePaymentMethodError as e:
        await service.db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    await _commit(service)
    return PaymentMethodResponse.model_validate(instrument)


@router.post("/{payment_method_id}/default", response_model=PaymentMethodResponse)
async def set_default_payment_method(
    org_id: str,
    payment_method_id: str,
    service: PaymentMethodService = Depends(get_payment_method_service),
):
    """Make a payment method the default (tried first)."""
    try:
        instrument = await service.set_default(org_id, payment_method_id)
    except PaymentMethodNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    await _commit(service)
    return PaymentMethodResponse.model_validate(instrument)


@router.patch("/{payment_method_id}/priority", response_model=PaymentMethodResponse)
async def update_payment_method_priority(
    org_id: str,
    payment_method_id: str,
    body: PriorityUpdate,
    service: PaymentMethodService = Depends(get_payment_method_service),
):
    """Change where a payment method sits in the attempt order."""
    try:
        instrument = await service.update_priority(org_id, payment_method_id, body.priority)
    except PaymentMethodNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    await _commit(service)
    return PaymentMethodResponse.model_validate(instrument)


@router.delete("/{payment_method_id}", response_model=PaymentMethodResponse)
async def remove_payment_method(
    org_id: str,
    payment_method_id: str,
    service: PaymentMethodService = Depends(get_payment_method_service),
):
    """Deactivate a payment method. The record is kept for billing history."""
    try:
        instrument = await service.deactivate(org_id, payment_method_id)
    except PaymentMethodNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    await _commit(service)
    return PaymentMethodResponse.model_validate(instrument)
