"""
Merchant onboarding routes.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from api.dependencies import get_onboarding_service, require_internal_api_key
from api.schemas.billing import (
    MerchantApplicationCreate,
    MerchantApplicationResponse,
    MerchantSubmissionResponse,
)
from services.merchant_onboarding import (
    ApplicationNotFoundError,
    MerchantOnboardingService,
    SubmissionError,
)
from services.organizations import OrganizationNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/organizations/{org_id}/merchant-application",
    tags=["Merchant Onboarding"],
    dependencies=[Depends(require_internal_api_key)],
)

_SUBMISSION_ERROR_STATUS = {
    "ALREADY_SUBMITTED": status.HTTP_409_CONFLICT,
    "NOT_READY": status.HTTP_400_BAD_REQUEST,
    "APPLICATION_NOT_FOUND": status.HTTP_404_NOT_FOUND,
}


@router.post("", response_model=MerchantApplicationResponse, status_code=status.HTTP_201_CREATED)
async def create_merchant_application(
    org_id: str,
    body: MerchantApplicationCreate,
    service: MerchantOnboardingService = Depends(get_onboarding_service),
):
    """Register the gateway application id for an organization."""
    try:
        application = await service.create_application(
            org_id, body.external_application_id, body.external_account_id
        )
    except OrganizationNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")
    except IntegrityError:
        await service.db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Application id is already registered",
        )
    return MerchantApplicationResponse.model_validate(application)


@router.get("", response_model=MerchantApplicationResponse)
async def get_merchant_application(
    org_id: str,
    service: MerchantOnboardingService = Depends(get_onboarding_service),
):
    """Current merchant application for an organization."""
    try:
        application = await service.get_application(org_id)
    except ApplicationNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return MerchantApplicationResponse.model_validate(application)


@router.post("/submit", response_model=MerchantSubmissionResponse)
async def submit_merchant_application(
    org_id: str,
    service: MerchantOnboardingService = Depends(get_onboarding_service),
):
    """Submit the organization's application to underwriting."""
    try:
        result = await service.submit_application(org_id)
    except ApplicationNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except SubmissionError as e:
        raise HTTPException(
            status_code=_SUBMISSION_ERROR_STATUS.get(e.code, status.HTTP_502_BAD_GATEWAY),
            detail={"message": str(e), "code": e.code},
        )
    except SQLAlchemyError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to persist submission",
        )
    return MerchantSubmissionResponse(
        application_id=result["application_id"],
        status=result["status"],
        submitted_at=result["submitted_at"],
        submission_attempts=result["submission_attempts"],
    )
