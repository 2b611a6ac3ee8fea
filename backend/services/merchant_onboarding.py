"""
Merchant onboarding: application creation and explicit submission to underwriting.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.payments.gettrx_adapter import GettrxAPIError, GettrxError
from core.domain.merchant import (
    SUBMISSION_LOCKED_STATUSES,
    ApplicationStatus,
    MerchantStatus,
    SubmissionStatus,
    parse_status,
)
from core.interfaces.services import PaymentGateway
from infrastructure.database.models import MerchantApplication
from services.organizations import OrganizationService

logger = logging.getLogger(__name__)


class ApplicationNotFoundError(Exception):
    """Raised when an organization has no merchant application."""

    pass


class SubmissionError(Exception):
    """Raised when an application cannot be submitted."""

    def __init__(self, message: str, code: str):
        super().__init__(message)
        self.code = code


class MerchantOnboardingService:
    """Creates merchant applications and submits them to the gateway."""

    def __init__(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        organizations: Optional[OrganizationService] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.organizations = organizations or OrganizationService(db)

    async def create_application(
        self,
        organization_id: str,
        external_application_id: str,
        external_account_id: Optional[str] = None,
    ) -> MerchantApplication:
        """Register the gateway application for an organization in status ``created``."""
        await self.organizations.get(organization_id)
        application = MerchantApplication(
            organization_id=organization_id,
            external_application_id=external_application_id,
            external_account_id=external_account_id,
            status=ApplicationStatus.CREATED.value,
            submission_status=SubmissionStatus.DRAFT.value,
            submission_attempts=0,
        )
        self.db.add(application)
        await self.db.commit()
        await self.db.refresh(application)
        logger.info(
            "Created merchant application %s",
            external_application_id,
            extra={"organization_id": organization_id},
        )
        return application

    async def get_application(
        self, organization_id: str, for_update: bool = False
    ) -> MerchantApplication:
        stmt = (
            select(MerchantApplication)
            .where(MerchantApplication.organization_id == organization_id)
            .order_by(MerchantApplication.created_at.desc())
            .limit(1)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        application = result.scalar_one_or_none()
        if application is None:
            raise ApplicationNotFoundError(
                f"No merchant application for organization {organization_id}"
            )
        return application

    async def submit_application(self, organization_id: str) -> dict[str, Any]:
        """
        Submit the organization's application to underwriting.

        Every attempt increments ``submission_attempts``; a gateway failure
        stores the error text and a success clears it.

        Raises:
            ApplicationNotFoundError: no application exists
            SubmissionError: already submitted/terminal, or the gateway refused
        """
        log_extra = {"organization_id": organization_id}
        application = await self.get_application(organization_id, for_update=True)
        application_id = application.id

        status = parse_status(application.status)
        if status in SUBMISSION_LOCKED_STATUSES:
            await self.db.rollback()
            raise SubmissionError(
                f"Application already {status.value}", code="ALREADY_SUBMITTED"
            )

        try:
            response = await self.gateway.submit_application(application.external_application_id)
        except GettrxError as e:
            code = e.code if isinstance(e, GettrxAPIError) and e.code else "SUBMISSION_FAILED"
            application.submission_attempts = (application.submission_attempts or 0) + 1
            application.last_error = str(e)[:2000]
            await self.db.commit()
            logger.warning("Merchant application submission failed: %s", e, extra=log_extra)
            raise SubmissionError(str(e), code=code) from e

        try:
            now = datetime.now(timezone.utc)
            application.status = ApplicationStatus.SUBMITTED.value
            application.submission_status = SubmissionStatus.SUBMITTED.value
            application.submitted_at = now
            application.submission_attempts = (application.submission_attempts or 0) + 1
            application.last_error = None
            await self.organizations.update_merchant_status(
                organization_id, MerchantStatus.SUBMITTED.value
            )
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            logger.error(
                "Failed to persist merchant submission", exc_info=True, extra=log_extra
            )
            await self._increment_attempts(application_id, "Failed to persist submission")
            raise

        logger.info("Merchant application submitted", extra=log_extra)
        return {
            "application_id": application_id,
            "status": ApplicationStatus.SUBMITTED.value,
            "submitted_at": now,
            "submission_attempts": application.submission_attempts,
            "gateway_response": response,
        }

    async def _increment_attempts(self, application_id: str, error: str) -> None:
        """Best-effort counter bump outside the failed transaction."""
        try:
            await self.db.execute(
                update(MerchantApplication)
                .where(MerchantApplication.id == application_id)
                .values(
                    submission_attempts=MerchantApplication.submission_attempts + 1,
                    last_error=error,
                )
            )
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            logger.error("Could not record submission attempt", exc_info=True)
