"""
Organization collaborator.

Applies merchant-readiness and subscription-entitlement changes to the
organization record. Callers own the transaction; nothing here commits.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.merchant import MerchantStatus
from infrastructure.database.models import Organization

logger = logging.getLogger(__name__)


class OrganizationNotFoundError(Exception):
    """Raised when an organization id does not exist."""

    pass


class OrganizationService:
    """Writes organization-level side effects of onboarding and billing."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, organization_id: str, for_update: bool = False) -> Organization:
        stmt = select(Organization).where(Organization.id == organization_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        organization = result.scalar_one_or_none()
        if organization is None:
            raise OrganizationNotFoundError(f"Organization {organization_id} not found")
        return organization

    async def update_merchant_status(
        self,
        organization_id: str,
        status: str,
        account_id: Optional[str] = None,
    ) -> Organization:
        """Record merchant status; an approved account becomes ready to charge."""
        organization = await self.get(organization_id)
        organization.merchant_status = status
        if account_id:
            organization.merchant_account_id = account_id
        if status == MerchantStatus.APPROVED.value:
            organization.ready_to_charge = organization.merchant_account_id is not None
        elif status == MerchantStatus.DECLINED.value:
            organization.ready_to_charge = False

        logger.info(
            "Organization merchant status set to %s",
            status,
            extra={"organization_id": organization_id},
        )
        return organization

    async def update_subscription_tier(
        self,
        organization_id: str,
        tier: str,
        status: str,
    ) -> Organization:
        """
        Change the entitlement tier.

        Tier-gated configuration such as ``custom_domain`` is left in place so
        the organization can reactivate without reconfiguring.
        """
        organization = await self.get(organization_id)
        previous = organization.subscription_tier
        organization.subscription_tier = tier
        organization.subscription_status = status

        logger.info(
            "Organization tier changed %s -> %s (%s)",
            previous,
            tier,
            status,
            extra={"organization_id": organization_id},
        )
        return organization
