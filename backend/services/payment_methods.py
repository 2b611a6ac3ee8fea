"""
Payment instrument management and priority resolution.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.billing import InstrumentStatus, InstrumentType, order_instruments
from infrastructure.database.models import PaymentInstrument

logger = logging.getLogger(__name__)


class PaymentMethodNotFoundError(Exception):
    """Raised when an instrument does not exist for the organization."""

    pass


class DuplicatePaymentMethodError(Exception):
    """Raised when an equivalent active instrument is already stored."""

    pass


class PaymentMethodService:
    """
    Stores payment instruments and orders them for billing attempts.

    Methods flush but never commit unless documented; routes and the
    billing service decide the transaction boundary.
    """

    def __init__(self, db: AsyncSession, failure_threshold: int = 3):
        self.db = db
        self.failure_threshold = failure_threshold

    async def list_active(self, organization_id: str) -> list[PaymentInstrument]:
        return await self.resolve(organization_id)

    async def resolve(
        self,
        organization_id: str,
        preferred_id: Optional[str] = None,
    ) -> list[PaymentInstrument]:
        """
        Active instruments in attempt order: default first, then ascending
        priority, with ``preferred_id`` promoted when it is still active.
        An empty list means no payment method is available.
        """
        result = await self.db.execute(
            select(PaymentInstrument).where(
                PaymentInstrument.organization_id == organization_id,
                PaymentInstrument.status == InstrumentStatus.ACTIVE.value,
            )
        )
        return order_instruments(list(result.scalars().all()), preferred_id)

    async def get(self, organization_id: str, payment_method_id: str) -> PaymentInstrument:
        result = await self.db.execute(
            select(PaymentInstrument).where(
                PaymentInstrument.id == payment_method_id,
                PaymentInstrument.organization_id == organization_id,
            )
        )
        instrument = result.scalar_one_or_none()
        if instrument is None:
            raise PaymentMethodNotFoundError(f"Payment method {payment_method_id} not found")
        return instrument

    async def _find_duplicate(
        self,
        organization_id: str,
        instrument_type: str,
        card_brand: Optional[str],
        last4: Optional[str],
        exp_month: Optional[int],
        exp_year: Optional[int],
    ) -> Optional[PaymentInstrument]:
        if not last4:
            return None
        stmt = select(PaymentInstrument).where(
            PaymentInstrument.organization_id == organization_id,
            PaymentInstrument.status == InstrumentStatus.ACTIVE.value,
            PaymentInstrument.instrument_type == instrument_type,
            PaymentInstrument.last4 == last4,
        )
        if instrument_type == InstrumentType.CARD.value:
            stmt = stmt.where(
                PaymentInstrument.card_brand == card_brand,
                PaymentInstrument.exp_month == exp_month,
                PaymentInstrument.exp_year == exp_year,
            )
        result = await self.db.execute(stmt.limit(1))
        return result.scalar_one_or_none()

    async def add(
        self,
        organization_id: str,
        provider_payment_method_id: str,
        instrument_type: str,
        card_brand: Optional[str] = None,
        last4: Optional[str] = None,
        exp_month: Optional[int] = None,
        exp_year: Optional[int] = None,
        nickname: Optional[str] = None,
        priority: Optional[int] = None,
        is_default: bool = False,
    ) -> PaymentInstrument:
        """
        Store a new instrument. The first active instrument becomes the default.

        Raises:
            DuplicatePaymentMethodError: same card (brand, last4, expiry) or
                same bank account last4 already active for the organization
        """
        duplicate = await self._find_duplicate(
            organization_id, instrument_type, card_brand, last4, exp_month, exp_year
        )
        if duplicate is not None:
            raise DuplicatePaymentMethodError("This payment method has already been added")

        count_result = await self.db.execute(
            select(func.count(PaymentInstrument.id)).where(
                PaymentInstrument.organization_id == organization_id,
                PaymentInstrument.status == InstrumentStatus.ACTIVE.value,
            )
        )
        active_count = count_result.scalar() or 0

        if active_count == 0:
            is_default = True
        if is_default:
            await self._clear_default(organization_id)

        if priority is None:
            max_result = await self.db.execute(
                select(func.max(PaymentInstrument.priority)).where(
                    PaymentInstrument.organization_id == organization_id,
                )
            )
            current_max = max_result.scalar()
            priority = 0 if current_max is None else current_max + 1

        instrument = PaymentInstrument(
            organization_id=organization_id,
            provider_payment_method_id=provider_payment_method_id,
            instrument_type=instrument_type,
            card_brand=card_brand,
            last4=last4,
            exp_month=exp_month,
            exp_year=exp_year,
            nickname=nickname,
            priority=0 if is_default else priority,
            is_default=is_default,
            status=InstrumentStatus.ACTIVE.value,
        )
        self.db.add(instrument)
        await self.db.flush()
        logger.info(
            "Added %s payment method",
            instrument_type,
            extra={"organization_id": organization_id, "payment_method_id": instrument.id},
        )
        return instrument

    async def _clear_default(self, organization_id: str) -> None:
        result = await self.db.execute(
            select(PaymentInstrument).where(
                PaymentInstrument.organization_id == organization_id,
                PaymentInstrument.is_default.is_(True),
            )
        )
        for instrument in result.scalars().all():
            instrument.is_default = False

    async def set_default(self, organization_id: str, payment_method_id: str) -> PaymentInstrument:
        """Make one active instrument the default with top priority."""
        instrument = await self.get(organization_id, payment_method_id)
        if instrument.status != InstrumentStatus.ACTIVE.value:
            raise PaymentMethodNotFoundError(f"Payment method {payment_method_id} is not active")
        await self._clear_default(organization_id)
        instrument.is_default = True
        instrument.priority = 0
        await self.db.flush()
        return instrument

    async def update_priority(
        self, organization_id: str, payment_method_id: str, priority: int
    ) -> PaymentInstrument:
        if priority < 0:
            raise ValueError("Priority must be zero or greater")
        instrument = await self.get(organization_id, payment_method_id)
        instrument.priority = priority
        await self.db.flush()
        return instrument

    async def deactivate(self, organization_id: str, payment_method_id: str) -> PaymentInstrument:
        """
        Soft-delete an instrument. Subscriptions may still reference it, so
        the row stays; a default is handed to the next active instrument.
        """
        instrument = await self.get(organization_id, payment_method_id)
        was_default = instrument.is_default
        instrument.status = InstrumentStatus.INACTIVE.value
        instrument.is_default = False
        await self.db.flush()

        if was_default:
            remaining = await self.list_active(organization_id)
            if remaining:
                remaining[0].is_default = True
                remaining[0].priority = 0
                await self.db.flush()
        return instrument

    def record_usage(
        self,
        instrument: PaymentInstrument,
        success: bool,
        now: Optional[datetime] = None,
    ) -> None:
        """
        Update usage statistics after a charge attempt.

        Consecutive failures at the threshold mark the instrument ``failed``,
        taking it out of future attempt sequences.
        """
        now = now or datetime.now(timezone.utc)
        instrument.last_used_at = now
        if success:
            instrument.success_count = (instrument.success_count or 0) + 1
            instrument.consecutive_failures = 0
            instrument.last_success_at = now
            return

        instrument.failure_count = (instrument.failure_count or 0) + 1
        instrument.consecutive_failures = (instrument.consecutive_failures or 0) + 1
        instrument.last_failure_at = now
        if instrument.consecutive_failures >= self.failure_threshold:
            instrument.status = InstrumentStatus.FAILED.value
            logger.warning(
                "Payment method disabled after %d consecutive failures",
                instrument.consecutive_failures,
                extra={"payment_method_id": instrument.id},
            )

    async def count(self, organization_id: str) -> dict[str, int]:
        result = await self.db.execute(
            select(PaymentInstrument.status, func.count(PaymentInstrument.id))
            .where(PaymentInstrument.organization_id == organization_id)
            .group_by(PaymentInstrument.status)
        )
        counts = {status: total for status, total in result.all()}
        return {
            "active": counts.get(InstrumentStatus.ACTIVE.value, 0),
            "total": sum(counts.values()),
        }
