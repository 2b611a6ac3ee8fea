"""
Payment attempt orchestration across an ordered list of instruments.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from core.interfaces.services import ChargeRequest, ChargeResult, PaymentGateway
from infrastructure.database.models import PaymentInstrument
from services.payment_methods import PaymentMethodService

logger = logging.getLogger(__name__)


@dataclass
class AttemptRecord:
    """One instrument tried during a cycle."""

    payment_method_id: str
    success: bool
    status: Optional[str] = None
    error: Optional[str] = None


@dataclass
class PaymentOutcome:
    """Result of running the attempt loop."""

    success: bool
    instrument: Optional[PaymentInstrument] = None
    charge: Optional[ChargeResult] = None
    attempts: list[AttemptRecord] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.attempts)

    @property
    def no_payment_method(self) -> bool:
        """Nothing was tried because no instrument was available."""
        return not self.success and not self.attempts

    @property
    def last_error(self) -> Optional[str]:
        for attempt in reversed(self.attempts):
            if attempt.error:
                return attempt.error
        return None


class PaymentAttemptOrchestrator:
    """Charges instruments in order until one succeeds or all are exhausted."""

    def __init__(self, gateway: PaymentGateway, payment_methods: PaymentMethodService):
        self.gateway = gateway
        self.payment_methods = payment_methods

    async def execute(
        self,
        instruments: list[PaymentInstrument],
        amount: Decimal,
        currency: str,
        customer_reference: Optional[str] = None,
        description: Optional[str] = None,
        merchant_account_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
        recurring: bool = True,
        now: Optional[datetime] = None,
    ) -> PaymentOutcome:
        """
        Try each instrument once, in the given order.

        Any error raised by the gateway counts as a decline for that instrument;
        it is not retried within the same call. Instruments after the first
        success are never charged.
        """
        outcome = PaymentOutcome(success=False)

        for instrument in instruments:
            request = ChargeRequest(
                amount=amount,
                currency=currency,
                instrument_reference=instrument.provider_payment_method_id,
                customer_reference=customer_reference,
                description=description,
                merchant_account_id=merchant_account_id,
                metadata=dict(metadata or {}),
            )
            log_extra = {"payment_method_id": instrument.id}

            try:
                if recurring:
                    result = await self.gateway.create_recurring_payment(request)
                else:
                    result = await self.gateway.charge(request)
            except Exception as e:
                logger.warning(
                    "Charge attempt raised: %s", e, exc_info=True, extra=log_extra
                )
                self.payment_methods.record_usage(instrument, success=False, now=now)
                outcome.attempts.append(
                    AttemptRecord(payment_method_id=instrument.id, success=False, error=str(e))
                )
                continue

            if result.succeeded:
                self.payment_methods.record_usage(instrument, success=True, now=now)
                outcome.attempts.append(
                    AttemptRecord(payment_method_id=instrument.id, success=True, status=result.status)
                )
                outcome.success = True
                outcome.instrument = instrument
                outcome.charge = result
                logger.info("Charge approved", extra=log_extra)
                return outcome

            logger.info("Charge declined with status %s", result.status, extra=log_extra)
            self.payment_methods.record_usage(instrument, success=False, now=now)
            outcome.attempts.append(
                AttemptRecord(
                    payment_method_id=instrument.id,
                    success=False,
                    status=result.status,
                    error=f"Payment {result.status}",
                )
            )

        if outcome.attempts:
            logger.warning("All %d payment methods failed", outcome.attempted)
        else:
            logger.warning("No payment method available")
        return outcome
