"""
Subscription billing: creation, renewal cycles, retry/grace policy and downgrade.

One renewal runs inside one transaction holding a row lock on the
subscription, so two triggers for the same id cannot bill it twice.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.billing import (
    BillingInterval,
    OrganizationSubscriptionStatus,
    RetryPolicy,
    SubscriptionStatus,
    advance_billing_date,
    ensure_utc,
    next_action,
)
from core.interfaces.services import PaymentGateway
from core.plans import get_plan
from infrastructure.config.settings import Settings, get_settings
from infrastructure.database.models import Subscription
from services.organizations import OrganizationService
from services.payment_methods import PaymentMethodService
from services.payment_orchestrator import PaymentAttemptOrchestrator, PaymentOutcome

logger = logging.getLogger(__name__)

LIVE_STATUSES = (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.PAST_DUE.value)


class BillingError(Exception):
    """Base exception for subscription billing errors."""

    pass


class SubscriptionNotFoundError(BillingError):
    """Raised when a subscription id does not exist."""

    pass


class PlanNotFoundError(BillingError):
    """Raised when a plan code is not in the catalogue."""

    pass


class SubscriptionStateError(BillingError):
    """Raised when the requested change conflicts with the current state."""

    pass


class PaymentFailedError(BillingError):
    """Raised when every instrument declined an initial charge."""

    def __init__(self, message: str, attempted: int = 0):
        super().__init__(message)
        self.attempted = attempted


class NoPaymentMethodError(PaymentFailedError):
    """Raised when the organization has no active payment method."""

    pass


@dataclass
class RenewalResult:
    """Summary of one renewal cycle."""

    subscription_id: str
    outcome: str  # renewed, failed, no_payment_method, downgraded, skipped
    status: str
    failed_attempts: int
    attempted: int = 0
    payment_method_id: Optional[str] = None
    next_billing_date: Optional[datetime] = None
    next_retry_date: Optional[datetime] = None
    grace_period_ends_at: Optional[datetime] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "subscription_id": self.subscription_id,
            "outcome": self.outcome,
            "status": self.status,
            "failed_attempts": self.failed_attempts,
            "attempted": self.attempted,
            "payment_method_id": self.payment_method_id,
            "next_billing_date": self.next_billing_date,
            "next_retry_date": self.next_retry_date,
            "grace_period_ends_at": self.grace_period_ends_at,
            "error": self.error,
        }


class SubscriptionBillingService:
    """Billing state machine for organization subscriptions."""

    def __init__(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        organizations: Optional[OrganizationService] = None,
        payment_methods: Optional[PaymentMethodService] = None,
        policy: Optional[RetryPolicy] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.organizations = organizations or OrganizationService(db)
        self.payment_methods = payment_methods or PaymentMethodService(
            db, failure_threshold=self.settings.payment_method_failure_threshold
        )
        self.orchestrator = PaymentAttemptOrchestrator(gateway, self.payment_methods)
        self.policy = policy or RetryPolicy.from_settings(self.settings)

    async def _get_for_update(self, subscription_id: str) -> Subscription:
        result = await self.db.execute(
            select(Subscription).where(Subscription.id == subscription_id).with_for_update()
        )
        subscription = result.scalar_one_or_none()
        if subscription is None:
            raise SubscriptionNotFoundError(f"Subscription {subscription_id} not found")
        return subscription

    async def create_subscription(
        self,
        organization_id: str,
        plan_code: str,
        preferred_payment_method_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Subscription:
        """
        Charge the first period and open an active subscription.

        Raises:
            PlanNotFoundError: unknown plan code
            SubscriptionStateError: organization already has a live subscription
            NoPaymentMethodError / PaymentFailedError: the first charge failed
        """
        now = now or datetime.now(timezone.utc)
        plan = get_plan(plan_code)
        if plan is None:
            raise PlanNotFoundError(f"Unknown plan {plan_code}")

        organization = await self.organizations.get(organization_id, for_update=True)

        existing = await self.db.execute(
            select(Subscription.id).where(
                Subscription.organization_id == organization_id,
                Subscription.status.in_(LIVE_STATUSES),
            )
        )
        if existing.first() is not None:
            await self.db.rollback()
            raise SubscriptionStateError("Organization already has an active subscription")

        instruments = await self.payment_methods.resolve(organization_id, preferred_payment_method_id)
        amount = Decimal(str(plan["amount"]))
        currency = plan.get("currency", self.settings.billing_currency)
        outcome = await self.orchestrator.execute(
            instruments,
            amount=amount,
            currency=currency,
            customer_reference=organization.gateway_customer_id,
            description=f"{plan['name']} subscription",
            metadata={"organization_id": organization_id, "plan_code": plan_code},
            recurring=False,
            now=now,
        )

        if not outcome.success:
            # Keep the usage statistics even though no subscription is created
            await self.db.commit()
            if outcome.no_payment_method:
                raise NoPaymentMethodError("No payment method available")
            raise PaymentFailedError(
                outcome.last_error or "All payment methods failed", attempted=outcome.attempted
            )

        interval = BillingInterval(plan["interval"])
        subscription = Subscription(
            organization_id=organization_id,
            plan_code=plan_code,
            amount=amount,
            currency=currency,
            interval=interval.value,
            status=SubscriptionStatus.ACTIVE.value,
            failed_attempts=0,
            start_date=now,
            last_billing_date=now,
            next_billing_date=advance_billing_date(now, interval),
            primary_payment_method_id=outcome.instrument.id,
            last_payment_id=outcome.charge.id if outcome.charge else None,
        )
        self.db.add(subscription)
        await self.organizations.update_subscription_tier(
            organization_id, plan["tier"], OrganizationSubscriptionStatus.ACTIVE.value
        )
        await self.db.commit()
        await self.db.refresh(subscription)

        logger.info(
            "Created subscription on plan %s",
            plan_code,
            extra={"organization_id": organization_id, "subscription_id": subscription.id},
        )
        return subscription

    async def process_renewal(
        self,
        subscription_id: str,
        now: Optional[datetime] = None,
    ) -> RenewalResult:
        """
        Run one billing cycle for a subscription.

        Raises:
            SubscriptionNotFoundError: unknown id
            SQLAlchemyError: the cycle could not be persisted; the failure
                counter is then bumped in a separate transaction
        """
        now = now or datetime.now(timezone.utc)
        log_extra = {"subscription_id": subscription_id}
        outcome: Optional[PaymentOutcome] = None

        try:
            subscription = await self._get_for_update(subscription_id)

            if subscription.status == SubscriptionStatus.CANCELED.value:
                result = RenewalResult(
                    subscription_id=subscription_id,
                    outcome="skipped",
                    status=subscription.status,
                    failed_attempts=subscription.failed_attempts,
                )
                await self.db.rollback()
                return result

            organization = await self.organizations.get(subscription.organization_id)
            instruments = await self.payment_methods.resolve(
                subscription.organization_id, subscription.primary_payment_method_id
            )
            outcome = await self.orchestrator.execute(
                instruments,
                amount=Decimal(subscription.amount),
                currency=subscription.currency,
                customer_reference=organization.gateway_customer_id,
                description=f"Subscription renewal ({subscription.plan_code})",
                metadata={
                    "organization_id": subscription.organization_id,
                    "subscription_id": subscription_id,
                },
                recurring=True,
                now=now,
            )

            if outcome.success:
                result = await self._apply_success(subscription, outcome, now)
            else:
                result = await self._apply_failure(subscription, outcome, now)

            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            if outcome is not None and outcome.success:
                logger.critical(
                    "Renewal charge %s captured but billing state not persisted",
                    outcome.charge.id if outcome.charge else None,
                    exc_info=True,
                    extra=log_extra,
                )
            else:
                logger.error("Renewal transaction failed", exc_info=True, extra=log_extra)
                await self._record_failed_attempt(subscription_id, "Renewal transaction failed")
            raise

        return result

    async def _apply_success(
        self,
        subscription: Subscription,
        outcome: PaymentOutcome,
        now: datetime,
    ) -> RenewalResult:
        interval = BillingInterval(subscription.interval)
        subscription.status = SubscriptionStatus.ACTIVE.value
        subscription.failed_attempts = 0
        subscription.last_billing_date = now
        subscription.next_billing_date = advance_billing_date(now, interval)
        subscription.next_retry_date = None
        subscription.grace_period_ends_at = None
        subscription.primary_payment_method_id = outcome.instrument.id
        subscription.last_payment_id = outcome.charge.id if outcome.charge else None
        subscription.last_error = None

        plan = get_plan(subscription.plan_code)
        if plan is not None:
            await self.organizations.update_subscription_tier(
                subscription.organization_id,
                plan["tier"],
                OrganizationSubscriptionStatus.ACTIVE.value,
            )

        logger.info(
            "Subscription renewed",
            extra={"subscription_id": subscription.id, "payment_method_id": outcome.instrument.id},
        )
        return RenewalResult(
            subscription_id=subscription.id,
            outcome="renewed",
            status=subscription.status,
            failed_attempts=0,
            attempted=outcome.attempted,
            payment_method_id=outcome.instrument.id,
            next_billing_date=subscription.next_billing_date,
        )

    async def _apply_failure(
        self,
        subscription: Subscription,
        outcome: PaymentOutcome,
        now: datetime,
    ) -> RenewalResult:
        decision = next_action(
            subscription.failed_attempts,
            ensure_utc(subscription.grace_period_ends_at),
            now,
            self.policy,
        )
        error = (
            "No payment method available"
            if outcome.no_payment_method
            else (outcome.last_error or "All payment methods failed")
        )
        subscription.failed_attempts = decision.failed_attempts
        subscription.next_retry_date = decision.next_retry_date
        subscription.grace_period_ends_at = decision.grace_period_ends_at
        subscription.last_error = error[:500]

        log_extra = {"subscription_id": subscription.id}
        if outcome.no_payment_method:
            logger.warning("Renewal found no payment method", extra=log_extra)

        if decision.terminal:
            await self._downgrade(subscription, now)
            label = "downgraded"
        else:
            subscription.status = decision.status.value
            label = "no_payment_method" if outcome.no_payment_method else "failed"
            logger.warning(
                "Renewal failed (attempt %d), next retry %s",
                decision.failed_attempts,
                decision.next_retry_date,
                extra=log_extra,
            )

        return RenewalResult(
            subscription_id=subscription.id,
            outcome=label,
            status=subscription.status,
            failed_attempts=subscription.failed_attempts,
            attempted=outcome.attempted,
            next_billing_date=subscription.next_billing_date,
            next_retry_date=subscription.next_retry_date,
            grace_period_ends_at=subscription.grace_period_ends_at,
            error=error,
        )

    async def _downgrade(self, subscription: Subscription, now: datetime) -> None:
        """Cancel the subscription and revoke the tier, keeping tier-gated configuration."""
        subscription.status = SubscriptionStatus.CANCELED.value
        subscription.end_date = now
        subscription.canceled_at = now
        subscription.next_retry_date = None
        await self.organizations.update_subscription_tier(
            subscription.organization_id,
            self.settings.downgrade_tier,
            OrganizationSubscriptionStatus.INACTIVE.value,
        )
        logger.warning(
            "Subscription canceled after grace period; organization downgraded",
            extra={
                "subscription_id": subscription.id,
                "organization_id": subscription.organization_id,
            },
        )

    async def _record_failed_attempt(self, subscription_id: str, error: str) -> None:
        """Best-effort counter bump outside the failed transaction."""
        try:
            await self.db.execute(
                update(Subscription)
                .where(Subscription.id == subscription_id)
                .values(
                    failed_attempts=case(
                        (
                            Subscription.failed_attempts < self.policy.max_failed_attempts,
                            Subscription.failed_attempts + 1,
                        ),
                        else_=Subscription.failed_attempts,
                    ),
                    last_error=error,
                )
            )
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            logger.error(
                "Could not record failed renewal attempt",
                exc_info=True,
                extra={"subscription_id": subscription_id},
            )

    async def cancel_subscription(
        self,
        subscription_id: str,
        now: Optional[datetime] = None,
    ) -> Subscription:
        """Cancel at the caller's request. Custom domain and similar settings are kept."""
        now = now or datetime.now(timezone.utc)
        subscription = await self._get_for_update(subscription_id)
        if subscription.status == SubscriptionStatus.CANCELED.value:
            await self.db.rollback()
            raise SubscriptionStateError("Subscription is already canceled")

        subscription.status = SubscriptionStatus.CANCELED.value
        subscription.end_date = now
        subscription.canceled_at = now
        subscription.next_retry_date = None
        await self.organizations.update_subscription_tier(
            subscription.organization_id,
            self.settings.downgrade_tier,
            OrganizationSubscriptionStatus.INACTIVE.value,
        )
        await self.db.commit()
        logger.info("Subscription canceled", extra={"subscription_id": subscription_id})
        return subscription

    async def get_subscription_status(self, organization_id: str) -> dict[str, Any]:
        """Live subscriptions plus payment method availability for an organization."""
        result = await self.db.execute(
            select(Subscription)
            .where(
                Subscription.organization_id == organization_id,
                Subscription.status.in_(LIVE_STATUSES),
            )
            .order_by(Subscription.created_at.desc())
        )
        subscriptions = list(result.scalars().all())
        counts = await self.payment_methods.count(organization_id)
        return {
            "organization_id": organization_id,
            "subscriptions": subscriptions,
            "has_payment_methods": counts["active"] > 0,
            "payment_method_count": counts["active"],
        }

    async def due_subscription_ids(self, now: Optional[datetime] = None, limit: int = 100) -> list[str]:
        """Ids of live subscriptions whose retry date, or billing date when no retry is set, has passed."""
        now = now or datetime.now(timezone.utc)
        due_at = func.coalesce(Subscription.next_retry_date, Subscription.next_billing_date)
        result = await self.db.execute(
            select(Subscription.id)
            .where(Subscription.status.in_(LIVE_STATUSES), due_at <= now)
            .order_by(due_at)
            .limit(limit)
        )
        return [row[0] for row in result.all()]
