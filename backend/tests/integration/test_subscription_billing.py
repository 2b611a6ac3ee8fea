"""
Integration tests for SubscriptionBillingService.

Covers subscription creation, the renewal cycle with instrument fallback,
the retry/grace schedule and the downgrade after the grace period.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from adapters.payments.gettrx_adapter import GettrxTimeoutError
from core.domain.billing import ensure_utc
from infrastructure.database.models import Subscription
from services.subscription_billing import (
    NoPaymentMethodError,
    PaymentFailedError,
    PlanNotFoundError,
    SubscriptionNotFoundError,
    SubscriptionStateError,
    SubscriptionBillingService,
)

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _days(n: int) -> datetime:
    return T0 + timedelta(days=n)


def _db_error() -> OperationalError:
    return OperationalError("UPDATE subscriptions", {}, Exception("database is locked"))


@pytest.fixture
def billing(db_session, fake_gateway) -> SubscriptionBillingService:
    return SubscriptionBillingService(db_session, fake_gateway)


class TestCreateSubscription:
    """Tests for the initial charge and subscription creation."""

    @pytest.mark.asyncio
    async def test_creates_active_subscription(
        self, billing, fake_gateway, organization, make_instrument
    ):
        card = await make_instrument(organization.id, "pm_card", priority=0, is_default=True)

        subscription = await billing.create_subscription(organization.id, "pro_monthly", now=T0)

        assert subscription.status == "active"
        assert subscription.failed_attempts == 0
        assert subscription.primary_payment_method_id == card.id
        assert ensure_utc(subscription.next_billing_date) == datetime(2026, 4, 1, 9, 0, tzinfo=timezone.utc)
        assert organization.subscription_tier == "pro"
        assert organization.subscription_status == "active"
        kind, request = fake_gateway.calls[0]
        assert kind == "charge"
        assert str(request.amount) == "49"
        assert request.customer_reference == "cus_harbor"

    @pytest.mark.asyncio
    async def test_preferred_method_is_charged_first(
        self, billing, fake_gateway, organization, make_instrument
    ):
        await make_instrument(organization.id, "pm_default", priority=0, is_default=True)
        backup = await make_instrument(organization.id, "pm_backup", priority=5)

        subscription = await billing.create_subscription(
            organization.id, "pro_yearly", preferred_payment_method_id=backup.id, now=T0
        )

        assert fake_gateway.charged_references == ["pm_backup"]
        assert subscription.primary_payment_method_id == backup.id
        assert ensure_utc(subscription.next_billing_date) == datetime(2027, 3, 1, 9, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_all_methods_declined(
        self, billing, fake_gateway, db_session, organization, make_instrument
    ):
        card = await make_instrument(organization.id, "pm_card", is_default=True)
        fake_gateway.program("pm_card", "declined")

        with pytest.raises(PaymentFailedError) as exc_info:
            await billing.create_subscription(organization.id, "pro_monthly", now=T0)

        assert exc_info.value.attempted == 1
        result = await db_session.execute(select(Subscription))
        assert result.scalars().all() == []
        await db_session.refresh(card)
        assert card.failure_count == 1
        assert organization.subscription_tier == "basic"

    @pytest.mark.asyncio
    async def test_no_payment_method(self, billing, organization):
        with pytest.raises(NoPaymentMethodError):
            await billing.create_subscription(organization.id, "pro_monthly", now=T0)

    @pytest.mark.asyncio
    async def test_unknown_plan(self, billing, organization):
        with pytest.raises(PlanNotFoundError):
            await billing.create_subscription(organization.id, "platinum_weekly")

    @pytest.mark.asyncio
    async def test_second_live_subscription_is_refused(
        self, billing, organization, make_instrument, make_subscription
    ):
        await make_instrument(organization.id, "pm_card", is_default=True)
        await make_subscription(organization.id, due_at=_days(30))

        with pytest.raises(SubscriptionStateError):
            await billing.create_subscription(organization.id, "pro_monthly", now=T0)


class TestRenewalCycle:
    """Tests for process_renewal."""

    @pytest.mark.asyncio
    async def test_successful_renewal_advances_dates(
        self, billing, organization, make_instrument, make_subscription
    ):
        card = await make_instrument(organization.id, "pm_card", is_default=True)
        subscription = await make_subscription(organization.id, due_at=T0, primary_payment_method_id=card.id)

        result = await billing.process_renewal(subscription.id, now=T0)

        assert result.outcome == "renewed"
        assert result.payment_method_id == card.id
        assert subscription.status == "active"
        assert ensure_utc(subscription.last_billing_date) == T0
        assert ensure_utc(subscription.next_billing_date) == datetime(2026, 4, 1, 9, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_falls_back_to_next_instrument(
        self, billing, fake_gateway, organization, make_instrument, make_subscription
    ):
        primary = await make_instrument(organization.id, "pm_primary", priority=0, is_default=True)
        backup = await make_instrument(organization.id, "pm_backup", priority=1)
        unused = await make_instrument(organization.id, "pm_unused", priority=2)
        fake_gateway.program("pm_primary", "declined")
        subscription = await make_subscription(
            organization.id, due_at=T0, primary_payment_method_id=primary.id
        )

        result = await billing.process_renewal(subscription.id, now=T0)

        assert result.outcome == "renewed"
        assert result.attempted == 2
        assert fake_gateway.charged_references == ["pm_primary", "pm_backup"]
        assert all(kind == "recurring" for kind, _ in fake_gateway.calls)
        assert subscription.primary_payment_method_id == backup.id
        assert primary.failure_count == 1
        assert backup.success_count == 1
        assert unused.last_used_at is None

    @pytest.mark.asyncio
    async def test_first_failure_opens_grace_window(
        self, billing, fake_gateway, organization, make_instrument, make_subscription
    ):
        await make_instrument(organization.id, "pm_card", is_default=True)
        fake_gateway.program("pm_card", "declined")
        subscription = await make_subscription(organization.id, due_at=T0)

        result = await billing.process_renewal(subscription.id, now=T0)

        assert result.outcome == "failed"
        assert subscription.status == "active"
        assert subscription.failed_attempts == 1
        assert ensure_utc(subscription.next_retry_date) == _days(2)
        assert ensure_utc(subscription.grace_period_ends_at) == _days(7)
        assert subscription.last_error == "Payment declined"

    @pytest.mark.asyncio
    async def test_third_failure_after_grace_cancels_and_downgrades(
        self, billing, fake_gateway, organization, make_instrument, make_subscription
    ):
        await make_instrument(organization.id, "pm_card", is_default=True)
        fake_gateway.program("pm_card", GettrxTimeoutError("Request timed out"))
        subscription = await make_subscription(organization.id, due_at=T0)
        organization.subscription_tier = "pro"
        organization.subscription_status = "active"

        first = await billing.process_renewal(subscription.id, now=T0)
        second = await billing.process_renewal(subscription.id, now=_days(2))
        third = await billing.process_renewal(subscription.id, now=_days(8))

        assert [first.outcome, second.outcome, third.outcome] == ["failed", "failed", "downgraded"]
        assert ensure_utc(second.next_retry_date) == _days(6)
        assert subscription.status == "canceled"
        assert subscription.failed_attempts == 3
        assert subscription.next_retry_date is None
        assert ensure_utc(subscription.canceled_at) == _days(8)
        assert organization.subscription_tier == "basic"
        assert organization.subscription_status == "inactive"
        assert organization.custom_domain == "give.harborfoodbank.org"

    @pytest.mark.asyncio
    async def test_third_failure_inside_grace_is_past_due(
        self, billing, fake_gateway, organization, make_instrument, make_subscription
    ):
        await make_instrument(organization.id, "pm_card", is_default=True)
        fake_gateway.program("pm_card", "declined")
        subscription = await make_subscription(organization.id, due_at=T0)

        for day in (0, 2, 6):
            result = await billing.process_renewal(subscription.id, now=_days(day))

        assert result.outcome == "failed"
        assert subscription.status == "past_due"
        assert ensure_utc(subscription.next_retry_date) == _days(7)

        final = await billing.process_renewal(subscription.id, now=_days(7))

        assert final.outcome == "downgraded"
        assert subscription.status == "canceled"

    @pytest.mark.asyncio
    async def test_success_after_two_failures_resets_counters(
        self, billing, fake_gateway, organization, make_instrument, make_subscription
    ):
        await make_instrument(organization.id, "pm_card", is_default=True)
        fake_gateway.program("pm_card", "declined")
        subscription = await make_subscription(organization.id, due_at=T0)
        await billing.process_renewal(subscription.id, now=T0)
        await billing.process_renewal(subscription.id, now=_days(2))
        assert subscription.failed_attempts == 2

        fake_gateway.program("pm_card", "approved")
        result = await billing.process_renewal(subscription.id, now=_days(6))

        assert result.outcome == "renewed"
        assert subscription.failed_attempts == 0
        assert subscription.next_retry_date is None
        assert subscription.grace_period_ends_at is None
        assert subscription.last_error is None
        assert subscription.status == "active"
        assert ensure_utc(subscription.next_billing_date) == datetime(2026, 4, 7, 9, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_no_payment_method_counts_as_failure(
        self, billing, fake_gateway, organization, make_subscription
    ):
        subscription = await make_subscription(organization.id, due_at=T0)

        result = await billing.process_renewal(subscription.id, now=T0)

        assert result.outcome == "no_payment_method"
        assert result.attempted == 0
        assert subscription.failed_attempts == 1
        assert subscription.last_error == "No payment method available"
        assert fake_gateway.calls == []

    @pytest.mark.asyncio
    async def test_canceled_subscription_is_skipped(
        self, billing, fake_gateway, db_session, organization, make_instrument, make_subscription
    ):
        await make_instrument(organization.id, "pm_card", is_default=True)
        subscription = await make_subscription(organization.id, due_at=T0)
        subscription.status = "canceled"
        await db_session.commit()

        result = await billing.process_renewal(subscription.id, now=T0)

        assert result.outcome == "skipped"
        assert fake_gateway.calls == []

    @pytest.mark.asyncio
    async def test_unknown_subscription(self, billing):
        with pytest.raises(SubscriptionNotFoundError):
            await billing.process_renewal("missing", now=T0)

    @pytest.mark.asyncio
    async def test_persistence_failure_before_charge_bumps_counter(
        self, billing, fake_gateway, db_session, organization, make_subscription
    ):
        subscription = await make_subscription(organization.id, due_at=T0)
        subscription_id = subscription.id
        billing.payment_methods.resolve = AsyncMock(side_effect=_db_error())

        with pytest.raises(OperationalError):
            await billing.process_renewal(subscription_id, now=T0)

        await db_session.refresh(subscription)
        assert subscription.failed_attempts == 1
        assert subscription.last_error == "Renewal transaction failed"
        assert fake_gateway.calls == []

    @pytest.mark.asyncio
    async def test_persistence_failure_after_capture_does_not_count_failure(
        self, billing, fake_gateway, db_session, organization, make_instrument, make_subscription
    ):
        await make_instrument(organization.id, "pm_card", is_default=True)
        subscription = await make_subscription(organization.id, due_at=T0)
        billing.organizations.update_subscription_tier = AsyncMock(side_effect=_db_error())

        with pytest.raises(OperationalError):
            await billing.process_renewal(subscription.id, now=T0)

        assert len(fake_gateway.calls) == 1
        await db_session.refresh(subscription)
        assert subscription.failed_attempts == 0
        assert subscription.status == "active"


class TestCancelAndStatus:
    """Tests for explicit cancellation and status reporting."""

    @pytest.mark.asyncio
    async def test_cancel_keeps_custom_domain(self, billing, organization, make_subscription):
        subscription = await make_subscription(organization.id, due_at=_days(10))

        canceled = await billing.cancel_subscription(subscription.id, now=T0)

        assert canceled.status == "canceled"
        assert organization.subscription_tier == "basic"
        assert organization.custom_domain == "give.harborfoodbank.org"

        with pytest.raises(SubscriptionStateError):
            await billing.cancel_subscription(subscription.id, now=T0)

    @pytest.mark.asyncio
    async def test_status_lists_live_subscriptions(
        self, billing, organization, make_instrument, make_subscription
    ):
        await make_instrument(organization.id, "pm_card", is_default=True)
        subscription = await make_subscription(organization.id, due_at=_days(10))

        status = await billing.get_subscription_status(organization.id)

        assert [s.id for s in status["subscriptions"]] == [subscription.id]
        assert status["has_payment_methods"] is True
        assert status["payment_method_count"] == 1


class TestDueSubscriptions:
    """Tests for due_subscription_ids."""

    @pytest.mark.asyncio
    async def test_due_selection(self, billing, db_session, organization, make_subscription):
        due_by_billing = await make_subscription(organization.id, due_at=_days(-1))
        not_due = await make_subscription(organization.id, due_at=_days(5))
        retry_due = await make_subscription(organization.id, due_at=_days(-20))
        retry_due.next_retry_date = _days(-1)
        retry_pending = await make_subscription(organization.id, due_at=_days(-20))
        retry_pending.next_retry_date = _days(2)
        canceled = await make_subscription(organization.id, due_at=_days(-3))
        canceled.status = "canceled"
        await db_session.commit()

        due = await billing.due_subscription_ids(now=T0)

        assert set(due) == {due_by_billing.id, retry_due.id}
        assert not_due.id not in due
        assert retry_pending.id not in due
        assert canceled.id not in due

