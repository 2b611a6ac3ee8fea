"""Recurring billing domain: instrument ordering and retry/grace scheduling."""
import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Protocol, Sequence, TypeVar


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle state."""
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class OrganizationSubscriptionStatus(str, Enum):
    """Entitlement state mirrored on the organization."""
    ACTIVE = "active"
    INACTIVE = "inactive"


class BillingInterval(str, Enum):
    """Billing interval options."""
    MONTH = "month"
    YEAR = "year"


class InstrumentStatus(str, Enum):
    """Payment instrument availability."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    FAILED = "failed"


class InstrumentType(str, Enum):
    """Funding source kind."""
    CARD = "card"
    BANK_ACCOUNT = "bank_account"


class _Orderable(Protocol):
    id: str
    priority: int
    is_default: bool


T = TypeVar("T", bound=_Orderable)


def order_instruments(instruments: Sequence[T], preferred_id: Optional[str] = None) -> list[T]:
    """
    Order instruments for an attempt sequence.

    Defaults come first, then ascending priority, with ties broken by id so
    the order is stable. A preferred id present in the input is moved to the
    front; an unknown or inactive preferred id is ignored.
    """
    ordered = sorted(instruments, key=lambda i: (not i.is_default, i.priority, str(i.id)))
    if preferred_id is None:
        return ordered
    for index, instrument in enumerate(ordered):
        if instrument.id == preferred_id:
            return [instrument] + ordered[:index] + ordered[index + 1:]
    return ordered


@dataclass(frozen=True)
class RetryPolicy:
    """Grace window and retry spacing applied after a failed billing cycle."""

    grace_period_days: int = 7
    retry_offsets_days: tuple[int, ...] = (2, 4)
    max_failed_attempts: int = 3

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            grace_period_days=settings.billing_grace_period_days,
            retry_offsets_days=settings.billing_retry_offsets or (2, 4),
            max_failed_attempts=settings.billing_max_failed_attempts,
        )


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of a failed cycle: new counters, next attempt time and status."""

    failed_attempts: int
    status: SubscriptionStatus
    next_retry_date: Optional[datetime]
    grace_period_ends_at: datetime

    @property
    def terminal(self) -> bool:
        return self.status == SubscriptionStatus.CANCELED


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (as returned by some drivers) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def next_action(
    failed_attempts: int,
    grace_period_ends_at: Optional[datetime],
    now: datetime,
    policy: RetryPolicy = RetryPolicy(),
) -> RetryDecision:
    """
    Decide what happens after a billing cycle in which every instrument failed.

    ``failed_attempts`` is the count before this failure. The first failure
    opens the grace window; later failures keep it. Before the final attempt
    a retry is scheduled using the configured offsets. At the final attempt
    the subscription goes past due until the window elapses, after which it
    is canceled.
    """
    now = ensure_utc(now)
    attempts = min(failed_attempts + 1, policy.max_failed_attempts)
    grace_end = ensure_utc(grace_period_ends_at)
    if grace_end is None:
        grace_end = now + timedelta(days=policy.grace_period_days)

    if attempts < policy.max_failed_attempts:
        offsets = policy.retry_offsets_days
        offset = offsets[min(attempts - 1, len(offsets) - 1)]
        return RetryDecision(
            failed_attempts=attempts,
            status=SubscriptionStatus.ACTIVE,
            next_retry_date=now + timedelta(days=offset),
            grace_period_ends_at=grace_end,
        )

    if now >= grace_end:
        return RetryDecision(
            failed_attempts=attempts,
            status=SubscriptionStatus.CANCELED,
            next_retry_date=None,
            grace_period_ends_at=grace_end,
        )

    return RetryDecision(
        failed_attempts=attempts,
        status=SubscriptionStatus.PAST_DUE,
        next_retry_date=grace_end,
        grace_period_ends_at=grace_end,
    )


def advance_billing_date(current: datetime, interval: BillingInterval) -> datetime:
    """Move a billing date forward one interval, clamping to the month's last day."""
    months = 12 if interval == BillingInterval.YEAR else 1
    month_index = current.month - 1 + months
    year = current.year + month_index // 12
    month = month_index % 12 + 1
    day = min(current.day, calendar.monthrange(year, month)[1])
    return current.replace(year=year, month=month, day=day)
