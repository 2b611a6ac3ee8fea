"""Service interfaces for external integrations."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional


@dataclass
class ChargeRequest:
    """A single charge against one stored payment instrument."""

    amount: Decimal
    currency: str
    instrument_reference: str
    customer_reference: Optional[str] = None
    description: Optional[str] = None
    merchant_account_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ChargeResult:
    """Gateway outcome of a charge attempt."""

    id: Optional[str]
    status: str
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status in ("approved", "settled")


class PaymentGateway(ABC):
    """Abstract payment gateway consumed by billing and onboarding."""

    @abstractmethod
    async def charge(self, request: ChargeRequest) -> ChargeResult:
        """Charge a stored instrument once."""
        ...

    @abstractmethod
    async def create_recurring_payment(self, request: ChargeRequest) -> ChargeResult:
        """Charge a stored instrument as part of a recurring series."""
        ...

    @abstractmethod
    async def submit_application(self, external_application_id: str) -> dict[str, Any]:
        """Submit a merchant application to underwriting."""
        ...
