"""
Payment method, subscription and merchant onboarding request/response schemas.
"""

from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class InstrumentTypeEnum(StrEnum):
    """Funding source kinds accepted by the API."""

    CARD = "card"
    BANK_ACCOUNT = "bank_account"


class PaymentMethodCreate(BaseModel):
    """Request to store a tokenized payment method."""

    provider_payment_method_id: str = Field(
        ..., min_length=1, max_length=255, description="Gateway token for the payment method"
    )
    instrument_type: InstrumentTypeEnum = Field(..., description="card or bank_account")
    card_brand: str | None = Field(None, max_length=50, description="Card network, cards only")
    last4: str | None = Field(None, pattern=r"^\d{4}$", description="Last four digits")
    exp_month: int | None = Field(None, ge=1, le=12, description="Card expiry month")
    exp_year: int | None = Field(None, ge=2000, le=2100, description="Card expiry year")
    nickname: str | None = Field(None, max_length=100)
    priority: int | None = Field(None, ge=0, description="Lower values are tried first")
    is_default: bool = Field(False, description="Make this the default payment method")

    @model_validator(mode="after")
    def check_card_fields(self) -> "PaymentMethodCreate":
        if self.instrument_type == InstrumentTypeEnum.CARD and not self.card_brand:
            raise ValueError("card_brand is required for card payment methods")
        return self

    model_config = {
        "json_schema_extra": {
            "example": {
                "provider_payment_method_id": "pm_123",
                "instrument_type": "card",
                "card_brand": "visa",
                "last4": "4242",
                "exp_month": 12,
                "exp_year": 2030,
            }
        }
    }


class PaymentMethodResponse(BaseModel):
    """Stored payment method with usage statistics."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    organization_id: str
    instrument_type: str
    card_brand: str | None = None
    last4: str | None = None
    exp_month: int | None = None
    exp_year: int | None = None
    nickname: str | None = None
    priority: int
    is_default: bool
    status: str
    success_count: int
    failure_count: int
    consecutive_failures: int
    last_used_at: datetime | None = None
    created_at: datetime


class PaymentMethodListResponse(BaseModel):
    """Active payment methods in attempt order."""

    payment_methods: list[PaymentMethodResponse]
    total: int


class PriorityUpdate(BaseModel):
    """Request to change a payment method's priority."""

    priority: int = Field(..., ge=0, description="Lower values are tried first")


class SubscriptionCreate(BaseModel):
    """Request to subscribe an organization to a plan."""

    plan_code: str = Field(..., description="Plan code from the catalogue, e.g. pro_monthly")
    preferred_payment_method_id: str | None = Field(
        None, description="Payment method to try first"
    )


class SubscriptionResponse(BaseModel):
    """Subscription billing state."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    organization_id: str
    plan_code: str
    amount: Decimal
    currency: str
    interval: str
    status: str
    failed_attempts: int
    start_date: datetime
    end_date: datetime | None = None
    last_billing_date: datetime | None = None
    next_billing_date: datetime
    next_retry_date: datetime | None = None
    grace_period_ends_at: datetime | None = None
    primary_payment_method_id: str | None = None
    last_error: str | None = None


class SubscriptionStatusResponse(BaseModel):
    """Live subscriptions and payment method availability for an organization."""

    organization_id: str
    subscriptions: list[SubscriptionResponse]
    has_payment_methods: bool
    payment_method_count: int


class RenewalResultResponse(BaseModel):
    """Outcome of one renewal cycle."""

    subscription_id: str
    outcome: str = Field(..., description="renewed, failed, no_payment_method, downgraded or skipped")
    status: str
    failed_attempts: int
    attempted: int = 0
    payment_method_id: str | None = None
    next_billing_date: datetime | None = None
    next_retry_date: datetime | None = None
    grace_period_ends_at: datetime | None = None
    error: str | None = None


class RenewalRunResponse(BaseModel):
    """Summary of a renewal pass."""

    processed: int
    renewed: int
    failed: int
    downgraded: int
    errors: int
    results: list[RenewalResultResponse]


class MerchantApplicationCreate(BaseModel):
    """Request to register a gateway merchant application."""

    external_application_id: str = Field(..., min_length=1, max_length=255)
    external_account_id: str | None = Field(None, max_length=255)


class MerchantApplicationResponse(BaseModel):
    """Merchant application state."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    organization_id: str
    external_application_id: str
    external_account_id: str | None = None
    status: str
    submission_status: str
    underwriting_status: str | None = None
    submission_attempts: int
    last_error: str | None = None
    submitted_at: datetime | None = None


class MerchantSubmissionResponse(BaseModel):
    """Result of submitting an application to underwriting."""

    application_id: str
    status: str
    submitted_at: datetime
    submission_attempts: int
