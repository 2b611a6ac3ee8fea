"""
Pytest configuration and shared fixtures for backend tests.
"""

import json
import sys
import time
from pathlib import Path

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, AsyncGenerator, Optional
from uuid import uuid4

from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Import after path is set
from core.interfaces.services import ChargeRequest, ChargeResult, PaymentGateway
from core.security import compute_signature
from infrastructure.config import settings
from infrastructure.database.connection import get_db
from infrastructure.database.models import (
    Base,
    MerchantApplication,
    Organization,
    PaymentInstrument,
    Subscription,
)


# Database URL for testing (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_WEBHOOK_SECRET = "whsec_test_secret_value"
TEST_INTERNAL_API_KEY = "internal-test-key-0123456789abcdef0123"


@pytest.fixture
async def db_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Session factory bound to the test engine, for code that opens its own sessions."""
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ============================================================================
# Gateway double
# ============================================================================


class FakeGateway(PaymentGateway):
    """
    In-memory payment gateway.

    Outcomes are programmed per instrument reference: a status string
    ("approved", "declined") or an exception instance to raise. Unprogrammed
    references fall back to ``default_status``.
    """

    def __init__(self, default_status: str = "approved"):
        self.default_status = default_status
        self.outcomes: dict[str, Any] = {}
        self.calls: list[tuple[str, ChargeRequest]] = []
        self.submissions: list[str] = []
        self.submit_error: Optional[Exception] = None

    def program(self, instrument_reference: str, outcome: Any) -> None:
        self.outcomes[instrument_reference] = outcome

    @property
    def charged_references(self) -> list[str]:
        return [request.instrument_reference for _, request in self.calls]

    async def _respond(self, kind: str, request: ChargeRequest) -> ChargeResult:
        self.calls.append((kind, request))
        outcome = self.outcomes.get(request.instrument_reference, self.default_status)
        if isinstance(outcome, Exception):
            raise outcome
        return ChargeResult(id=f"pay_{len(self.calls)}", status=outcome, raw={"status": outcome})

    async def charge(self, request: ChargeRequest) -> ChargeResult:
        return await self._respond("charge", request)

    async def create_recurring_payment(self, request: ChargeRequest) -> ChargeResult:
        return await self._respond("recurring", request)

    async def submit_application(self, external_application_id: str) -> dict[str, Any]:
        self.submissions.append(external_application_id)
        if self.submit_error is not None:
            raise self.submit_error
        return {
            "submitted_at": "2026-03-01T12:00:00+00:00",
            "status": "submitted",
            "response": {"id": external_application_id},
        }


@pytest.fixture
def fake_gateway() -> FakeGateway:
    """Gateway double that approves every charge unless programmed otherwise."""
    return FakeGateway()


# ============================================================================
# Settings and request signing
# ============================================================================


@pytest.fixture
def webhook_secret(monkeypatch) -> str:
    """Configure the webhook signing secret for the duration of a test."""
    monkeypatch.setattr(settings, "gettrx_webhook_secret", TEST_WEBHOOK_SECRET)
    return TEST_WEBHOOK_SECRET


@pytest.fixture
def internal_headers(monkeypatch) -> dict:
    """Configure the internal API key and return matching request headers."""
    monkeypatch.setattr(settings, "internal_api_key", TEST_INTERNAL_API_KEY)
    return {"X-Internal-Api-Key": TEST_INTERNAL_API_KEY}


def build_webhook_payload(
    event_type: str,
    application_id: str,
    status: str,
    event_id: Optional[str] = None,
    account_id: Optional[str] = None,
) -> dict:
    """Webhook body in the gateway's delivery format."""
    summary: dict[str, Any] = {"id": application_id, "status": status}
    if account_id is not None:
        summary["accountId"] = account_id
    return {
        "webhook": {
            "id": event_id or f"evt_{uuid4().hex}",
            "type": event_type,
            "data": {"object": {"applicationSummary": summary}},
            "created": int(time.time()),
        }
    }


def signed_request(payload: Any, secret: str = TEST_WEBHOOK_SECRET) -> tuple[bytes, dict]:
    """Serialize a payload and return it with signature and timestamp headers."""
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    headers = {
        "Content-Type": "application/json",
        "X-Webhook-Signature": compute_signature(body, secret),
        "X-Webhook-Timestamp": str(int(time.time())),
    }
    return body, headers


@pytest.fixture
def webhook_payload():
    """Factory for webhook bodies."""
    return build_webhook_payload


@pytest.fixture
def sign(webhook_secret):
    """Sign a payload with the configured webhook secret."""

    def _sign(payload: Any, secret: Optional[str] = None) -> tuple[bytes, dict]:
        return signed_request(payload, secret or webhook_secret)

    return _sign


# ============================================================================
# Domain fixtures
# ============================================================================


@pytest.fixture
async def organization(db_session: AsyncSession) -> Organization:
    """Organization with a configured custom domain and a gateway customer."""
    org = Organization(
        id=str(uuid4()),
        name="Harbor Food Bank",
        gateway_customer_id="cus_harbor",
        custom_domain="give.harborfoodbank.org",
        custom_domain_ssl_status="active",
    )
    db_session.add(org)
    await db_session.commit()
    await db_session.refresh(org)
    return org


@pytest.fixture
async def merchant_application(
    db_session: AsyncSession, organization: Organization
) -> MerchantApplication:
    """Merchant application in its initial ``created`` state."""
    application = MerchantApplication(
        id=str(uuid4()),
        organization_id=organization.id,
        external_application_id=f"app_{uuid4().hex[:12]}",
        status="created",
        submission_status="draft",
    )
    db_session.add(application)
    await db_session.commit()
    await db_session.refresh(application)
    return application


@pytest.fixture
def make_instrument(db_session: AsyncSession):
    """Factory that stores an active card for an organization."""

    async def _make(
        organization_id: str,
        reference: str,
        priority: int = 1,
        is_default: bool = False,
        last4: Optional[str] = None,
        status: str = "active",
    ) -> PaymentInstrument:
        instrument = PaymentInstrument(
            id=str(uuid4()),
            organization_id=organization_id,
            provider_payment_method_id=reference,
            instrument_type="card",
            card_brand="visa",
            last4=last4 or f"{abs(hash(reference)) % 10000:04d}",
            exp_month=12,
            exp_year=2030,
            priority=priority,
            is_default=is_default,
            status=status,
        )
        db_session.add(instrument)
        await db_session.commit()
        await db_session.refresh(instrument)
        return instrument

    return _make


@pytest.fixture
def make_subscription(db_session: AsyncSession):
    """Factory that stores an active monthly subscription due at ``due_at``."""

    async def _make(
        organization_id: str,
        due_at: Optional[datetime] = None,
        plan_code: str = "pro_monthly",
        primary_payment_method_id: Optional[str] = None,
    ) -> Subscription:
        due_at = due_at or datetime.now(timezone.utc)
        subscription = Subscription(
            id=str(uuid4()),
            organization_id=organization_id,
            plan_code=plan_code,
            amount=Decimal("49.00"),
            currency="usd",
            interval="month",
            status="active",
            failed_attempts=0,
            start_date=due_at - timedelta(days=30),
            last_billing_date=due_at - timedelta(days=30),
            next_billing_date=due_at,
            primary_payment_method_id=primary_payment_method_id,
        )
        db_session.add(subscription)
        await db_session.commit()
        await db_session.refresh(subscription)
        return subscription

    return _make


# ============================================================================
# HTTP client
# ============================================================================


@pytest.fixture
async def async_client(
    db_session: AsyncSession,
    fake_gateway: FakeGateway,
    session_factory,
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing."""
    # Import app here to avoid circular imports
    from api.dependencies import get_payment_gateway, get_session_factory
    from main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: fake_gateway
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    # Reset rate limiter state between tests to prevent cross-test 429s
    if hasattr(app.state, "limiter"):
        app.state.limiter.reset()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
