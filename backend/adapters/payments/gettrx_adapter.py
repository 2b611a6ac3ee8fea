"""
GETTRX payment gateway adapter.

Provides charges against stored payment methods, merchant application
submission, and parsing of merchant onboarding webhook payloads.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import httpx

from core.interfaces.services import ChargeRequest, ChargeResult, PaymentGateway
from infrastructure.config.settings import settings

logger = logging.getLogger(__name__)


# Custom Exceptions
class GettrxError(Exception):
    """Base exception for GETTRX adapter errors."""

    pass


class GettrxAPIError(GettrxError):
    """Raised when the GETTRX API returns an error."""

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class GettrxAuthError(GettrxError):
    """Raised when API credentials are missing or rejected."""

    pass


class GettrxTimeoutError(GettrxError):
    """Raised when a call exceeds the configured timeout."""

    pass


class GettrxWebhookError(GettrxError):
    """Raised when a webhook payload does not have the expected structure."""

    pass


# Submission error codes keyed by HTTP status
_SUBMIT_ERROR_CODES = {
    400: "NOT_READY",
    404: "APPLICATION_NOT_FOUND",
    409: "ALREADY_SUBMITTED",
}


@dataclass
class WebhookEvent:
    """Merchant onboarding webhook event."""

    event_id: str
    event_type: str
    application_id: str
    application_status: str
    account_id: str | None
    created: str | None
    application_summary: dict[str, Any]

    @classmethod
    def from_webhook_payload(cls, payload: dict[str, Any]) -> "WebhookEvent":
        """Create webhook event from a validated payload."""
        webhook = payload["webhook"]
        summary = webhook["data"]["object"]["applicationSummary"]
        account_id = summary.get("accountId")
        return cls(
            event_id=webhook["id"],
            event_type=webhook["type"],
            application_id=summary["id"],
            application_status=summary["status"],
            account_id=account_id if isinstance(account_id, str) and account_id else None,
            created=str(webhook["created"]) if webhook.get("created") is not None else None,
            application_summary=summary,
        )


def validate_webhook_payload(payload: Any) -> list[str]:
    """Return a list of structural problems; empty when the payload is usable."""
    if not isinstance(payload, dict):
        return ["payload must be a JSON object"]

    webhook = payload.get("webhook")
    if not isinstance(webhook, dict):
        return ["missing 'webhook' object"]

    errors: list[str] = []
    if not isinstance(webhook.get("id"), str) or not webhook.get("id"):
        errors.append("missing 'webhook.id'")
    if not isinstance(webhook.get("type"), str) or not webhook.get("type"):
        errors.append("missing 'webhook.type'")

    data = webhook.get("data")
    obj = data.get("object") if isinstance(data, dict) else None
    summary = obj.get("applicationSummary") if isinstance(obj, dict) else None
    if not isinstance(summary, dict):
        errors.append("missing 'webhook.data.object.applicationSummary'")
        return errors

    if not isinstance(summary.get("id"), str) or not summary.get("id"):
        errors.append("missing 'applicationSummary.id'")
    if not isinstance(summary.get("status"), str):
        errors.append("missing 'applicationSummary.status'")
    account_id = summary.get("accountId")
    if account_id is not None and not isinstance(account_id, str):
        errors.append("'applicationSummary.accountId' must be a string")
    return errors


def to_minor_units(amount: Decimal) -> int:
    """Convert a major-unit amount to integer cents."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class GettrxAdapter(PaymentGateway):
    """
    GETTRX API adapter.

    Every call is bounded by ``timeout``; a timeout surfaces as
    GettrxTimeoutError so callers can treat it like a decline.
    """

    def __init__(
        self,
        secret_key: str | None = None,
        base_url: str | None = None,
        onboarding_base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize GETTRX adapter.

        Args:
            secret_key: API secret key (defaults to settings)
            base_url: Payments API base URL (defaults to settings)
            onboarding_base_url: Onboarding API base URL (defaults to settings)
            timeout: Per-call timeout in seconds (defaults to settings)
            transport: Optional httpx transport, used by tests
        """
        self.secret_key = secret_key or settings.gettrx_secret_key
        self.base_url = (base_url or settings.gettrx_base_url).rstrip("/")
        self.onboarding_base_url = (
            onboarding_base_url or settings.gettrx_onboarding_base_url
        ).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.gettrx_timeout_seconds
        self._transport = transport

        if not self.secret_key:
            logger.warning("GETTRX secret key not configured. Set gettrx_secret_key in settings.")

    def _get_headers(self, on_behalf_of: str | None = None) -> dict[str, str]:
        """Get HTTP headers for API requests."""
        if not self.secret_key:
            raise GettrxAuthError("GETTRX secret key not configured. Set gettrx_secret_key in settings.")

        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "secretKey": self.secret_key,
        }
        if on_behalf_of:
            headers["onBehalfOf"] = on_behalf_of
        return headers

    async def _make_request(
        self,
        method: str,
        url: str,
        data: dict[str, Any] | None = None,
        on_behalf_of: str | None = None,
    ) -> dict[str, Any]:
        """
        Make HTTP request to the GETTRX API.

        Raises:
            GettrxAuthError: On missing credentials or 401/403
            GettrxTimeoutError: When the call exceeds the timeout
            GettrxAPIError: On any other HTTP or transport failure
        """
        headers = self._get_headers(on_behalf_of)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                logger.info("Making %s request to %s", method, url)
                response = await client.request(method, url, headers=headers, json=data)
                response.raise_for_status()

                if response.status_code == 204 or not response.content:
                    return {}
                return response.json()

        except httpx.TimeoutException as e:
            logger.warning("GETTRX request timed out after %ss: %s", self.timeout, url)
            raise GettrxTimeoutError(f"Request timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            error_detail = str(e)
            try:
                error_data = e.response.json()
                error_detail = error_data.get("message") or error_data.get("error") or error_detail
            except ValueError:
                pass

            if status_code in (401, 403):
                logger.error("GETTRX authentication failed (%s)", status_code)
                raise GettrxAuthError(f"Authentication failed: {error_detail}") from e

            logger.error("GETTRX API error %s: %s", status_code, error_detail)
            raise GettrxAPIError(
                f"API request failed: {error_detail}", status_code=status_code
            ) from e
        except httpx.RequestError as e:
            logger.error("HTTP request error: %s", e)
            raise GettrxAPIError(f"Request failed: {e}") from e
        except ValueError as e:
            logger.error("Invalid JSON from GETTRX: %s", e)
            raise GettrxAPIError(f"Invalid response body: {e}") from e

    def _payment_body(self, request: ChargeRequest, recurring: bool) -> dict[str, Any]:
        body: dict[str, Any] = {
            "amount": to_minor_units(request.amount),
            "currency": request.currency.lower(),
            "paymentMethod": request.instrument_reference,
            "description": request.description,
            "metadata": request.metadata,
        }
        if request.customer_reference:
            body["customer"] = request.customer_reference
        if recurring:
            body["recurring"] = True
        return body

    @staticmethod
    def _to_result(data: Any) -> ChargeResult:
        if not isinstance(data, dict):
            raise GettrxAPIError(
                f"Unexpected payment response: {type(data).__name__}", code="INVALID_RESPONSE"
            )
        return ChargeResult(
            id=data.get("id"),
            status=str(data.get("status", "declined")).lower(),
            raw=data,
        )

    async def charge(self, request: ChargeRequest) -> ChargeResult:
        """
        Charge a stored payment method once.

        Returns:
            ChargeResult whose status is approved/settled on success
        """
        data = await self._make_request(
            "POST",
            f"{self.base_url}/payment-requests",
            data=self._payment_body(request, recurring=False),
            on_behalf_of=request.merchant_account_id,
        )
        result = self._to_result(data)
        logger.info("Charge %s finished with status %s", result.id, result.status)
        return result

    async def create_recurring_payment(self, request: ChargeRequest) -> ChargeResult:
        """Charge a stored payment method as part of a recurring series."""
        data = await self._make_request(
            "POST",
            f"{self.base_url}/payment-requests",
            data=self._payment_body(request, recurring=True),
            on_behalf_of=request.merchant_account_id,
        )
        result = self._to_result(data)
        logger.info("Recurring payment %s finished with status %s", result.id, result.status)
        return result

    async def submit_application(self, external_application_id: str) -> dict[str, Any]:
        """
        Submit a merchant application to underwriting.

        Raises:
            GettrxAPIError: with ``code`` set to NOT_READY, ALREADY_SUBMITTED
                or APPLICATION_NOT_FOUND for the documented failure statuses
        """
        try:
            data = await self._make_request(
                "POST",
                f"{self.onboarding_base_url}/application/{external_application_id}/submit",
            )
        except GettrxAPIError as e:
            e.code = _SUBMIT_ERROR_CODES.get(e.status_code or 0, "SUBMISSION_FAILED")
            raise

        logger.info("Submitted merchant application %s", external_application_id)
        return {
            "submitted_at": data.get("submittedAt") or datetime.now(UTC).isoformat(),
            "status": data.get("status", "submitted"),
            "response": data,
        }

    def parse_webhook_event(self, payload: dict[str, Any]) -> WebhookEvent:
        """
        Validate and parse a merchant onboarding webhook payload.

        Raises:
            GettrxWebhookError: If the payload structure is invalid
        """
        errors = validate_webhook_payload(payload)
        if errors:
            raise GettrxWebhookError("; ".join(errors))
        event = WebhookEvent.from_webhook_payload(payload)
        logger.info("Parsed webhook event: %s", event.event_type)
        return event


# Factory function for easy instantiation
def create_gettrx_adapter(
    secret_key: str | None = None,
    base_url: str | None = None,
    onboarding_base_url: str | None = None,
    timeout: float | None = None,
) -> GettrxAdapter:
    """
    Create a GETTRX adapter instance.

    Args:
        secret_key: API secret key (defaults to settings)
        base_url: Payments API base URL (defaults to settings)
        onboarding_base_url: Onboarding API base URL (defaults to settings)
        timeout: Per-call timeout in seconds (defaults to settings)

    Returns:
        GettrxAdapter instance
    """
    return GettrxAdapter(
        secret_key=secret_key,
        base_url=base_url,
        onboarding_base_url=onboarding_base_url,
        timeout=timeout,
    )
