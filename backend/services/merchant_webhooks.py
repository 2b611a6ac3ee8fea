"""
Merchant onboarding webhook processing.

Runs the ledger check, the status transition and the organization
propagation for one delivery inside a single transaction.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.payments.gettrx_adapter import WebhookEvent
from core.domain.merchant import (
    TERMINAL_STATUSES,
    check_transition,
    map_event_to_status,
    parse_status,
)
from infrastructure.database.models import MerchantApplication
from services.organizations import OrganizationService
from services.webhook_ledger import DeliveryContext, IdempotencyLedger

logger = logging.getLogger(__name__)


class WebhookProcessingError(Exception):
    """Processing failed and was rolled back; the ledger marks it retryable."""

    pass


class ConcurrentDeliveryError(WebhookProcessingError):
    """Another delivery of the same event id is being processed right now."""

    pass


@dataclass
class WebhookOutcome:
    """Acknowledgement body returned to the gateway and cached in the ledger."""

    success: bool
    message: str
    application_id: Optional[str] = None
    updated_fields: Optional[dict[str, Any]] = None
    status_regression: Optional[bool] = None
    already_processed: Optional[bool] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.application_id is not None:
            data["applicationId"] = self.application_id
        if self.updated_fields is not None:
            data["updatedFields"] = self.updated_fields
        if self.status_regression is not None:
            data["statusRegression"] = self.status_regression
        if self.already_processed is not None:
            data["alreadyProcessed"] = self.already_processed
        return data

    @classmethod
    def from_cached(cls, data: dict[str, Any]) -> "WebhookOutcome":
        return cls(
            success=bool(data.get("success", True)),
            message=data.get("message", "Event already processed"),
            application_id=data.get("applicationId"),
            updated_fields=data.get("updatedFields"),
            status_regression=data.get("statusRegression"),
            already_processed=True,
        )


class WebhookProcessor:
    """Applies merchant application webhooks exactly once per event id."""

    def __init__(
        self,
        db: AsyncSession,
        organizations: Optional[OrganizationService] = None,
        max_retries: int = 3,
    ):
        self.db = db
        self.ledger = IdempotencyLedger(db, max_retries=max_retries)
        self.organizations = organizations or OrganizationService(db)

    async def process(self, event: WebhookEvent, context: DeliveryContext) -> WebhookOutcome:
        """
        Process one verified, structurally valid delivery.

        Raises:
            ConcurrentDeliveryError: a parallel delivery holds the event id
            WebhookProcessingError: persistence or unexpected failure; the
                ledger row is marked failed in a separate transaction
        """
        log_extra = {"event_id": event.event_id, "application_id": event.application_id}
        try:
            return await self._process_once(event, context, log_extra)
        except IntegrityError as e:
            await self.db.rollback()
            existing = await self.ledger.get(event.event_id)
            if existing is None:
                await self._record_failure(event, context, str(e), log_extra)
                raise WebhookProcessingError(f"Failed to process webhook: {e}") from e
            processed = self.ledger.is_processed(existing)
            cached = dict(existing.result or {})
            await self.db.rollback()
            if processed:
                logger.info("Concurrent duplicate resolved from ledger", extra=log_extra)
                return WebhookOutcome.from_cached(cached)
            logger.warning("Concurrent delivery of webhook event in progress", extra=log_extra)
            raise ConcurrentDeliveryError("Event is already being processed") from e
        except Exception as e:
            await self.db.rollback()
            logger.error("Webhook processing failed: %s", e, exc_info=True, extra=log_extra)
            await self._record_failure(event, context, str(e), log_extra)
            raise WebhookProcessingError(f"Failed to process webhook: {e}") from e

    async def _process_once(
        self,
        event: WebhookEvent,
        context: DeliveryContext,
        log_extra: dict[str, Any],
    ) -> WebhookOutcome:
        record = await self.ledger.get(event.event_id, for_update=True)

        # Rollback expires loaded rows, so read them first
        if self.ledger.is_processed(record):
            cached = dict(record.result or {})
            await self.db.rollback()
            logger.info("Webhook event already processed", extra=log_extra)
            return WebhookOutcome.from_cached(cached)

        if self.ledger.retries_exhausted(record):
            retry_count = record.retry_count
            await self.db.rollback()
            logger.warning(
                "Webhook event exceeded retry limit (%d)", retry_count, extra=log_extra
            )
            return WebhookOutcome(
                success=False,
                message="Event exceeded maximum retry attempts",
                application_id=event.application_id,
            )

        update = map_event_to_status(event.event_type, event.application_summary)
        if update.is_empty:
            await self.db.rollback()
            logger.warning("No status mapping for event type %s", event.event_type, extra=log_extra)
            return WebhookOutcome(
                success=False,
                message=f"No status mapping for event type {event.event_type}",
                application_id=event.application_id,
            )

        record = await self.ledger.begin(event.event_id, context, existing=record)

        result = await self.db.execute(
            select(MerchantApplication)
            .where(MerchantApplication.external_application_id == event.application_id)
            .with_for_update()
        )
        application = result.scalar_one_or_none()

        if application is None:
            outcome = WebhookOutcome(
                success=False,
                message="Merchant application not found",
                application_id=event.application_id,
            )
            self.ledger.mark_failed(record, outcome.message, outcome.to_dict())
            await self.db.commit()
            logger.warning("Webhook references unknown merchant application", extra=log_extra)
            return outcome

        current = parse_status(application.status)
        if not check_transition(current, update.status):
            outcome = WebhookOutcome(
                success=True,
                message=(
                    f"Status regression prevented: {application.status} -> {update.status.value}"
                ),
                application_id=event.application_id,
                updated_fields={},
                status_regression=True,
            )
            self.ledger.mark_processed(record, outcome.to_dict(), application.organization_id)
            await self.db.commit()
            logger.warning(
                "Ignored out-of-order status %s (current %s)",
                update.status.value,
                application.status,
                extra=log_extra,
            )
            return outcome

        fields = update.as_fields()
        for column, value in fields.items():
            setattr(application, column, value)

        if update.status in TERMINAL_STATUSES:
            await self.organizations.update_merchant_status(
                application.organization_id,
                update.status.value,
                account_id=update.external_account_id or application.external_account_id,
            )

        outcome = WebhookOutcome(
            success=True,
            message=f"Application status updated to {update.status.value}",
            application_id=event.application_id,
            updated_fields=fields,
            status_regression=False,
        )
        self.ledger.mark_processed(record, outcome.to_dict(), application.organization_id)
        await self.db.commit()

        logger.info("Applied webhook status %s", update.status.value, extra=log_extra)
        return outcome

    async def _record_failure(
        self,
        event: WebhookEvent,
        context: DeliveryContext,
        error: str,
        log_extra: dict[str, Any],
    ) -> None:
        try:
            await self.ledger.record_failure(event.event_id, context, error)
        except SQLAlchemyError:
            await self.db.rollback()
            logger.error("Could not record webhook failure in ledger", exc_info=True, extra=log_extra)
