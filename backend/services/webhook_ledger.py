"""
Idempotency ledger for inbound gateway webhooks.

Each delivery id gets one row. A ``processed`` row is never reprocessed;
its cached result is returned instead. A ``failed`` row is retried on
redelivery until the retry budget is spent.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from infrastructure.database.models.merchant import WebhookEventRecord, WebhookEventStatus

logger = logging.getLogger(__name__)


@dataclass
class DeliveryContext:
    """Transport metadata stored alongside a ledger row."""

    event_type: str
    external_application_id: Optional[str] = None
    raw_payload: Optional[dict] = None
    signature: Optional[str] = None
    delivered_at: Optional[datetime] = None
    source_ip: Optional[str] = None


class IdempotencyLedger:
    """Reads and writes webhook ledger rows on the caller's session."""

    def __init__(self, db: AsyncSession, max_retries: int = 3):
        self.db = db
        self.max_retries = max_retries

    async def get(self, event_id: str, for_update: bool = False) -> Optional[WebhookEventRecord]:
        stmt = select(WebhookEventRecord).where(WebhookEventRecord.event_id == event_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    def is_processed(self, record: Optional[WebhookEventRecord]) -> bool:
        return record is not None and record.status == WebhookEventStatus.PROCESSED

    def retries_exhausted(self, record: Optional[WebhookEventRecord]) -> bool:
        return (
            record is not None
            and record.status == WebhookEventStatus.FAILED
            and record.retry_count >= self.max_retries
        )

    async def begin(
        self,
        event_id: str,
        context: DeliveryContext,
        existing: Optional[WebhookEventRecord] = None,
    ) -> WebhookEventRecord:
        """
        Claim an event id for processing.

        A new row is flushed immediately so a concurrent delivery of the same
        id fails on the unique constraint instead of applying effects twice.
        """
        if existing is not None:
            existing.status = WebhookEventStatus.PENDING
            existing.signature = context.signature
            existing.delivered_at = context.delivered_at
            existing.source_ip = context.source_ip
            return existing

        record = WebhookEventRecord(
            event_id=event_id,
            event_type=context.event_type,
            external_application_id=context.external_application_id,
            raw_payload=context.raw_payload,
            signature=context.signature,
            delivered_at=context.delivered_at,
            source_ip=context.source_ip,
            status=WebhookEventStatus.PENDING,
            retry_count=0,
        )
        self.db.add(record)
        await self.db.flush()
        return record

    def mark_processed(
        self,
        record: WebhookEventRecord,
        result: dict[str, Any],
        organization_id: Optional[str] = None,
    ) -> None:
        record.status = WebhookEventStatus.PROCESSED
        record.result = result
        record.error_message = None
        record.processed_at = datetime.now(timezone.utc)
        if organization_id:
            record.organization_id = organization_id

    def mark_failed(
        self,
        record: WebhookEventRecord,
        error: str,
        result: Optional[dict[str, Any]] = None,
    ) -> None:
        record.status = WebhookEventStatus.FAILED
        record.retry_count = (record.retry_count or 0) + 1
        record.error_message = error[:2000]
        record.result = result

    async def record_failure(self, event_id: str, context: DeliveryContext, error: str) -> None:
        """
        Persist a failure in its own transaction.

        Used after the processing transaction was rolled back, so the next
        redelivery of this id is retried rather than treated as done.
        """
        record = await self.get(event_id, for_update=True)
        if record is None:
            record = WebhookEventRecord(
                event_id=event_id,
                event_type=context.event_type,
                external_application_id=context.external_application_id,
                raw_payload=context.raw_payload,
                signature=context.signature,
                delivered_at=context.delivered_at,
                source_ip=context.source_ip,
                retry_count=0,
            )
            self.db.add(record)
        elif record.status == WebhookEventStatus.PROCESSED:
            return
        self.mark_failed(record, error)
        await self.db.commit()

    async def cleanup_old_events(self, days: int = 30) -> int:
        """Delete ledger rows older than ``days``. Returns the number removed."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        result = await self.db.execute(
            delete(WebhookEventRecord).where(WebhookEventRecord.created_at < cutoff)
        )
        await self.db.commit()
        removed = result.rowcount or 0
        logger.info("Removed %d webhook ledger records older than %d days", removed, days)
        return removed
