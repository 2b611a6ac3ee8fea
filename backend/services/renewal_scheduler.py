"""
Subscription Renewal Scheduler Service.

Background loop that finds subscriptions whose billing or retry date has
passed and runs one renewal cycle for each, every cycle in its own session
and transaction. Also prunes the webhook ledger once a day.
"""

import asyncio
import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from adapters.payments.gettrx_adapter import create_gettrx_adapter
from core.interfaces.services import PaymentGateway
from infrastructure.config import settings
from infrastructure.database import async_session_maker
from services.subscription_billing import SubscriptionBillingService
from services.webhook_ledger import IdempotencyLedger

logger = logging.getLogger(__name__)


class RenewalSchedulerService:
    """Periodic trigger for subscription renewals."""

    def __init__(
        self,
        gateway: Optional[PaymentGateway] = None,
        session_factory: Callable = async_session_maker,
        check_interval: Optional[int] = None,
        batch_size: int = 100,
    ):
        self.gateway = gateway or create_gettrx_adapter()
        self.session_factory = session_factory
        self.is_running = False
        self.check_interval = check_interval or settings.renewal_check_interval_seconds
        self.batch_size = batch_size
        self._last_cleanup: Optional[datetime] = None
        self._stop_event = asyncio.Event()

    async def start(self):
        """Start the scheduler background loop."""
        if self.is_running:
            logger.warning("Renewal scheduler is already running")
            return

        self.is_running = True
        self._stop_event.clear()
        logger.info(
            "Renewal scheduler started - checking subscriptions every %d seconds",
            self.check_interval,
        )

        while self.is_running:
            try:
                await self.process_due_renewals()
                await self.cleanup_ledger_if_due()
            except Exception as e:
                logger.error(f"Renewal scheduler error: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.check_interval)
            except TimeoutError:
                pass

    async def stop(self):
        """
        Stop the scheduler.

        A pass already in progress runs to completion; the wait between
        passes ends immediately.
        """
        if not self.is_running:
            return

        self.is_running = False
        self._stop_event.set()
        logger.info("Renewal scheduler stopped")

    async def process_due_renewals(self, now: Optional[datetime] = None) -> dict:
        """
        Run one pass over due subscriptions.

        A failure on one subscription is logged and counted; the pass
        continues with the next one. A stop request ends the pass before
        the next subscription is started.
        """
        now = now or datetime.now(timezone.utc)

        async with self.session_factory() as db:
            service = SubscriptionBillingService(db, self.gateway)
            due_ids = await service.due_subscription_ids(now=now, limit=self.batch_size)

        outcomes: Counter = Counter()
        results = []
        processed = 0
        for subscription_id in due_ids:
            if self._stop_event.is_set():
                logger.info("Renewal pass interrupted by shutdown after %d of %d", processed, len(due_ids))
                break
            processed += 1
            async with self.session_factory() as db:
                service = SubscriptionBillingService(db, self.gateway)
                try:
                    result = await service.process_renewal(subscription_id, now=now)
                except Exception as e:
                    outcomes["error"] += 1
                    logger.error(
                        "Renewal failed: %s",
                        e,
                        exc_info=True,
                        extra={"subscription_id": subscription_id},
                    )
                    continue
            outcomes[result.outcome] += 1
            results.append(result.to_dict())

        summary = {
            "processed": processed,
            "renewed": outcomes["renewed"],
            "failed": outcomes["failed"] + outcomes["no_payment_method"],
            "downgraded": outcomes["downgraded"],
            "errors": outcomes["error"],
            "results": results,
        }
        if due_ids:
            logger.info(
                "Renewal pass: %d due, %d renewed, %d failed, %d downgraded, %d errors",
                summary["processed"],
                summary["renewed"],
                summary["failed"],
                summary["downgraded"],
                summary["errors"],
            )
        return summary

    async def cleanup_ledger_if_due(self, now: Optional[datetime] = None) -> Optional[int]:
        """Prune old webhook ledger rows at most once a day."""
        now = now or datetime.now(timezone.utc)
        if self._last_cleanup is not None and now - self._last_cleanup < timedelta(days=1):
            return None

        async with self.session_factory() as db:
            ledger = IdempotencyLedger(db, max_retries=settings.webhook_max_retries)
            removed = await ledger.cleanup_old_events(days=settings.webhook_retention_days)
        self._last_cleanup = now
        return removed

