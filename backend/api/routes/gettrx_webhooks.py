"""
GETTRX merchant onboarding webhook ingress.
"""

import json
import logging
import math
import time
from datetime import datetime, timezone
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.payments.gettrx_adapter import WebhookEvent, validate_webhook_payload
from api.middleware.rate_limit import get_client_ip, get_rate_limit, limiter
from api.schemas.webhooks import WebhookAckResponse
from core.security.webhook_signature import verify_signature
from infrastructure.config.settings import settings
from infrastructure.database.connection import get_db
from services.merchant_webhooks import (
    ConcurrentDeliveryError,
    WebhookProcessingError,
    WebhookProcessor,
)
from services.webhook_ledger import DeliveryContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/gettrx/webhooks", tags=["Webhooks"])


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Validate the delivery timestamp header against the tolerance window."""
    if value is None:
        return None
    try:
        seconds = float(value)
    except ValueError:
        seconds = math.nan
    if not math.isfinite(seconds):
        logger.warning("Webhook rejected: malformed timestamp header")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook timestamp",
        )
    if abs(time.time() - seconds) > settings.webhook_timestamp_tolerance_seconds:
        logger.warning("Webhook rejected: timestamp outside tolerance window")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Webhook timestamp too old",
        )
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        logger.warning("Webhook rejected: timestamp out of range")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook timestamp",
        )


@router.post(
    "/application-events",
    response_model=WebhookAckResponse,
    response_model_exclude_none=True,
)
@limiter.limit(get_rate_limit("webhook"))
async def handle_application_event(
    request: Request,
    x_webhook_signature: Annotated[str | None, Header(alias="X-Webhook-Signature")] = None,
    x_webhook_timestamp: Annotated[str | None, Header(alias="X-Webhook-Timestamp")] = None,
    db: AsyncSession = Depends(get_db),
):
    """
    Receive merchant application status events.

    Deliveries are acknowledged with 200 for every outcome the gateway
    should not redeliver (applied, replayed, regression ignored, unknown
    event type). Authentication and structural failures are rejected.
    """
    body = await request.body()

    if not settings.gettrx_webhook_secret:
        # 403 rather than 503 so the gateway does not retry aggressively
        logger.error("Webhook rejected: GETTRX_WEBHOOK_SECRET not configured")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Webhook verification not configured",
        )

    if not x_webhook_signature:
        logger.warning("Webhook received without signature")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing webhook signature",
        )

    if not verify_signature(body, x_webhook_signature, settings.gettrx_webhook_secret):
        logger.warning("Invalid webhook signature")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature",
        )

    delivered_at = _parse_timestamp(x_webhook_timestamp)

    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, ValueError) as e:
        logger.warning("Invalid JSON in webhook payload: %s", e)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid webhook payload: {e}",
        )

    errors = validate_webhook_payload(payload)
    if errors:
        logger.warning("Malformed webhook payload: %s", "; ".join(errors))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "Invalid webhook payload", "errors": errors},
        )

    event = WebhookEvent.from_webhook_payload(payload)
    logger.info(
        "Webhook received: type=%s status=%s",
        event.event_type,
        event.application_status,
        extra={"event_id": event.event_id, "application_id": event.application_id},
    )

    context = DeliveryContext(
        event_type=event.event_type,
        external_application_id=event.application_id,
        raw_payload=payload,
        signature=x_webhook_signature[:255],
        delivered_at=delivered_at,
        source_ip=get_client_ip(request),
    )
    processor = WebhookProcessor(db, max_retries=settings.webhook_max_retries)

    try:
        outcome = await processor.process(event, context)
    except ConcurrentDeliveryError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Event is already being processed",
        )
    except WebhookProcessingError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process webhook",
        )

    return WebhookAckResponse(**outcome.to_dict())
