"""
Gateway webhook acknowledgement schema.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class WebhookAckResponse(BaseModel):
    """Body returned to the gateway for every accepted delivery."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = Field(..., description="Whether the event was applied or acknowledged as a no-op")
    message: str = Field(..., description="Human-readable outcome")
    application_id: str | None = Field(
        None, alias="applicationId", description="Gateway application id from the payload"
    )
    updated_fields: dict[str, Any] | None = Field(
        None, alias="updatedFields", description="Columns written by this event"
    )
    status_regression: bool | None = Field(
        None, alias="statusRegression", description="True when an out-of-order status was ignored"
    )
    already_processed: bool | None = Field(
        None, alias="alreadyProcessed", description="True when served from the idempotency ledger"
    )
