"""Create organization, merchant onboarding, webhook ledger and billing tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("merchant_status", sa.String(50), nullable=False, server_default="not_started"),
        sa.Column("merchant_account_id", sa.String(255), nullable=True),
        sa.Column("ready_to_charge", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("subscription_tier", sa.String(50), nullable=False, server_default="basic"),
        sa.Column("subscription_status", sa.String(50), nullable=False, server_default="inactive"),
        sa.Column("gateway_customer_id", sa.String(255), nullable=True),
        sa.Column("custom_domain", sa.String(255), nullable=True),
        sa.Column("custom_domain_ssl_status", sa.String(50), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "merchant_applications",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("organization_id", sa.String(36), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("external_application_id", sa.String(255), nullable=False, unique=True),
        sa.Column("external_account_id", sa.String(255), nullable=True),
        sa.Column("status", sa.String(50), nullable=False, server_default="created"),
        sa.Column("submission_status", sa.String(50), nullable=False, server_default="draft"),
        sa.Column("underwriting_status", sa.String(50), nullable=True),
        sa.Column("submission_attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("event_id", sa.String(255), nullable=False, unique=True),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("external_application_id", sa.String(255), nullable=True),
        sa.Column("organization_id", sa.String(36), nullable=True),
        sa.Column("status", sa.String(50), nullable=False, server_default="pending"),
        sa.Column("result", sa.JSON, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("retry_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("raw_payload", sa.JSON, nullable=True),
        sa.Column("signature", sa.String(255), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("source_ip", sa.String(64), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_webhook_events_status_created", "webhook_events", ["status", "created_at"])

    op.create_table(
        "payment_instruments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("organization_id", sa.String(36), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("provider_payment_method_id", sa.String(255), nullable=False),
        sa.Column("instrument_type", sa.String(50), nullable=False),
        sa.Column("card_brand", sa.String(50), nullable=True),
        sa.Column("last4", sa.String(4), nullable=True),
        sa.Column("exp_month", sa.Integer, nullable=True),
        sa.Column("exp_year", sa.Integer, nullable=True),
        sa.Column("nickname", sa.String(100), nullable=True),
        sa.Column("priority", sa.Integer, nullable=False, server_default="0"),
        sa.Column("is_default", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("status", sa.String(50), nullable=False, server_default="active"),
        sa.Column("success_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("failure_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("consecutive_failures", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_success_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_failure_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_payment_instruments_org_status", "payment_instruments", ["organization_id", "status"])

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("organization_id", sa.String(36), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("plan_code", sa.String(100), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="usd"),
        sa.Column("interval", sa.String(20), nullable=False),
        sa.Column("status", sa.String(50), nullable=False, server_default="active"),
        sa.Column("failed_attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_billing_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_billing_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("next_retry_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("grace_period_ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("primary_payment_method_id", sa.String(36), sa.ForeignKey("payment_instruments.id", ondelete="SET NULL"), nullable=True),
        sa.Column("last_payment_id", sa.String(255), nullable=True),
        sa.Column("last_error", sa.String(500), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_subscriptions_status_next_billing", "subscriptions", ["status", "next_billing_date"])


def downgrade() -> None:
    op.drop_index("ix_subscriptions_status_next_billing", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_index("ix_payment_instruments_org_status", table_name="payment_instruments")
    op.drop_table("payment_instruments")
    op.drop_index("ix_webhook_events_status_created", table_name="webhook_events")
    op.drop_table("webhook_events")
    op.drop_table("merchant_applications")
    op.drop_table("organizations")
