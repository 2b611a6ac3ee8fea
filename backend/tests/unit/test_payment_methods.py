"""
Unit tests for payment method usage statistics.
"""

from datetime import datetime, timezone
from unittest.mock import Mock

from infrastructure.database.models import PaymentInstrument
from services.payment_methods import PaymentMethodService

NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _instrument(**overrides) -> PaymentInstrument:
    values = dict(
        id="pm-1",
        organization_id="org-1",
        provider_payment_method_id="pm_gateway_1",
        instrument_type="card",
        status="active",
        success_count=0,
        failure_count=0,
        consecutive_failures=0,
    )
    values.update(overrides)
    return PaymentInstrument(**values)


class TestRecordUsage:
    """Tests for PaymentMethodService.record_usage."""

    def test_success_resets_consecutive_failures(self):
        service = PaymentMethodService(Mock())
        instrument = _instrument(consecutive_failures=2, failure_count=2)

        service.record_usage(instrument, success=True, now=NOW)

        assert instrument.success_count == 1
        assert instrument.consecutive_failures == 0
        assert instrument.failure_count == 2
        assert instrument.last_success_at == NOW
        assert instrument.last_used_at == NOW
        assert instrument.status == "active"

    def test_failure_increments_counters(self):
        service = PaymentMethodService(Mock())
        instrument = _instrument()

        service.record_usage(instrument, success=False, now=NOW)

        assert instrument.failure_count == 1
        assert instrument.consecutive_failures == 1
        assert instrument.last_failure_at == NOW
        assert instrument.status == "active"

    def test_threshold_marks_instrument_failed(self):
        service = PaymentMethodService(Mock(), failure_threshold=3)
        instrument = _instrument(consecutive_failures=2, failure_count=5)

        service.record_usage(instrument, success=False, now=NOW)

        assert instrument.consecutive_failures == 3
        assert instrument.failure_count == 6
        assert instrument.status == "failed"

    def test_unset_counters_are_treated_as_zero(self):
        service = PaymentMethodService(Mock())
        instrument = PaymentInstrument(
            organization_id="org-1", provider_payment_method_id="pm_new", instrument_type="card"
        )

        service.record_usage(instrument, success=False, now=NOW)

        assert instrument.failure_count == 1
        assert instrument.consecutive_failures == 1
