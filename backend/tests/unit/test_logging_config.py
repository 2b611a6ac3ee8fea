"""
Unit tests for log redaction and JSON formatting.
"""

import json
import logging

from infrastructure.logging_config import JSONFormatter, SensitiveDataFilter


def _record(msg, args=(), **extra) -> logging.LogRecord:
    record = logging.LogRecord("test", logging.INFO, __file__, 1, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestSensitiveDataFilter:
    def test_signature_is_redacted(self):
        record = _record("header was %s", ("v1=" + "ab" * 32,))

        SensitiveDataFilter().filter(record)

        assert "abab" not in record.getMessage()
        assert "[REDACTED_SIGNATURE]" in record.getMessage()

    def test_secret_key_is_redacted(self):
        record = _record("calling gateway with secretKey=sk_live_123")

        SensitiveDataFilter().filter(record)

        assert "sk_live_123" not in record.getMessage()

    def test_plain_message_untouched(self):
        record = _record("Renewal pass: %d due", (3,))

        SensitiveDataFilter().filter(record)

        assert record.getMessage() == "Renewal pass: 3 due"


class TestJSONFormatter:
    def test_includes_correlation_fields(self):
        record = _record("Charge declined", subscription_id="sub-1", payment_method_id="pm-1")

        entry = json.loads(JSONFormatter().format(record))

        assert entry["message"] == "Charge declined"
        assert entry["level"] == "INFO"
        assert entry["subscription_id"] == "sub-1"
        assert entry["payment_method_id"] == "pm-1"
        assert "event_id" not in entry
