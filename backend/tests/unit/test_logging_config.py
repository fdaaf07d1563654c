"""
Unit tests for log redaction and formatting.
"""

import json
import logging

from infrastructure.logging_config import (
    ContextFormatter,
    JSONFormatter,
    SensitiveDataFilter,
    redact,
)


def _record(msg: str, args=(), **extra) -> logging.LogRecord:
    record = logging.LogRecord("services.webhook_processor", logging.INFO, __file__, 1, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestRedaction:
    def test_processor_secrets(self):
        text = "key sk_live_abcdefgh12345678 secret whsec_abcdefgh1234 mail re_abcdefghijklmnop1234"

        redacted = redact(text)

        assert "sk_live_" not in redacted
        assert "whsec_" not in redacted
        assert "re_abcdefghijklmnop1234" not in redacted

    def test_headers(self):
        assert redact("Authorization: Bearer eyJhbGci.x.y") == "Authorization: Bearer [REDACTED]"
        assert redact("Stripe-Signature: t=1,v1=abc") == "Stripe-Signature: [REDACTED]"

    def test_filter_scrubs_args(self):
        record = _record("Stripe call with %s", ("sk_test_abcdefgh12345678",))

        SensitiveDataFilter().filter(record)

        assert record.getMessage() == "Stripe call with [REDACTED_API_KEY]"

    def test_ordinary_text_untouched(self):
        assert redact("Payout po_0001 created for 9000") == "Payout po_0001 created for 9000"


class TestFormatters:
    def test_json_includes_correlation_ids(self):
        record = _record("Event applied", event_id="evt_1", record_id="rec_1")

        entry = json.loads(JSONFormatter().format(record))

        assert entry["message"] == "Event applied"
        assert entry["event_id"] == "evt_1"
        assert entry["record_id"] == "rec_1"
        assert "payout_id" not in entry

    def test_context_formatter_appends_ids(self):
        line = ContextFormatter().format(_record("Sweep done", task="expiry_sweep"))

        assert line.endswith("Sweep done [task=expiry_sweep]")

    def test_context_formatter_without_ids(self):
        line = ContextFormatter().format(_record("Started"))

        assert line.endswith("Started")
