"""
Unit tests for the Resend lifecycle email notifier.
"""

from datetime import UTC, datetime
from unittest.mock import patch

import pytest

from adapters.email import resend_adapter
from adapters.email.resend_adapter import ResendNotifier

RENEWAL = datetime(2026, 4, 2, tzinfo=UTC)


class TestResendNotifier:
    @pytest.mark.asyncio
    async def test_logs_instead_of_sending_without_api_key(self):
        notifier = ResendNotifier()

        with (
            patch.object(resend_adapter.settings, "resend_api_key", None),
            patch("resend.Emails.send") as send,
        ):
            assert await notifier.send_trial_started("a@example.com", "Ada", RENEWAL)

        send.assert_not_called()

    @pytest.mark.asyncio
    async def test_sends_renewal_reminder(self):
        with (
            patch.object(resend_adapter.settings, "resend_api_key", "re_test_key"),
            patch("resend.Emails.send", return_value={"id": "email_1"}) as send,
        ):
            notifier = ResendNotifier()
            sent = await notifier.send_renewal_reminder(
                "a@example.com", "Ada", "quarterly", RENEWAL, 50.0
            )

        assert sent
        message = send.call_args.args[0]
        assert message["to"] == "a@example.com"
        assert message["subject"] == "Your PrepAcademy subscription renews soon"
        assert "Quarterly" in message["html"]
        assert "April 02, 2026" in message["html"]
        assert "$50.00" in message["html"]

    @pytest.mark.asyncio
    async def test_provider_error_returns_false(self):
        with (
            patch.object(resend_adapter.settings, "resend_api_key", "re_test_key"),
            patch("resend.Emails.send", side_effect=RuntimeError("rate limited")),
        ):
            notifier = ResendNotifier()
            sent = await notifier.send_payment_failed("a@example.com", "Ada", "monthly", RENEWAL)

        assert sent is False
