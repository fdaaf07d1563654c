"""
Unit tests for the Stripe payment processor adapter.

Tests the Stripe integration including:
- Customer and checkout session creation
- Subscription normalization across API versions
- Balance, account and payout calls
- Stripe error translation
- Webhook signature verification with real signatures
"""

import hashlib
import hmac
import json
import time
from types import SimpleNamespace
from unittest.mock import patch

import pytest
import stripe

from adapters.payments.stripe_adapter import StripeAdapter
from core.domain.subscription import PayoutStatus
from core.interfaces.services import (
    PaymentProcessorError,
    ProcessorIdempotencyError,
    ProcessorInvalidRequestError,
    ProcessorNotFoundError,
    ProcessorTimeoutError,
    WebhookPayloadError,
    WebhookSignatureError,
)

WEBHOOK_SECRET = "whsec_test_secret"
PERIOD_START = 1772409600  # 2026-03-02 00:00 UTC
PERIOD_END = 1775088000  # 2026-04-02 00:00 UTC


@pytest.fixture
def adapter():
    """Create StripeAdapter instance with test credentials."""
    return StripeAdapter(
        api_key="sk_test_123",
        webhook_secret=WEBHOOK_SECRET,
        timeout_seconds=1.0,
        webhook_tolerance=300,
    )


def sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header for *payload*."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode()}".encode()
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def payout_object(status="pending", **overrides):
    fields = {
        "id": "po_123",
        "amount": 9000,
        "currency": "usd",
        "status": status,
        "created": PERIOD_START,
        "arrival_date": PERIOD_END,
        "description": "Weekly payout",
        "method": "standard",
        "statement_descriptor": "PREPACADEMY PAYOUT",
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


class TestCustomersAndCheckout:
    @pytest.mark.asyncio
    async def test_create_customer(self, adapter):
        with patch("stripe.Customer.create", return_value=SimpleNamespace(id="cus_123")) as create:
            customer_id = await adapter.create_customer("a@example.com", "Ada", "user-1")

        assert customer_id == "cus_123"
        create.assert_called_once_with(
            email="a@example.com",
            name="Ada",
            metadata={"user_id": "user-1"},
            api_key="sk_test_123",
        )

    @pytest.mark.asyncio
    async def test_create_checkout_session(self, adapter):
        session = SimpleNamespace(id="cs_123", url="https://checkout.stripe.com/c/cs_123")
        with patch("stripe.checkout.Session.create", return_value=session) as create:
            result = await adapter.create_checkout_session(
                customer_ref="cus_123",
                price_id="price_monthly",
                success_url="https://app/success",
                cancel_url="https://app/cancel",
                metadata={"user_id": "user-1", "plan": "monthly"},
            )

        assert result.session_id == "cs_123"
        assert result.url.endswith("cs_123")
        kwargs = create.call_args.kwargs
        assert kwargs["mode"] == "subscription"
        assert kwargs["line_items"] == [{"price": "price_monthly", "quantity": 1}]
        assert kwargs["subscription_data"] == {"metadata": {"user_id": "user-1", "plan": "monthly"}}

    @pytest.mark.asyncio
    async def test_retrieve_checkout_session(self, adapter):
        session = SimpleNamespace(
            id="cs_123",
            status="complete",
            customer="cus_123",
            subscription="sub_123",
            metadata={"user_id": "user-1"},
        )
        with patch("stripe.checkout.Session.retrieve", return_value=session):
            details = await adapter.retrieve_checkout_session("cs_123")

        assert details.is_complete
        assert details.subscription_ref == "sub_123"
        assert details.metadata == {"user_id": "user-1"}


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_period_on_subscription(self, adapter):
        subscription = SimpleNamespace(
            id="sub_123",
            customer="cus_123",
            status="active",
            current_period_start=PERIOD_START,
            current_period_end=PERIOD_END,
            cancel_at_period_end=False,
            items=SimpleNamespace(data=[SimpleNamespace(price=SimpleNamespace(id="price_annual"))]),
        )
        with patch("stripe.Subscription.retrieve", return_value=subscription):
            result = await adapter.retrieve_subscription("sub_123")

        assert result.price_id == "price_annual"
        assert int(result.current_period_start.timestamp()) == PERIOD_START
        assert int(result.current_period_end.timestamp()) == PERIOD_END
        assert result.current_period_end.tzinfo is not None

    @pytest.mark.asyncio
    async def test_period_on_subscription_item(self, adapter):
        item = SimpleNamespace(
            price=SimpleNamespace(id="price_monthly"),
            current_period_start=PERIOD_START,
            current_period_end=PERIOD_END,
        )
        subscription = SimpleNamespace(
            id="sub_123",
            customer="cus_123",
            status="active",
            items=SimpleNamespace(data=[item]),
        )
        with patch("stripe.Subscription.retrieve", return_value=subscription):
            result = await adapter.retrieve_subscription("sub_123")

        assert int(result.current_period_end.timestamp()) == PERIOD_END

    @pytest.mark.asyncio
    async def test_cancel_sets_cancel_at_period_end(self, adapter):
        subscription = SimpleNamespace(
            id="sub_123",
            customer="cus_123",
            status="active",
            current_period_start=PERIOD_START,
            current_period_end=PERIOD_END,
            cancel_at_period_end=True,
            items=SimpleNamespace(data=[]),
        )
        with patch("stripe.Subscription.modify", return_value=subscription) as modify:
            result = await adapter.cancel_subscription("sub_123")

        modify.assert_called_once_with("sub_123", cancel_at_period_end=True, api_key="sk_test_123")
        assert result.cancel_at_period_end


class TestBalanceAndPayouts:
    @pytest.mark.asyncio
    async def test_balance_sums_by_currency(self, adapter):
        balance = SimpleNamespace(
            available=[
                SimpleNamespace(currency="usd", amount=7000),
                SimpleNamespace(currency="USD", amount=3000),
                SimpleNamespace(currency="eur", amount=500),
            ],
            pending=[SimpleNamespace(currency="usd", amount=1200)],
        )
        with patch("stripe.Balance.retrieve", return_value=balance):
            result = await adapter.retrieve_balance()

        assert result.available_in("usd") == 10000
        assert result.available_in("eur") == 500
        assert result.pending == {"usd": 1200}

    @pytest.mark.asyncio
    async def test_account_settings(self, adapter):
        account = SimpleNamespace(
            payouts_enabled=True,
            external_accounts=SimpleNamespace(
                data=[SimpleNamespace(object="bank_account", last4="6789", bank_name="TEST BANK")]
            ),
            settings=SimpleNamespace(
                payouts=SimpleNamespace(schedule={"interval": "weekly", "weekly_anchor": "monday"})
            ),
            requirements=SimpleNamespace(disabled_reason=None),
        )
        with patch("stripe.Account.retrieve", return_value=account):
            result = await adapter.get_payout_account_settings()

        assert result.payouts_enabled
        assert result.bank_last4 == "6789"
        assert result.schedule == {"interval": "weekly", "weekly_anchor": "monday"}

    @pytest.mark.asyncio
    async def test_create_payout_passes_idempotency_key(self, adapter):
        with patch("stripe.Payout.create", return_value=payout_object()) as create:
            payout = await adapter.create_payout(
                9000,
                "usd",
                "Weekly payout",
                statement_descriptor="PREPACADEMY PAYOUT",
                idempotency_key="weekly-payout-2026-W10",
            )

        assert payout.status == PayoutStatus.PENDING
        assert payout.amount == 9000
        assert create.call_args.kwargs["idempotency_key"] == "weekly-payout-2026-W10"
        assert create.call_args.kwargs["method"] == "standard"

    @pytest.mark.asyncio
    async def test_list_payouts(self, adapter):
        listing = SimpleNamespace(data=[payout_object("paid"), payout_object("in_transit", id="po_2")])
        with patch("stripe.Payout.list", return_value=listing) as list_payouts:
            payouts = await adapter.list_payouts(limit=5, status="paid")

        assert [p.status for p in payouts] == [PayoutStatus.PAID, PayoutStatus.IN_TRANSIT]
        list_payouts.assert_called_once_with(limit=5, status="paid", api_key="sk_test_123")

    @pytest.mark.asyncio
    async def test_cancel_payout(self, adapter):
        with patch("stripe.Payout.cancel", return_value=payout_object("canceled")):
            payout = await adapter.cancel_payout("po_123")
        assert payout.status == PayoutStatus.CANCELED


class TestErrorTranslation:
    """Stripe exceptions become processor exceptions."""

    @pytest.mark.asyncio
    async def test_missing_resource(self, adapter):
        error = stripe.InvalidRequestError("No such payout", "id", code="resource_missing", http_status=404)
        with patch("stripe.Payout.retrieve", side_effect=error):
            with pytest.raises(ProcessorNotFoundError):
                await adapter.retrieve_payout("po_missing")

    @pytest.mark.asyncio
    async def test_invalid_request(self, adapter):
        error = stripe.InvalidRequestError("Payout cannot be canceled", None, http_status=400)
        with patch("stripe.Payout.cancel", side_effect=error):
            with pytest.raises(ProcessorInvalidRequestError):
                await adapter.cancel_payout("po_paid")

    @pytest.mark.asyncio
    async def test_idempotency_conflict(self, adapter):
        with patch("stripe.Payout.create", side_effect=stripe.IdempotencyError("Key reused")):
            with pytest.raises(ProcessorIdempotencyError):
                await adapter.create_payout(100, "usd", "x", idempotency_key="k")

    @pytest.mark.asyncio
    async def test_other_stripe_errors(self, adapter):
        with patch("stripe.Balance.retrieve", side_effect=stripe.APIConnectionError("network down")):
            with pytest.raises(PaymentProcessorError):
                await adapter.retrieve_balance()

    @pytest.mark.asyncio
    async def test_timeout(self):
        adapter = StripeAdapter(api_key="sk_test_123", webhook_secret=WEBHOOK_SECRET, timeout_seconds=0.05)

        def slow(**kwargs):
            time.sleep(0.3)

        with patch("stripe.Balance.retrieve", side_effect=slow):
            with pytest.raises(ProcessorTimeoutError):
                await adapter.retrieve_balance()


class TestWebhookVerification:
    """Webhook signatures are checked against the signing secret."""

    @pytest.fixture
    def payload(self) -> bytes:
        return json.dumps(
            {
                "id": "evt_123",
                "object": "event",
                "type": "invoice.paid",
                "data": {"object": {"id": "in_123", "object": "invoice", "subscription": "sub_123"}},
            }
        ).encode()

    def test_valid_signature(self, adapter, payload):
        event = adapter.verify_webhook_signature(payload, sign(payload))

        assert event["id"] == "evt_123"
        assert event["data"]["object"]["subscription"] == "sub_123"

    def test_wrong_secret(self, adapter, payload):
        with pytest.raises(WebhookSignatureError):
            adapter.verify_webhook_signature(payload, sign(payload, secret="whsec_other"))

    def test_tampered_payload(self, adapter, payload):
        header = sign(payload)
        tampered = payload.replace(b"sub_123", b"sub_999")

        with pytest.raises(WebhookSignatureError):
            adapter.verify_webhook_signature(tampered, header)

    def test_stale_timestamp(self, adapter, payload):
        header = sign(payload, timestamp=int(time.time()) - 3600)

        with pytest.raises(WebhookSignatureError):
            adapter.verify_webhook_signature(payload, header)

    def test_missing_header(self, adapter, payload):
        with pytest.raises(WebhookSignatureError):
            adapter.verify_webhook_signature(payload, "")

    def test_missing_secret(self, payload):
        adapter = StripeAdapter(api_key="sk_test_123")
        adapter.webhook_secret = None

        with pytest.raises(WebhookSignatureError):
            adapter.verify_webhook_signature(payload, sign(payload))

    def test_signed_body_without_type(self, adapter):
        payload = json.dumps({"id": "evt_1", "object": "event", "data": {}}).encode()

        with pytest.raises((WebhookPayloadError, WebhookSignatureError)):
            adapter.verify_webhook_signature(payload, sign(payload))
