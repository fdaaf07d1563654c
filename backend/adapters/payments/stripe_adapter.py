"""
Stripe payment processor adapter.

Wraps the synchronous Stripe SDK behind the ``PaymentProcessor`` interface.
Every SDK call runs in a worker thread under a bounded timeout, and Stripe
exceptions are translated into the processor exceptions the billing services
understand.
"""

import asyncio
import json
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import stripe

from core.domain.subscription import PayoutRecord, PayoutStatus
from core.interfaces.services import (
    CheckoutSessionDetails,
    CheckoutSessionResult,
    PaymentProcessor,
    PaymentProcessorError,
    PayoutAccountSettings,
    ProcessorBalance,
    ProcessorIdempotencyError,
    ProcessorInvalidRequestError,
    ProcessorNotFoundError,
    ProcessorSubscription,
    ProcessorTimeoutError,
    WebhookPayloadError,
    WebhookSignatureError,
)
from infrastructure.config.settings import settings

logger = logging.getLogger(__name__)


def _from_timestamp(value: int | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=UTC)


def _metadata(obj: Any) -> dict[str, str]:
    metadata = getattr(obj, "metadata", None)
    if not metadata:
        return {}
    return {str(k): str(v) for k, v in dict(metadata).items()}


def _to_payout(payout: Any) -> PayoutRecord:
    return PayoutRecord(
        id=payout.id,
        amount=payout.amount,
        currency=payout.currency,
        status=PayoutStatus(payout.status),
        created_at=_from_timestamp(getattr(payout, "created", None)),
        arrival_date=_from_timestamp(getattr(payout, "arrival_date", None)),
        description=getattr(payout, "description", None),
        method=getattr(payout, "method", None),
        statement_descriptor=getattr(payout, "statement_descriptor", None),
    )


def _to_subscription(subscription: Any) -> ProcessorSubscription:
    """Normalize a Stripe subscription.

    Newer API versions report the billing period on the subscription item
    rather than on the subscription itself.
    """
    # StripeObject is a dict, so `.items` would be the dict method
    if isinstance(subscription, dict):
        items_list = subscription.get("items")
    else:
        items_list = getattr(subscription, "items", None)
    items = getattr(items_list, "data", None) or []
    first_item = items[0] if items else None

    period_start = getattr(subscription, "current_period_start", None)
    period_end = getattr(subscription, "current_period_end", None)
    if period_end is None and first_item is not None:
        period_start = getattr(first_item, "current_period_start", None)
        period_end = getattr(first_item, "current_period_end", None)

    price = getattr(first_item, "price", None) if first_item is not None else None

    return ProcessorSubscription(
        id=subscription.id,
        customer_ref=getattr(subscription, "customer", None),
        status=subscription.status,
        price_id=getattr(price, "id", None),
        current_period_start=_from_timestamp(period_start),
        current_period_end=_from_timestamp(period_end),
        cancel_at_period_end=bool(getattr(subscription, "cancel_at_period_end", False)),
    )


class StripeAdapter(PaymentProcessor):
    """Payment processor backed by the Stripe API."""

    def __init__(
        self,
        api_key: str | None = None,
        webhook_secret: str | None = None,
        timeout_seconds: float | None = None,
        webhook_tolerance: int | None = None,
    ):
        """
        Initialize Stripe adapter.

        Args:
            api_key: Stripe secret key (defaults to settings)
            webhook_secret: Webhook signing secret (defaults to settings)
            timeout_seconds: Upper bound for each API call (defaults to settings)
            webhook_tolerance: Accepted webhook timestamp skew in seconds
        """
        self.api_key = api_key or settings.stripe_secret_key
        self.webhook_secret = webhook_secret or settings.stripe_webhook_secret
        self.timeout_seconds = timeout_seconds or settings.processor_timeout_seconds
        self.webhook_tolerance = webhook_tolerance or settings.stripe_webhook_tolerance_seconds

        if not self.api_key:
            logger.warning("Stripe API key not configured. Set stripe_secret_key in settings.")

    async def _call(self, operation: str, func: Callable[..., Any], *args, **kwargs) -> Any:
        """
        Run a blocking Stripe SDK call off the event loop.

        Raises:
            ProcessorTimeoutError: If the call exceeds the timeout
            ProcessorNotFoundError: If the object does not exist
            ProcessorInvalidRequestError: If Stripe rejects the request
            ProcessorIdempotencyError: If an idempotency key is reused
            PaymentProcessorError: For any other Stripe failure
        """
        kwargs.setdefault("api_key", self.api_key)
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args, **kwargs),
                timeout=self.timeout_seconds,
            )
        except TimeoutError as e:
            logger.error(f"Stripe {operation} timed out after {self.timeout_seconds}s")
            raise ProcessorTimeoutError(f"Stripe {operation} timed out") from e
        except stripe.IdempotencyError as e:
            logger.warning(f"Stripe {operation} idempotency conflict: {e}")
            raise ProcessorIdempotencyError(str(e)) from e
        except stripe.InvalidRequestError as e:
            if e.code == "resource_missing" or e.http_status == 404:
                raise ProcessorNotFoundError(e.user_message or str(e)) from e
            logger.warning(f"Stripe {operation} rejected: {e.user_message or e}")
            raise ProcessorInvalidRequestError(e.user_message or str(e)) from e
        except stripe.StripeError as e:
            logger.error(f"Stripe {operation} failed: {e}")
            raise PaymentProcessorError(f"Stripe {operation} failed: {e.user_message or e}") from e

    async def create_customer(self, email: str, name: str, user_id: str) -> str:
        customer = await self._call(
            "customer create",
            stripe.Customer.create,
            email=email,
            name=name,
            metadata={"user_id": user_id},
        )
        logger.info(f"Created Stripe customer {customer.id}", extra={"user_id": user_id})
        return customer.id

    async def create_checkout_session(
        self,
        customer_ref: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
    ) -> CheckoutSessionResult:
        session = await self._call(
            "checkout session create",
            stripe.checkout.Session.create,
            mode="subscription",
            customer=customer_ref,
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
            subscription_data={"metadata": metadata},
        )
        return CheckoutSessionResult(session_id=session.id, url=session.url)

    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSessionDetails:
        session = await self._call(
            "checkout session retrieve", stripe.checkout.Session.retrieve, session_id
        )
        return CheckoutSessionDetails(
            session_id=session.id,
            status=getattr(session, "status", None),
            customer_ref=getattr(session, "customer", None),
            subscription_ref=getattr(session, "subscription", None),
            metadata=_metadata(session),
        )

    async def retrieve_subscription(self, subscription_ref: str) -> ProcessorSubscription:
        subscription = await self._call(
            "subscription retrieve", stripe.Subscription.retrieve, subscription_ref
        )
        return _to_subscription(subscription)

    async def cancel_subscription(self, subscription_ref: str) -> ProcessorSubscription:
        subscription = await self._call(
            "subscription cancel",
            stripe.Subscription.modify,
            subscription_ref,
            cancel_at_period_end=True,
        )
        logger.info(f"Stripe subscription {subscription_ref} set to cancel at period end")
        return _to_subscription(subscription)

    async def retrieve_balance(self) -> ProcessorBalance:
        balance = await self._call("balance retrieve", stripe.Balance.retrieve)

        def _sum(entries) -> dict[str, int]:
            totals: dict[str, int] = {}
            for entry in entries or []:
                currency = entry.currency.lower()
                totals[currency] = totals.get(currency, 0) + entry.amount
            return totals

        return ProcessorBalance(
            available=_sum(getattr(balance, "available", None)),
            pending=_sum(getattr(balance, "pending", None)),
        )

    async def get_payout_account_settings(self) -> PayoutAccountSettings:
        account = await self._call("account retrieve", stripe.Account.retrieve)

        external = getattr(getattr(account, "external_accounts", None), "data", None) or []
        bank = next((a for a in external if getattr(a, "object", None) == "bank_account"), None)

        payout_settings = getattr(getattr(account, "settings", None), "payouts", None)
        schedule = getattr(payout_settings, "schedule", None)
        requirements = getattr(account, "requirements", None)

        return PayoutAccountSettings(
            payouts_enabled=bool(getattr(account, "payouts_enabled", False)),
            bank_last4=getattr(bank, "last4", None),
            bank_name=getattr(bank, "bank_name", None),
            schedule=dict(schedule) if schedule else None,
            failure_message=getattr(requirements, "disabled_reason", None),
        )

    async def create_payout(
        self,
        amount: int,
        currency: str,
        description: str,
        statement_descriptor: str | None = None,
        idempotency_key: str | None = None,
    ) -> PayoutRecord:
        params: dict[str, Any] = {
            "amount": amount,
            "currency": currency,
            "description": description,
            "method": "standard",
        }
        if statement_descriptor:
            params["statement_descriptor"] = statement_descriptor
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        payout = await self._call("payout create", stripe.Payout.create, **params)
        logger.info(
            f"Created Stripe payout {payout.id} for {amount} {currency}",
            extra={"payout_id": payout.id},
        )
        return _to_payout(payout)

    async def list_payouts(self, limit: int = 10, status: str | None = None) -> list[PayoutRecord]:
        params: dict[str, Any] = {"limit": limit}
        if status:
            params["status"] = status
        payouts = await self._call("payout list", stripe.Payout.list, **params)
        return [_to_payout(p) for p in payouts.data]

    async def retrieve_payout(self, payout_id: str) -> PayoutRecord:
        payout = await self._call("payout retrieve", stripe.Payout.retrieve, payout_id)
        return _to_payout(payout)

    async def cancel_payout(self, payout_id: str) -> PayoutRecord:
        payout = await self._call("payout cancel", stripe.Payout.cancel, payout_id)
        logger.info(f"Canceled Stripe payout {payout_id}", extra={"payout_id": payout_id})
        return _to_payout(payout)

    def verify_webhook_signature(self, payload: bytes, signature: str) -> dict[str, Any]:
        """
        Verify a webhook delivery against the signing secret.

        Args:
            payload: Raw request body
            signature: Value of the Stripe-Signature header

        Returns:
            The decoded event as a plain dictionary

        Raises:
            WebhookSignatureError: If the secret is missing or the signature is invalid
            WebhookPayloadError: If the signed body is not a JSON event
        """
        if not self.webhook_secret:
            raise WebhookSignatureError(
                "Webhook secret not configured. Set stripe_webhook_secret in settings."
            )
        if not signature:
            raise WebhookSignatureError("Missing Stripe-Signature header")

        try:
            stripe.Webhook.construct_event(
                payload, signature, self.webhook_secret, tolerance=self.webhook_tolerance
            )
        except stripe.SignatureVerificationError as e:
            logger.warning("Webhook signature verification failed")
            raise WebhookSignatureError(f"Signature verification failed: {e}") from e
        except ValueError as e:
            raise WebhookPayloadError(f"Invalid webhook payload: {e}") from e

        try:
            event = json.loads(payload)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise WebhookPayloadError(f"Invalid webhook payload: {e}") from e
        if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
            raise WebhookPayloadError("Webhook payload is missing id or type")
        return event


# Factory function for easy instantiation
def create_stripe_adapter(
    api_key: str | None = None,
    webhook_secret: str | None = None,
) -> StripeAdapter:
    """
    Create a Stripe adapter instance.

    Args:
        api_key: Stripe secret key (defaults to settings)
        webhook_secret: Webhook signing secret (defaults to settings)

    Returns:
        StripeAdapter instance
    """
    return StripeAdapter(api_key=api_key, webhook_secret=webhook_secret)
