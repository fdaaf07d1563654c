"""
Processor webhook ingestion.

``process`` verifies a delivery, drops duplicates by event id, maps the
processor event onto a lifecycle event and applies it. Anything that is
not the sender's fault is acknowledged, including events that do not apply
to the current subscription state and event types we do not handle, so the
processor never retries them. Only a bad signature or an undecodable body
is rejected outright; storage or processor outages are reported as
retryable failures.

Notification delivery happens on background tasks and is never awaited here.
"""

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from core.domain.events import (
    CheckoutCompleted,
    ExternalSubscriptionDeleted,
    LifecycleEvent,
    PaymentFailed,
    PaymentSucceeded,
    PlanChanged,
    ProcessorEventType,
)
from core.domain.subscription import PlanType, SubscriptionRecord
from core.errors import BillingError, ErrorKind, external_service_error, validation_error
from core.interfaces.repositories import SubscriptionRepository
from core.interfaces.services import (
    PaymentProcessor,
    PaymentProcessorError,
    WebhookPayloadError,
    WebhookSignatureError,
)
from core.plans import parse_plan, plan_for_price_id
from services.subscription_lifecycle import ApplyOutcome, ApplyResult, SubscriptionLifecycle

logger = logging.getLogger(__name__)


@dataclass
class WebhookAck:
    """The delivery was accepted; respond 200."""

    event_id: str
    event_type: str
    outcome: str


@dataclass
class WebhookReject:
    """The delivery was not accepted; respond with ``error.http_status``."""

    error: BillingError


WebhookResult = WebhookAck | WebhookReject


def _from_timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=UTC)


def _ref(value: Any) -> str | None:
    """Stripe fields may hold an id or an expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def _invoice_subscription_ref(invoice: dict) -> str | None:
    ref = _ref(invoice.get("subscription"))
    if ref:
        return ref
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    return _ref(details.get("subscription"))


def _invoice_period_end(invoice: dict) -> datetime | None:
    lines = (invoice.get("lines") or {}).get("data") or []
    ends = [(line.get("period") or {}).get("end") for line in lines]
    ends = [end for end in ends if end]
    return _from_timestamp(max(ends)) if ends else None


def _subscription_price_id(subscription: dict) -> str | None:
    items = (subscription.get("items") or {}).get("data") or []
    if not items:
        return None
    return _ref((items[0] or {}).get("price"))


class WebhookProcessor:
    """Turns verified processor events into subscription state changes."""

    def __init__(
        self,
        repository: SubscriptionRepository,
        processor: PaymentProcessor,
        lifecycle: SubscriptionLifecycle,
        price_ids: Mapping[PlanType, str],
    ):
        self._repository = repository
        self._processor = processor
        self._lifecycle = lifecycle
        self._price_ids = price_ids
        self._handlers: dict[
            ProcessorEventType, Callable[[str, str, dict], Awaitable[str]]
        ] = {
            ProcessorEventType.CHECKOUT_COMPLETED: self._on_checkout_completed,
            ProcessorEventType.PAYMENT_SUCCEEDED: self._on_payment_succeeded,
            ProcessorEventType.INVOICE_PAID: self._on_payment_succeeded,
            ProcessorEventType.PAYMENT_FAILED: self._on_payment_failed,
            ProcessorEventType.SUBSCRIPTION_UPDATED: self._on_subscription_updated,
            ProcessorEventType.SUBSCRIPTION_DELETED: self._on_subscription_deleted,
            ProcessorEventType.PAYOUT_CREATED: self._on_payout_event,
            ProcessorEventType.PAYOUT_PAID: self._on_payout_event,
            ProcessorEventType.PAYOUT_FAILED: self._on_payout_event,
            ProcessorEventType.PAYOUT_CANCELED: self._on_payout_event,
            ProcessorEventType.UNRECOGNIZED: self._on_unrecognized,
        }

    async def process(self, payload: bytes, signature: str | None) -> WebhookResult:
        try:
            event = self._processor.verify_webhook_signature(payload, signature or "")
        except WebhookSignatureError as e:
            logger.warning(f"Rejected webhook: {e}")
            return WebhookReject(BillingError(ErrorKind.SIGNATURE_VERIFICATION, "Invalid signature"))
        except WebhookPayloadError as e:
            logger.warning(f"Rejected webhook: {e}")
            return WebhookReject(validation_error("Malformed webhook payload"))

        event_id = str(event["id"])
        raw_type = str(event["type"])
        event_type = ProcessorEventType.parse(raw_type)
        data = event.get("data")
        obj = data.get("object") if isinstance(data, dict) else None
        if not isinstance(obj, dict):
            if event_type != ProcessorEventType.UNRECOGNIZED:
                return WebhookReject(validation_error("Webhook payload has no data object", event_id))
            obj = {}

        log_extra = {"event_id": event_id, "event_type": raw_type}
        try:
            if await self._repository.is_event_processed(event_id):
                logger.info("Duplicate webhook delivery ignored", extra=log_extra)
                return WebhookAck(event_id, raw_type, ApplyOutcome.DUPLICATE_EVENT.value)

            outcome = await self._handlers[event_type](event_id, raw_type, obj)
        except PaymentProcessorError as e:
            logger.error(f"Processor call failed while handling webhook: {e}", extra=log_extra)
            return WebhookReject(external_service_error("Payment processor unavailable", event_id))
        except SQLAlchemyError as e:
            logger.error(f"Storage failed while handling webhook: {e}", exc_info=True, extra=log_extra)
            return WebhookReject(external_service_error("Subscription storage unavailable", event_id))
        except (TypeError, ValueError, OverflowError) as e:
            # Non-numeric or out-of-range period timestamps
            logger.warning(f"Rejected webhook with malformed fields: {e}", extra=log_extra)
            return WebhookReject(validation_error("Malformed webhook payload", event_id))

        if outcome in (ApplyOutcome.FAILED.value, ApplyOutcome.CONFLICT.value):
            return WebhookReject(external_service_error("Subscription storage unavailable", event_id))

        logger.info(f"Webhook handled: {outcome}", extra=log_extra)
        return WebhookAck(event_id, raw_type, outcome)

    # ------------------------------------------------------------------
    # Outcome bookkeeping
    # ------------------------------------------------------------------

    async def _finish(self, event_id: str, event_type: str, result: ApplyResult) -> str:
        """Record no-op outcomes; applied ones were recorded with the write."""
        outcome = result.outcome
        if outcome == ApplyOutcome.REJECTED:
            logger.warning(
                f"Webhook event not applicable: {result.error.message if result.error else ''}",
                extra={
                    "event_id": event_id,
                    "record_id": result.record.id if result.record else None,
                },
            )
        if outcome == ApplyOutcome.CONFLICT:
            # Lost every retry; nothing recorded so the redelivery is applied
            logger.warning(f"Webhook event {event_id} kept conflicting", extra={"event_id": event_id})
        if outcome in (
            ApplyOutcome.APPLIED,
            ApplyOutcome.DUPLICATE_EVENT,
            ApplyOutcome.FAILED,
            ApplyOutcome.CONFLICT,
        ):
            return outcome.value
        await self._repository.record_processed_event(event_id, event_type, outcome.value)
        return outcome.value

    async def _skip(self, event_id: str, event_type: str, outcome: str, reason: str) -> str:
        logger.info(f"Webhook event skipped: {reason}", extra={"event_id": event_id})
        await self._repository.record_processed_event(event_id, event_type, outcome)
        return outcome

    async def _not_found(self, event_id: str, event_type: str) -> str:
        return await self._skip(
            event_id, event_type, ApplyOutcome.NOT_FOUND.value, "no matching subscription"
        )

    async def _find_record(
        self, subscription_ref: str | None, customer_ref: str | None
    ) -> SubscriptionRecord | None:
        """Match by subscription ref; the customer ref is only used for events
        sent before the processor assigned a subscription."""
        if subscription_ref:
            return await self._repository.get_record_by_external_ref(subscription_ref)
        if customer_ref:
            return await self._repository.get_record_by_customer_ref(customer_ref)
        return None

    async def _apply_to(
        self,
        event_id: str,
        event_type: str,
        record: SubscriptionRecord | None,
        event: LifecycleEvent,
    ) -> str:
        if record is None:
            return await self._not_found(event_id, event_type)
        result = await self._lifecycle.apply(
            record, event, event_id=event_id, event_type=event_type
        )
        return await self._finish(event_id, event_type, result)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _on_checkout_completed(self, event_id: str, event_type: str, session: dict) -> str:
        metadata = session.get("metadata") or {}
        user_id = metadata.get("user_id")
        subscription_ref = _ref(session.get("subscription"))
        if session.get("mode") not in (None, "subscription") or not subscription_ref:
            return await self._skip(event_id, event_type, "ignored", "not a subscription checkout")
        if not user_id:
            return await self._skip(event_id, event_type, "ignored", "checkout without user_id")

        subscription = await self._processor.retrieve_subscription(subscription_ref)
        plan = plan_for_price_id(subscription.price_id, self._price_ids) or parse_plan(
            metadata.get("plan")
        )
        if plan is None:
            return await self._skip(event_id, event_type, "ignored", "unknown plan")

        result = await self._lifecycle.complete_checkout(
            CheckoutCompleted(
                user_id=user_id,
                plan=plan,
                external_customer_ref=subscription.customer_ref or _ref(session.get("customer")),
                external_subscription_ref=subscription.id,
                period_start=subscription.current_period_start,
                period_end=subscription.current_period_end,
            ),
            event_id=event_id,
            event_type=event_type,
        )
        return await self._finish(event_id, event_type, result)

    async def _on_payment_succeeded(self, event_id: str, event_type: str, invoice: dict) -> str:
        subscription_ref = _invoice_subscription_ref(invoice)
        record = await self._find_record(subscription_ref, _ref(invoice.get("customer")))
        if record is None:
            return await self._not_found(event_id, event_type)

        period_end = _invoice_period_end(invoice)
        if period_end is None and record.external_subscription_ref:
            subscription = await self._processor.retrieve_subscription(
                record.external_subscription_ref
            )
            period_end = subscription.current_period_end
        if period_end is None:
            return await self._skip(event_id, event_type, "ignored", "invoice has no period")

        return await self._apply_to(
            event_id, event_type, record, PaymentSucceeded(period_end=period_end)
        )

    async def _on_payment_failed(self, event_id: str, event_type: str, invoice: dict) -> str:
        record = await self._find_record(
            _invoice_subscription_ref(invoice), _ref(invoice.get("customer"))
        )
        return await self._apply_to(event_id, event_type, record, PaymentFailed())

    async def _on_subscription_updated(
        self, event_id: str, event_type: str, subscription: dict
    ) -> str:
        record = await self._find_record(_ref(subscription.get("id")), None)
        if record is None:
            return await self._not_found(event_id, event_type)

        plan = plan_for_price_id(_subscription_price_id(subscription), self._price_ids)
        if plan is None or plan == record.plan_type:
            return await self._skip(
                event_id, event_type, ApplyOutcome.UNCHANGED.value, "plan unchanged"
            )
        return await self._apply_to(event_id, event_type, record, PlanChanged(plan=plan))

    async def _on_subscription_deleted(
        self, event_id: str, event_type: str, subscription: dict
    ) -> str:
        record = await self._find_record(
            _ref(subscription.get("id")), _ref(subscription.get("customer"))
        )
        return await self._apply_to(event_id, event_type, record, ExternalSubscriptionDeleted())

    async def _on_payout_event(self, event_id: str, event_type: str, payout: dict) -> str:
        logger.info(
            f"Payout {payout.get('id')} {event_type}: {payout.get('amount')} "
            f"{payout.get('currency')} status={payout.get('status')}",
            extra={"event_id": event_id, "payout_id": payout.get("id")},
        )
        if event_type == ProcessorEventType.PAYOUT_FAILED:
            logger.error(
                f"Payout {payout.get('id')} failed: {payout.get('failure_message')}",
                extra={"event_id": event_id, "payout_id": payout.get("id")},
            )
        await self._repository.record_processed_event(event_id, event_type, "logged")
        return "logged"

    async def _on_unrecognized(self, event_id: str, event_type: str, obj: dict) -> str:
        return await self._skip(event_id, event_type, "ignored", f"unhandled type {event_type}")
