"""
SQLAlchemy implementation of the subscription store.

Each mutating method runs in its own transaction. Conditional writes are
expressed as ``UPDATE ... WHERE`` on the expected prior state so that two
workers racing on the same record cannot both succeed; the loser sees a
``WriteOutcome.CONFLICT`` and nothing it wrote is kept. Processed webhook
event ids are inserted in the same transaction as the state change they
caused, so the unique constraint on ``event_id`` is what makes a duplicate
delivery a no-op.
"""

import logging
from datetime import datetime

from sqlalchemy import and_, exists, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.domain.subscription import (
    SubscriptionRecord,
    SubscriptionStatus,
    UserBillingProjection,
    UserContact,
    utcnow,
)
from core.interfaces.repositories import SubscriptionRepository, WriteOutcome
from infrastructure.database.models import ProcessedWebhookEvent, Subscription, User

logger = logging.getLogger(__name__)


class _WriteAborted(Exception):
    """Unwinds a transaction with the outcome to report."""

    def __init__(self, outcome: WriteOutcome):
        super().__init__(outcome.value)
        self.outcome = outcome


def _to_domain(row: Subscription) -> SubscriptionRecord:
    return SubscriptionRecord(
        id=row.id,
        user_id=row.user_id,
        plan_type=row.plan_type,
        status=row.status,
        start_date=row.start_date,
        end_date=row.end_date,
        trial_end_date=row.trial_end_date,
        external_customer_ref=row.stripe_customer_id,
        external_subscription_ref=row.stripe_subscription_id,
        last_payment_date=row.last_payment_date,
        next_payment_date=row.next_payment_date,
        canceled_at=row.canceled_at,
        cancel_reason=row.cancel_reason,
        payment_at_risk=row.payment_at_risk,
        renewal_reminder_sent_for=row.renewal_reminder_sent_for,
        version=row.version,
    )


def _transition_values(record: SubscriptionRecord) -> dict:
    """Columns a lifecycle transition is allowed to write."""
    return {
        "plan_type": record.plan_type.value,
        "status": record.status.value,
        "start_date": record.start_date,
        "end_date": record.end_date,
        "trial_end_date": record.trial_end_date,
        "stripe_customer_id": record.external_customer_ref,
        "stripe_subscription_id": record.external_subscription_ref,
        "last_payment_date": record.last_payment_date,
        "next_payment_date": record.next_payment_date,
        "canceled_at": record.canceled_at,
        "cancel_reason": record.cancel_reason,
        "payment_at_risk": record.payment_at_risk,
    }


class SqlAlchemySubscriptionRepository(SubscriptionRepository):
    """Subscription store backed by the ``subscriptions`` and ``users`` tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_record(self, record_id: str) -> SubscriptionRecord | None:
        async with self._session_factory() as session:
            row = await session.get(Subscription, record_id)
            return _to_domain(row) if row else None

    async def get_record_by_external_ref(self, subscription_ref: str) -> SubscriptionRecord | None:
        async with self._session_factory() as session:
            row = await session.scalar(
                select(Subscription).where(Subscription.stripe_subscription_id == subscription_ref)
            )
            return _to_domain(row) if row else None

    async def get_record_by_customer_ref(self, customer_ref: str) -> SubscriptionRecord | None:
        async with self._session_factory() as session:
            row = await session.scalar(
                select(Subscription)
                .where(Subscription.stripe_customer_id == customer_ref)
                .order_by(Subscription.start_date.desc(), Subscription.created_at.desc())
                .limit(1)
            )
            return _to_domain(row) if row else None

    async def get_projection_by_user_id(self, user_id: str) -> UserBillingProjection | None:
        async with self._session_factory() as session:
            user = await session.get(User, user_id)
            if user is None:
                return None

            history_ids = list(user.subscription_history or [])
            rows = {}
            if history_ids:
                result = await session.scalars(
                    select(Subscription).where(Subscription.id.in_(history_ids))
                )
                rows = {row.id: _to_domain(row) for row in result}

            return UserBillingProjection(
                user_id=user.id,
                subscription_status=user.subscription_status,
                trial_start_date=user.trial_start_date,
                trial_end_date=user.trial_end_date,
                current_subscription_id=user.current_subscription_id,
                subscription_history=history_ids,
                external_customer_ref=user.stripe_customer_id,
                current_record=rows.get(user.current_subscription_id),
                history_records=[rows[rid] for rid in history_ids if rid in rows],
            )

    async def get_contact(self, user_id: str) -> UserContact | None:
        async with self._session_factory() as session:
            user = await session.get(User, user_id)
            if user is None:
                return None
            return UserContact(user_id=user.id, email=user.email, name=user.name)

    async def is_event_processed(self, event_id: str) -> bool:
        async with self._session_factory() as session:
            found = await session.scalar(
                select(ProcessedWebhookEvent.id).where(ProcessedWebhookEvent.event_id == event_id)
            )
            return found is not None

    async def list_expirable(self, now: datetime) -> list[SubscriptionRecord]:
        async with self._session_factory() as session:
            result = await session.scalars(
                select(Subscription).where(
                    or_(
                        and_(
                            Subscription.status == SubscriptionStatus.TRIAL.value,
                            Subscription.trial_end_date <= now,
                        ),
                        and_(
                            Subscription.status.in_(
                                [SubscriptionStatus.ACTIVE.value, SubscriptionStatus.CANCELED.value]
                            ),
                            Subscription.end_date <= now,
                        ),
                    )
                )
            )
            return [_to_domain(row) for row in result]

    async def list_due_for_renewal_reminder(
        self, window_start: datetime, window_end: datetime
    ) -> list[SubscriptionRecord]:
        async with self._session_factory() as session:
            result = await session.scalars(
                select(Subscription).where(
                    Subscription.status == SubscriptionStatus.ACTIVE.value,
                    Subscription.end_date >= window_start,
                    Subscription.end_date < window_end,
                    or_(
                        Subscription.renewal_reminder_sent_for.is_(None),
                        Subscription.renewal_reminder_sent_for != Subscription.end_date,
                    ),
                )
            )
            return [_to_domain(row) for row in result]

    async def list_projection_drift(self) -> list[tuple[str, str, str]]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(User.id, Subscription.id, Subscription.status)
                .join(Subscription, Subscription.id == User.current_subscription_id)
                .where(User.subscription_status != Subscription.status)
            )
            return [(user_id, record_id, status) for user_id, record_id, status in result]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_record(
        self,
        record: SubscriptionRecord,
        expected_current_id: str | None,
        require_trial_unused: bool = False,
        event_id: str | None = None,
        event_type: str | None = None,
    ) -> WriteOutcome:
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    if event_id:
                        await self._insert_event(session, event_id, event_type, "applied")

                    history = await session.scalar(
                        select(User.subscription_history).where(User.id == record.user_id)
                    )
                    if history is None:
                        raise _WriteAborted(WriteOutcome.CONFLICT)

                    conditions = [User.id == record.user_id]
                    if expected_current_id is None:
                        conditions.append(User.current_subscription_id.is_(None))
                    else:
                        conditions.append(User.current_subscription_id == expected_current_id)
                    if require_trial_unused:
                        conditions.append(User.trial_start_date.is_(None))

                    values = {
                        "current_subscription_id": record.id,
                        "subscription_status": record.status.value,
                        "subscription_history": [*history, record.id],
                    }
                    if record.status == SubscriptionStatus.TRIAL:
                        values["trial_start_date"] = record.start_date
                        values["trial_end_date"] = record.trial_end_date
                    if record.external_customer_ref:
                        values["stripe_customer_id"] = record.external_customer_ref

                    result = await session.execute(
                        update(User)
                        .where(*conditions)
                        .values(**values)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        raise _WriteAborted(WriteOutcome.CONFLICT)

                    session.add(
                        Subscription(
                            id=record.id,
                            user_id=record.user_id,
                            version=0,
                            renewal_reminder_sent_for=record.renewal_reminder_sent_for,
                            **_transition_values(record),
                        )
                    )
                    try:
                        await session.flush()
                    except IntegrityError as exc:
                        raise _WriteAborted(WriteOutcome.CONFLICT) from exc
            except _WriteAborted as aborted:
                logger.info(
                    "Subscription create not applied: %s",
                    aborted.outcome.value,
                    extra={"record_id": record.id, "user_id": record.user_id, "event_id": event_id},
                )
                return aborted.outcome

        record.version = 0
        return WriteOutcome.APPLIED

    async def apply_transition(
        self,
        before: SubscriptionRecord,
        after: SubscriptionRecord,
        event_id: str | None = None,
        event_type: str | None = None,
    ) -> WriteOutcome:
        """Compare-and-swap on ``(id, status, version)``.

        On success ``after.version`` is advanced to the stored version.
        """
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    if event_id:
                        await self._insert_event(session, event_id, event_type, "applied")

                    result = await session.execute(
                        update(Subscription)
                        .where(
                            Subscription.id == before.id,
                            Subscription.status == before.status.value,
                            Subscription.version == before.version,
                        )
                        .values(version=before.version + 1, **_transition_values(after))
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        raise _WriteAborted(WriteOutcome.CONFLICT)

                    # Mirror into the projection only while this record is current
                    await session.execute(
                        update(User)
                        .where(User.id == after.user_id, User.current_subscription_id == after.id)
                        .values(subscription_status=after.status.value)
                        .execution_options(synchronize_session=False)
                    )
            except _WriteAborted as aborted:
                logger.info(
                    "Subscription transition not applied: %s",
                    aborted.outcome.value,
                    extra={"record_id": before.id, "user_id": before.user_id, "event_id": event_id},
                )
                return aborted.outcome

        after.version = before.version + 1
        return WriteOutcome.APPLIED

    async def record_processed_event(self, event_id: str, event_type: str, outcome: str) -> bool:
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    await self._insert_event(session, event_id, event_type, outcome)
            except _WriteAborted:
                return False
        return True

    async def mark_renewal_reminder_sent(self, record_id: str, end_date: datetime) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(Subscription)
                    .where(
                        Subscription.id == record_id,
                        or_(
                            Subscription.renewal_reminder_sent_for.is_(None),
                            Subscription.renewal_reminder_sent_for != end_date,
                        ),
                    )
                    .values(renewal_reminder_sent_for=end_date)
                    .execution_options(synchronize_session=False)
                )
                return result.rowcount == 1

    async def repair_projection(self, user_id: str, record_id: str, status: str) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(User)
                    .where(
                        User.id == user_id,
                        User.current_subscription_id == record_id,
                        User.subscription_status != status,
                        # Record must still hold the status read by the drift scan
                        exists().where(Subscription.id == record_id, Subscription.status == status),
                    )
                    .values(subscription_status=status)
                    .execution_options(synchronize_session=False)
                )
                return result.rowcount == 1

    async def set_customer_ref(self, user_id: str, customer_ref: str) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(User)
                    .where(User.id == user_id)
                    .values(stripe_customer_id=customer_ref)
                    .execution_options(synchronize_session=False)
                )

    @staticmethod
    async def _insert_event(
        session: AsyncSession, event_id: str, event_type: str | None, outcome: str
    ) -> None:
        session.add(
            ProcessedWebhookEvent(
                event_id=event_id,
                event_type=event_type or "unknown",
                outcome=outcome,
                processed_at=utcnow(),
            )
        )
        try:
            await session.flush()
        except IntegrityError as exc:
            raise _WriteAborted(WriteOutcome.DUPLICATE_EVENT) from exc
