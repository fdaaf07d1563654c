"""
Concurrent delivery of the same webhook event.

Runs against a file-backed SQLite database so each delivery gets its own
connection and transaction, the way two API workers would.
"""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine

from core.domain.events import CheckoutCompleted
from core.domain.subscription import PlanType
from infrastructure.database import init_db
from tests.fakes import VALID_SIGNATURE, make_event, ts


@pytest.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}",
        connect_args={"timeout": 30},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _use_wal(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def active_record(lifecycle, test_user, now):
    result = await lifecycle.complete_checkout(
        CheckoutCompleted(
            user_id=test_user.id,
            plan=PlanType.MONTHLY,
            external_customer_ref="cus_1",
            external_subscription_ref="sub_1",
            period_start=now - timedelta(days=29),
            period_end=now + timedelta(days=1),
        )
    )
    assert result.applied
    return result.record


@pytest.mark.asyncio
async def test_concurrent_renewal_deliveries_apply_once(
    webhook_processor, repository, dispatcher, notifier, active_record
):
    new_end = active_record.end_date + timedelta(days=30)
    payload = make_event(
        "invoice.payment_succeeded",
        {
            "id": "in_1",
            "object": "invoice",
            "subscription": "sub_1",
            "customer": "cus_1",
            "lines": {"data": [{"period": {"start": ts(active_record.end_date), "end": ts(new_end)}}]},
        },
        event_id="evt_concurrent",
    )

    results = await asyncio.gather(
        webhook_processor.process(payload, VALID_SIGNATURE),
        webhook_processor.process(payload, VALID_SIGNATURE),
    )
    await dispatcher.drain()

    stored = await repository.get_record(active_record.id)
    assert sorted(result.outcome for result in results) == ["applied", "duplicate_event"]
    assert stored.end_date == new_end
    assert stored.version == active_record.version + 1
    assert len(notifier.of_kind("payment_received")) == 1
