"""
Pytest configuration and shared fixtures for backend tests.
"""

import os
import sys
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from uuid import uuid4

# Test settings must be in place before the application modules read them
os.environ.setdefault("ENVIRONMENT", "test")
os.environ["REDIS_URL"] = ""
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["RESEND_API_KEY"] = ""
os.environ.setdefault("STRIPE_PRICE_MONTHLY", "price_monthly_test")
os.environ.setdefault("STRIPE_PRICE_QUARTERLY", "price_quarterly_test")
os.environ.setdefault("STRIPE_PRICE_ANNUAL", "price_annual_test")
os.environ.setdefault("FRONTEND_URL", "http://localhost:3000")

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from infrastructure.config import get_settings
from infrastructure.database import create_session_factory, init_db
from infrastructure.database.models import Base, User, UserRole
from infrastructure.repositories import SqlAlchemySubscriptionRepository
from services.billing_scheduler import BillingScheduler, ScheduledTask, every
from services.notification_dispatcher import NotificationDispatcher
from services.payout_scheduler import PayoutScheduler
from services.reconciliation import ReconciliationSweeper
from services.renewal_reminders import RenewalReminderScanner
from services.subscription_lifecycle import SubscriptionLifecycle
from services.subscription_service import SubscriptionService
from services.webhook_processor import WebhookProcessor
from tests.fakes import FakePaymentProcessor, RecordingNotifier

settings = get_settings()

# Database URL for testing (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# ============================================================================
# Database
# ============================================================================


@pytest.fixture
async def db_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    await init_db(engine)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(db_engine)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def repository(session_factory) -> SqlAlchemySubscriptionRepository:
    return SqlAlchemySubscriptionRepository(session_factory)


async def _create_user(session_factory, email: str, name: str, role: str) -> User:
    async with session_factory() as session:
        user = User(id=str(uuid4()), email=email, name=name, role=role)
        session.add(user)
        await session.commit()
        await session.refresh(user)
        return user


@pytest.fixture
async def test_user(session_factory) -> User:
    """Create a test user with no subscription history."""
    return await _create_user(session_factory, "student@example.com", "Test Student", UserRole.USER.value)


@pytest.fixture
async def other_user(session_factory) -> User:
    return await _create_user(session_factory, "other@example.com", "Other Student", UserRole.USER.value)


@pytest.fixture
async def admin_user(session_factory) -> User:
    """Create a test user with admin role; payouts and scheduler tasks require it."""
    return await _create_user(session_factory, "admin@example.com", "Admin User", UserRole.ADMIN.value)


# ============================================================================
# Services
# ============================================================================


@pytest.fixture
def now() -> datetime:
    return datetime.now(UTC).replace(microsecond=0)


@pytest.fixture
def processor() -> FakePaymentProcessor:
    return FakePaymentProcessor()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
async def dispatcher(notifier, repository) -> AsyncGenerator[NotificationDispatcher, None]:
    dispatcher = NotificationDispatcher(notifier, repository)
    yield dispatcher
    await dispatcher.drain(timeout=5)


@pytest.fixture
def lifecycle(repository, dispatcher) -> SubscriptionLifecycle:
    return SubscriptionLifecycle(repository, dispatcher)


@pytest.fixture
def subscription_service(repository, processor, lifecycle) -> SubscriptionService:
    return SubscriptionService(repository, processor, lifecycle, settings)


@pytest.fixture
def webhook_processor(repository, processor, lifecycle) -> WebhookProcessor:
    return WebhookProcessor(repository, processor, lifecycle, settings.stripe_price_ids)


@pytest.fixture
def payout_scheduler(processor) -> PayoutScheduler:
    return PayoutScheduler(
        processor,
        buffer_fraction=0.10,
        currency="usd",
        statement_descriptor="PREPACADEMY PAYOUT",
    )


@pytest.fixture
def sweeper(repository, lifecycle) -> ReconciliationSweeper:
    return ReconciliationSweeper(repository, lifecycle)


@pytest.fixture
def reminder_scanner(repository, dispatcher) -> RenewalReminderScanner:
    return RenewalReminderScanner(repository, dispatcher, days_ahead=7)


@pytest.fixture
def billing_scheduler(sweeper, payout_scheduler, reminder_scanner) -> BillingScheduler:
    return BillingScheduler(
        [
            ScheduledTask("expiry_sweep", sweeper.sweep, every(3600)),
            ScheduledTask("weekly_payout", payout_scheduler.run_weekly, every(7 * 86400)),
            ScheduledTask("renewal_reminders", reminder_scanner.scan, every(86400)),
        ]
    )


@pytest.fixture
def price_ids() -> dict:
    return settings.stripe_price_ids


@pytest.fixture
def paid_period(now) -> tuple[datetime, datetime]:
    return now - timedelta(minutes=1), now + timedelta(days=30)


# ============================================================================
# HTTP client
# ============================================================================


@pytest.fixture
def auth_headers(test_user: User) -> dict:
    """Generate authentication headers for test user."""
    from api.dependencies import token_service

    access_token = token_service.create_access_token(user_id=test_user.id)
    return {"Authorization": f"Bearer {access_token}"}


@pytest.fixture
def admin_headers(admin_user: User) -> dict:
    from api.dependencies import token_service

    access_token = token_service.create_access_token(user_id=admin_user.id, role="admin")
    return {"Authorization": f"Bearer {access_token}"}


@pytest.fixture
async def async_client(
    session_factory,
    subscription_service,
    webhook_processor,
    payout_scheduler,
    billing_scheduler,
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client wired to the test database and fakes."""
    # Import app here so the test environment is applied first
    from api import dependencies
    from infrastructure.database.connection import get_db
    from main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[dependencies.get_subscription_service] = lambda: subscription_service
    app.dependency_overrides[dependencies.get_webhook_processor] = lambda: webhook_processor
    app.dependency_overrides[dependencies.get_payout_scheduler] = lambda: payout_scheduler
    app.dependency_overrides[dependencies.get_billing_scheduler] = lambda: billing_scheduler

    # Reset rate limiter state between tests to prevent cross-test 429s
    app.state.limiter.reset()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
