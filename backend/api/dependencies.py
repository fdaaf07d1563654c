"""
API dependencies for authentication, authorization and service wiring.

Tests swap the service providers through ``app.dependency_overrides``.
"""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

import services
from core.security import TokenService
from infrastructure.config.settings import settings
from infrastructure.database.connection import get_db
from infrastructure.database.models.user import User
from services.billing_scheduler import BillingScheduler
from services.payout_scheduler import PayoutScheduler
from services.subscription_service import SubscriptionService
from services.webhook_processor import WebhookProcessor

token_service = TokenService(
    secret_key=settings.jwt_secret_key,
    algorithm=settings.jwt_algorithm,
    access_token_expire_minutes=settings.jwt_access_token_expire_minutes,
)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def bearer_token(authorization: str | None) -> str | None:
    """Token part of an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


async def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Dependency to get the current authenticated user from a Bearer token.

    The token only identifies the user; the role is read from the database.
    """
    token = bearer_token(authorization)
    if not token:
        raise _unauthorized("Not authenticated")

    claims = token_service.verify_access_token(token)
    if claims is None:
        raise _unauthorized("Invalid or expired token")

    user = await db.get(User, claims.user_id)
    if user is None:
        raise _unauthorized("User not found")
    return user


async def get_current_admin_user(
    current_user: Annotated[User, Depends(get_current_user)],
) -> User:
    """
    Dependency to get the current authenticated admin user.

    Payout and scheduler operations are restricted to admins.
    """
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user


def get_subscription_service() -> SubscriptionService:
    return services.get_subscription_service()


def get_webhook_processor() -> WebhookProcessor:
    return services.get_webhook_processor()


def get_payout_scheduler() -> PayoutScheduler:
    return services.get_payout_scheduler()


def get_billing_scheduler() -> BillingScheduler:
    return services.get_billing_scheduler()
