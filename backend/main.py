"""PrepAcademy Billing - Main FastAPI Application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.errors import BillingHTTPException, billing_exception_handler
from api.middleware.rate_limit import limiter
from api.middleware.request_context import RequestContextMiddleware
from api.routes import api_router
from infrastructure.config import get_settings
from infrastructure.database import close_db, init_db
from infrastructure.logging_config import setup_logging
from services import get_billing_scheduler, get_notification_dispatcher

settings = get_settings()
logger = logging.getLogger(__name__)

# Seconds to let queued lifecycle emails finish on shutdown
NOTIFICATION_DRAIN_TIMEOUT = 10.0

# Sentry error tracking, initialised at module level so startup errors are captured too
if settings.sentry_dsn:
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.logging import LoggingIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        integrations=[
            FastApiIntegration(transaction_style="url"),
            SqlalchemyIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        traces_sample_rate=0.1 if settings.is_production else 1.0,
        send_default_pii=False,
    )


async def check_rate_limit_storage() -> bool:
    """Ping the Redis instance backing the rate limiter."""
    if not settings.redis_url:
        return False

    import redis.asyncio as aioredis
    from redis.exceptions import RedisError

    client = aioredis.from_url(settings.redis_url, socket_connect_timeout=2)
    try:
        await client.ping()
        return True
    except RedisError as e:
        logger.critical("Redis unreachable (%s); rate limits are per process", e)
        return False
    finally:
        await client.aclose()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start and stop the billing engine around the HTTP server."""
    setup_logging(
        json_output=settings.is_production and not settings.debug,
        level="DEBUG" if settings.debug else "INFO",
    )
    logger.info("Starting %s v%s (%s)", settings.app_name, settings.app_version, settings.environment)
    if settings.sentry_dsn:
        logger.info("Sentry error tracking enabled")

    settings.validate_production_secrets()

    if settings.is_development:
        await init_db()
    if settings.is_production:
        await check_rate_limit_storage()

    scheduler = get_billing_scheduler()
    if settings.scheduler_enabled:
        scheduler.start()
    else:
        logger.info("Billing scheduler disabled; tasks run only on demand")

    yield

    logger.info("Shutting down...")
    await scheduler.stop()
    await get_notification_dispatcher().drain(timeout=NOTIFICATION_DRAIN_TIMEOUT)
    await close_db()
    logger.info("Application stopped.")


app = FastAPI(
    title=settings.app_name,
    description="Subscription and billing lifecycle engine",
    version=settings.app_version,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_exception_handler(BillingHTTPException, billing_exception_handler)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    # Production logs carry only type and a truncated message
    request_id = getattr(request.state, "request_id", None)
    if settings.is_production:
        logger.error(
            "Unhandled exception: %s: %s",
            type(exc).__name__,
            str(exc)[:200],
            extra={"request_id": request_id},
        )
    else:
        logger.error("Unhandled exception: %s", exc, exc_info=True, extra={"request_id": request_id})
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "request_id": request_id},
    )


app.add_middleware(RequestContextMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
)

app.include_router(api_router, prefix="/api/v1")


@app.get("/")
async def root():
    """Service information."""
    return {
        "app": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs" if settings.is_development else "disabled",
        "health": "/api/v1/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        workers=settings.workers if not settings.is_development else 1,
    )
