"""
Rate limiting middleware using slowapi.

This module provides rate limiting for the billing API. It uses slowapi (a rate
limiting library for FastAPI) backed by Redis, or in-memory storage when no
Redis URL is configured.

Rate Limits:
- Billing mutations (trial, checkout, cancel): 5 per minute
- Payout mutations: 10 per minute
- Default: 100 requests per minute
- Processor webhooks are exempt
"""

import ipaddress
import logging
import re

from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from infrastructure.config.settings import settings

logger = logging.getLogger(__name__)

_IP_LIKE = re.compile(r"^[\d.:a-fA-F]+$")


def _is_public_ip(value: str) -> bool:
    """True for a syntactically valid, non-private, non-loopback address.

    Private addresses in forwarding headers are trivially spoofed, so they
    never select a rate-limit bucket.
    """
    if not _IP_LIKE.match(value):
        return False
    try:
        addr = ipaddress.ip_address(value)
    except ValueError:
        return False
    return not (addr.is_private or addr.is_loopback or addr.is_link_local)


def _get_real_ip(request: Request) -> str:
    """Client IP from proxy headers, falling back to the connection address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        # First entry is the original client
        candidate = forwarded.split(",")[0].strip()
        if _is_public_ip(candidate):
            return candidate
    real_ip = request.headers.get("x-real-ip")
    if real_ip and _is_public_ip(real_ip.strip()):
        return real_ip.strip()
    return get_remote_address(request)


# Format: "count/period" where period can be: second, minute, hour, day
RATE_LIMITS = {
    "billing_mutation": "5/minute",
    "payout_mutation": "10/minute",
    "default": "100/minute",
}

_storage_uri = settings.redis_url if settings.redis_url else "memory://"

if not settings.redis_url:
    logger.warning("Rate limiter using in-memory storage, limits are per process")
    if settings.is_production:
        logger.critical("Rate limiting is per process in production. Set REDIS_URL.")

# default_limits applies to every route through SlowAPIMiddleware;
# @limiter.limit decorators override it per endpoint.
limiter = Limiter(
    key_func=_get_real_ip,
    storage_uri=_storage_uri,
    default_limits=[RATE_LIMITS["default"]],
)


def get_rate_limit(endpoint: str) -> str:
    """
    Get rate limit configuration for a specific endpoint.

    Args:
        endpoint: The endpoint identifier (e.g., "billing_mutation")

    Returns:
        str: Rate limit string in format "count/period"

    Example:
        >>> get_rate_limit("billing_mutation")
        "5/minute"
        >>> get_rate_limit("unknown")
        "100/minute"
    """
    return RATE_LIMITS.get(endpoint, RATE_LIMITS["default"])
