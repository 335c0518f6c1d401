"""
Rate limiting middleware using slowapi.

Limits are keyed on the real client IP. Storage is Redis when REDIS_URL is
set and in-memory otherwise.

Rate Limits:
- Checkout session creation: 5 per minute
- Billing portal sessions: 10 per minute
- AI coaching: 20 per minute
- Billing webhooks: 100 per minute
- Default: 100 requests per minute
"""

import ipaddress
import logging
import re

from starlette.requests import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from infrastructure.config.settings import settings

logger = logging.getLogger(__name__)

# Quick reject for values that cannot be an IP before parsing
_IP_LIKE = re.compile(r"^[\d.:a-fA-F]+$")


def _is_valid_ip(value: str) -> bool:
    """Return True if *value* looks like a valid IPv4 or IPv6 address."""
    if not _IP_LIKE.match(value):
        return False
    try:
        ipaddress.ip_address(value)
        return True
    except ValueError:
        return False


def _is_private_ip(value: str) -> bool:
    """Return True if *value* is a private, loopback, or link-local address.

    Private addresses in X-Forwarded-For can be spoofed by the client, so
    they are never used as a rate-limit key.
    """
    try:
        addr = ipaddress.ip_address(value)
        return addr.is_private or addr.is_loopback or addr.is_link_local
    except ValueError:
        return False


def _get_real_ip(request: Request) -> str:
    """Extract real client IP from proxy headers, falling back to remote address.

    Behind a reverse proxy every request would otherwise share the proxy's
    bucket. Header values are validated and private addresses rejected.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        # First entry is the originating client
        candidate = forwarded.split(",")[0].strip()
        if _is_valid_ip(candidate) and not _is_private_ip(candidate):
            return candidate
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        candidate = real_ip.strip()
        if _is_valid_ip(candidate) and not _is_private_ip(candidate):
            return candidate
    return get_remote_address(request)


# Format: "count/period" where period can be: second, minute, hour, day
RATE_LIMITS = {
    "checkout": "5/minute",
    "portal": "10/minute",
    "coach": "20/minute",
    "webhook": "100/minute",
    "default": "100/minute",
}

_storage_uri = settings.redis_url if settings.redis_url else "memory://"

if not settings.redis_url:
    logger.warning(
        "Rate limiter using in-memory storage, not suitable for multi-worker production"
    )
    if settings.environment == "production":
        logger.critical(
            "Rate limiter has no Redis in production. "
            "Limits are per worker only. Set REDIS_URL in environment variables."
        )

limiter = Limiter(
    key_func=_get_real_ip,
    storage_uri=_storage_uri,
    default_limits=[RATE_LIMITS["default"]],
)


def get_rate_limit(endpoint: str) -> str:
    """
    Get rate limit configuration for a specific endpoint.

    Example:
        >>> get_rate_limit("checkout")
        "5/minute"
        >>> get_rate_limit("unknown")
        "100/minute"
    """
    return RATE_LIMITS.get(endpoint, RATE_LIMITS["default"])
