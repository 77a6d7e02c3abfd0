"""Rate limiting configuration for the ingestion API."""

import logging
import os

import redis
from slowapi import Limiter
from slowapi.util import get_remote_address

from crm_ingest.core.config import settings

IS_TESTING = os.getenv("TESTING", "").lower() in ("1", "true", "yes")
DEFAULT_LIMITS = (
    []
    if IS_TESTING or settings.RATE_LIMIT_API <= 0
    else [f"{settings.RATE_LIMIT_API}/minute"]
)


def _storage_uri() -> str:
    """Redis when configured and reachable, otherwise per-process memory."""
    if IS_TESTING or not settings.REDIS_URL:
        return "memory://"
    try:
        client = redis.from_url(settings.REDIS_URL, socket_connect_timeout=1)
        client.ping()
        return settings.REDIS_URL
    except redis.RedisError as e:
        logging.warning(f"Redis unavailable for rate limiting, using in-memory: {e}")
        return "memory://"


limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=_storage_uri(),
    default_limits=DEFAULT_LIMITS,
    enabled=not IS_TESTING,
)


def webhook_limit() -> str:
    """Per-client limit string for inbound webhooks."""
    return f"{max(settings.RATE_LIMIT_WEBHOOK, 1)}/minute"
