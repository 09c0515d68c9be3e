"""Construct the configured limiter backend."""

from __future__ import annotations

import logging

from ..config import Settings
from .rate_limiter import SlidingWindowRateLimiter
from .redis_rate_limiter import RedisSlidingWindowRateLimiter

logger = logging.getLogger(__name__)

RateLimiter = SlidingWindowRateLimiter | RedisSlidingWindowRateLimiter


def build_rate_limiter(
    settings: Settings,
    *,
    max_requests: int,
    window_seconds: int,
    key_prefix: str,
) -> RateLimiter:
    """Instantiate the configured limiter backend, preferring Redis when available."""
    if settings.rate_limit_backend == "redis" and settings.redis_url:
        try:
            import redis

            client = redis.from_url(settings.redis_url)
            # ensure connectivity early to fail fast and fall back
            client.ping()
            logger.info("%s limiter configured for redis backend at %s", key_prefix, settings.redis_url)
            return RedisSlidingWindowRateLimiter(
                client,
                max_requests=max_requests,
                window_seconds=window_seconds,
                key_prefix=key_prefix,
            )
        except Exception as exc:  # pragma: no cover - depends on a live redis
            logger.warning("redis limiter unavailable for %s, falling back to in-memory: %s", key_prefix, exc)

    logger.info("%s limiter using in-memory backend", key_prefix)
    return SlidingWindowRateLimiter(max_requests=max_requests, window_seconds=window_seconds)
