"""Rate limiting for the public API.

Implements sliding window rate limiting per client so a single caller
cannot hammer address generation or inbox polling.
Uses Redis for distributed rate limiting across multiple API instances.
"""

import hashlib
import logging
import time
from functools import lru_cache
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from redis import Redis

from .config import settings

logger = logging.getLogger(__name__)


def get_redis_client() -> Optional[Redis]:
    """Get Redis client for rate limiting.

    Returns None if Redis is not available, allowing graceful degradation.
    """
    try:
        client = Redis.from_url(settings.REDIS_URL, decode_responses=True)
        client.ping()
        return client
    except Exception as e:
        logger.warning(f"Redis unavailable, rate limiting disabled: {e}")
        return None


def _get_client_identifier(request: Request) -> str:
    """Extract a unique identifier for the client.

    Uses the first X-Forwarded-For hop when behind a proxy, else the
    peer address. Hashed so raw IPs never reach Redis.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        ip = forwarded.split(",")[0].strip()
    elif request.client:
        ip = request.client.host
    else:
        ip = "unknown"

    return hashlib.sha256(ip.encode()).hexdigest()[:32]


def _get_rate_limit_key(identifier: str, endpoint: str) -> str:
    """Generate Redis key for rate limiting."""
    return f"rate_limit:{endpoint}:{identifier}"


class RateLimiter:
    """Rate limiter using Redis sliding window algorithm."""

    def __init__(
        self,
        redis_client: Optional[Redis] = None,
        max_requests: int = settings.RATE_LIMIT_REQUESTS,
        window_seconds: int = settings.RATE_LIMIT_WINDOW,
    ):
        self.redis = redis_client
        self.max_requests = max_requests
        self.window_seconds = window_seconds

    def hit(self, request: Request, endpoint: str = "api") -> bool:
        """Record a request and report whether the client is over the limit.

        Args:
            request: FastAPI request object
            endpoint: Endpoint identifier for rate limiting

        Returns:
            True if the client should be rate limited
        """
        if not self.redis:
            # Graceful degradation: no rate limiting if Redis unavailable
            return False

        key = _get_rate_limit_key(_get_client_identifier(request), endpoint)

        now = time.time()
        window_start = now - self.window_seconds

        try:
            pipe = self.redis.pipeline()
            pipe.zremrangebyscore(key, 0, window_start)
            pipe.zadd(key, {f"{now:.6f}": now})
            pipe.zcard(key)
            pipe.expire(key, self.window_seconds)
            _, _, current_count, _ = pipe.execute()
        except Exception as e:
            logger.warning(f"Rate limit check failed, allowing request: {e}")
            return False

        return current_count > self.max_requests


@lru_cache()
def get_rate_limiter() -> RateLimiter:
    """Process-wide limiter (connects to Redis on first use)."""
    return RateLimiter(redis_client=get_redis_client())


def rate_limit(
    request: Request,
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> None:
    """FastAPI dependency enforcing the API rate limit.

    Raises:
        HTTPException 429: Client exceeded RATE_LIMIT_REQUESTS per RATE_LIMIT_WINDOW
    """
    if limiter.hit(request):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests, please try again later",
            headers={"Retry-After": str(limiter.window_seconds)},
        )
