"""
Fixed-window rate limiting backed by Redis.

Every request increments `ratelimit:<prefix>:<client ip>` and refreshes its
expiry in a single pipeline. When Redis is not configured or unreachable the
limiter fails open and reports `enabled=False`.
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional

import redis
from fastapi import HTTPException, Request, Response

from irefair.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

RATE_LIMIT_BUCKETS = ("applicant", "referrer", "apply", "chatgpt", "founder_login")

_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> Optional[redis.Redis]:
    """Get or create the Redis client. Returns None when no URL is configured."""
    global _redis_client
    if _redis_client is None and settings.redis_url:
        _redis_client = redis.Redis.from_url(settings.redis_url, socket_timeout=2)
    return _redis_client


def set_redis_client(client: Optional[redis.Redis]) -> None:
    """Replace the shared client (used by tests)."""
    global _redis_client
    _redis_client = client


def test_redis_connection() -> bool:
    client = get_redis_client()
    if client is None:
        return False
    try:
        return bool(client.ping())
    except redis.RedisError as e:
        logger.error("Redis connection failed: %s", e)
        return False


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset: int
    retry_after: int
    enabled: bool


def rate_limits() -> Dict[str, Dict[str, int]]:
    """Per-bucket limits, resolved from settings on each call."""
    return {
        bucket: {
            "limit": getattr(settings, f"rate_limit_{bucket}"),
            "window": getattr(settings, f"rate_limit_{bucket}_window_seconds"),
        }
        for bucket in RATE_LIMIT_BUCKETS
    }


def get_client_ip(request: Request) -> str:
    headers = request.headers
    forwarded = (
        headers.get("cf-connecting-ip")
        or headers.get("x-real-ip")
        or headers.get("x-client-ip")
        or headers.get("x-forwarded-for")
        or headers.get("x-vercel-forwarded-for")
    )
    if not forwarded:
        return "unknown"
    first = forwarded.split(",")[0].strip()
    return first or "unknown"


def _disabled(limit: int, window: int, now: int) -> RateLimitResult:
    return RateLimitResult(
        allowed=True, limit=limit, remaining=limit, reset=now + window, retry_after=0, enabled=False
    )


def check_rate_limit(key: str, limit: int, window: int) -> RateLimitResult:
    """Count one hit against `key` and report whether it is within the limit."""
    now = int(time.time())
    client = get_redis_client()
    if client is None or limit <= 0 or window <= 0:
        return _disabled(limit, window, now)

    try:
        pipe = client.pipeline()
        pipe.incr(key)
        pipe.expire(key, window)
        count, _ = pipe.execute()
    except redis.RedisError as e:
        logger.error("Rate limit check failed: %s", e)
        return _disabled(limit, window, now)

    count = int(count or 0)
    allowed = count <= limit
    return RateLimitResult(
        allowed=allowed,
        limit=limit,
        remaining=max(0, limit - count),
        reset=now + window,
        retry_after=0 if allowed else window,
        enabled=True,
    )


def rate_limit(request: Request, key_prefix: str, limit: int, window: int) -> RateLimitResult:
    return check_rate_limit(f"ratelimit:{key_prefix}:{get_client_ip(request)}", limit, window)


def rate_limit_headers(result: RateLimitResult) -> Dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(max(0, result.remaining)),
        "X-RateLimit-Reset": str(result.reset),
    }
    if not result.allowed and result.retry_after > 0:
        headers["Retry-After"] = str(result.retry_after)
    return headers


def rate_limited(bucket: str, key_prefix: Optional[str] = None):
    """
    FastAPI dependency factory.

    Usage:
        @router.post("", dependencies=[Depends(rate_limited("applicant"))])
    """
    prefix = key_prefix or bucket

    def dependency(request: Request, response: Response) -> RateLimitResult:
        config = rate_limits()[bucket]
        result = rate_limit(request, prefix, config["limit"], config["window"])
        headers = rate_limit_headers(result)
        if not result.allowed:
            raise HTTPException(
                status_code=429,
                detail="Too many requests. Please try again shortly.",
                headers=headers,
            )
        if result.enabled:
            for name, value in headers.items():
                response.headers[name] = value
        return result

    return dependency
