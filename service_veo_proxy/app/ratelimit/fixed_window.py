"""
Fixed-window rate limiters for the Veo proxy.
"""

import hashlib
import math
import time
from typing import Any, Callable, Dict, Optional, Tuple

import redis.asyncio as redis
from fastapi import Request
from fastapi.responses import JSONResponse

from shared.errors import RateLimitError
from shared.logging import get_logger
from shared.metrics import MetricsCollector, endpoint_label

API_KEY_HEADER = "x-api-key"


class MemoryRateLimiter:
    """Per-process fixed-window counter."""

    def __init__(self, limit: int, window_seconds: int = 60, clock: Callable[[], float] = time.time):
        self.limit = limit
        self.window_seconds = window_seconds
        self.clock = clock
        self._counters: Dict[Tuple[str, int], int] = {}
        self._current_window = -1

    def _window(self, now: float) -> int:
        return int(now // self.window_seconds)

    async def check_rate_limit(self, client_id: str) -> Dict[str, Any]:
        """Count one request for ``client_id`` and report whether it is allowed."""
        now = self.clock()
        window = self._window(now)
        if window != self._current_window:
            # Counters from earlier windows can never be consulted again
            self._counters = {k: v for k, v in self._counters.items() if k[1] >= window}
            self._current_window = window

        key = (client_id, window)
        count = self._counters.get(key, 0) + 1
        self._counters[key] = count

        reset = max(1, math.ceil((window + 1) * self.window_seconds - now))
        return {
            "allowed": count <= self.limit,
            "current_count": count,
            "limit": self.limit,
            "remaining": max(0, self.limit - count),
            "reset_in_seconds": reset,
        }

    async def close(self):
        self._counters.clear()


class RedisRateLimiter:
    """Fixed-window counter shared across processes through Redis."""

    def __init__(self, redis_url: str, limit: int, window_seconds: int = 60,
                 clock: Callable[[], float] = time.time):
        self.redis_url = redis_url
        self.limit = limit
        self.window_seconds = window_seconds
        self.clock = clock
        self.logger = get_logger("veo_proxy.rate_limiter")
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url)
        return self._redis

    def _make_key(self, client_id: str, window: int) -> str:
        """Generate rate limit key."""
        return f"rate_limit:{client_id}:{window}"

    async def check_rate_limit(self, client_id: str) -> Dict[str, Any]:
        """Check if request is within rate limits."""
        now = self.clock()
        window = int(now // self.window_seconds)
        reset = max(1, math.ceil((window + 1) * self.window_seconds - now))

        try:
            redis_client = await self._get_redis()
            async with redis_client.pipeline(transaction=True) as pipeline:
                pipeline.incr(self._make_key(client_id, window))
                pipeline.expire(self._make_key(client_id, window), self.window_seconds)
                results = await pipeline.execute()
            count = int(results[0])
        except Exception as e:
            # Fail open: losing the limiter must not take the proxy down
            self.logger.error("Rate limit check error", error_type=type(e).__name__, error=str(e))
            return {
                "allowed": True,
                "current_count": 0,
                "limit": self.limit,
                "remaining": self.limit,
                "reset_in_seconds": reset,
                "error": "Redis unavailable",
            }

        return {
            "allowed": count <= self.limit,
            "current_count": count,
            "limit": self.limit,
            "remaining": max(0, self.limit - count),
            "reset_in_seconds": reset,
        }

    async def close(self):
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def build_rate_limiter(limit: int, redis_url: Optional[str] = None):
    """Pick the Redis limiter when a URL is configured, else the in-memory one."""
    if redis_url:
        return RedisRateLimiter(redis_url, limit)
    return MemoryRateLimiter(limit)


class RateLimitMiddleware:
    """Rate limiting middleware for FastAPI.

    Runs ahead of routing, so rejected requests never reach authentication.
    """

    def __init__(self, rate_limiter, metrics: Optional[MetricsCollector] = None):
        self.rate_limiter = rate_limiter
        self.metrics = metrics
        self.logger = get_logger("veo_proxy.rate_limit_middleware")

    async def __call__(self, request: Request, call_next):
        client_id = self._get_client_id(request)
        result = await self.rate_limiter.check_rate_limit(client_id)

        if not result.get("allowed", False):
            self.logger.warning(
                "Rate limit exceeded",
                client=client_id.split(":", 1)[0],
                path=request.url.path,
                limit=result.get("limit"),
            )
            if self.metrics is not None:
                self.metrics.record_rate_limit_hit(endpoint_label(request))
            exc = RateLimitError(retry_after=int(result["reset_in_seconds"]))
            response = JSONResponse(
                status_code=exc.status_code,
                content=exc.to_response().model_dump(exclude_none=True),
            )
            response.headers["Retry-After"] = str(exc.retry_after)
        else:
            response = await call_next(request)

        self._set_rate_limit_headers(response, result)
        return response

    def _set_rate_limit_headers(self, response, rate_result: Dict[str, Any]) -> None:
        """Propagate rate limiting metadata via standard headers."""
        limit = rate_result.get("limit")
        remaining = rate_result.get("remaining")
        reset = rate_result.get("reset_in_seconds")

        if limit is not None:
            response.headers["X-RateLimit-Limit"] = str(limit)
        if remaining is not None:
            response.headers["X-RateLimit-Remaining"] = str(remaining)
        if reset is not None:
            response.headers["X-RateLimit-Reset"] = str(reset)

    def _get_client_id(self, request: Request) -> str:
        """Key by API key when present, else by caller address.

        The API key is hashed so the secret never lands in a counter store.
        """
        api_key = request.headers.get(API_KEY_HEADER)
        if isinstance(api_key, str) and api_key.strip():
            digest = hashlib.sha256(api_key.encode("utf-8")).hexdigest()
            return f"key:{digest}"

        return f"ip:{self._get_client_ip(request)}"

    def _get_client_ip(self, request: Request) -> str:
        """Extract the caller IP from standard headers."""
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip
        if request.client:
            return request.client.host
        return "unknown"
