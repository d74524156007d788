"""
Rate limiting package for the Veo proxy.

Holds fixed-window limiters and the middleware that enforces a per-client
request budget before any route handler runs.
"""

from .fixed_window import MemoryRateLimiter, RateLimitMiddleware, RedisRateLimiter, build_rate_limiter

__all__ = [
    "MemoryRateLimiter",
    "RateLimitMiddleware",
    "RedisRateLimiter",
    "build_rate_limiter",
]
