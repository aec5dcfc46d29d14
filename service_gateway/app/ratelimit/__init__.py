"""
Rate limiting package for the Gateway.

Holds the fixed-window limiter, its counter stores (in-process or Redis) and
the request adapter that enforces per-client request budgets.
"""

from .fixed_window import (
    FixedWindowRateLimiter,
    MemoryWindowStore,
    PathRateLimitMiddleware,
    RateLimitMiddleware,
    RedisWindowStore,
)

__all__ = [
    "FixedWindowRateLimiter",
    "MemoryWindowStore",
    "PathRateLimitMiddleware",
    "RateLimitMiddleware",
    "RedisWindowStore",
]
