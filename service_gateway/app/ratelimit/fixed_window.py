"""
Fixed-window rate limiter for Gateway service.
"""

import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import redis.asyncio as redis
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from shared.errors import RateLimitError
from shared.logging import get_logger
from shared.metrics import MetricsCollector


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of one rate limit check."""
    allowed: bool
    limit: int
    current_count: int
    reset_in_seconds: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.current_count)


class MemoryWindowStore:
    """Per-process window counters."""

    PURGE_THRESHOLD = 10_000

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        # key -> (window_start, count)
        self._windows: Dict[str, Tuple[float, int]] = {}

    async def hit(self, key: str, limit: int, window_seconds: int) -> Tuple[bool, int, int]:
        """Count a request unless the window is full.

        Returns ``(allowed, count, reset_in_seconds)``.
        """
        now = self._clock()
        if len(self._windows) > self.PURGE_THRESHOLD:
            self._purge_expired(now, window_seconds)

        window_start, count = self._windows.get(key, (now, 0))
        if now - window_start >= window_seconds:
            window_start, count = now, 0

        reset_in = max(0, int(round(window_start + window_seconds - now)))
        if count >= limit:
            return False, count, reset_in

        count += 1
        self._windows[key] = (window_start, count)
        return True, count, reset_in

    async def reset(self, key: str) -> None:
        self._windows.pop(key, None)

    def _purge_expired(self, now: float, window_seconds: int) -> None:
        expired = [key for key, (start, _) in self._windows.items() if now - start >= window_seconds]
        for key in expired:
            del self._windows[key]

    async def close(self) -> None:
        return None


class RedisWindowStore:
    """Window counters shared through Redis, for gateways running several workers."""

    def __init__(self, redis_url: str):
        self.redis_url = redis_url
        self.logger = get_logger("gateway.rate_limit_store")
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url)
        return self._redis

    async def hit(self, key: str, limit: int, window_seconds: int) -> Tuple[bool, int, int]:
        """Increment first and hand back any overshoot."""
        redis_client = await self._get_redis()

        new_count = int(await redis_client.incr(key))
        if new_count == 1:
            await redis_client.expire(key, window_seconds)

        if new_count > limit:
            await redis_client.decr(key)
            return False, limit, await self._reset_in(redis_client, key, window_seconds)

        return True, new_count, await self._reset_in(redis_client, key, window_seconds)

    async def _reset_in(self, redis_client: redis.Redis, key: str, window_seconds: int) -> int:
        ttl = await redis_client.ttl(key)
        if ttl is None or ttl < 0:
            # A key without expiry would never reset.
            await redis_client.expire(key, window_seconds)
            return window_seconds
        return int(ttl)

    async def reset(self, key: str) -> None:
        redis_client = await self._get_redis()
        await redis_client.delete(key)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


class FixedWindowRateLimiter:
    """Request-count gate over a fixed time window, keyed by client."""

    def __init__(self, name: str, max_requests: int, window_seconds: int,
                 store=None, message: str = "Too many requests, please try again later."):
        self.name = name
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.store = store or MemoryWindowStore()
        self.message = message
        self.logger = get_logger(f"gateway.rate_limiter.{name}")

    def _make_key(self, client_id: str) -> str:
        """Generate rate limit key."""
        return f"rate_limit:{self.name}:{client_id}"

    async def check(self, client_id: str) -> RateLimitResult:
        """Count a request for ``client_id`` and decide whether it may pass."""
        try:
            allowed, count, reset_in = await self.store.hit(
                self._make_key(client_id), self.max_requests, self.window_seconds
            )
        except Exception as e:
            # Store outages fail open.
            self.logger.error("Rate limit check error", error=str(e))
            return RateLimitResult(True, self.max_requests, 0, self.window_seconds)

        if not allowed:
            self.logger.warning(
                "Rate limit exceeded",
                client_id=client_id,
                current_count=count,
                limit=self.max_requests
            )
        return RateLimitResult(allowed, self.max_requests, count, reset_in)

    async def reset(self, client_id: str) -> None:
        """Reset rate limit for a client."""
        await self.store.reset(self._make_key(client_id))
        self.logger.info("Rate limit reset", client_id=client_id)


class RateLimitMiddleware:
    """Apply a limiter to FastAPI requests."""

    def __init__(self, rate_limiter: FixedWindowRateLimiter,
                 metrics: Optional[MetricsCollector] = None,
                 trust_forwarded_for: bool = False):
        self.rate_limiter = rate_limiter
        self.metrics = metrics
        self.trust_forwarded_for = trust_forwarded_for

    async def check_request(self, request: Request, response: Optional[Response] = None) -> RateLimitResult:
        """Check the limiter for the caller, raising ``RateLimitError`` on denial."""
        result = await self.rate_limiter.check(self._get_client_id(request))

        if not result.allowed:
            if self.metrics is not None:
                self.metrics.record_rate_limit_hit(self.rate_limiter.name)
            raise RateLimitError(
                self.rate_limiter.message,
                retry_after=result.reset_in_seconds,
                details={"limit": result.limit, "reset_in_seconds": result.reset_in_seconds},
            )

        if response is not None:
            self.set_rate_limit_headers(response, result)
        return result

    def set_rate_limit_headers(self, response: Response, result: RateLimitResult) -> None:
        """Propagate rate limiting metadata via standard headers."""
        response.headers["X-RateLimit-Limit"] = str(result.limit)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        response.headers["X-RateLimit-Reset"] = str(result.reset_in_seconds)

    def _get_client_id(self, request: Request) -> str:
        """Extract the caller address."""
        if self.trust_forwarded_for:
            forwarded_for = request.headers.get("X-Forwarded-For")
            if forwarded_for:
                return forwarded_for.split(",")[0].strip()

        return request.client.host if request.client else "unknown"


class PathRateLimitMiddleware(BaseHTTPMiddleware):
    """Enforce a limiter on every request under a path prefix, routed or not."""

    def __init__(self, app, rate_limit: RateLimitMiddleware, path_prefix: str = "/v1"):
        super().__init__(app)
        self.rate_limit = rate_limit
        self.path_prefix = path_prefix.rstrip("/")

    def _applies_to(self, path: str) -> bool:
        return path == self.path_prefix or path.startswith(self.path_prefix + "/")

    async def dispatch(self, request: Request, call_next):
        if not self._applies_to(request.url.path):
            return await call_next(request)

        try:
            result = await self.rate_limit.check_request(request)
        except RateLimitError as e:
            return JSONResponse(status_code=e.status_code, content=e.to_response(), headers=e.headers)

        response = await call_next(request)
        self.rate_limit.set_rate_limit_headers(response, result)
        return response
