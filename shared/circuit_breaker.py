"""
Circuit breaker pattern implementation for resilient service calls.

A breaker wraps one async action. While CLOSED every call goes through and
its outcome lands in a bucketed rolling window. When the window's error rate
exceeds the threshold (with enough samples) the breaker OPENs and calls are
short-circuited to the fallback. Once the reset timeout has elapsed the breaker
reports HALF_OPEN on the next state read or call, and a single probe is let
through; its outcome closes or re-opens the breaker.

Only raised exceptions and timeouts count as failures. Whatever the action
returns, including an error envelope, is a success as far as the breaker is
concerned.
"""

import time
import asyncio
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from shared.logging import get_logger


class CircuitBreakerState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, requests blocked
    HALF_OPEN = "half_open"  # Testing if service recovered


@dataclass
class CircuitBreakerOptions:
    """Tuning knobs for a single breaker."""
    timeout: float = 5.0
    error_threshold_percentage: float = 50.0
    reset_timeout: float = 30.0
    rolling_window: float = 10.0
    rolling_buckets: int = 10
    volume_threshold: int = 5


@dataclass(frozen=True)
class StateTransition:
    """Notification delivered to breaker listeners."""
    name: str
    previous: CircuitBreakerState
    current: CircuitBreakerState
    at: float


TransitionListener = Callable[[StateTransition], None]


class RollingWindow:
    """Success/failure counts over the last ``duration`` seconds, in buckets."""

    def __init__(self, duration: float, buckets: int, clock: Callable[[], float] = time.time):
        if duration <= 0 or buckets <= 0:
            raise ValueError("rolling window duration and bucket count must be positive")
        self.duration = duration
        self.buckets = buckets
        self.bucket_width = duration / buckets
        self._clock = clock
        # Each bucket is [index, successes, failures, timeouts]
        self._buckets: Deque[List[int]] = deque()

    def _current_bucket(self) -> List[int]:
        index = int(self._clock() // self.bucket_width)
        self._expire(index)
        if not self._buckets or self._buckets[-1][0] != index:
            self._buckets.append([index, 0, 0, 0])
        return self._buckets[-1]

    def _expire(self, current_index: int) -> None:
        oldest_kept = current_index - self.buckets + 1
        while self._buckets and self._buckets[0][0] < oldest_kept:
            self._buckets.popleft()

    def record_success(self) -> None:
        self._current_bucket()[1] += 1

    def record_failure(self, timeout: bool = False) -> None:
        bucket = self._current_bucket()
        bucket[2] += 1
        if timeout:
            bucket[3] += 1

    def reset(self) -> None:
        self._buckets.clear()

    def snapshot(self) -> Dict[str, Any]:
        """Totals over the live buckets."""
        now = self._clock()
        self._expire(int(now // self.bucket_width))
        successes = sum(bucket[1] for bucket in self._buckets)
        failures = sum(bucket[2] for bucket in self._buckets)
        timeouts = sum(bucket[3] for bucket in self._buckets)
        total = successes + failures
        window_start = (
            self._buckets[0][0] * self.bucket_width if self._buckets else now
        )
        return {
            "successCount": successes,
            "failureCount": failures,
            "timeoutCount": timeouts,
            "totalCount": total,
            "errorPercentage": (failures / total * 100.0) if total else 0.0,
            "windowStart": window_start,
        }


class CircuitBreakerOpenException(Exception):
    """Exception raised when circuit breaker is open and no fallback is set."""
    pass


class CircuitBreaker:
    """Rolling-window circuit breaker around a single async action."""

    def __init__(self,
                 name: str,
                 action: Callable[..., Awaitable[Any]],
                 fallback: Optional[Callable[..., Any]] = None,
                 options: Optional[CircuitBreakerOptions] = None,
                 clock: Callable[[], float] = time.time):
        self.name = name
        self.action = action
        self.fallback = fallback
        self.options = options or CircuitBreakerOptions()
        self.logger = get_logger(f"circuit_breaker.{name}")

        self._clock = clock
        self._window = RollingWindow(self.options.rolling_window, self.options.rolling_buckets, clock)
        self._state = CircuitBreakerState.CLOSED
        self._last_opened_at: Optional[float] = None
        self._probe_in_flight = False
        self._rejected_count = 0
        self._listeners: List[TransitionListener] = []

    @property
    def state(self) -> CircuitBreakerState:
        return self._refresh_state()

    def add_listener(self, listener: TransitionListener) -> Callable[[], None]:
        """Subscribe to state transitions; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _can_attempt_reset(self) -> bool:
        """Check if enough time has passed to attempt a reset."""
        if self._last_opened_at is None:
            return True
        return (self._clock() - self._last_opened_at) >= self.options.reset_timeout

    def _refresh_state(self) -> CircuitBreakerState:
        """Move OPEN to HALF_OPEN once the reset timeout has elapsed."""
        if self._state == CircuitBreakerState.OPEN and self._can_attempt_reset():
            self._transition(CircuitBreakerState.HALF_OPEN)
        return self._state

    def _acquire_permission(self) -> Optional[bool]:
        """Decide whether a call may proceed.

        Returns ``None`` to reject, ``True`` for the half-open probe and
        ``False`` for an ordinary closed-state call.
        """
        state = self._refresh_state()
        if state == CircuitBreakerState.CLOSED:
            return False
        if state == CircuitBreakerState.OPEN or self._probe_in_flight:
            return None
        self._probe_in_flight = True
        return True

    async def invoke(self, *args, **kwargs) -> Any:
        """Execute the action with circuit breaker protection."""
        probe = self._acquire_permission()
        if probe is None:
            self._rejected_count += 1
            self.logger.debug("Call short-circuited", state=self._state.value)
            return self._short_circuit(*args, **kwargs)

        try:
            result = await asyncio.wait_for(self.action(*args, **kwargs), timeout=self.options.timeout)
        except asyncio.TimeoutError:
            self._record_failure(probe, timeout=True)
            self.logger.warning("Call timed out", timeout=self.options.timeout)
            return self._on_failure(*args, **kwargs)
        except Exception as e:
            self._record_failure(probe)
            self.logger.warning("Call failed", error=str(e), error_type=type(e).__name__)
            if self.fallback is None:
                raise
            return self.fallback(*args, **kwargs)
        else:
            self._record_success(probe)
            return result
        finally:
            if probe:
                self._probe_in_flight = False

    def _short_circuit(self, *args, **kwargs) -> Any:
        if self.fallback is None:
            raise CircuitBreakerOpenException(
                f"Circuit breaker '{self.name}' is OPEN - blocking call"
            )
        return self.fallback(*args, **kwargs)

    def _on_failure(self, *args, **kwargs) -> Any:
        if self.fallback is None:
            raise asyncio.TimeoutError(f"Circuit breaker '{self.name}' call timed out")
        return self.fallback(*args, **kwargs)

    def _record_success(self, probe: bool) -> None:
        self._window.record_success()
        if probe:
            self._window.reset()
            self._transition(CircuitBreakerState.CLOSED)

    def _record_failure(self, probe: bool, timeout: bool = False) -> None:
        """Record a failure and update state."""
        self._window.record_failure(timeout=timeout)

        if probe:
            self._open()
            return
        if self._state != CircuitBreakerState.CLOSED:
            return

        stats = self._window.snapshot()
        if (stats["totalCount"] >= self.options.volume_threshold
                and stats["errorPercentage"] > self.options.error_threshold_percentage):
            self._open()

    def _open(self) -> None:
        self._last_opened_at = self._clock()
        self._transition(CircuitBreakerState.OPEN)

    def _transition(self, new_state: CircuitBreakerState) -> None:
        previous = self._state
        if previous == new_state:
            return
        self._state = new_state

        log = self.logger.warning if new_state == CircuitBreakerState.OPEN else self.logger.info
        log("Circuit breaker state changed", previous=previous.value, current=new_state.value)

        transition = StateTransition(self.name, previous, new_state, self._clock())
        for listener in list(self._listeners):
            try:
                listener(transition)
            except Exception:
                self.logger.exception("Circuit breaker listener failed")

    def get_state(self) -> Dict[str, Any]:
        """Get current circuit breaker state."""
        stats = self._window.snapshot()
        stats["rejectCount"] = self._rejected_count
        return {
            "name": self.name,
            "state": self._refresh_state().value,
            "stats": stats,
            "lastOpenedAt": self._last_opened_at,
            "options": {
                "timeout": self.options.timeout,
                "errorThresholdPercentage": self.options.error_threshold_percentage,
                "resetTimeout": self.options.reset_timeout,
                "rollingWindow": self.options.rolling_window,
                "rollingBuckets": self.options.rolling_buckets,
                "volumeThreshold": self.options.volume_threshold,
            },
        }

    def is_open(self) -> bool:
        """Check if circuit breaker is in OPEN state."""
        return self._refresh_state() == CircuitBreakerState.OPEN


class CircuitBreakerManager:
    """Registry of the breakers owned by one service."""

    def __init__(self):
        self.circuit_breakers: Dict[str, CircuitBreaker] = {}
        self.logger = get_logger("circuit_breaker_manager")

    def register(self, breaker: CircuitBreaker) -> CircuitBreaker:
        """Register a breaker under its name."""
        if breaker.name in self.circuit_breakers:
            raise ValueError(f"circuit breaker '{breaker.name}' already registered")
        self.circuit_breakers[breaker.name] = breaker
        self.logger.info("Registered circuit breaker", name=breaker.name)
        return breaker

    def get_circuit_breaker(self, name: str) -> CircuitBreaker:
        return self.circuit_breakers[name]

    def get_all_states(self) -> Dict[str, Dict[str, Any]]:
        """Get states of all circuit breakers."""
        return {
            name: cb.get_state()
            for name, cb in self.circuit_breakers.items()
        }
