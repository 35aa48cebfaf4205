"""In-memory fixed-window rate limiter for outbound generation requests.

Requests are counted per identifier (usually the client IP) inside a window
that starts with the first request and lasts `window_ms`. The counter resets
only when a new request arrives after the window has expired; it does not
roll.

Two profiles exist:

    lenient  — 500 requests / 10 minutes (development, tests)
    strict   — 50 requests / 1 hour      (production)

They differ in configuration only; the algorithm is the same.
"""

from __future__ import annotations

import logging
import math
import random
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

LENIENT_MAX_REQUESTS = 500
LENIENT_WINDOW_MS = 10 * 60 * 1000
STRICT_MAX_REQUESTS = 50
STRICT_WINDOW_MS = 60 * 60 * 1000

SWEEP_PROBABILITY = 0.1

_LENIENT_ENVIRONMENTS = {"development", "dev", "test", "testing"}


def now_ms() -> float:
    return time.time() * 1000


@dataclass
class _Window:
    count: int
    window_start: float


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_time: float  # epoch milliseconds


class RateLimiter:
    """Fixed-window admission control keyed by identifier.

    Args:
        max_requests:      Requests allowed per window. Must be positive.
        window_ms:         Window length in milliseconds. Must be positive.
        clock:             Returns the current time in epoch milliseconds.
        rng:               Source of randomness for the opportunistic sweep.
        sweep_probability: Chance that a check also drops expired windows.
    """

    def __init__(
        self,
        max_requests: int = STRICT_MAX_REQUESTS,
        window_ms: float = STRICT_WINDOW_MS,
        *,
        clock: Callable[[], float] = now_ms,
        rng: random.Random | None = None,
        sweep_probability: float = SWEEP_PROBABILITY,
    ) -> None:
        if max_requests <= 0:
            raise ValueError(f"max_requests must be positive, got {max_requests}")
        if window_ms <= 0:
            raise ValueError(f"window_ms must be positive, got {window_ms}")
        self.max_requests = max_requests
        self.window_ms = window_ms
        self._clock = clock
        self._rng = rng or random.Random()
        self._sweep_probability = sweep_probability
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()

    @classmethod
    def lenient(cls, **kwargs) -> RateLimiter:
        return cls(LENIENT_MAX_REQUESTS, LENIENT_WINDOW_MS, **kwargs)

    @classmethod
    def strict(cls, **kwargs) -> RateLimiter:
        return cls(STRICT_MAX_REQUESTS, STRICT_WINDOW_MS, **kwargs)

    @classmethod
    def for_environment(
        cls,
        environment: str,
        max_requests: int | None = None,
        window_ms: float | None = None,
        **kwargs,
    ) -> RateLimiter:
        """Pick the profile for `environment`; explicit values override it."""
        if environment.lower() in _LENIENT_ENVIRONMENTS:
            default_max, default_window = LENIENT_MAX_REQUESTS, LENIENT_WINDOW_MS
        else:
            default_max, default_window = STRICT_MAX_REQUESTS, STRICT_WINDOW_MS
        return cls(
            max_requests if max_requests is not None else default_max,
            window_ms if window_ms is not None else default_window,
            **kwargs,
        )

    def check_limit(self, identifier: str) -> RateLimitResult:
        """Count one request for `identifier` and report whether it is allowed."""
        now = self._clock()
        with self._lock:
            self._maybe_sweep(now)
            window = self._windows.get(identifier)

            if window is None or now - window.window_start > self.window_ms:
                self._windows[identifier] = _Window(count=1, window_start=now)
                return RateLimitResult(True, self.max_requests - 1, now + self.window_ms)

            reset_time = window.window_start + self.window_ms
            if window.count >= self.max_requests:
                logger.info("rate limit exceeded for %s", identifier)
                return RateLimitResult(False, 0, reset_time)

            window.count += 1
            return RateLimitResult(True, self.max_requests - window.count, reset_time)

    def reset(self, identifier: str) -> None:
        with self._lock:
            self._windows.pop(identifier, None)

    def tracked(self) -> int:
        """Number of identifiers currently holding a window."""
        with self._lock:
            return len(self._windows)

    def _maybe_sweep(self, now: float) -> None:
        # Caller holds the lock.
        if self._rng.random() >= self._sweep_probability:
            return
        expired = [
            key for key, w in self._windows.items()
            if now - w.window_start > self.window_ms
        ]
        for key in expired:
            del self._windows[key]
        if expired:
            logger.debug("rate limiter swept %d expired windows", len(expired))


def get_error_message(reset_time: float, now: float | None = None) -> str:
    """Friendly "try again" text for a denied request."""
    if now is None:
        now = now_ms()
    minutes = math.ceil((reset_time - now) / 60_000)

    if minutes <= 1:
        return "Rate limit exceeded. Please try again in a minute."
    if minutes <= 60:
        return f"Rate limit exceeded. Please try again in {minutes} minutes."
    hours = math.ceil(minutes / 60)
    return f"Rate limit exceeded. Please try again in {hours} hours."
