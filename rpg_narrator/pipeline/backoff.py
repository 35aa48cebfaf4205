"""Delay strategies between generation attempts.

A strategy maps the number of the retry about to happen (1 for the first
retry) to a delay in seconds. The orchestrator retries immediately unless a
strategy returns a positive delay.
"""

from __future__ import annotations

import random
from collections.abc import Callable

BackoffStrategy = Callable[[int], float]


def no_backoff(retry: int) -> float:
    return 0.0


def linear_backoff(base: float = 1.0) -> BackoffStrategy:
    """base, 2*base, 3*base, ..."""

    def strategy(retry: int) -> float:
        return base * retry

    return strategy


def exponential_backoff(
    base: float = 1.0,
    cap: float = 30.0,
    jitter: bool = True,
    rng: random.Random | None = None,
) -> BackoffStrategy:
    """base * 2**(retry-1), capped; with jitter the delay is drawn from [0, that]."""
    rng = rng or random.Random()

    def strategy(retry: int) -> float:
        delay = min(cap, base * 2 ** (retry - 1))
        return rng.uniform(0, delay) if jitter else delay

    return strategy


def from_name(name: str, base: float = 1.0) -> BackoffStrategy:
    """Resolve a configured strategy name ("none", "linear", "exponential")."""
    if name == "none":
        return no_backoff
    if name == "linear":
        return linear_backoff(base)
    if name == "exponential":
        return exponential_backoff(base)
    raise ValueError(f"Unknown backoff strategy {name!r}")
