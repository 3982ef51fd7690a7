# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Token-bucket pacing for inference calls.

The vision service is billed and throttled per minute, so on top of the
inference pool (which bounds *concurrent* calls) every call takes one token
from a bucket refilled at ``requests_per_minute / 60`` tokens per second.
Burst capacity defaults to 20 % of the per-minute rate (at least one token).

Unlike an admission check that rejects, ``wait()`` suspends the caller until a
token is available. Clock: ``time.monotonic()``.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RateLimitConfig:
    """Immutable configuration for the inference rate limiter."""

    requests_per_minute: int = 50
    burst: int | None = None  # None -> ceil(20% of requests_per_minute)

    def __post_init__(self) -> None:
        if self.requests_per_minute <= 0:
            raise ValueError(f"requests_per_minute must be > 0, got {self.requests_per_minute}")
        if self.burst is not None and self.burst <= 0:
            raise ValueError(f"burst must be > 0, got {self.burst}")

    @property
    def capacity(self) -> int:
        if self.burst is not None:
            return self.burst
        return max(1, math.ceil(self.requests_per_minute * 0.2))

    @property
    def refill_rate(self) -> float:
        """Tokens per second."""
        return self.requests_per_minute / 60.0


class _TokenBucket:
    """Simple token bucket with lazy refill."""

    __slots__ = ("_capacity", "_refill_rate", "_tokens", "_last_refill")

    def __init__(self, capacity: int, refill_rate: float) -> None:
        self._capacity = capacity
        self._refill_rate = refill_rate
        self._tokens = float(capacity)
        self._last_refill = time.monotonic()

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(self._capacity, self._tokens + elapsed * self._refill_rate)
            self._last_refill = now

    def try_consume(self, cost: int = 1) -> bool:
        """Attempt to consume *cost* tokens. Returns True if allowed."""
        self._refill()
        if self._tokens >= cost:
            self._tokens -= cost
            return True
        return False

    def seconds_until(self, cost: int = 1) -> float:
        """Seconds until *cost* tokens are available (0.0 if already)."""
        self._refill()
        deficit = cost - self._tokens
        if deficit <= 0:
            return 0.0
        return deficit / self._refill_rate

    @property
    def remaining(self) -> int:
        self._refill()
        return int(self._tokens)

    @property
    def capacity(self) -> int:
        return self._capacity


class RateLimiter:
    """Async token-bucket limiter shared by every inference call of a run.

    Usage::

        limiter = RateLimiter(RateLimitConfig(requests_per_minute=50))
        await limiter.wait()
        raw = await service.infer(image, prompt)
    """

    def __init__(self, config: RateLimitConfig | None = None) -> None:
        self._config = config or RateLimitConfig()
        self._bucket = _TokenBucket(self._config.capacity, self._config.refill_rate)
        self._lock = asyncio.Lock()
        self._total_wait_seconds = 0.0

    async def wait(self) -> float:
        """Block until one token is taken. Returns seconds spent waiting."""
        waited = 0.0
        # Lock keeps token grants in FIFO order of callers.
        async with self._lock:
            while not self._bucket.try_consume():
                delay = self._bucket.seconds_until()
                waited += delay
                await asyncio.sleep(delay)
        if waited > 0:
            self._total_wait_seconds += waited
            logger.debug("Inference rate limit: waited %.2fs", waited)
        return waited

    @property
    def remaining(self) -> int:
        return self._bucket.remaining

    @property
    def total_wait_seconds(self) -> float:
        return self._total_wait_seconds
