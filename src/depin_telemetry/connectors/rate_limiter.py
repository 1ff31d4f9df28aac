"""
Token bucket admission control for one connector instance.

Capacity equals the request quota per window; tokens refill continuously at
capacity / window, so acquire() waits in proportion to the token deficit
instead of polling. Concurrent waiters are not served in FIFO order.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from depin_telemetry.connectors.errors import ConfigError

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitInfo:
    """Read-only view of the bucket for health reporting."""

    remaining: float
    limit: int
    reset_in_s: float  # Time until the bucket is full again


@dataclass
class RateLimiterMetrics:
    """Counters for admission decisions."""

    acquired: int = 0
    delayed: int = 0  # Acquisitions that had to wait
    total_wait_s: float = 0.0
    backoff_hints: int = 0


@dataclass
class RateLimiter:
    """
    Token bucket rate limiter.

    Usage:
        limiter = RateLimiter(capacity=60, window_s=60.0)
        await limiter.acquire()  # Suspends until a token is available
    """

    capacity: int
    window_s: float

    _tokens: float = field(default=0.0, init=False)
    _last_refill: float = field(default=0.0, init=False)
    _blocked_until: float = field(default=0.0, init=False)
    metrics: RateLimiterMetrics = field(default_factory=RateLimiterMetrics, init=False)

    # Optional clock (seconds) for deterministic testing
    _time_fn: Callable[[], float] | None = field(default=None)

    def __post_init__(self) -> None:
        """Validate the policy and start with a full bucket."""
        if self.capacity <= 0:
            raise ConfigError(f"rate limit capacity must be > 0, got {self.capacity}")
        if self.window_s <= 0:
            raise ConfigError(f"rate limit window must be > 0, got {self.window_s}")
        self._tokens = float(self.capacity)
        self._last_refill = self._now()

    def _now(self) -> float:
        if self._time_fn is not None:
            return self._time_fn()
        return time.monotonic()

    @property
    def refill_rate(self) -> float:
        """Tokens added per second."""
        return self.capacity / self.window_s

    def _projected_tokens(self, now: float) -> float:
        elapsed = max(0.0, now - self._last_refill)
        return min(float(self.capacity), self._tokens + elapsed * self.refill_rate)

    def _refill(self, now: float) -> None:
        self._tokens = self._projected_tokens(now)
        self._last_refill = now

    def try_acquire(self) -> bool:
        """Consume a token if one is available right now."""
        now = self._now()
        self._refill(now)
        if now < self._blocked_until or self._tokens < 1.0:
            return False
        self._tokens -= 1.0
        self.metrics.acquired += 1
        return True

    async def acquire(self) -> None:
        """Suspend until a token is available, then consume it. Never raises."""
        waited = 0.0
        while True:
            now = self._now()
            self._refill(now)

            if now < self._blocked_until:
                delay = self._blocked_until - now
            elif self._tokens >= 1.0:
                self._tokens -= 1.0
                self.metrics.acquired += 1
                if waited > 0:
                    self.metrics.delayed += 1
                    self.metrics.total_wait_s += waited
                return
            else:
                delay = (1.0 - self._tokens) / self.refill_rate

            logger.debug("Rate limited, waiting", extra={"delay_s": round(delay, 4)})
            await asyncio.sleep(delay)
            waited += delay

    def apply_backoff_hint(self, delay_s: float) -> None:
        """
        Drain the bucket and hold admissions for delay_s.

        Called when the upstream answers 429; the server's view of our quota
        wins over the local one.
        """
        now = self._now()
        self._refill(now)
        self._tokens = 0.0
        self._blocked_until = max(self._blocked_until, now + max(0.0, delay_s))
        self.metrics.backoff_hints += 1
        logger.info("Rate limiter backoff applied", extra={"delay_s": round(delay_s, 3)})

    def get_info(self) -> RateLimitInfo:
        """Current remaining tokens and capacity. Does not mutate state."""
        now = self._now()
        tokens = self._projected_tokens(now)
        if now < self._blocked_until:
            tokens = 0.0
        reset_in_s = (self.capacity - tokens) / self.refill_rate
        reset_in_s = max(reset_in_s, self._blocked_until - now)
        return RateLimitInfo(
            remaining=round(tokens, 2),
            limit=self.capacity,
            reset_in_s=round(reset_in_s, 3),
        )

    def reset(self) -> None:
        """Reset to a full bucket."""
        self._tokens = float(self.capacity)
        self._last_refill = self._now()
        self._blocked_until = 0.0
        self.metrics = RateLimiterMetrics()
