"""
Bounded retry with exponential backoff.

The executor classifies every failure. Non-retryable kinds abort at once;
retryable kinds are attempted until the policy's attempt budget is spent,
after which the last typed error is raised to the caller.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, NoReturn, TypeVar

from depin_telemetry.connectors.errors import (
    RETRYABLE_KINDS,
    ConfigError,
    ConnectorError,
    ErrorKind,
    classify_error,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget and backoff shape."""

    max_attempts: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    multiplier: float = 2.0
    jitter_factor: float = 0.0  # 0.5 = ±50% jitter
    retryable_kinds: frozenset[ErrorKind] = RETRYABLE_KINDS

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay_ms < 0:
            raise ConfigError(f"base_delay_ms must be >= 0, got {self.base_delay_ms}")
        if self.max_delay_ms < self.base_delay_ms:
            raise ConfigError("max_delay_ms must be >= base_delay_ms")
        if self.multiplier < 1.0:
            raise ConfigError(f"multiplier must be >= 1.0, got {self.multiplier}")
        if not 0.0 <= self.jitter_factor < 1.0:
            raise ConfigError(f"jitter_factor must be in [0, 1), got {self.jitter_factor}")

    def is_retryable(self, error: ConnectorError) -> bool:
        return error.retryable and error.kind in self.retryable_kinds

    def waits_too_long(self, error: ConnectorError) -> bool:
        """True when the server asks for a longer pause than max_delay_ms allows."""
        return error.retry_after_ms is not None and error.retry_after_ms > self.max_delay_ms

    def should_retry(self, error: ConnectorError, attempt: int) -> bool:
        """Whether a failure on this attempt leads to another attempt."""
        return (
            self.is_retryable(error)
            and attempt < self.max_attempts
            and not self.waits_too_long(error)
        )


def compute_backoff_delay(
    policy: RetryPolicy,
    attempt: int,
    retry_after_ms: int | None = None,
    *,
    rng: random.Random | None = None,
) -> int:
    """
    Compute the wait after a failed attempt.

    Args:
        policy: Retry policy.
        attempt: Number of the attempt that just failed (1-based).
        retry_after_ms: Server-provided retry delay (Retry-After header).
        rng: Optional seeded Random instance for deterministic jitter.

    Returns:
        Delay in milliseconds: base * multiplier^(attempt-1), jittered,
        capped at max_delay_ms. Retry-After raises the delay, up to the
        same cap.
    """
    if attempt <= 0:
        return 0

    delay = policy.base_delay_ms * (policy.multiplier ** (attempt - 1))

    if policy.jitter_factor > 0:
        jitter_min = 1.0 - policy.jitter_factor
        jitter_max = 1.0 + policy.jitter_factor
        if rng is not None:
            delay *= rng.uniform(jitter_min, jitter_max)
        else:
            delay *= random.uniform(jitter_min, jitter_max)

    delay = min(delay, policy.max_delay_ms)

    if retry_after_ms is not None and retry_after_ms > 0:
        delay = max(delay, min(retry_after_ms, policy.max_delay_ms))

    return int(delay)


@dataclass
class RetryMetrics:
    """Counters for retry activity."""

    attempts: int = 0
    retries: int = 0
    exhausted: int = 0
    aborted: int = 0  # Non-retryable failures


@dataclass
class RetryExecutor:
    """
    Run an async operation under a RetryPolicy.

    Usage:
        executor = RetryExecutor()
        payload = await executor.execute(lambda: transport.request(call), policy)
    """

    classifier: Callable[[BaseException], ConnectorError] = classify_error
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    rng: random.Random | None = None
    metrics: RetryMetrics = field(default_factory=RetryMetrics)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy,
        *,
        on_error: Callable[[ConnectorError, int], None] | None = None,
    ) -> T:
        """
        Invoke operation up to policy.max_attempts times.

        Args:
            operation: Zero-argument coroutine factory; called once per attempt.
            policy: Retry policy.
            on_error: Called with (classified error, attempt) after each failure.

        Returns:
            The operation's result.

        Raises:
            ConnectorError: The classified error of the final failed attempt.
        """
        for attempt in range(1, policy.max_attempts + 1):
            self.metrics.attempts += 1
            try:
                return await operation()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                error = self.classifier(exc)
                if on_error is not None:
                    on_error(error, attempt)

                if not policy.is_retryable(error):
                    self.metrics.aborted += 1
                    logger.debug(
                        "Non-retryable failure",
                        extra={"kind": error.kind.value, "attempt": attempt},
                    )
                    _reraise(error, exc)

                if attempt >= policy.max_attempts:
                    self.metrics.exhausted += 1
                    logger.info(
                        "Retries exhausted",
                        extra={"kind": error.kind.value, "attempts": attempt},
                    )
                    _reraise(error, exc)

                if policy.waits_too_long(error):
                    # Pause longer than the policy allows; let the next tier answer
                    self.metrics.exhausted += 1
                    logger.info(
                        "Retry-After exceeds max delay, giving up",
                        extra={
                            "kind": error.kind.value,
                            "retry_after_ms": error.retry_after_ms,
                            "max_delay_ms": policy.max_delay_ms,
                        },
                    )
                    _reraise(error, exc)

                delay_ms = compute_backoff_delay(
                    policy, attempt, error.retry_after_ms, rng=self.rng
                )
                self.metrics.retries += 1
                logger.debug(
                    "Retrying after failure",
                    extra={"kind": error.kind.value, "attempt": attempt, "delay_ms": delay_ms},
                )
                await self.sleep(delay_ms / 1000)

        # max_attempts >= 1 is enforced by RetryPolicy
        raise AssertionError("unreachable")


def _reraise(error: ConnectorError, original: BaseException) -> NoReturn:
    if error is original:
        raise error
    raise error from original
