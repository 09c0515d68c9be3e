"""Bounded retry with classified-failure fallback for external providers."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

from .errors import ProviderError, TransientProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Retry budget applied to transient provider failures."""

    retries: int = 2
    backoff_seconds: float = 2.0

    @property
    def max_attempts(self) -> int:
        return self.retries + 1


@dataclass(slots=True)
class ProviderOutcome(Generic[T]):
    """Value produced by a provider call or its fallback."""

    value: T
    attempts: int
    error: ProviderError | None = None

    @property
    def degraded(self) -> bool:
        return self.error is not None


def call_with_retry(
    operation: Callable[[], T],
    policy: RetryPolicy,
    *,
    provider: str,
    sleep: Callable[[float], None] = time.sleep,
) -> tuple[T, int]:
    """Run ``operation`` retrying only :class:`TransientProviderError`.

    Returns the value and the number of attempts used. Non-transient provider
    errors propagate on the first occurrence; the last transient error
    propagates once the budget is spent.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return operation(), attempt
        except ProviderError as exc:
            exc.attempts = attempt
            if not isinstance(exc, TransientProviderError) or attempt >= policy.max_attempts:
                raise
            logger.warning(
                "%s attempt %d/%d failed, retrying in %.1fs: %s",
                provider,
                attempt,
                policy.max_attempts,
                policy.backoff_seconds,
                exc,
            )
            sleep(policy.backoff_seconds)


def call_with_fallback(
    operation: Callable[[], T],
    fallback: Callable[[ProviderError], T],
    policy: RetryPolicy,
    *,
    provider: str,
    sleep: Callable[[float], None] = time.sleep,
) -> ProviderOutcome[T]:
    """Call ``operation`` under ``policy`` and degrade to ``fallback`` on any provider error."""
    try:
        value, attempts = call_with_retry(operation, policy, provider=provider, sleep=sleep)
    except ProviderError as exc:
        logger.info("%s degraded to fallback after %d attempt(s): %s", provider, exc.attempts, exc)
        return ProviderOutcome(value=fallback(exc), attempts=exc.attempts, error=exc)
    return ProviderOutcome(value=value, attempts=attempts)
