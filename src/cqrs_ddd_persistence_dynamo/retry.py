"""Bounded re-execution of optimistic read-modify-write cycles."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from .exceptions import ConcurrencyError, ConfigurationError

logger = logging.getLogger("cqrs_ddd.dynamo.retry")

T = TypeVar("T")


@dataclass(frozen=True, kw_only=True)
class RetryPolicy:
    """How often, and how patiently, a conflicting writer tries again.

    ``max_attempts`` counts the first try. The pause before retry *n* is
    ``base_delay * 2**(n-1)`` capped at ``max_delay``; with ``jitter`` it is
    scaled by a random factor in ``[0.5, 1.5]`` so writers contending for
    the same stream do not collide again in lockstep.
    """

    max_attempts: int = 5
    base_delay: float = 0.05
    max_delay: float = 2.0
    jitter: bool = True

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ConfigurationError("base_delay and max_delay must be >= 0")
        if self.base_delay > self.max_delay:
            raise ConfigurationError("base_delay must be <= max_delay")

    @classmethod
    def no_retry(cls) -> RetryPolicy:
        return cls(max_attempts=1, base_delay=0.0, max_delay=0.0, jitter=False)

    def backoff(self, conflicts: int) -> float:
        """Seconds to wait after the *conflicts*-th conflicting attempt."""
        if conflicts < 1:
            return 0.0
        delay = min(self.base_delay * 2 ** (conflicts - 1), self.max_delay)
        if self.jitter:
            delay *= 0.5 + random.random()  # noqa: S311
        return delay


async def retry_on_conflict(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
) -> T:
    """Run *operation* until it succeeds or the policy gives up.

    Only ``ConcurrencyError`` triggers a retry; each attempt must redo the
    whole load-compute-commit cycle. Any other exception propagates
    immediately. When attempts run out the last conflict is re-raised.
    """
    policy = policy or RetryPolicy()
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except ConcurrencyError as exc:
            if attempt == policy.max_attempts:
                logger.warning(
                    "Giving up after %d conflicting attempts: %s", attempt, exc
                )
                raise
            delay = policy.backoff(attempt)
            logger.info(
                "Conflict on attempt %d, retrying in %.3fs: %s", attempt, delay, exc
            )
            if delay > 0:
                await asyncio.sleep(delay)
