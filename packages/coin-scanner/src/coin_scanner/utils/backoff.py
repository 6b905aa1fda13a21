"""
Exponential backoff policy shared by scan-level and metadata-fetch retries.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Retry schedule with exponentially growing delays.

    Attributes:
        max_attempts: Total number of attempts, including the first one
        base_delay: Delay in seconds after the first failed attempt
        multiplier: Growth factor applied per failed attempt
        max_delay: Upper bound for a single delay
        sleep: Awaitable sleep function, injectable for tests
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 60.0
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, compare=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.base_delay < 0:
            raise ValueError(f"base_delay must be non-negative, got {self.base_delay}")
        if self.multiplier < 1:
            raise ValueError(f"multiplier must be at least 1, got {self.multiplier}")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        if attempt < 1:
            raise ValueError(f"attempt is 1-based, got {attempt}")
        return min(self.base_delay * self.multiplier ** (attempt - 1), self.max_delay)

    def delays(self) -> list[float]:
        """Full delay schedule, one entry per attempt."""
        return [self.delay_for(attempt) for attempt in range(1, self.max_attempts + 1)]

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        retry_on: tuple[type[BaseException], ...] = (Exception,),
        on_retry: Callable[[int, float, BaseException], None] | None = None
    ) -> T:
        """
        Await operation() until it succeeds or attempts are exhausted.

        Args:
            operation: Zero-argument coroutine factory
            retry_on: Exception types that trigger a retry
            on_retry: Called with (attempt, delay, error) before each sleep

        Returns:
            The first successful result

        Raises:
            The last error once max_attempts have failed
        """
        attempt = 1
        while True:
            try:
                return await operation()
            except retry_on as e:
                if attempt >= self.max_attempts:
                    logger.debug(f"Giving up after {attempt} attempts: {e}")
                    raise

                delay = self.delay_for(attempt)
                if on_retry is not None:
                    on_retry(attempt, delay, e)
                await self.sleep(delay)
                attempt += 1
