"""
Rolling one-minute request counter for the RPC gateway.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class RateWindow:
    """Request count for the current window."""
    count: int
    window_start: float


class RateLimiter:
    """
    Counts requests in a fixed window and denies them above a ceiling.

    The window resets to zero once more than `window_seconds` have passed
    since it started.
    """

    def __init__(
        self,
        ceiling: int = 100_000,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ) -> None:
        """
        Initialize the rate limiter.

        Args:
            ceiling: Maximum number of requests allowed per window
            window_seconds: Length of the window in seconds
            clock: Time source, injectable for tests
        """
        if ceiling <= 0:
            raise ValueError(f"Rate limit ceiling must be positive, got {ceiling}")

        self.ceiling = ceiling
        self.window_seconds = window_seconds
        self._clock = clock
        self.window = RateWindow(count=0, window_start=clock())
        self.denied = 0

    def allow(self) -> bool:
        """
        Consume one request unit.

        Returns:
            False once the count exceeds the ceiling within the current window
        """
        now = self._clock()
        if now - self.window.window_start > self.window_seconds:
            self.window = RateWindow(count=0, window_start=now)

        self.window.count += 1
        if self.window.count > self.ceiling:
            self.denied += 1
            if self.window.count == self.ceiling + 1:
                logger.warning(
                    f"Rate limit of {self.ceiling} requests per "
                    f"{self.window_seconds:.0f}s exceeded"
                )
            return False
        return True

    def get_stats(self) -> dict[str, float]:
        return {
            "count": self.window.count,
            "ceiling": self.ceiling,
            "denied": self.denied,
            "window_age": self._clock() - self.window.window_start,
        }
