"""Per-provider request pacing."""

import asyncio
import logging
import math
import time
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Rate limiter shared by every feed source of one provider.

    Enforces a minimum spacing between requests, watches X-RateLimit headers
    and honours provider-imposed cooldowns so that sibling feeds back off too.
    """

    def __init__(
        self,
        name: str,
        min_interval: float,
        min_remaining_calls: int = 1,
        sleep_buffer_sec: float = 1.0,
        max_cooldown_sec: float = 900.0,
    ):
        """
        Initialize the rate limiter.

        Args:
            name: Provider name used in logs
            min_interval: Minimum seconds between two requests
            min_remaining_calls: Wait for the window reset below this many remaining calls
            sleep_buffer_sec: Extra seconds added to every header-derived wait
            max_cooldown_sec: Longest cooldown `block_for` will impose
        """
        self.name = name
        self.min_interval = min_interval
        self.min_remaining_calls = min_remaining_calls
        self.sleep_buffer_sec = sleep_buffer_sec
        self.max_cooldown_sec = max_cooldown_sec
        self.remaining_calls: Optional[int] = None
        self.reset_timestamp: Optional[float] = None
        self.blocked_until = 0.0
        self.last_request_time = 0.0
        self._lock = asyncio.Lock()

    async def pre_request(self) -> None:
        """
        Sleep as needed before issuing a request.

        This should be called before each provider request.
        """
        async with self._lock:
            now = time.time()
            wait_time = max(
                self.last_request_time + self.min_interval - now,
                self.blocked_until - now,
                0.0,
            )

            if (self.remaining_calls is not None and
                    self.reset_timestamp is not None and
                    self.remaining_calls < self.min_remaining_calls):
                reset_wait = self.reset_timestamp - now + self.sleep_buffer_sec
                if reset_wait > wait_time:
                    logger.info(f"{self.name}: {self.remaining_calls} calls remaining, "
                                f"sleeping {reset_wait:.2f}s until reset")
                    wait_time = reset_wait
                self.remaining_calls = None
                self.reset_timestamp = None

            if wait_time > 0:
                await asyncio.sleep(wait_time)
            self.last_request_time = time.time()

    def update_from_headers(self, headers: Mapping[str, Any]) -> None:
        """
        Update rate limit tracking from response headers.

        Args:
            headers: Response headers (case-insensitive mapping or lower-cased dict)
        """
        remaining = _header(headers, "x-ratelimit-remaining")
        if remaining is not None:
            try:
                self.remaining_calls = int(float(remaining))
            except (ValueError, TypeError):
                logger.warning(f"{self.name}: failed to parse x-ratelimit-remaining header")

        reset = _header(headers, "x-ratelimit-reset")
        if reset is not None:
            try:
                reset_value = float(reset)
                # Some providers send an epoch timestamp, others seconds until reset
                if reset_value > 10 ** 9:
                    self.reset_timestamp = reset_value
                else:
                    self.reset_timestamp = time.time() + reset_value
            except (ValueError, TypeError):
                logger.warning(f"{self.name}: failed to parse x-ratelimit-reset header")

    def block_for(self, seconds: float) -> None:
        """
        Hold back every request of this provider for a cooldown window.

        Args:
            seconds: Cooldown length, clamped to `max_cooldown_sec`
        """
        seconds = min(seconds, self.max_cooldown_sec)
        until = time.time() + seconds
        if until > self.blocked_until:
            self.blocked_until = until
            logger.warning(f"{self.name}: provider cooldown for {seconds:.2f}s")


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given in seconds."""
    if not value:
        return None
    try:
        seconds = float(value)
    except (ValueError, TypeError):
        return None
    if not math.isfinite(seconds) or seconds < 0:
        return None
    return seconds


def _header(headers: Mapping[str, Any], name: str) -> Optional[Any]:
    value = headers.get(name)
    if value is None:
        value = headers.get(name.title())
    return value
