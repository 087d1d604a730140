"""Retry delay computation and failure tracking for feed sources."""

import logging
from dataclasses import dataclass
from typing import Mapping, Optional

from feed_processor.config import BackoffConfig
from feed_processor.exceptions import FeedError, ParseError, ProtocolError, TransportError

logger = logging.getLogger(__name__)

# Status codes for which a Retry-After header replaces the cooldown table
RETRY_AFTER_STATUSES = (429, 503)


@dataclass
class PollOutcome:
    """Result of a single poll attempt."""

    success: bool
    error: Optional[FeedError] = None
    item_count: int = 0

    @classmethod
    def ok(cls, item_count: int = 0) -> "PollOutcome":
        return cls(success=True, item_count=item_count)

    @classmethod
    def failed(cls, error: FeedError) -> "PollOutcome":
        return cls(success=False, error=error)

    @property
    def status(self) -> Optional[int]:
        if isinstance(self.error, ProtocolError):
            return self.error.status
        return None

    @property
    def error_type(self) -> str:
        if self.error is None:
            return "none"
        if isinstance(self.error, ProtocolError) and self.error.status:
            return str(self.error.status)
        return type(self.error).__name__


class BackoffPolicy:
    """
    Computes the delay before the next poll of one source.

    Protocol and parse failures escalate exponentially, transport failures
    escalate linearly, and well-known status codes map to fixed cooldowns.
    Any success resets both escalations to their floors.
    """

    def __init__(
        self,
        config: BackoffConfig,
        poll_interval: float,
        cooldowns: Optional[Mapping[int, float]] = None,
    ):
        """
        Initialize the backoff policy.

        Args:
            config: Escalation floors, steps and ceilings
            poll_interval: Steady-state delay after a successful poll
            cooldowns: Fixed delays in seconds keyed by HTTP status code
        """
        self.config = config
        self.poll_interval = poll_interval
        self.cooldowns = dict(cooldowns or {})
        self._exponential_delay = config.exponential_floor_sec
        self._linear_delay = config.linear_floor_sec

    def reset(self) -> None:
        self._exponential_delay = self.config.exponential_floor_sec
        self._linear_delay = self.config.linear_floor_sec

    def next_delay(self, outcome: PollOutcome) -> float:
        """
        Compute the delay until the next attempt.

        Args:
            outcome: Outcome of the attempt that just finished

        Returns:
            Delay in seconds
        """
        if outcome.success:
            self.reset()
            return self.poll_interval

        error = outcome.error
        if isinstance(error, ProtocolError):
            if error.retry_after and error.status in RETRY_AFTER_STATUSES:
                return min(float(error.retry_after), self.config.retry_after_ceiling_sec)
            if error.status in self.cooldowns:
                return self.cooldowns[error.status]
            return self._escalate_exponential()

        if isinstance(error, TransportError):
            return self._escalate_linear()

        # ParseError and anything unexpected is a failed cycle like a protocol failure
        return self._escalate_exponential()

    def _escalate_exponential(self) -> float:
        delay = self._exponential_delay
        self._exponential_delay = min(
            self._exponential_delay * self.config.exponential_factor,
            self.config.exponential_ceiling_sec,
        )
        return min(delay, self.config.exponential_ceiling_sec)

    def _escalate_linear(self) -> float:
        delay = self._linear_delay
        self._linear_delay = min(
            self._linear_delay + self.config.linear_step_sec,
            self.config.linear_ceiling_sec,
        )
        return min(delay, self.config.linear_ceiling_sec)


class ConsecutiveErrorTracker:
    """Tracker for consecutive poll failures of one source."""

    def __init__(self, name: str, threshold: int, prometheus_exporter=None):
        """
        Initialize the error tracker.

        Args:
            name: Source name used in logs and metric labels
            threshold: Consecutive failures after which the source counts as degraded
            prometheus_exporter: Optional Prometheus exporter for metrics
        """
        self.name = name
        self.threshold = threshold
        self.consecutive_errors = 0
        self.prometheus_exporter = prometheus_exporter

    def record_error(self, error_type: str = "error") -> None:
        """Record a failed poll and increment the counter."""
        self.consecutive_errors += 1
        if self.consecutive_errors == self.threshold:
            logger.error(f"{self.name}: {self.consecutive_errors} consecutive failures, source degraded")
        else:
            logger.debug(f"{self.name}: consecutive errors {self.consecutive_errors}/{self.threshold}")

        if self.prometheus_exporter:
            self.prometheus_exporter.set_consecutive_errors(self.name, self.consecutive_errors)

    def record_success(self) -> None:
        """Record a successful poll, resetting the consecutive error count."""
        if self.consecutive_errors > 0:
            logger.info(f"{self.name}: recovered after {self.consecutive_errors} consecutive failures")
            self.consecutive_errors = 0

            if self.prometheus_exporter:
                self.prometheus_exporter.set_consecutive_errors(self.name, 0)

    def is_degraded(self) -> bool:
        return self.consecutive_errors >= self.threshold


def classify_parse_failure(exc: Exception) -> FeedError:
    """Wrap an arbitrary parsing exception as a ParseError."""
    if isinstance(exc, FeedError):
        return exc
    error = ParseError(f"{type(exc).__name__}: {exc}")
    error.__cause__ = exc
    return error
