"""Polling feed sources.

A feed source owns one asyncio task that repeatedly polls a provider adapter,
emits the items it produces and sleeps for the delay its backoff policy
computes. Every failure is contained inside the task.
"""

import asyncio
import contextlib
import logging
import time
from datetime import datetime
from enum import Enum
from typing import Callable, List, Mapping, Optional

from typing_extensions import Protocol

from feed_processor.collector.backoff import (
    BackoffPolicy,
    ConsecutiveErrorTracker,
    PollOutcome,
    classify_parse_failure,
)
from feed_processor.collector.http_client import FeedHttpClient, RequestSpec
from feed_processor.collector.rate_limiter import RateLimiter
from feed_processor.config import BackoffConfig
from feed_processor.exceptions import FeedError
from feed_processor.models.enums import SourceType
from feed_processor.models.feed_item import FeedItem

logger = logging.getLogger(__name__)


class SourceState(str, Enum):
    STOPPED = "stopped"
    SCHEDULED = "scheduled"
    POLLING = "polling"
    BACKOFF = "backoff"


class ProviderAdapter(Protocol):
    """Provider-specific half of a polling feed source.

    Adapters may also define ``async fetch(client, rate_limiter) -> str`` when
    one poll needs more than a single request.
    """

    source_type: SourceType
    name: str
    min_poll_interval: float
    cooldowns: Mapping[int, float]

    def build_query(self) -> RequestSpec:
        ...

    def process_response(self, payload: str) -> List[FeedItem]:
        ...

    def retry_time(self, outcome: PollOutcome) -> Optional[float]:
        """Override the computed delay, or return None to keep it."""
        ...

    def is_up(self, outcome: PollOutcome) -> bool:
        ...


ItemsCallback = Callable[["SourceRuntime", List[FeedItem]], None]
HealthCallback = Callable[["SourceRuntime", bool], None]


class SourceRuntime:
    """Lifecycle shared by polling and streaming sources."""

    def __init__(
        self,
        name: str,
        source_type: SourceType,
        client: FeedHttpClient,
        min_date: datetime,
        backoff_config: BackoffConfig,
        on_items: Optional[ItemsCallback] = None,
        on_health: Optional[HealthCallback] = None,
        rate_limiter: Optional[RateLimiter] = None,
        prometheus_exporter=None,
    ):
        self.name = name
        self.source_type = source_type
        self.client = client
        self.min_date = min_date
        self.backoff_config = backoff_config
        self.rate_limiter = rate_limiter
        self.prometheus_exporter = prometheus_exporter
        self.state = SourceState.STOPPED
        self.next_poll_at: Optional[float] = None
        self.tracker = ConsecutiveErrorTracker(name, backoff_config.failure_threshold, prometheus_exporter)
        self._on_items = on_items
        self._on_health = on_health
        self._task: Optional[asyncio.Task] = None
        self._disposed = False

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def start(self, initial_delay: float = 0.0) -> None:
        """
        Start the source's task on the running event loop.

        Args:
            initial_delay: Seconds to wait before the first attempt
        """
        if self._disposed:
            raise RuntimeError(f"{self.name}: cannot start a disposed source")
        if self.is_running:
            return
        logger.info(f"Starting feed {self.name}")
        self._task = asyncio.create_task(self._run(initial_delay), name=f"feed:{self.name}")

    async def stop(self) -> None:
        """Cancel the task, aborting any in-flight request, and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        if not task.done():
            task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        self.state = SourceState.STOPPED
        self.next_poll_at = None
        logger.info(f"Stopped feed {self.name}")

    def dispose(self) -> None:
        """Release subscriptions; safe to call more than once."""
        if self._disposed:
            return
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self._on_items = None
        self._on_health = None
        self._disposed = True
        self.state = SourceState.STOPPED

    async def _run(self, initial_delay: float) -> None:
        raise NotImplementedError

    def _filter_fresh(self, items: List[FeedItem]) -> List[FeedItem]:
        fresh = [item for item in items if item.date >= self.min_date]
        if len(fresh) < len(items):
            logger.debug(f"{self.name}: dropped {len(items) - len(fresh)} items older than {self.min_date}")
        return fresh

    def _emit(self, items: List[FeedItem]) -> None:
        if not items or self._on_items is None:
            return
        try:
            self._on_items(self, items)
        except Exception:
            logger.exception(f"{self.name}: item subscriber failed")

    def _report(self, outcome: PollOutcome, is_up: bool) -> None:
        if outcome.success:
            self.tracker.record_success()
        else:
            self.tracker.record_error(outcome.error_type)
            if self.prometheus_exporter:
                self.prometheus_exporter.record_poll_error(self.source_type.value, outcome.error_type)

        if self.prometheus_exporter:
            self.prometheus_exporter.set_source_up(self.name, is_up)

        if self._on_health is None:
            return
        try:
            self._on_health(self, is_up)
        except Exception:
            logger.exception(f"{self.name}: health subscriber failed")


class FeedSource(SourceRuntime):
    """Timer-driven source: poll, compute delay, sleep, repeat."""

    def __init__(
        self,
        adapter: ProviderAdapter,
        client: FeedHttpClient,
        poll_interval: float,
        min_date: datetime,
        backoff_config: BackoffConfig,
        on_items: Optional[ItemsCallback] = None,
        on_health: Optional[HealthCallback] = None,
        rate_limiter: Optional[RateLimiter] = None,
        prometheus_exporter=None,
    ):
        """
        Initialize the feed source.

        Args:
            adapter: Provider adapter that builds requests and parses responses
            client: Shared HTTP client
            poll_interval: Steady-state interval, raised to the adapter's minimum
            min_date: Items older than this are dropped
            backoff_config: Failure escalation settings
            on_items: Called with each batch of new items
            on_health: Called after every attempt with the up/down flag
            rate_limiter: Optional limiter shared by the provider's sources
            prometheus_exporter: Optional Prometheus exporter for metrics
        """
        super().__init__(
            adapter.name,
            adapter.source_type,
            client,
            min_date,
            backoff_config,
            on_items=on_items,
            on_health=on_health,
            rate_limiter=rate_limiter,
            prometheus_exporter=prometheus_exporter,
        )
        self.adapter = adapter
        self.poll_interval = max(poll_interval, adapter.min_poll_interval)
        self.policy = BackoffPolicy(backoff_config, self.poll_interval, adapter.cooldowns)

    async def _run(self, initial_delay: float) -> None:
        delay = initial_delay
        try:
            while True:
                if delay > 0:
                    self.next_poll_at = time.time() + delay
                    await asyncio.sleep(delay)
                outcome = await self.poll_once()
                delay = self.retry_delay(outcome)
                self.state = SourceState.SCHEDULED if outcome.success else SourceState.BACKOFF
                logger.debug(f"{self.name}: next poll in {delay:.2f}s ({self.state.value})")
        finally:
            self.state = SourceState.STOPPED
            self.next_poll_at = None

    async def poll_once(self) -> PollOutcome:
        """
        Run one poll cycle: fetch, parse, emit and report health.

        Returns:
            Outcome used for the next delay
        """
        self.state = SourceState.POLLING
        try:
            payload = await self._fetch()
            items = self.adapter.process_response(payload)
        except FeedError as e:
            logger.warning(f"{self.name}: poll failed: {e}")
            outcome = PollOutcome.failed(e)
        except Exception as e:
            logger.exception(f"{self.name}: could not process response")
            outcome = PollOutcome.failed(classify_parse_failure(e))
        else:
            fresh = self._filter_fresh(items)
            outcome = PollOutcome.ok(len(fresh))
            if fresh:
                logger.debug(f"{self.name}: {len(fresh)} new items")
                self._emit(fresh)

        self._report(outcome, self.adapter.is_up(outcome))
        return outcome

    def retry_delay(self, outcome: PollOutcome) -> float:
        delay = self.policy.next_delay(outcome)
        override = self.adapter.retry_time(outcome)
        if override is not None:
            delay = override
        if not outcome.success:
            logger.info(f"{self.name}: retrying in {delay:.2f}s after {outcome.error_type}")
        return delay

    async def _fetch(self) -> str:
        custom_fetch = getattr(self.adapter, "fetch", None)
        if custom_fetch is not None:
            return await custom_fetch(self.client, self.rate_limiter)
        return await self.client.fetch(self.adapter.build_query(), self.rate_limiter)
