"""Long-lived streaming feed source."""

import asyncio
import contextlib
import logging
import time
from datetime import datetime
from typing import Optional

from typing_extensions import Protocol

from feed_processor.collector.backoff import BackoffPolicy, PollOutcome, classify_parse_failure
from feed_processor.collector.feed_source import (
    HealthCallback,
    ItemsCallback,
    SourceRuntime,
    SourceState,
)
from feed_processor.collector.http_client import FeedHttpClient, RequestSpec
from feed_processor.collector.rate_limiter import RateLimiter
from feed_processor.config import BackoffConfig
from feed_processor.exceptions import FeedError
from feed_processor.models.enums import SourceType
from feed_processor.models.feed_item import FeedItem

logger = logging.getLogger(__name__)


class StreamAdapter(Protocol):
    """Provider-specific half of a streaming source."""

    source_type: SourceType
    name: str

    def build_stream_request(self) -> RequestSpec:
        ...

    def parse_message(self, line: str) -> Optional[FeedItem]:
        """Parse one message; None for keep-alives and control messages."""
        ...


class StreamingFeedSource(SourceRuntime):
    """
    Holds one persistent connection and emits each message as it arrives.

    When the connection drops, the same escalation policy as the polling
    sources decides how long to sleep before reconnecting. A message that
    cannot be parsed counts as a failed cycle and forces a reconnect.
    """

    def __init__(
        self,
        adapter: StreamAdapter,
        client: FeedHttpClient,
        min_date: datetime,
        backoff_config: BackoffConfig,
        on_items: Optional[ItemsCallback] = None,
        on_health: Optional[HealthCallback] = None,
        rate_limiter: Optional[RateLimiter] = None,
        prometheus_exporter=None,
    ):
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
        self.policy = BackoffPolicy(backoff_config, poll_interval=0.0)
        self.messages_received = 0

    async def _run(self, initial_delay: float) -> None:
        delay = initial_delay
        try:
            while True:
                if delay > 0:
                    self.state = SourceState.BACKOFF
                    self.next_poll_at = time.time() + delay
                    await asyncio.sleep(delay)
                outcome = await self.consume_stream()
                delay = self.policy.next_delay(outcome)
                logger.info(f"{self.name}: reconnecting in {delay:.2f}s after {outcome.error_type}")
        finally:
            self.state = SourceState.STOPPED
            self.next_poll_at = None

    async def consume_stream(self) -> PollOutcome:
        """
        Read the stream until it fails.

        Returns:
            The failed outcome that ended the connection
        """
        self.state = SourceState.POLLING
        connected = False
        try:
            stream = self.client.stream_lines(self.adapter.build_stream_request(), self.rate_limiter)
            async with contextlib.aclosing(stream):
                async for line in stream:
                    if not connected:
                        connected = True
                        self.policy.reset()
                        self._report(PollOutcome.ok(), True)
                    self.messages_received += 1
                    item = self.adapter.parse_message(line)
                    if item is None:
                        continue
                    self._emit(self._filter_fresh([item]))
        except FeedError as e:
            logger.warning(f"{self.name}: stream failed: {e}")
            outcome = PollOutcome.failed(e)
        except Exception as e:
            logger.exception(f"{self.name}: could not process stream message")
            outcome = PollOutcome.failed(classify_parse_failure(e))
        else:
            outcome = PollOutcome.failed(classify_parse_failure(RuntimeError("stream ended")))

        self._report(outcome, False)
        return outcome
