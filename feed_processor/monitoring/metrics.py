"""Prometheus metrics for monitoring the feed processor."""

import logging

from prometheus_client import Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger(__name__)

# Define metrics
ITEMS_INGESTED = Counter(
    "feed_processor_items_ingested_total",
    "Total number of new items added to the cache",
    ["source"],
)

ITEMS_SUPPRESSED = Counter(
    "feed_processor_items_suppressed_total",
    "Number of items tagged with a suppression reason",
    ["reason"],
)

POLL_ERRORS = Counter(
    "feed_processor_poll_errors_total",
    "Number of failed poll cycles",
    ["source", "error_type"],
)

CACHE_PURGES = Counter(
    "feed_processor_cache_purges_total",
    "Number of cache purges performed",
)

ITEMS_EVICTED = Counter(
    "feed_processor_items_evicted_total",
    "Number of items removed from the cache by purges",
)

CACHE_SIZE = Gauge(
    "feed_processor_cache_size",
    "Number of items currently in the cache",
)

SOURCE_UP = Gauge(
    "feed_processor_source_up",
    "Whether the last attempt of a feed succeeded (1) or failed (0)",
    ["feed"],
)

CONSECUTIVE_ERRORS = Gauge(
    "feed_processor_consecutive_errors",
    "Number of consecutive failed attempts of a feed",
    ["feed"],
)

ACTIVE_FEEDS = Gauge(
    "feed_processor_active_feeds",
    "Number of running feeds per source type",
    ["source"],
)

REQUEST_DURATION = Histogram(
    "feed_processor_request_duration_seconds",
    "Duration of provider requests in seconds",
    ["provider"],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
)


class PrometheusExporter:
    """Prometheus metrics exporter for the feed processor."""

    def __init__(self, port: int = 8000):
        """
        Initialize the Prometheus exporter.

        Args:
            port: Port to expose metrics on
        """
        self.port = port
        self.server_started = False

    def start_server(self) -> None:
        """Start the Prometheus metrics server."""
        if not self.server_started:
            try:
                start_http_server(self.port)
                self.server_started = True
                logger.info(f"Started Prometheus metrics server on port {self.port}")
            except Exception as e:
                logger.error(f"Failed to start Prometheus metrics server: {str(e)}")

    def record_item_ingested(self, source: str) -> None:
        """
        Record an item added to the cache.

        Args:
            source: Source type of the item (e.g., 'flickr', 'news')
        """
        ITEMS_INGESTED.labels(source=source).inc()

    def record_item_suppressed(self, reason: str) -> None:
        ITEMS_SUPPRESSED.labels(reason=reason).inc()

    def record_poll_error(self, source: str, error_type: str) -> None:
        """
        Record a failed poll cycle.

        Args:
            source: Source type of the failing feed
            error_type: HTTP status or exception class name
        """
        POLL_ERRORS.labels(source=source, error_type=error_type).inc()

    def record_cache_purge(self, evicted: int) -> None:
        CACHE_PURGES.inc()
        ITEMS_EVICTED.inc(evicted)

    def set_cache_size(self, size: int) -> None:
        CACHE_SIZE.set(size)

    def set_source_up(self, feed: str, is_up: bool) -> None:
        SOURCE_UP.labels(feed=feed).set(1 if is_up else 0)

    def set_consecutive_errors(self, feed: str, count: int) -> None:
        """
        Set the consecutive errors gauge for one feed.

        Args:
            feed: Feed name
            count: Number of consecutive failed attempts
        """
        CONSECUTIVE_ERRORS.labels(feed=feed).set(count)

    def set_active_feeds(self, source: str, count: int) -> None:
        ACTIVE_FEEDS.labels(source=source).set(count)

    def observe_request_duration(self, provider: str, seconds: float) -> None:
        REQUEST_DURATION.labels(provider=provider).observe(seconds)
