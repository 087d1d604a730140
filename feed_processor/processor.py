"""Feed processor facade used by the display layer."""

import logging
import random
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from feed_processor.cache.aggregation_cache import AggregationCache
from feed_processor.cache.retrieval import RetrievalScheduler
from feed_processor.collector.feed_source import SourceRuntime
from feed_processor.collector.http_client import FeedHttpClient
from feed_processor.collector.name_cache import IdLookupCache
from feed_processor.collector.rate_limiter import RateLimiter
from feed_processor.config import Config
from feed_processor.filtering.filter_engine import FilterEngine
from feed_processor.models.enums import ContentType, RetrievalOrder, SourceType
from feed_processor.models.feed_item import FeedItem, ImageFeedItem
from feed_processor.models.mapping import promote_status_image
from feed_processor.monitoring.metrics import PrometheusExporter
from feed_processor.providers.flickr import fetch_flickr_image_sizes
from feed_processor.routing.query_router import QueryRouter, normalize_terms, partition_terms

logger = logging.getLogger(__name__)


@dataclass
class SourceHealth:
    """Latest health of one provider."""

    source_type: SourceType
    is_up: bool
    last_success: Optional[datetime] = None
    feed: Optional[str] = None


class ProcessorListener:
    """Receives processor notifications. Override the methods you need."""

    def on_item_added(self, item: FeedItem) -> None:
        pass

    def on_source_health_changed(self, health: SourceHealth) -> None:
        pass

    def on_cache_purged(self, snapshot: List[FeedItem]) -> None:
        pass


class FeedProcessor:
    """
    Aggregates items from every configured feed into one filterable cache.

    Feeds run as tasks on the event loop that calls ``start``; ``get_next_item``
    and ``source_health`` may be called from any thread.
    """

    def __init__(
        self,
        config: Config,
        listeners: Optional[Iterable[ProcessorListener]] = None,
        prometheus_exporter: Optional[PrometheusExporter] = None,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize the processor.

        Args:
            config: Application configuration
            listeners: Notification receivers
            prometheus_exporter: Exporter to use; created from config when None and enabled
            rng: Random source for shuffled retrieval order
        """
        self.config = config
        self.listeners: List[ProcessorListener] = list(listeners or [])

        if prometheus_exporter is None and config.monitoring.enable_prometheus:
            prometheus_exporter = PrometheusExporter(port=config.monitoring.prometheus_port)
        self.prometheus_exporter = prometheus_exporter

        self.filter_engine = FilterEngine(
            profanity_words=config.filtering.profanity_words,
            profanity_enabled=config.filtering.profanity_enabled,
            prometheus_exporter=prometheus_exporter,
        )
        self.cache = AggregationCache(
            capacity=config.cache.capacity,
            purge_threshold_factor=config.cache.purge_threshold_factor,
            order=config.retrieval.order,
            filter_engine=self.filter_engine,
            on_item_added=self._item_added,
            on_purged=self._cache_purged,
            prometheus_exporter=prometheus_exporter,
            rng=rng,
        )
        self.scheduler = RetrievalScheduler(self.cache, config.retrieval.distribute_evenly)
        self.name_cache = IdLookupCache()
        self.client = FeedHttpClient(config.http, prometheus_exporter)
        self.rate_limiters: Dict[SourceType, RateLimiter] = {
            source_type: RateLimiter(
                source_type.value,
                config.http.request_spacing_sec,
                min_remaining_calls=config.http.min_remaining_calls,
                sleep_buffer_sec=config.http.sleep_buffer_sec,
                max_cooldown_sec=config.backoff.retry_after_ceiling_sec,
            )
            for source_type in SourceType
        }
        self.router = QueryRouter(
            config,
            self.client,
            self.name_cache,
            rate_limiters=self.rate_limiters,
            on_items=self._handle_items,
            on_health=self._handle_health,
            prometheus_exporter=prometheus_exporter,
        )

        self._terms: Dict[SourceType, List[str]] = {}
        for source_type in SourceType:
            terms = normalize_terms(config.queries.terms_for(source_type))
            self._terms[source_type] = terms
            self.filter_engine.set_terms(source_type, terms)

        self._health: Dict[SourceType, SourceHealth] = {}
        self._health_lock = threading.Lock()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def feed_count(self) -> int:
        return self.router.feed_count

    def add_listener(self, listener: ProcessorListener) -> None:
        self.listeners.append(listener)

    def remove_listener(self, listener: ProcessorListener) -> None:
        if listener in self.listeners:
            self.listeners.remove(listener)

    def terms_for(self, source_type: SourceType) -> List[str]:
        return list(self._terms.get(source_type, []))

    async def start(self) -> None:
        """Open the HTTP session and start a feed for every configured term."""
        if self._running:
            return
        logger.info("Starting feed processor")
        await self.client.initialize()
        if self.prometheus_exporter and self.config.monitoring.enable_prometheus:
            self.prometheus_exporter.start_server()

        self._running = True
        for source_type in SourceType:
            await self.router.rebuild(source_type, self._terms[source_type])
        logger.info(f"Feed processor started with {self.feed_count} feeds")

    async def stop(self) -> None:
        """Stop every feed and close the HTTP session."""
        if not self._running:
            return
        self._running = False
        logger.info("Stopping feed processor")
        await self.router.shutdown()
        await self.client.close()
        logger.info("Feed processor stopped")

    async def __aenter__(self) -> "FeedProcessor":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    async def set_query(self, source_type: SourceType, terms: Iterable[str]) -> bool:
        """
        Replace the term list of one category.

        Negative terms take effect on cached items right away. Feeds are
        rebuilt only when the terms that create feeds changed.

        Args:
            source_type: Category to edit
            terms: New term list

        Returns:
            True if the category's feeds were rebuilt
        """
        terms = normalize_terms(terms)
        previous = self._terms.get(source_type, [])
        self._terms[source_type] = terms

        self.filter_engine.set_terms(source_type, terms)
        self.cache.refilter(source_type)

        feeds_changed = set(partition_terms(previous).feed_terms) != set(partition_terms(terms).feed_terms)
        if not feeds_changed:
            logger.info(f"{source_type.value}: only ban terms changed, feeds kept")
            return False
        if not self._running:
            return False

        await self.router.rebuild(source_type, terms)
        return True

    def set_profanity(self, words: Iterable[str]) -> None:
        self.filter_engine.set_profanity_words(words)
        self.cache.refilter()

    def set_profanity_enabled(self, enabled: bool) -> None:
        self.filter_engine.profanity_enabled = enabled
        self.cache.refilter()

    def set_retrieval_order(self, order: RetrievalOrder) -> None:
        self.cache.set_order(RetrievalOrder(order))

    def set_distribute_evenly(self, enabled: bool) -> None:
        with self.cache.lock:
            self.scheduler.distribute_evenly = enabled

    def set_cache_capacity(self, capacity: int) -> None:
        self.cache.set_capacity(capacity)

    def get_next_item(self, mask: ContentType = ContentType.all()) -> Optional[FeedItem]:
        """
        Return the next item to display.

        Args:
            mask: Content types the caller can show

        Returns:
            The next unsuppressed item, or None if there is nothing to show
        """
        return self.scheduler.get_next_item(mask)

    def source_health(self) -> Dict[SourceType, SourceHealth]:
        with self._health_lock:
            return {source_type: replace(health) for source_type, health in self._health.items()}

    async def fetch_image_sizes(self, item: ImageFeedItem) -> dict:
        """Look up the available renditions of a Flickr image."""
        return await fetch_flickr_image_sizes(
            self.client,
            self.config.flickr_api_key,
            item,
            self.rate_limiters[SourceType.FLICKR],
        )

    def _handle_items(self, source: SourceRuntime, items: List[FeedItem]) -> None:
        added = 0
        for item in items:
            if self.cache.ingest(promote_status_image(item)):
                added += 1
        if added:
            logger.info(f"{source.name}: {added} new items, cache size {len(self.cache)}")

    def _handle_health(self, source: SourceRuntime, is_up: bool) -> None:
        with self._health_lock:
            previous = self._health.get(source.source_type)
            last_success = previous.last_success if previous else None
            if is_up:
                last_success = datetime.now(timezone.utc)
            health = SourceHealth(source.source_type, is_up, last_success, feed=source.name)
            self._health[source.source_type] = health
        self._notify("on_source_health_changed", replace(health))

    def _item_added(self, item: FeedItem) -> None:
        self._notify("on_item_added", item)

    def _cache_purged(self, snapshot: List[FeedItem]) -> None:
        self._notify("on_cache_purged", snapshot)

    def _notify(self, method: str, payload) -> None:
        for listener in list(self.listeners):
            try:
                getattr(listener, method)(payload)
            except Exception:
                logger.exception(f"Listener {type(listener).__name__}.{method} failed")
