"""Thread-safe aggregation cache with per-content-type retrieval views."""

import bisect
import logging
import random
import threading
from collections import OrderedDict
from typing import Callable, Dict, List, Optional

from feed_processor.filtering.filter_engine import FilterEngine
from feed_processor.models.enums import ContentType, RetrievalOrder, SourceType
from feed_processor.models.feed_item import FeedItem

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 10000
DEFAULT_PURGE_THRESHOLD_FACTOR = 1.2

ItemAddedCallback = Callable[[FeedItem], None]
PurgedCallback = Callable[[List[FeedItem]], None]


def _date_key(item: FeedItem) -> float:
    # Views are ordered newest first; bisect needs an ascending key
    return -item.date.timestamp()


class AggregationCache:
    """
    Bounded store of feed items keyed by URI.

    The master sequence keeps ingest order and is the eviction axis. Views are
    built lazily per content-type mask and ordered by date or shuffled; each
    view has a read cursor owned by the retrieval scheduler. Every mutation
    happens under ``lock``; callbacks run after it is released.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        purge_threshold_factor: float = DEFAULT_PURGE_THRESHOLD_FACTOR,
        order: RetrievalOrder = RetrievalOrder.CHRONOLOGICAL,
        filter_engine: Optional[FilterEngine] = None,
        on_item_added: Optional[ItemAddedCallback] = None,
        on_purged: Optional[PurgedCallback] = None,
        prometheus_exporter=None,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize the cache.

        Args:
            capacity: Number of items kept after a purge
            purge_threshold_factor: Purge once the cache holds more than capacity times this
            order: Initial view ordering
            filter_engine: Evaluates every ingested item
            on_item_added: Called with each newly ingested item
            on_purged: Called with the surviving items after a purge
            prometheus_exporter: Optional Prometheus exporter for metrics
            rng: Random source for shuffled views
        """
        if capacity <= 0:
            raise ValueError("capacity must be greater than 0")
        self.lock = threading.RLock()
        self._capacity = capacity
        self.purge_threshold_factor = purge_threshold_factor
        self._order = order
        self.filter_engine = filter_engine
        self.on_item_added = on_item_added
        self.on_purged = on_purged
        self.prometheus_exporter = prometheus_exporter
        self._rng = rng or random.Random()
        self._items: "OrderedDict[str, FeedItem]" = OrderedDict()
        self._views: Dict[ContentType, List[FeedItem]] = {}
        self._cursors: Dict[ContentType, int] = {}

    def __len__(self) -> int:
        with self.lock:
            return len(self._items)

    def __contains__(self, uri: str) -> bool:
        with self.lock:
            return uri in self._items

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def order(self) -> RetrievalOrder:
        return self._order

    def get(self, uri: str) -> Optional[FeedItem]:
        with self.lock:
            return self._items.get(uri)

    def snapshot(self) -> List[FeedItem]:
        """Items in ingest order, oldest first."""
        with self.lock:
            return list(self._items.values())

    def ingest(self, item: FeedItem) -> bool:
        """
        Add an item unless one with the same URI is already cached.

        Args:
            item: New item

        Returns:
            True if the item was added
        """
        with self.lock:
            if item.uri in self._items:
                return False

            self._items[item.uri] = item
            if self.filter_engine:
                self.filter_engine.evaluate(item)

            for mask, view in self._views.items():
                if item.content_type & mask:
                    self._insert_into_view(mask, view, item)

            survivors = self._purge_locked()
            size = len(self._items)

        logger.debug(f"Added item {item.uri}")
        if self.prometheus_exporter:
            self.prometheus_exporter.record_item_ingested(item.source_type.value)
            self.prometheus_exporter.set_cache_size(size)

        self._notify_added(item)
        if survivors is not None:
            self._notify_purged(survivors)
        return True

    def set_capacity(self, capacity: int) -> None:
        """Change the target capacity and purge if the cache is now over the threshold."""
        if capacity <= 0:
            raise ValueError("capacity must be greater than 0")
        with self.lock:
            self._capacity = capacity
            survivors = self._purge_locked()
        if survivors is not None:
            self._notify_purged(survivors)

    def purge(self) -> bool:
        """Run a purge check now; returns True if anything was evicted."""
        with self.lock:
            survivors = self._purge_locked()
        if survivors is None:
            return False
        self._notify_purged(survivors)
        return True

    def set_order(self, order: RetrievalOrder) -> None:
        """Switch view ordering; all views and cursors are discarded."""
        with self.lock:
            if order == self._order:
                return
            self._order = order
            self._views.clear()
            self._cursors.clear()
        logger.info(f"Retrieval order set to {order.value}")

    def refilter(self, source_type: Optional[SourceType] = None) -> int:
        """
        Re-evaluate suppression for cached items.

        Args:
            source_type: Restrict to one category, or None for every item

        Returns:
            Number of items whose suppression reason changed
        """
        if self.filter_engine is None:
            return 0
        changed = 0
        with self.lock:
            for item in self._items.values():
                if source_type is not None and item.source_type is not source_type:
                    continue
                before = item.suppress_reason
                if self.filter_engine.evaluate(item) is not before:
                    changed += 1
        if changed:
            logger.info(f"Re-filtering changed {changed} items")
        return changed

    # Views and cursors, for the retrieval scheduler. Callers hold ``lock``.

    def view(self, mask: ContentType) -> List[FeedItem]:
        with self.lock:
            view = self._views.get(mask)
            if view is None:
                view = self._build_view(mask)
                self._views[mask] = view
                self._cursors.setdefault(mask, 0)
            return view

    def cursor(self, mask: ContentType) -> int:
        with self.lock:
            return self._cursors.get(mask, 0)

    def set_cursor(self, mask: ContentType, position: int) -> None:
        with self.lock:
            self._cursors[mask] = position

    def _build_view(self, mask: ContentType) -> List[FeedItem]:
        items = [item for item in self._items.values() if item.content_type & mask]
        if self._order is RetrievalOrder.RANDOM:
            self._rng.shuffle(items)
        else:
            items.sort(key=_date_key)
        return items

    def _insert_into_view(self, mask: ContentType, view: List[FeedItem], item: FeedItem) -> None:
        if self._order is RetrievalOrder.RANDOM:
            position = self._rng.randint(0, len(view))
        else:
            position = bisect.bisect_right(view, _date_key(item), key=_date_key)

        # Never land behind the reader, so a scan in progress still reaches it
        position = max(position, self._cursors.get(mask, 0))
        position = min(position, len(view))
        view.insert(position, item)

    def _purge_locked(self) -> Optional[List[FeedItem]]:
        if len(self._items) <= self._capacity * self.purge_threshold_factor:
            return None

        surplus = len(self._items) - self._capacity
        removed = set()
        for _ in range(surplus):
            uri, _item = self._items.popitem(last=False)
            removed.add(uri)

        for mask, view in self._views.items():
            cursor = self._cursors.get(mask, 0)
            behind_cursor = sum(1 for item in view[:cursor] if item.uri in removed)
            view[:] = [item for item in view if item.uri not in removed]
            self._cursors[mask] = max(0, min(cursor - behind_cursor, len(view)))

        logger.info(f"Purged {surplus} items from cache, {len(self._items)} remain")
        if self.prometheus_exporter:
            self.prometheus_exporter.record_cache_purge(surplus)
            self.prometheus_exporter.set_cache_size(len(self._items))
        return list(self._items.values())

    def _notify_added(self, item: FeedItem) -> None:
        if self.on_item_added is None:
            return
        try:
            self.on_item_added(item)
        except Exception:
            logger.exception("Item-added callback failed")

    def _notify_purged(self, survivors: List[FeedItem]) -> None:
        if self.on_purged is None:
            return
        try:
            self.on_purged(survivors)
        except Exception:
            logger.exception("Cache-purged callback failed")
