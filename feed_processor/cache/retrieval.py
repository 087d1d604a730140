"""Fair, stateful retrieval of the next item to display."""

import logging
from typing import Dict, Optional

from feed_processor.cache.aggregation_cache import AggregationCache
from feed_processor.models.enums import ContentType
from feed_processor.models.feed_item import FeedItem

logger = logging.getLogger(__name__)


class RetrievalScheduler:
    """
    Serves ``get_next_item`` requests from the cache's views.

    With even distribution on, a mask such as IMAGE | STATUS is answered by
    rotating through its single types. Within a view the scheduler walks from
    the view's cursor, wraps at the end and skips suppressed items; a full lap
    without a hit returns None.
    """

    def __init__(self, cache: AggregationCache, distribute_evenly: bool = True):
        self.cache = cache
        self.distribute_evenly = distribute_evenly
        self._type_cursors: Dict[int, int] = {}

    def get_next_item(self, mask: ContentType) -> Optional[FeedItem]:
        """
        Return the next unsuppressed item for a content-type mask.

        Args:
            mask: One or more ContentType flags

        Returns:
            The next item, or None if nothing is available
        """
        mask = ContentType(mask)
        with self.cache.lock:
            if not self.distribute_evenly:
                return self._next_in_view(mask)

            types = mask.constituents()
            if not types:
                return None

            start = self._type_cursors.get(int(mask), 0) % len(types)
            for offset in range(len(types)):
                index = (start + offset) % len(types)
                content_type = types[index]
                if not self.cache.view(content_type):
                    continue
                item = self._next_in_view(content_type)
                if item is not None:
                    self._type_cursors[int(mask)] = index + 1
                    return item
            return None

    def reset(self) -> None:
        with self.cache.lock:
            self._type_cursors.clear()

    def _next_in_view(self, mask: ContentType) -> Optional[FeedItem]:
        view = self.cache.view(mask)
        count = len(view)
        if count == 0:
            return None

        cursor = self.cache.cursor(mask)
        if cursor >= count:
            cursor = 0

        for step in range(count):
            index = (cursor + step) % count
            item = view[index]
            if not item.is_suppressed:
                self.cache.set_cursor(mask, index + 1)
                return item
        return None
