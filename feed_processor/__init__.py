"""Feed Processor - aggregates content from rate-limited providers into a filterable stream."""

from feed_processor.models.enums import ContentType, RetrievalOrder, SourceType, SuppressReason
from feed_processor.models.feed_item import FeedItem, ImageFeedItem, NewsFeedItem, StatusFeedItem

__version__ = "0.1.0"

__all__ = [
    "ContentType",
    "FeedItem",
    "ImageFeedItem",
    "NewsFeedItem",
    "RetrievalOrder",
    "SourceType",
    "StatusFeedItem",
    "SuppressReason",
]
