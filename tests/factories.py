"""Builders for feed items used across the test-suite."""

from datetime import datetime, timedelta, timezone

from feed_processor.models.enums import SourceType
from feed_processor.models.feed_item import ImageFeedItem, NewsFeedItem, StatusFeedItem

BASE_DATE = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_image(name: str, minutes: int = 0, author: str = "someone", caption: str = "", source=SourceType.FLICKR):
    return ImageFeedItem(
        uri=f"https://images.example.com/{name}",
        date=BASE_DATE + timedelta(minutes=minutes),
        source_type=source,
        author=author,
        caption=caption,
    )


def make_status(name: str, minutes: int = 0, author: str = "someone", text: str = "", source=SourceType.TWITTER):
    return StatusFeedItem(
        uri=f"https://status.example.com/{name}",
        date=BASE_DATE + timedelta(minutes=minutes),
        source_type=source,
        author=author,
        status=text,
    )


def make_news(name: str, minutes: int = 0, title: str = "", body: str = ""):
    return NewsFeedItem(
        uri=f"https://news.example.com/{name}",
        date=BASE_DATE + timedelta(minutes=minutes),
        source_type=SourceType.NEWS,
        title=title,
        summary=body,
        body=body,
    )
