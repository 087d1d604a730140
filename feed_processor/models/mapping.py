"""Helpers for converting provider payload fragments into feed item fields."""

import calendar
import html
import logging
import re
import time
from datetime import datetime, timezone
from typing import Optional, Tuple, Union

from feed_processor.models.feed_item import FeedItem, ImageFeedItem, StatusFeedItem

logger = logging.getLogger(__name__)

# Matches opening and closing tags, including quoted attribute values containing '>'
_STRIP_HTML = re.compile(r"""</?\w+(?:[^>'"]|'[^']*'|"[^"]*")*>""")

_IMAGE_LINK = re.compile(r"https?://\S+?\.(?:jpe?g|png|gif)\b", re.IGNORECASE)


def strip_html(value: Optional[str]) -> str:
    """Remove HTML tags from a string."""
    if not value:
        return ""
    return _STRIP_HTML.sub("", value)


def clean_text(value: Optional[str]) -> str:
    """Strip tags, decode entities and trim whitespace."""
    return html.unescape(strip_html(value)).strip()


def from_unix_timestamp(value: Union[int, float, str]) -> datetime:
    """
    Convert a Unix timestamp into an aware UTC datetime.

    Args:
        value: Seconds since the epoch, as a number or numeric string

    Returns:
        Timezone-aware datetime in UTC
    """
    return datetime.fromtimestamp(float(value), tz=timezone.utc)


def from_struct_time(value: Optional[time.struct_time]) -> Optional[datetime]:
    """Convert a feedparser ``*_parsed`` value (UTC struct_time) into an aware datetime."""
    if not value:
        return None
    try:
        return datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc)
    except (OverflowError, ValueError, TypeError):
        logger.debug(f"Could not convert parsed date {value!r}")
        return None


def extract_image_link(text: str) -> Optional[Tuple[str, str]]:
    """
    Find a direct image link in status text.

    Returns:
        Tuple of (image URL, text with the link removed), or None
    """
    match = _IMAGE_LINK.search(text or "")
    if not match:
        return None
    link = match.group(0)
    remaining = " ".join(text.replace(link, "").split())
    return link, remaining


def promote_status_image(item: FeedItem) -> FeedItem:
    """
    Convert a status that links to an image into an image item.

    Items of any other type, and statuses without an image link, are returned unchanged.
    """
    if not isinstance(item, StatusFeedItem):
        return item

    found = extract_image_link(item.status)
    if found is None:
        return item

    link, caption = found
    logger.debug(f"Promoting status {item.uri} to image item ({link})")
    return ImageFeedItem.from_status(item, thumbnail_uri=link, caption=caption)
