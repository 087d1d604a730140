"""News feed adapter for RSS and Atom syndication feeds."""

import logging
from typing import List, Optional

import feedparser

from feed_processor.collector.backoff import PollOutcome
from feed_processor.collector.http_client import RequestSpec
from feed_processor.exceptions import ParseError
from feed_processor.models.enums import SourceType
from feed_processor.models.feed_item import NewsFeedItem
from feed_processor.models.mapping import clean_text, from_struct_time

logger = logging.getLogger(__name__)

NEWS_MIN_POLL_INTERVAL = 300.0

# A missing or removed feed is only retried after two hours
NEWS_COOLDOWNS = {
    404: 7200.0,
    410: 7200.0,
}


def _entry_body(entry: feedparser.FeedParserDict) -> Optional[str]:
    # content covers Atom <content> and RSS <content:encoded>
    for content in entry.get("content") or []:
        value = content.get("value")
        if value:
            return value
    summary = entry.get("summary")
    if summary:
        return summary
    return None


def _entry_link(entry: feedparser.FeedParserDict, feed_url: str) -> str:
    # Feedburner keeps the publisher's link in feedburner:origLink
    for key in ("feedburner_origlink", "origlink"):
        if entry.get(key):
            return entry[key]

    for link in entry.get("links") or []:
        if link.get("rel", "alternate") == "alternate" and link.get("href"):
            return link["href"]
    if entry.get("link"):
        return entry["link"]
    return feed_url


class NewsFeedAdapter:
    """One RSS or Atom feed URL."""

    source_type = SourceType.NEWS
    min_poll_interval = NEWS_MIN_POLL_INTERVAL
    cooldowns = NEWS_COOLDOWNS

    def __init__(self, feed_url: str):
        self.feed_url = feed_url
        self.name = f"news:{feed_url}"

    def build_query(self) -> RequestSpec:
        return RequestSpec(url=self.feed_url, provider=SourceType.NEWS.value)

    def process_response(self, payload: str) -> List[NewsFeedItem]:
        feed = feedparser.parse(payload)
        if feed.bozo and not feed.entries:
            raise ParseError(f"Malformed news feed {self.feed_url}: {feed.get('bozo_exception')}")

        items = []
        for entry in feed.entries:
            date = from_struct_time(entry.get("published_parsed") or entry.get("updated_parsed"))
            if date is None:
                logger.debug(f"{self.name}: skipping entry without a date")
                continue

            body = _entry_body(entry)
            if body is None:
                # Nothing to show
                continue
            body = body.strip()
            summary = entry.get("summary") or body

            items.append(NewsFeedItem(
                uri=_entry_link(entry, self.feed_url),
                date=date,
                source_type=SourceType.NEWS,
                author=clean_text(entry.get("author")),
                service_id=entry.get("id"),
                title=clean_text(entry.get("title")),
                summary=clean_text(summary),
                body=body,
            ))
        return items

    def retry_time(self, outcome: PollOutcome) -> Optional[float]:
        return None

    def is_up(self, outcome: PollOutcome) -> bool:
        return outcome.success
