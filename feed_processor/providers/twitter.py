"""Twitter feed adapters: Atom search, Atom user timeline and the filter stream."""

import json
import logging
from typing import Callable, List, Optional, Tuple

import feedparser
from pydantic import ValidationError

from feed_processor.collector.backoff import PollOutcome
from feed_processor.collector.http_client import FeedHttpClient, RequestSpec
from feed_processor.collector.name_cache import IdLookupCache
from feed_processor.collector.rate_limiter import RateLimiter
from feed_processor.exceptions import CredentialsError, ParseError, ProtocolError
from feed_processor.models.enums import SourceType
from feed_processor.models.feed_item import StatusFeedItem
from feed_processor.models.mapping import clean_text, from_struct_time
from feed_processor.models.schemas import TwitterStatus, TwitterUser

logger = logging.getLogger(__name__)

SEARCH_URL = "https://search.twitter.com/search.atom"
USER_TIMELINE_URL = "https://api.twitter.com/1/statuses/user_timeline.atom"
USER_SHOW_URL = "https://api.twitter.com/1/users/show.json"
STREAM_URL = "https://stream.twitter.com/1/statuses/filter.json"
STATUS_URI = "https://twitter.com/{screen_name}/status/{status_id}"

# 150 requests per hour
TWITTER_MIN_POLL_INTERVAL = 3600.0 / 150
MAX_QUERY_LENGTH = 140
SEARCH_PAGE_SIZE = 100
USER_PAGE_SIZE = 200
USER_NAMESPACE = "twitter_user"

# 420 is Twitter's "Enhance Your Calm" rate limit response
RATE_LIMITED = 420

TWITTER_COOLDOWNS = {
    RATE_LIMITED: 300.0,
    429: 300.0,
    # Down or being upgraded
    502: 300.0,
    408: 300.0,
    # Overloaded, or an error on their end
    503: 120.0,
    500: 120.0,
}

AuthorParser = Callable[[feedparser.FeedParserDict], Tuple[str, str]]


def _twitter_is_up(outcome: PollOutcome) -> bool:
    # Being rate limited still means the service is reachable
    return outcome.success or outcome.status == RATE_LIMITED


def _status_id(link: str) -> int:
    return int(link.rstrip("/").rsplit("/", 1)[-1])


def parse_status_feed(payload: str, author_parser: AuthorParser) -> Tuple[List[StatusFeedItem], int]:
    """
    Parse an Atom status feed.

    Args:
        payload: Atom document
        author_parser: Returns (author, status text) for an entry

    Returns:
        Tuple of (items, highest status id seen)
    """
    feed = feedparser.parse(payload)
    if feed.bozo and not feed.entries:
        raise ParseError(f"Malformed Twitter feed: {feed.get('bozo_exception')}")

    items = []
    max_id = 0
    for entry in feed.entries:
        link = entry.get("link")
        if not link:
            continue
        try:
            status_id = _status_id(link)
        except ValueError:
            logger.debug(f"Skipping Twitter entry with unexpected link {link}")
            continue
        max_id = max(max_id, status_id)

        date = from_struct_time(entry.get("published_parsed") or entry.get("updated_parsed"))
        if date is None:
            continue

        avatar = None
        for entry_link in entry.get("links", []):
            if entry_link.get("rel") == "image":
                avatar = entry_link.get("href")
                break

        author, status = author_parser(entry)
        items.append(StatusFeedItem(
            uri=link,
            date=date,
            source_type=SourceType.TWITTER,
            author=author,
            avatar_uri=avatar,
            service_id=str(status_id),
            status=status,
        ))

    return items, max_id


def _search_author(entry: feedparser.FeedParserDict) -> Tuple[str, str]:
    # The author name reads "endquote (Josh Santangelo)"; the profile URI carries the screen name
    detail = entry.get("author_detail") or {}
    href = detail.get("href") or ""
    if href:
        author = href.rstrip("/").rsplit("/", 1)[-1]
    else:
        author = (entry.get("author") or "").split(" ", 1)[0]
    return clean_text(author), clean_text(entry.get("title"))


def _timeline_author(entry: feedparser.FeedParserDict) -> Tuple[str, str]:
    # Timeline titles read "endquote: tweet text"
    title = entry.get("title") or ""
    author, sep, text = title.partition(":")
    if not sep:
        return "", clean_text(title)
    return clean_text(author), clean_text(text)


class TwitterSearchAdapter:
    """Search for an OR-joined term query."""

    source_type = SourceType.TWITTER
    min_poll_interval = TWITTER_MIN_POLL_INTERVAL
    cooldowns = TWITTER_COOLDOWNS

    def __init__(self, query: str):
        self.query = query
        self.since_id = 0
        self.name = f"twitter:search:{query}"

    def build_query(self) -> RequestSpec:
        params = {
            "q": self.query,
            "page": 1,
            "rpp": SEARCH_PAGE_SIZE,
            "result_type": "recent",
        }
        if self.since_id > 0:
            params["since_id"] = self.since_id
        return RequestSpec(url=SEARCH_URL, params=params, provider=SourceType.TWITTER.value)

    def process_response(self, payload: str) -> List[StatusFeedItem]:
        items, max_id = parse_status_feed(payload, _search_author)
        self.since_id = max(self.since_id, max_id)
        return items

    def retry_time(self, outcome: PollOutcome) -> Optional[float]:
        return None

    def is_up(self, outcome: PollOutcome) -> bool:
        return _twitter_is_up(outcome)


class TwitterUserAdapter:
    """Timeline of one user."""

    source_type = SourceType.TWITTER
    min_poll_interval = TWITTER_MIN_POLL_INTERVAL
    cooldowns = TWITTER_COOLDOWNS

    def __init__(self, screen_name: str):
        self.screen_name = screen_name
        self.since_id = 0
        self.name = f"twitter:user:{screen_name}"

    def build_query(self) -> RequestSpec:
        params = {
            "screen_name": self.screen_name,
            "count": USER_PAGE_SIZE,
            "page": 1,
        }
        if self.since_id > 0:
            params["since_id"] = self.since_id
        return RequestSpec(url=USER_TIMELINE_URL, params=params, provider=SourceType.TWITTER.value)

    def process_response(self, payload: str) -> List[StatusFeedItem]:
        items, max_id = parse_status_feed(payload, _timeline_author)
        self.since_id = max(self.since_id, max_id)
        return items

    def retry_time(self, outcome: PollOutcome) -> Optional[float]:
        return None

    def is_up(self, outcome: PollOutcome) -> bool:
        return _twitter_is_up(outcome)


class TwitterStreamAdapter:
    """Filter stream tracking terms and following user ids."""

    source_type = SourceType.TWITTER

    def __init__(self, track: List[str], follow: List[str], username: str, password: str):
        if not username or not password:
            raise CredentialsError("Twitter streaming requires TWITTER_USERNAME and TWITTER_PASSWORD")
        self.track = list(track)
        self.follow = list(follow)
        self.username = username
        self.password = password
        self.name = "twitter:stream"

    def build_stream_request(self) -> RequestSpec:
        data = {}
        if self.track:
            data["track"] = ",".join(self.track)
        if self.follow:
            data["follow"] = ",".join(self.follow)
        return RequestSpec(
            url=STREAM_URL,
            method="POST",
            data=data,
            auth=(self.username, self.password),
            provider=SourceType.TWITTER.value,
        )

    def parse_message(self, line: str) -> Optional[StatusFeedItem]:
        try:
            message = json.loads(line)
        except ValueError as e:
            raise ParseError(f"Malformed stream message: {e}") from e

        # Deletion notices, limit notices and other control messages
        if not isinstance(message, dict) or "text" not in message:
            return None

        try:
            status = TwitterStatus.model_validate(message)
        except ValidationError as e:
            raise ParseError(f"Unexpected stream status: {e}") from e

        return StatusFeedItem(
            uri=STATUS_URI.format(screen_name=status.user.screen_name, status_id=status.id_str),
            date=status.created_at,
            source_type=SourceType.TWITTER,
            author=status.user.screen_name,
            avatar_uri=status.user.profile_image_url,
            service_id=status.id_str,
            status=clean_text(status.text),
        )


async def lookup_twitter_user_id(
    client: FeedHttpClient,
    screen_name: str,
    rate_limiter: Optional[RateLimiter] = None,
) -> Optional[str]:
    """Resolve a screen name to a numeric user id, or None if the user does not exist."""
    spec = RequestSpec(url=USER_SHOW_URL, params={"screen_name": screen_name}, provider=SourceType.TWITTER.value)
    try:
        payload = await client.fetch(spec, rate_limiter)
    except ProtocolError as e:
        if e.status == 404:
            logger.warning(f"Twitter user '{screen_name}' not found")
            return None
        raise

    try:
        user = TwitterUser.model_validate(json.loads(payload))
    except (ValueError, ValidationError) as e:
        raise ParseError(f"Unexpected Twitter user response: {e}") from e
    return user.id_str


async def resolve_twitter_user(
    name_cache: IdLookupCache,
    client: FeedHttpClient,
    screen_name: str,
    rate_limiter: Optional[RateLimiter] = None,
) -> Optional[str]:
    """Resolve a screen name through the shared lookup cache."""

    async def fetch(name: str) -> Optional[str]:
        return await lookup_twitter_user_id(client, name, rate_limiter)

    return await name_cache.resolve(USER_NAMESPACE, screen_name, fetch)
