"""Facebook page adapter.

Each poll fetches an app access token with the client credentials grant and
then issues one batched multi-query for the page's stream. Result sets are
looked up by query name.

Unlike the other providers, this adapter always asks to be retried right away
after a failure and paces itself with an escalating sleep inside ``fetch``.
"""

import asyncio
import json
import logging
import time
from typing import Dict, List, Optional

from pydantic import ValidationError

from feed_processor.collector.backoff import PollOutcome
from feed_processor.collector.http_client import FeedHttpClient, RequestSpec
from feed_processor.collector.rate_limiter import RateLimiter
from feed_processor.config import BackoffConfig
from feed_processor.exceptions import CredentialsError, FeedError, ParseError, ProtocolError
from feed_processor.models.enums import SourceType
from feed_processor.models.feed_item import FeedItem, ImageFeedItem, StatusFeedItem
from feed_processor.models.mapping import clean_text, from_unix_timestamp
from feed_processor.models.schemas import (
    FacebookAccessToken,
    FacebookAuthor,
    FacebookMultiQueryResponse,
    FacebookPhoto,
    FacebookStreamPost,
)

logger = logging.getLogger(__name__)

GRAPH_URL = "https://graph.facebook.com"
FACEBOOK_MIN_POLL_INTERVAL = 60.0
QUERY_LIMIT = 5000

# Stream post types
STATUS_UPDATE = 46
WALL_POST = 56
PHOTO_POST = 247

_STREAM_FIELDS = "attachment, post_id, created_time, type, message, permalink, actor_id"
_PHOTO_FIELDS = "pid, owner, src_big, created, link, caption"


def build_page_queries(page: str, now: int, include_others: bool) -> Dict[str, str]:
    """
    Build the named queries for one page.

    Args:
        page: Page username
        now: Current Unix time; only posts created before it are returned
        include_others: Also return content posted to the page by other users

    Returns:
        Mapping of query name to FQL text
    """

    def stream(filter_key: str, post_type: int) -> str:
        return (
            f"SELECT {_STREAM_FIELDS} FROM stream WHERE source_id IN (SELECT page_id FROM #id) "
            f"AND filter_key = '{filter_key}' AND type = {post_type} AND created_time < {now} LIMIT {QUERY_LIMIT}"
        )

    queries = {
        "id": f"SELECT page_id FROM page WHERE username = '{page}'",
        "ownerphotostream": stream("owner", PHOTO_POST),
        "ownerstatusstream": stream("owner", STATUS_UPDATE),
        "ownerphotoauthordata": "SELECT page_id, name, pic_small FROM page WHERE page_id IN (SELECT actor_id FROM #ownerphotostream)",
        "ownerphotodata": f"SELECT {_PHOTO_FIELDS} FROM photo WHERE pid IN (SELECT attachment.media.photo.pid FROM #ownerphotostream)",
        "ownerstatusauthordata": "SELECT page_id, name, pic_small FROM page WHERE page_id IN (SELECT actor_id FROM #ownerstatusstream)",
    }
    if include_others:
        queries.update({
            "othersphotostream": stream("others", PHOTO_POST),
            "othersstatusstream": stream("others", WALL_POST),
            "othersphotoauthordata": "SELECT uid, name, pic_small FROM user WHERE uid IN (SELECT actor_id FROM #othersphotostream)",
            "othersphotodata": f"SELECT {_PHOTO_FIELDS} FROM photo WHERE pid IN (SELECT attachment.media.photo.pid FROM #othersphotostream)",
            "othersstatusauthordata": "SELECT uid, name, pic_small FROM user WHERE uid IN (SELECT actor_id FROM #othersstatusstream)",
        })
    return queries


def _photo_items(photos: List[FacebookPhoto], authors: Dict[str, FacebookAuthor]) -> List[FeedItem]:
    items: List[FeedItem] = []
    for photo in photos:
        author = authors.get(photo.owner)
        if author is None:
            continue
        items.append(ImageFeedItem(
            uri=photo.link,
            date=from_unix_timestamp(photo.created),
            source_type=SourceType.FACEBOOK,
            author=author.name,
            avatar_uri=author.pic_small,
            service_id=photo.pid,
            caption=clean_text(photo.caption),
            thumbnail_uri=photo.src_big,
        ))
    return items


def _status_items(posts: List[FacebookStreamPost], authors: Dict[str, FacebookAuthor]) -> List[FeedItem]:
    items: List[FeedItem] = []
    for post in posts:
        author = authors.get(post.actor_id)
        if author is None or not post.permalink:
            continue
        items.append(StatusFeedItem(
            uri=post.permalink,
            date=from_unix_timestamp(post.created_time),
            source_type=SourceType.FACEBOOK,
            author=author.name,
            avatar_uri=author.pic_small,
            service_id=post.post_id,
            status=clean_text(post.message),
        ))
    return items


class FacebookPageAdapter:
    """Posts and photos of one Facebook page."""

    source_type = SourceType.FACEBOOK
    min_poll_interval = FACEBOOK_MIN_POLL_INTERVAL
    cooldowns: Dict[int, float] = {}

    def __init__(
        self,
        page: str,
        client_id: str,
        client_secret: str,
        backoff_config: BackoffConfig,
        include_others: bool = False,
    ):
        if not client_id or not client_secret:
            raise CredentialsError("Facebook feeds require FACEBOOK_CLIENT_ID and FACEBOOK_CLIENT_SECRET")
        self.page = page
        self.client_id = client_id
        self.client_secret = client_secret
        self.backoff_config = backoff_config
        self.include_others = include_others
        self.access_token: Optional[str] = None
        self.wait = backoff_config.linear_floor_sec
        self._paused = False
        self.name = f"facebook:{page}"

    def build_query(self) -> RequestSpec:
        if not self.access_token:
            return self.build_token_request()
        queries = build_page_queries(self.page, int(time.time()), self.include_others)
        return RequestSpec(
            url=f"{GRAPH_URL}/fql",
            params={"q": json.dumps(queries), "access_token": self.access_token},
            provider=SourceType.FACEBOOK.value,
        )

    def build_token_request(self) -> RequestSpec:
        return RequestSpec(
            url=f"{GRAPH_URL}/oauth/access_token",
            params={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "client_credentials",
            },
            provider=SourceType.FACEBOOK.value,
        )

    async def fetch(self, client: FeedHttpClient, rate_limiter: Optional[RateLimiter] = None) -> str:
        """Refresh the access token, run the page query and sleep after a failure."""
        try:
            token_payload = await client.fetch(self.build_token_request(), rate_limiter)
            self.access_token = self.parse_token(token_payload)
            payload = await client.fetch(self.build_query(), rate_limiter)
        except FeedError as e:
            await self._pause_after(e)
            raise
        self.wait = self.backoff_config.linear_floor_sec
        return payload

    async def _pause_after(self, error: FeedError) -> None:
        config = self.backoff_config
        if isinstance(error, ProtocolError):
            if self.wait < config.exponential_floor_sec:
                self.wait = config.exponential_floor_sec
            elif self.wait < config.exponential_ceiling_sec:
                self.wait = min(self.wait * config.exponential_factor, config.exponential_ceiling_sec)
        elif self.wait < config.linear_ceiling_sec:
            self.wait = min(self.wait + config.linear_step_sec, config.linear_ceiling_sec)

        logger.info(f"{self.name}: waiting {self.wait:.2f}s after {type(error).__name__}")
        await asyncio.sleep(self.wait)
        self._paused = True

    @staticmethod
    def parse_token(payload: str) -> str:
        try:
            return FacebookAccessToken.model_validate(json.loads(payload)).access_token
        except ValueError:
            # Older endpoints answer with a form-encoded body
            for part in payload.split("&"):
                key, _, value = part.partition("=")
                if key == "access_token" and value:
                    return value
        raise ParseError("Facebook token response has no access_token")

    def process_response(self, payload: str) -> List[FeedItem]:
        try:
            response = FacebookMultiQueryResponse.model_validate(json.loads(payload))
            items = _photo_items(response.photos("ownerphotodata"), response.authors("ownerphotoauthordata"))
            items += _status_items(response.posts("ownerstatusstream"), response.authors("ownerstatusauthordata"))
            if self.include_others:
                items += _photo_items(response.photos("othersphotodata"), response.authors("othersphotoauthordata"))
                items += _status_items(response.posts("othersstatusstream"), response.authors("othersstatusauthordata"))
        except (ValueError, ValidationError) as e:
            raise ParseError(f"Unexpected Facebook response: {e}") from e
        return items

    def retry_time(self, outcome: PollOutcome) -> Optional[float]:
        paused, self._paused = self._paused, False
        if outcome.success or not paused:
            return None
        # The sleep already happened inside fetch
        return 0.0

    def is_up(self, outcome: PollOutcome) -> bool:
        return outcome.success
