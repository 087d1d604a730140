"""Flickr feed adapters and lookups."""

import logging
from typing import Dict, List, Optional, Tuple

from feed_processor.collector.backoff import PollOutcome
from feed_processor.collector.http_client import FeedHttpClient, RequestSpec
from feed_processor.collector.name_cache import IdLookupCache
from feed_processor.collector.rate_limiter import RateLimiter
from feed_processor.exceptions import CredentialsError, ProtocolError
from feed_processor.models.enums import SourceType
from feed_processor.models.feed_item import ImageFeedItem
from feed_processor.models.schemas import FlickrGroupsResponse, FlickrSizesResponse, FlickrUserResponse
from feed_processor.providers.paged_search import (
    GROUP_NAMESPACE,
    USER_NAMESPACE,
    PagedPhotoSearch,
    flickr_request,
    parse_flickr_response,
)

logger = logging.getLogger(__name__)

FLICKR_MIN_POLL_INTERVAL = 60.0
MAX_TAGS_PER_FEED = 20

FLICKR_COOLDOWNS = {
    # Flickr is down or being upgraded
    502: 300.0,
    # Overloaded, or an error on their end
    503: 120.0,
    500: 120.0,
}


def require_api_key(api_key: str) -> None:
    if not api_key:
        raise CredentialsError("Flickr feeds require FLICKR_API_KEY")


class FlickrSearchAdapter:
    """Tag search for up to twenty tags."""

    source_type = SourceType.FLICKR
    min_poll_interval = FLICKR_MIN_POLL_INTERVAL
    cooldowns = FLICKR_COOLDOWNS

    def __init__(self, api_key: str, tags: List[str], name_cache: IdLookupCache):
        require_api_key(api_key)
        if len(tags) > MAX_TAGS_PER_FEED:
            raise ValueError(f"Flickr searches accept at most {MAX_TAGS_PER_FEED} tags")
        self.tags = list(tags)
        self.search = PagedPhotoSearch(api_key, "flickr.photos.search", name_cache)
        self.name = f"flickr:search:{','.join(self.tags)}"

    def build_query(self) -> RequestSpec:
        return self.search.build_request(tags=",".join(self.tags))

    def process_response(self, payload: str) -> List[ImageFeedItem]:
        return self.search.parse_photos(payload)

    def retry_time(self, outcome: PollOutcome) -> Optional[float]:
        return None

    def is_up(self, outcome: PollOutcome) -> bool:
        return outcome.success


class FlickrUserAdapter:
    """Recent public photos of one user."""

    source_type = SourceType.FLICKR
    min_poll_interval = FLICKR_MIN_POLL_INTERVAL
    cooldowns = FLICKR_COOLDOWNS

    def __init__(self, api_key: str, user_id: str, user_name: str, name_cache: IdLookupCache):
        require_api_key(api_key)
        self.user_id = user_id
        self.search = PagedPhotoSearch(api_key, "flickr.photos.search", name_cache)
        self.name = f"flickr:user:{user_name}"

    def build_query(self) -> RequestSpec:
        return self.search.build_request(user_id=self.user_id)

    def process_response(self, payload: str) -> List[ImageFeedItem]:
        return self.search.parse_photos(payload)

    def retry_time(self, outcome: PollOutcome) -> Optional[float]:
        return None

    def is_up(self, outcome: PollOutcome) -> bool:
        return outcome.success


class FlickrGroupAdapter:
    """Photos in one group pool."""

    source_type = SourceType.FLICKR
    min_poll_interval = FLICKR_MIN_POLL_INTERVAL
    cooldowns = FLICKR_COOLDOWNS

    def __init__(self, api_key: str, group_id: str, group_name: str, name_cache: IdLookupCache):
        require_api_key(api_key)
        self.group_id = group_id
        self.search = PagedPhotoSearch(api_key, "flickr.groups.pools.getPhotos", name_cache)
        self.name = f"flickr:group:{group_name}"

    def build_query(self) -> RequestSpec:
        # Group pools do not filter by upload date
        return self.search.build_request(use_cursor=False, group_id=self.group_id)

    def process_response(self, payload: str) -> List[ImageFeedItem]:
        return self.search.parse_photos(payload)

    def retry_time(self, outcome: PollOutcome) -> Optional[float]:
        return None

    def is_up(self, outcome: PollOutcome) -> bool:
        return outcome.success


async def lookup_flickr_user_id(
    client: FeedHttpClient,
    api_key: str,
    username: str,
    rate_limiter: Optional[RateLimiter] = None,
) -> Optional[str]:
    """
    Resolve a Flickr user name to its NSID.

    Args:
        client: HTTP client
        api_key: Flickr API key
        username: Screen name to look up
        rate_limiter: Optional Flickr rate limiter

    Returns:
        The NSID, or None if Flickr does not know the user
    """
    spec = flickr_request(api_key, "flickr.people.findByUsername", username=username)
    try:
        response = parse_flickr_response(await client.fetch(spec, rate_limiter), FlickrUserResponse)
    except ProtocolError as e:
        if e.status is None:
            logger.warning(f"Flickr user '{username}' not found: {e}")
            return None
        raise

    if response.user is None:
        return None
    return response.user.nsid or response.user.id


async def lookup_flickr_group_id(
    client: FeedHttpClient,
    api_key: str,
    group_name: str,
    rate_limiter: Optional[RateLimiter] = None,
) -> Optional[str]:
    """Resolve a Flickr group name to its NSID, preferring an exact name match."""
    spec = flickr_request(api_key, "flickr.groups.search", text=group_name, per_page=20)
    try:
        response = parse_flickr_response(await client.fetch(spec, rate_limiter), FlickrGroupsResponse)
    except ProtocolError as e:
        if e.status is None:
            logger.warning(f"Flickr group '{group_name}' not found: {e}")
            return None
        raise

    groups = response.groups.group if response.groups else []
    if not groups:
        return None
    for group in groups:
        if group.name.lower() == group_name.lower():
            return group.nsid
    return groups[0].nsid


async def resolve_flickr_user(
    name_cache: IdLookupCache,
    client: FeedHttpClient,
    api_key: str,
    username: str,
    rate_limiter: Optional[RateLimiter] = None,
) -> Optional[str]:
    """Resolve a user name through the shared lookup cache."""

    async def fetch(name: str) -> Optional[str]:
        return await lookup_flickr_user_id(client, api_key, name, rate_limiter)

    return await name_cache.resolve(USER_NAMESPACE, username, fetch)


async def resolve_flickr_group(
    name_cache: IdLookupCache,
    client: FeedHttpClient,
    api_key: str,
    group_name: str,
    rate_limiter: Optional[RateLimiter] = None,
) -> Optional[str]:
    """Resolve a group name through the shared lookup cache."""

    async def fetch(name: str) -> Optional[str]:
        return await lookup_flickr_group_id(client, api_key, name, rate_limiter)

    return await name_cache.resolve(GROUP_NAMESPACE, group_name, fetch)


async def fetch_flickr_image_sizes(
    client: FeedHttpClient,
    api_key: str,
    item: ImageFeedItem,
    rate_limiter: Optional[RateLimiter] = None,
) -> Dict[Tuple[int, int], str]:
    """
    Look up the available renditions of a Flickr image and store them on the item.

    Args:
        client: HTTP client
        api_key: Flickr API key
        item: Image item with a Flickr photo id in ``service_id``
        rate_limiter: Optional Flickr rate limiter

    Returns:
        Mapping of (width, height) to image URL
    """
    if item.source_type is not SourceType.FLICKR or not item.service_id:
        return item.sizes

    spec = flickr_request(api_key, "flickr.photos.getSizes", photo_id=item.service_id)
    response = parse_flickr_response(await client.fetch(spec, rate_limiter), FlickrSizesResponse)
    if response.sizes is not None:
        for size in response.sizes.size:
            item.sizes[(size.width, size.height)] = size.source
    return item.sizes

