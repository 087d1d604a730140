"""Paged photo search helper shared by the Flickr adapters."""

import json
import logging
from typing import Any, Dict, List, Type, TypeVar

from pydantic import ValidationError

from feed_processor.collector.http_client import RequestSpec
from feed_processor.collector.name_cache import IdLookupCache
from feed_processor.exceptions import ParseError, ProtocolError
from feed_processor.models.enums import SourceType
from feed_processor.models.feed_item import ImageFeedItem
from feed_processor.models.mapping import clean_text, from_unix_timestamp
from feed_processor.models.schemas import FlickrPhoto, FlickrPhotosResponse, FlickrResponse

logger = logging.getLogger(__name__)

FLICKR_REST_URL = "https://api.flickr.com/services/rest/"
PHOTO_EXTRAS = "icon_server,description,date_upload,date_taken,owner_name,path_alias"
PAGE_SIZE = 500

SOURCE_URI = "https://www.flickr.com/photos/{owner}/{photo_id}"
AVATAR_URI = "https://farm{farm}.staticflickr.com/{server}/buddyicons/{owner}.jpg"
DEFAULT_AVATAR_URI = "https://www.flickr.com/images/buddyicon.gif"
THUMBNAIL_URI = "https://farm{farm}.staticflickr.com/{server}/{photo_id}_{secret}_m.jpg"

# Namespace in the id lookup cache for owner display names
USER_NAMESPACE = "flickr_user"
GROUP_NAMESPACE = "flickr_group"

ResponseT = TypeVar("ResponseT", bound=FlickrResponse)


def flickr_request(api_key: str, method: str, **params: Any) -> RequestSpec:
    """Build a JSON request for a Flickr REST method."""
    query: Dict[str, Any] = {
        "method": method,
        "api_key": api_key,
        "format": "json",
        "nojsoncallback": 1,
    }
    query.update(params)
    return RequestSpec(url=FLICKR_REST_URL, params=query, provider=SourceType.FLICKR.value)


def parse_flickr_response(payload: str, model: Type[ResponseT]) -> ResponseT:
    """
    Decode and validate a Flickr JSON response.

    Raises:
        ParseError: The body is not valid JSON or does not match the schema
        ProtocolError: Flickr answered with ``stat: fail``
    """
    try:
        response = model.model_validate(json.loads(payload))
    except (ValueError, ValidationError) as e:
        raise ParseError(f"Unexpected Flickr response: {e}") from e

    if not response.ok:
        raise ProtocolError(f"Flickr error {response.code}: {response.message}")
    return response


class PagedPhotoSearch:
    """
    Builds paged photo requests and turns photo lists into image items.

    Tracks the newest upload timestamp seen so searches that support it only
    ask for newer photos.
    """

    def __init__(self, api_key: str, method: str, name_cache: IdLookupCache, page_size: int = PAGE_SIZE):
        self.api_key = api_key
        self.method = method
        self.name_cache = name_cache
        self.page_size = page_size
        self.min_upload_date = 0

    def build_request(self, use_cursor: bool = True, **params: Any) -> RequestSpec:
        query = {
            "page": 1,
            "sort": "date-posted-desc",
            "per_page": self.page_size,
            "extras": PHOTO_EXTRAS,
        }
        if use_cursor:
            query["min_upload_date"] = self.min_upload_date
        query.update(params)
        return flickr_request(self.api_key, self.method, **query)

    def parse_photos(self, payload: str) -> List[ImageFeedItem]:
        response = parse_flickr_response(payload, FlickrPhotosResponse)
        if response.photos is None:
            raise ParseError("Flickr response has no photos element")

        items = []
        for photo in response.photos.photo:
            self.name_cache.put(USER_NAMESPACE, photo.ownername, photo.owner)
            self.min_upload_date = max(self.min_upload_date, photo.dateupload)
            items.append(photo_to_item(photo))
        return items


def photo_to_item(photo: FlickrPhoto) -> ImageFeedItem:
    """Map a Flickr photo record onto an image item."""
    # The page URI is what a user would paste into a ban list
    owner_path = photo.pathalias or photo.owner
    if photo.iconserver and photo.iconserver != "0":
        avatar = AVATAR_URI.format(farm=photo.iconfarm, server=photo.iconserver, owner=photo.owner)
    else:
        avatar = DEFAULT_AVATAR_URI

    return ImageFeedItem(
        uri=SOURCE_URI.format(owner=owner_path, photo_id=photo.id),
        date=from_unix_timestamp(photo.dateupload),
        source_type=SourceType.FLICKR,
        author=clean_text(photo.ownername),
        avatar_uri=avatar,
        service_id=photo.id,
        title=clean_text(photo.title),
        caption=clean_text(photo.description.content),
        thumbnail_uri=THUMBNAIL_URI.format(
            farm=photo.farm, server=photo.server, photo_id=photo.id, secret=photo.secret
        ),
    )
