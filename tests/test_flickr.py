"""Tests for the Flickr adapters and lookups."""

import json
import unittest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from feed_processor.collector.name_cache import IdLookupCache
from feed_processor.exceptions import CredentialsError, ParseError, ProtocolError
from feed_processor.models.enums import ContentType, SourceType
from feed_processor.providers.flickr import (
    FlickrGroupAdapter,
    FlickrSearchAdapter,
    FlickrUserAdapter,
    fetch_flickr_image_sizes,
    lookup_flickr_group_id,
    lookup_flickr_user_id,
    resolve_flickr_user,
)
from feed_processor.providers.paged_search import DEFAULT_AVATAR_URI, USER_NAMESPACE
from tests.factories import make_image

PHOTOS_RESPONSE = {
    "photos": {
        "page": 1,
        "pages": 1,
        "perpage": 500,
        "photo": [
            {
                "id": "5300000001",
                "owner": "12345678@N00",
                "secret": "abcdef",
                "server": "65535",
                "farm": 66,
                "title": "Sleepy &amp; fluffy",
                "ownername": "Alice",
                "dateupload": "1700000000",
                "iconserver": "4321",
                "iconfarm": 5,
                "pathalias": "alice",
                "description": {"_content": "<b>My</b> cat"},
            },
            {
                "id": 5300000002,
                "owner": "87654321@N00",
                "secret": "fedcba",
                "server": "65535",
                "farm": 66,
                "title": "",
                "ownername": "Bob",
                "dateupload": 1700000500,
                "iconserver": "0",
                "iconfarm": 0,
                "description": {"_content": ""},
            },
        ],
    },
    "stat": "ok",
}


class TestFlickrSearchAdapter(unittest.TestCase):
    """Tag search requests and photo parsing."""

    def setUp(self):
        self.name_cache = IdLookupCache()
        self.adapter = FlickrSearchAdapter("key", ["cats", "kittens"], self.name_cache)

    def test_build_query(self):
        spec = self.adapter.build_query()

        self.assertEqual(spec.url, "https://api.flickr.com/services/rest/")
        self.assertEqual(spec.params["method"], "flickr.photos.search")
        self.assertEqual(spec.params["tags"], "cats,kittens")
        self.assertEqual(spec.params["min_upload_date"], 0)
        self.assertEqual(spec.params["format"], "json")
        self.assertEqual(spec.provider, "flickr")

    def test_process_response(self):
        items = self.adapter.process_response(json.dumps(PHOTOS_RESPONSE))

        self.assertEqual(len(items), 2)
        first = items[0]
        self.assertEqual(first.uri, "https://www.flickr.com/photos/alice/5300000001")
        self.assertEqual(first.content_type, ContentType.IMAGE)
        self.assertEqual(first.source_type, SourceType.FLICKR)
        self.assertEqual(first.author, "Alice")
        self.assertEqual(first.title, "Sleepy & fluffy")
        self.assertEqual(first.caption, "My cat")
        self.assertEqual(first.date, datetime.fromtimestamp(1700000000, tz=timezone.utc))
        self.assertEqual(first.thumbnail_uri, "https://farm66.staticflickr.com/65535/5300000001_abcdef_m.jpg")
        self.assertEqual(first.avatar_uri, "https://farm5.staticflickr.com/4321/buddyicons/12345678@N00.jpg")

        second = items[1]
        self.assertEqual(second.uri, "https://www.flickr.com/photos/87654321@N00/5300000002")
        self.assertEqual(second.avatar_uri, DEFAULT_AVATAR_URI)

    def test_cursor_advances(self):
        self.adapter.process_response(json.dumps(PHOTOS_RESPONSE))
        self.assertEqual(self.adapter.build_query().params["min_upload_date"], 1700000500)

    def test_owner_names_are_cached(self):
        self.adapter.process_response(json.dumps(PHOTOS_RESPONSE))
        self.assertEqual(self.name_cache.get(USER_NAMESPACE, "alice"), "12345678@N00")
        self.assertEqual(self.name_cache.get(USER_NAMESPACE, "Bob"), "87654321@N00")

    def test_stat_fail_is_protocol_error(self):
        payload = json.dumps({"stat": "fail", "code": 100, "message": "Invalid API Key"})
        with self.assertRaises(ProtocolError) as ctx:
            self.adapter.process_response(payload)
        self.assertIsNone(ctx.exception.status)

    def test_malformed_payload_is_parse_error(self):
        with self.assertRaises(ParseError):
            self.adapter.process_response("jsonFlickrApi({")
        with self.assertRaises(ParseError):
            self.adapter.process_response(json.dumps({"stat": "ok"}))

    def test_requires_api_key(self):
        with self.assertRaises(CredentialsError):
            FlickrSearchAdapter("", ["cats"], self.name_cache)

    def test_tag_limit(self):
        with self.assertRaises(ValueError):
            FlickrSearchAdapter("key", [f"tag{i}" for i in range(21)], self.name_cache)


class TestFlickrUserAndGroupAdapters(unittest.TestCase):

    def test_user_query(self):
        adapter = FlickrUserAdapter("key", "12345678@N00", "alice", IdLookupCache())
        spec = adapter.build_query()
        self.assertEqual(spec.params["user_id"], "12345678@N00")
        self.assertIn("min_upload_date", spec.params)
        self.assertEqual(adapter.name, "flickr:user:alice")

    def test_group_query_has_no_upload_cursor(self):
        adapter = FlickrGroupAdapter("key", "34427469792@N01", "cats", IdLookupCache())
        spec = adapter.build_query()
        self.assertEqual(spec.params["method"], "flickr.groups.pools.getPhotos")
        self.assertEqual(spec.params["group_id"], "34427469792@N01")
        self.assertNotIn("min_upload_date", spec.params)


@pytest.fixture
def client():
    client = MagicMock()
    client.fetch = AsyncMock()
    return client


@pytest.mark.asyncio
async def test_lookup_user(client):
    client.fetch.return_value = json.dumps({"user": {"id": "12345678@N00", "nsid": "12345678@N00"}, "stat": "ok"})

    assert await lookup_flickr_user_id(client, "key", "alice") == "12345678@N00"
    spec = client.fetch.await_args.args[0]
    assert spec.params["method"] == "flickr.people.findByUsername"
    assert spec.params["username"] == "alice"


@pytest.mark.asyncio
async def test_lookup_unknown_user(client):
    client.fetch.return_value = json.dumps({"stat": "fail", "code": 1, "message": "User not found"})
    assert await lookup_flickr_user_id(client, "key", "nobody") is None


@pytest.mark.asyncio
async def test_lookup_user_http_failure_propagates(client):
    client.fetch.side_effect = ProtocolError("down", status=502)
    with pytest.raises(ProtocolError):
        await lookup_flickr_user_id(client, "key", "alice")


@pytest.mark.asyncio
async def test_lookup_group_prefers_exact_name(client):
    client.fetch.return_value = json.dumps({
        "groups": {"group": [{"nsid": "1@N01", "name": "Cats of the World"}, {"nsid": "2@N02", "name": "cats"}]},
        "stat": "ok",
    })
    assert await lookup_flickr_group_id(client, "key", "Cats") == "2@N02"


@pytest.mark.asyncio
async def test_lookup_group_falls_back_to_first_result(client):
    client.fetch.return_value = json.dumps({"groups": {"group": [{"nsid": "1@N01", "name": "Cats of the World"}]}, "stat": "ok"})
    assert await lookup_flickr_group_id(client, "key", "cats") == "1@N01"


@pytest.mark.asyncio
async def test_resolve_user_uses_cache(client):
    name_cache = IdLookupCache()
    name_cache.put(USER_NAMESPACE, "alice", "12345678@N00")

    assert await resolve_flickr_user(name_cache, client, "key", "Alice") == "12345678@N00"
    client.fetch.assert_not_awaited()


@pytest.mark.asyncio
async def test_fetch_image_sizes(client):
    client.fetch.return_value = json.dumps({
        "sizes": {"size": [
            {"label": "Small", "width": "240", "height": "180", "source": "https://live.staticflickr.com/1_s.jpg"},
            {"label": "Large", "width": 1024, "height": 768, "source": "https://live.staticflickr.com/1_b.jpg"},
        ]},
        "stat": "ok",
    })
    item = make_image("1")
    item.service_id = "5300000001"

    sizes = await fetch_flickr_image_sizes(client, "key", item)

    assert sizes == {
        (240, 180): "https://live.staticflickr.com/1_s.jpg",
        (1024, 768): "https://live.staticflickr.com/1_b.jpg",
    }
    assert item.sizes is sizes


@pytest.mark.asyncio
async def test_fetch_image_sizes_skips_other_providers(client):
    item = make_image("1", source=SourceType.FACEBOOK)
    assert await fetch_flickr_image_sizes(client, "key", item) == {}
    client.fetch.assert_not_awaited()
