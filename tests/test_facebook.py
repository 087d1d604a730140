"""Tests for the Facebook page adapter."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from feed_processor.collector.backoff import PollOutcome
from feed_processor.config import BackoffConfig
from feed_processor.exceptions import CredentialsError, ParseError, ProtocolError, TransportError
from feed_processor.models.enums import ContentType
from feed_processor.providers.facebook import FacebookPageAdapter, build_page_queries

MULTI_QUERY_RESPONSE = {
    "data": [
        {"name": "id", "fql_result_set": [{"page_id": "111"}]},
        {"name": "ownerphotostream", "fql_result_set": [{"post_id": "111_1", "actor_id": 111}]},
        {
            "name": "ownerphotodata",
            "fql_result_set": [{
                "pid": "111_9001",
                "owner": 111,
                "created": 1700000000,
                "src_big": "https://fbcdn.example.com/big.jpg",
                "link": "https://www.facebook.com/photo.php?pid=9001",
                "caption": "Sunset over the bay",
            }],
        },
        {
            "name": "ownerphotoauthordata",
            "fql_result_set": [{"page_id": 111, "name": "Example Page", "pic_small": "https://fbcdn.example.com/pic.jpg"}],
        },
        {
            "name": "ownerstatusstream",
            "fql_result_set": [
                {
                    "post_id": "111_2",
                    "actor_id": "111",
                    "created_time": 1700000100,
                    "message": "Hello &amp; welcome",
                    "permalink": "https://www.facebook.com/example/posts/2",
                },
                {
                    "post_id": "111_3",
                    "actor_id": "999",
                    "created_time": 1700000200,
                    "message": "Unknown author",
                    "permalink": "https://www.facebook.com/example/posts/3",
                },
            ],
        },
        {"name": "ownerstatusauthordata", "fql_result_set": [{"page_id": "111", "name": "Example Page", "pic_small": None}]},
    ]
}


@pytest.fixture
def adapter():
    return FacebookPageAdapter("examplepage", "client-id", "client-secret", BackoffConfig())


@pytest.fixture
def mock_sleep(mocker):
    return mocker.patch("feed_processor.providers.facebook.asyncio.sleep", new_callable=AsyncMock)


def test_requires_credentials():
    with pytest.raises(CredentialsError):
        FacebookPageAdapter("examplepage", "", "", BackoffConfig())


def test_page_queries_are_named():
    queries = build_page_queries("examplepage", 1700000000, include_others=False)
    assert set(queries) == {
        "id",
        "ownerphotostream",
        "ownerstatusstream",
        "ownerphotoauthordata",
        "ownerphotodata",
        "ownerstatusauthordata",
    }
    assert "username = 'examplepage'" in queries["id"]
    assert "created_time < 1700000000" in queries["ownerstatusstream"]

    with_others = build_page_queries("examplepage", 1700000000, include_others=True)
    assert len(with_others) == 11
    assert "othersstatusstream" in with_others


def test_process_response_joins_authors(adapter):
    items = adapter.process_response(json.dumps(MULTI_QUERY_RESPONSE))

    assert len(items) == 2
    photo, status = items
    assert photo.content_type == ContentType.IMAGE
    assert photo.uri == "https://www.facebook.com/photo.php?pid=9001"
    assert photo.author == "Example Page"
    assert photo.caption == "Sunset over the bay"
    assert photo.thumbnail_uri == "https://fbcdn.example.com/big.jpg"
    assert status.content_type == ContentType.STATUS
    assert status.status == "Hello & welcome"
    assert status.uri == "https://www.facebook.com/example/posts/2"


def test_process_response_rejects_bad_rows(adapter):
    bad = {"data": [{"name": "ownerphotodata", "fql_result_set": [{"pid": "1"}]}]}
    with pytest.raises(ParseError):
        adapter.process_response(json.dumps(bad))
    with pytest.raises(ParseError):
        adapter.process_response("<html>")


def test_parse_token():
    assert FacebookPageAdapter.parse_token(json.dumps({"access_token": "abc", "token_type": "bearer"})) == "abc"
    assert FacebookPageAdapter.parse_token("access_token=xyz|123&expires=5183999") == "xyz|123"
    with pytest.raises(ParseError):
        FacebookPageAdapter.parse_token("error=invalid_client")


@pytest.mark.asyncio
async def test_fetch_gets_token_then_runs_query(adapter, mock_sleep):
    client = MagicMock()
    client.fetch = AsyncMock(side_effect=["access_token=tok", json.dumps(MULTI_QUERY_RESPONSE)])

    payload = await adapter.fetch(client)

    assert json.loads(payload) == MULTI_QUERY_RESPONSE
    assert adapter.access_token == "tok"
    token_spec, query_spec = [call.args[0] for call in client.fetch.await_args_list]
    assert token_spec.params["grant_type"] == "client_credentials"
    assert query_spec.params["access_token"] == "tok"
    assert set(json.loads(query_spec.params["q"])) >= {"id", "ownerstatusstream"}
    mock_sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_failure_sleeps_inside_fetch_then_retries_immediately(adapter, mock_sleep):
    client = MagicMock()
    client.fetch = AsyncMock(side_effect=ProtocolError("Server error", status=500))

    with pytest.raises(ProtocolError) as exc_info:
        await adapter.fetch(client)

    mock_sleep.assert_awaited_once_with(10.0)
    outcome = PollOutcome.failed(exc_info.value)
    assert adapter.retry_time(outcome) == 0.0
    # Only the attempt that actually slept is retried without a delay
    assert adapter.retry_time(outcome) is None


@pytest.mark.asyncio
async def test_pause_escalates(adapter, mock_sleep):
    client = MagicMock()
    client.fetch = AsyncMock(side_effect=TransportError("refused"))

    for _ in range(2):
        with pytest.raises(TransportError):
            await adapter.fetch(client)
    client.fetch.side_effect = ProtocolError("Server error", status=500)
    for _ in range(2):
        with pytest.raises(ProtocolError):
            await adapter.fetch(client)

    waits = [call.args[0] for call in mock_sleep.await_args_list]
    assert waits == [0.5, 0.75, 10.0, 20.0]


def test_success_does_not_override_delay(adapter):
    assert adapter.retry_time(PollOutcome.ok(3)) is None
    assert adapter.is_up(PollOutcome.ok())
