"""Tests for the polling feed source."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from feed_processor.collector.backoff import PollOutcome
from feed_processor.collector.feed_source import FeedSource, SourceState
from feed_processor.collector.http_client import RequestSpec
from feed_processor.config import BackoffConfig
from feed_processor.exceptions import ParseError, ProtocolError, TransportError
from feed_processor.models.enums import SourceType
from tests.factories import BASE_DATE, make_news


class FakeAdapter:
    """Adapter returning canned items."""

    source_type = SourceType.NEWS
    cooldowns = {404: 7200.0}

    def __init__(self, items=None, min_poll_interval=0.0, override=None):
        self.items = items or []
        self.min_poll_interval = min_poll_interval
        self.override = override
        self.name = "news:fake"
        self.process_response = MagicMock(side_effect=lambda payload: list(self.items))

    def build_query(self):
        return RequestSpec(url="https://news.example.com/feed.xml", provider="news")

    def retry_time(self, outcome):
        return self.override

    def is_up(self, outcome):
        return outcome.success


@pytest.fixture
def client():
    client = MagicMock()
    client.fetch = AsyncMock(return_value="<rss/>")
    return client


@pytest.fixture
def fast_backoff():
    return BackoffConfig(
        exponential_floor_sec=0.01,
        exponential_ceiling_sec=0.02,
        linear_floor_sec=0.01,
        linear_step_sec=0.01,
        linear_ceiling_sec=0.02,
    )


def make_source(adapter, client, backoff=None, poll_interval=60.0, **kwargs):
    return FeedSource(
        adapter,
        client,
        poll_interval,
        BASE_DATE - timedelta(days=1),
        backoff or BackoffConfig(),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_poll_emits_fresh_items(client):
    fresh = make_news("fresh", minutes=5)
    stale = make_news("stale", minutes=-3 * 24 * 60)
    adapter = FakeAdapter([fresh, stale])
    on_items = MagicMock()
    on_health = MagicMock()
    source = make_source(adapter, client, on_items=on_items, on_health=on_health)

    outcome = await source.poll_once()

    assert outcome.success
    assert outcome.item_count == 1
    on_items.assert_called_once_with(source, [fresh])
    on_health.assert_called_once_with(source, True)
    adapter.process_response.assert_called_once_with("<rss/>")


@pytest.mark.asyncio
async def test_empty_poll_still_reports_health(client):
    on_items = MagicMock()
    on_health = MagicMock()
    source = make_source(FakeAdapter([]), client, on_items=on_items, on_health=on_health)

    await source.poll_once()

    on_items.assert_not_called()
    on_health.assert_called_once_with(source, True)


@pytest.mark.asyncio
async def test_protocol_error_is_contained(client):
    client.fetch.side_effect = ProtocolError("Server error", status=500)
    on_health = MagicMock()
    exporter = MagicMock()
    source = make_source(FakeAdapter(), client, on_health=on_health, prometheus_exporter=exporter)

    outcome = await source.poll_once()

    assert not outcome.success
    assert outcome.status == 500
    on_health.assert_called_once_with(source, False)
    exporter.record_poll_error.assert_called_once_with("news", "500")
    exporter.set_source_up.assert_called_once_with("news:fake", False)
    assert source.tracker.consecutive_errors == 1
    assert source.retry_delay(outcome) == 10.0


@pytest.mark.asyncio
async def test_unexpected_parse_failure_becomes_parse_error(client):
    adapter = FakeAdapter()
    adapter.process_response.side_effect = KeyError("entries")
    source = make_source(adapter, client)

    outcome = await source.poll_once()

    assert isinstance(outcome.error, ParseError)


@pytest.mark.asyncio
async def test_subscriber_errors_do_not_fail_the_poll(client):
    source = make_source(
        FakeAdapter([make_news("a", minutes=1)]),
        client,
        on_items=MagicMock(side_effect=RuntimeError("boom")),
        on_health=MagicMock(side_effect=RuntimeError("boom")),
    )

    outcome = await source.poll_once()

    assert outcome.success


def test_poll_interval_never_below_provider_minimum(client):
    source = make_source(FakeAdapter(min_poll_interval=300.0), client, poll_interval=30.0)
    assert source.poll_interval == 300.0
    assert source.retry_delay(PollOutcome.ok()) == 300.0


def test_cooldown_and_override(client):
    source = make_source(FakeAdapter(), client)
    assert source.retry_delay(PollOutcome.failed(ProtocolError("gone", status=404))) == 7200.0

    source = make_source(FakeAdapter(override=0.0), client)
    assert source.retry_delay(PollOutcome.failed(TransportError("refused"))) == 0.0


@pytest.mark.asyncio
async def test_custom_fetch_is_used(client):
    adapter = FakeAdapter()
    adapter.fetch = AsyncMock(return_value="<custom/>")
    source = make_source(adapter, client)

    await source.poll_once()

    adapter.fetch.assert_awaited_once_with(client, None)
    client.fetch.assert_not_awaited()
    adapter.process_response.assert_called_once_with("<custom/>")


@pytest.mark.asyncio
async def test_loop_survives_failures(client, fast_backoff):
    adapter = FakeAdapter()
    adapter.process_response.side_effect = ValueError("bad payload")
    source = make_source(adapter, client, backoff=fast_backoff, poll_interval=0.01)

    source.start()
    await asyncio.sleep(0.2)

    assert source.is_running
    assert client.fetch.await_count >= 3
    await source.stop()


@pytest.mark.asyncio
async def test_stop_aborts_in_flight_request(client):
    started = asyncio.Event()

    async def hang(*args, **kwargs):
        started.set()
        await asyncio.Event().wait()

    client.fetch.side_effect = hang
    source = make_source(FakeAdapter(), client)

    source.start()
    await asyncio.wait_for(started.wait(), timeout=1.0)
    await asyncio.wait_for(source.stop(), timeout=1.0)

    assert not source.is_running
    assert source.state is SourceState.STOPPED


@pytest.mark.asyncio
async def test_stop_prevents_further_polls(client):
    source = make_source(FakeAdapter(), client, poll_interval=60.0)

    source.start()
    await asyncio.sleep(0.05)
    await source.stop()
    calls = client.fetch.await_count
    await asyncio.sleep(0.05)

    assert calls == 1
    assert client.fetch.await_count == calls


@pytest.mark.asyncio
async def test_dispose_is_idempotent(client):
    source = make_source(FakeAdapter(), client)
    source.start()

    source.dispose()
    source.dispose()
    await asyncio.sleep(0)

    assert source.is_disposed
    with pytest.raises(RuntimeError):
        source.start()
