"""Tests for the streaming feed source."""

import asyncio
import json
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from feed_processor.collector.http_client import RequestSpec
from feed_processor.collector.streaming import StreamingFeedSource
from feed_processor.config import BackoffConfig
from feed_processor.exceptions import ParseError, TransportError
from feed_processor.models.enums import SourceType
from tests.factories import BASE_DATE, make_status


class FakeStreamAdapter:
    """Parses JSON lines of the form {"id": ..., "minutes": ...}."""

    source_type = SourceType.TWITTER
    name = "twitter:stream"

    def build_stream_request(self):
        return RequestSpec(url="https://stream.example.com/filter.json", method="POST", provider="twitter")

    def parse_message(self, line):
        message = json.loads(line)
        if "id" not in message:
            return None
        return make_status(message["id"], minutes=message.get("minutes", 0))


def stream_of(*lines, error=None):
    async def stream_lines(spec, rate_limiter=None):
        for line in lines:
            yield line
        if error is not None:
            raise error

    return stream_lines


def make_source(client, backoff=None, **kwargs):
    return StreamingFeedSource(
        FakeStreamAdapter(),
        client,
        BASE_DATE - timedelta(days=1),
        backoff or BackoffConfig(),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_messages_are_emitted_as_they_arrive():
    client = MagicMock()
    client.stream_lines = stream_of('{"id": "1"}', '{"delete": {}}', '{"id": "2"}', error=TransportError("reset"))
    emitted = []
    health = []
    source = make_source(
        client,
        on_items=lambda src, items: emitted.extend(items),
        on_health=lambda src, up: health.append(up),
    )

    outcome = await source.consume_stream()

    assert [item.uri for item in emitted] == [make_status("1").uri, make_status("2").uri]
    assert source.messages_received == 3
    assert health == [True, False]
    assert isinstance(outcome.error, TransportError)


@pytest.mark.asyncio
async def test_old_messages_are_dropped():
    client = MagicMock()
    client.stream_lines = stream_of('{"id": "old", "minutes": -5000}')
    emitted = []
    source = make_source(client, on_items=lambda src, items: emitted.extend(items))

    await source.consume_stream()

    assert emitted == []


@pytest.mark.asyncio
async def test_malformed_message_forces_reconnect():
    client = MagicMock()
    client.stream_lines = stream_of("not json")
    source = make_source(client)

    outcome = await source.consume_stream()

    assert isinstance(outcome.error, ParseError)
    assert not outcome.success


@pytest.mark.asyncio
async def test_connection_failure_escalates_linearly():
    client = MagicMock()
    client.stream_lines = stream_of(error=TransportError("refused"))
    source = make_source(client)

    delays = []
    for _ in range(3):
        delays.append(source.policy.next_delay(await source.consume_stream()))

    assert delays == [0.25, 0.5, 0.75]


@pytest.mark.asyncio
async def test_first_message_resets_backoff():
    client = MagicMock()
    client.stream_lines = stream_of(error=TransportError("refused"))
    source = make_source(client)
    source.policy.next_delay(await source.consume_stream())
    source.policy.next_delay(await source.consume_stream())

    client.stream_lines = stream_of('{"id": "1"}', error=TransportError("reset"))
    delay = source.policy.next_delay(await source.consume_stream())

    assert delay == 0.25


@pytest.mark.asyncio
async def test_reconnect_loop_runs_until_stopped():
    connections = []

    async def stream_lines(spec, rate_limiter=None):
        connections.append(spec)
        yield '{"id": "%d"}' % len(connections)
        raise TransportError("reset")

    client = MagicMock()
    client.stream_lines = stream_lines
    backoff = BackoffConfig(linear_floor_sec=0.01, linear_step_sec=0.01, linear_ceiling_sec=0.02)
    source = make_source(client, backoff=backoff)

    source.start()
    await asyncio.sleep(0.2)
    await source.stop()

    assert len(connections) >= 3
    assert not source.is_running
