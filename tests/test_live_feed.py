"""
Tests for the live accepted-event feed client
"""

import asyncio
import json
from datetime import datetime, timezone

import pytest
import websockets

from fieldsync.field.live_feed import LiveFeed
from fieldsync.models.enums import EVENT_ACCEPTED
from fieldsync.models.schemas import AcceptedEventMessage


def accepted_frame(event):
    return json.dumps(AcceptedEventMessage(event=event, received_at=datetime.now(timezone.utc)).to_wire())


def test_uri_is_derived_from_server_url():
    assert LiveFeed("https://api.example.org/", token="t", unit_id="u9").uri == \
        "wss://api.example.org/ws/events?unit_id=u9"
    assert LiveFeed("http://10.0.0.5:8000", token="t", unit_id="u1").uri == \
        "ws://10.0.0.5:8000/ws/events?unit_id=u1"


def test_dispatch_hands_accepted_events_to_subscribers(make_event):
    feed = LiveFeed("http://server", token="t", unit_id="u1")
    seen = []
    feed.on_event(seen.append)
    event = make_event(tag_id="TAG-PUSH")

    message = feed.dispatch(accepted_frame(event))

    assert message.type == EVENT_ACCEPTED
    assert [m.event.correlation_id for m in seen] == [event.correlation_id]
    assert seen[0].event.tag_id == "TAG-PUSH"


@pytest.mark.parametrize("frame", [
    "pong",
    json.dumps({"type": "presence", "unit": "u2"}),
    json.dumps([1, 2, 3]),
    json.dumps({"type": EVENT_ACCEPTED, "event": {"tagId": "X"}}),
])
def test_dispatch_ignores_other_frames(frame):
    feed = LiveFeed("http://server", token="t", unit_id="u1")
    seen = []
    feed.on_event(seen.append)

    assert feed.dispatch(frame) is None
    assert seen == []


def test_reconnect_delay_grows_and_is_capped():
    feed = LiveFeed("http://server", token="t", unit_id="u1")

    for attempt in range(12):
        delay = feed.reconnect_delay(attempt)
        expected = min(feed.BASE_DELAY_SECONDS * 2 ** attempt, feed.MAX_DELAY_SECONDS)
        assert max(0.0, expected - feed.JITTER_RANGE) <= delay <= expected + feed.JITTER_RANGE


@pytest.mark.asyncio
async def test_feed_receives_pushes_over_websocket(make_event):
    event = make_event()
    requests = []

    async def handler(connection):
        requests.append(connection.request)
        await connection.send(accepted_frame(event))
        await connection.wait_closed()

    async with websockets.serve(handler, "127.0.0.1", 0) as server:
        port = server.sockets[0].getsockname()[1]
        feed = LiveFeed(f"http://127.0.0.1:{port}", token="unit-token", unit_id="u1")
        received = asyncio.Event()
        feed.on_event(lambda message: received.set())

        feed.start()
        await asyncio.wait_for(received.wait(), timeout=5)
        assert feed.connected is True
        await feed.stop()

    assert requests[0].path == "/ws/events?unit_id=u1"
    assert requests[0].headers["Authorization"] == "Bearer unit-token"
    assert feed.connected is False
