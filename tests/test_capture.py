"""
Tests for the event capturer
"""

import asyncio

import pytest

from fieldsync.field.capture import EventCapturer, RECENT_LIMIT
from fieldsync.field.position import PositionProvider, StaticPositionProvider, WatchingPositionProvider
from fieldsync.models.enums import EventState, ScanAction
from fieldsync.utils.exceptions import InvalidTagError


class SlowPositionProvider(PositionProvider):
    async def current_fix(self):
        await asyncio.sleep(10)


class BrokenPositionProvider(PositionProvider):
    async def current_fix(self):
        raise OSError("GPS unavailable")


@pytest.mark.asyncio
async def test_capture_queues_event_without_connectivity(queue):
    capturer = EventCapturer(queue)

    event = await capturer.capture("  TAG-77  ", ScanAction.CHECK_IN)

    assert event.tag_id == "TAG-77"
    assert event.action is ScanAction.CHECK_IN
    assert event.state is EventState.QUEUED
    assert event.position is None
    assert event.captured_at.tzinfo is not None
    assert [e.correlation_id for e in queue.all()] == [event.correlation_id]


@pytest.mark.asyncio
async def test_offline_captures_are_all_kept_in_order(queue):
    capturer = EventCapturer(queue)

    captured = [await capturer.capture(f"TAG{i}") for i in range(12)]

    assert queue.size() == 12
    assert [e.correlation_id for e in queue.all()] == [e.correlation_id for e in captured]
    assert len({e.correlation_id for e in captured}) == 12


@pytest.mark.asyncio
@pytest.mark.parametrize("raw", ["", "   ", "TAG WITH SPACE", "X" * 101, None])
async def test_malformed_read_never_reaches_queue(queue, raw):
    capturer = EventCapturer(queue)

    with pytest.raises(InvalidTagError):
        await capturer.capture(raw)
    assert queue.size() == 0


@pytest.mark.asyncio
async def test_position_is_attached_when_available(queue):
    capturer = EventCapturer(queue, StaticPositionProvider(-26.2041, 28.0473, accuracy=100))

    event = await capturer.capture("TAG1")

    assert event.position.lat == pytest.approx(-26.2041)
    assert event.position.lng == pytest.approx(28.0473)
    assert queue.all()[0].position == event.position


@pytest.mark.asyncio
async def test_slow_position_fix_does_not_block_capture(queue):
    capturer = EventCapturer(queue, SlowPositionProvider(), position_timeout=0.05)

    event = await asyncio.wait_for(capturer.capture("TAG1"), timeout=2)

    assert event.position is None
    assert queue.size() == 1


class FirstCallSlowProvider(PositionProvider):
    def __init__(self, delay):
        self.delay = delay
        self.calls = 0

    async def current_fix(self):
        self.calls += 1
        if self.calls == 1:
            await asyncio.sleep(self.delay)
        return None


@pytest.mark.asyncio
async def test_overlapping_captures_queue_in_capture_order(queue):
    capturer = EventCapturer(queue, FirstCallSlowProvider(0.2), position_timeout=1)

    first = asyncio.ensure_future(capturer.capture("TAG-A"))
    await asyncio.sleep(0.01)
    second = asyncio.ensure_future(capturer.capture("TAG-B"))
    await asyncio.gather(first, second)

    queued = queue.all()
    assert [e.tag_id for e in queued] == ["TAG-A", "TAG-B"]
    assert queued[0].captured_at <= queued[1].captured_at


@pytest.mark.asyncio
async def test_failing_position_provider_does_not_block_capture(queue):
    capturer = EventCapturer(queue, BrokenPositionProvider())

    event = await capturer.capture("TAG1")

    assert event.position is None
    assert queue.size() == 1


@pytest.mark.asyncio
async def test_watching_provider_uses_latest_fix_until_unsubscribed(queue):
    provider = WatchingPositionProvider()
    capturer = EventCapturer(queue, provider)
    watch = provider.watch()
    provider.update(51.5, -0.12)
    provider.update(51.6, -0.13)

    first = await capturer.capture("TAG1")
    watch.unsubscribe()
    provider.update(0, 0)
    second = await capturer.capture("TAG2")

    assert first.position.lat == pytest.approx(51.6)
    assert second.position is None


@pytest.mark.asyncio
async def test_recent_keeps_newest_first_and_is_bounded(queue):
    capturer = EventCapturer(queue)
    captured = [await capturer.capture(f"TAG{i}") for i in range(RECENT_LIMIT + 3)]

    recent = capturer.recent()

    assert len(recent) == RECENT_LIMIT
    assert recent[0].correlation_id == captured[-1].correlation_id


@pytest.mark.asyncio
async def test_listeners_are_notified_after_append(queue):
    capturer = EventCapturer(queue)
    sizes = []
    subscription = capturer.on_captured(lambda event: sizes.append(queue.size()))

    await capturer.capture("TAG1")
    subscription.unsubscribe()
    await capturer.capture("TAG2")

    assert sizes == [1]
