"""
Tests for the sync engine: draining, coalescing, backoff
"""

import asyncio

import pytest

from fieldsync.field.connectivity import ConnectivityMonitor
from fieldsync.field.sync_engine import (
    SyncEngine, SyncOutcome, SyncRunState, SyncSignal, advance,
)
from fieldsync.models.enums import ConnectivityState, EventState
from fieldsync.models.schemas import Acknowledgement, MAX_BATCH_EVENTS
from fieldsync.utils.exceptions import TransientNetworkError


def accept_all(events):
    return [Acknowledgement(correlation_id=e.correlation_id, accepted=True) for e in events]


def online_monitor():
    return ConnectivityMonitor(initial=ConnectivityState.ONLINE)


def fill(queue, make_event, count):
    events = [make_event(tag_id=f"TAG{i}") for i in range(count)]
    for event in events:
        queue.append(event)
    return events


# ----------------------------------------------------------------------
# State machine
# ----------------------------------------------------------------------
@pytest.mark.parametrize("state, signal, expected", [
    (SyncRunState.IDLE, SyncSignal.TRIGGER, (SyncRunState.RUNNING, True)),
    (SyncRunState.RUNNING, SyncSignal.TRIGGER, (SyncRunState.RUNNING_WITH_FOLLOWUP, False)),
    (SyncRunState.RUNNING_WITH_FOLLOWUP, SyncSignal.TRIGGER, (SyncRunState.RUNNING_WITH_FOLLOWUP, False)),
    (SyncRunState.RUNNING, SyncSignal.RUN_FINISHED, (SyncRunState.IDLE, False)),
    (SyncRunState.RUNNING_WITH_FOLLOWUP, SyncSignal.RUN_FINISHED, (SyncRunState.RUNNING, True)),
])
def test_advance(state, signal, expected):
    assert advance(state, signal) == expected


def test_run_finished_while_idle_is_invalid():
    with pytest.raises(ValueError):
        advance(SyncRunState.IDLE, SyncSignal.RUN_FINISHED)


# ----------------------------------------------------------------------
# Runs
# ----------------------------------------------------------------------
@pytest.mark.asyncio
async def test_offline_run_sends_nothing(queue, make_event, transport_factory):
    fill(queue, make_event, 3)
    transport = transport_factory()
    engine = SyncEngine(queue, ConnectivityMonitor(), transport)

    report = await engine.sync_now()

    assert report.outcome is SyncOutcome.SKIPPED_OFFLINE
    assert transport.batches == []
    assert queue.size() == 3


@pytest.mark.asyncio
async def test_accepted_events_leave_the_queue(queue, make_event, transport_factory):
    events = fill(queue, make_event, 4)
    transport = transport_factory()
    engine = SyncEngine(queue, online_monitor(), transport)

    report = await engine.sync_now()

    assert report.outcome is SyncOutcome.DELIVERED
    assert report.accepted == 4
    assert transport.batches == [[e.correlation_id for e in events]]
    assert queue.size() == 0
    assert engine.state is SyncRunState.IDLE
    assert engine.last_synced_at is not None


@pytest.mark.asyncio
async def test_partial_acceptance_dead_letters_the_rejected(queue, make_event, transport_factory):
    first, second, third = fill(queue, make_event, 3)

    def respond(events):
        return [
            Acknowledgement(correlation_id=first.correlation_id, accepted=True),
            Acknowledgement(correlation_id=second.correlation_id, accepted=False, reason="tagId: bad"),
            Acknowledgement(correlation_id=third.correlation_id, accepted=True),
        ]

    engine = SyncEngine(queue, online_monitor(), transport_factory(respond=respond))

    report = await engine.sync_now()

    assert (report.accepted, report.rejected) == (2, 1)
    assert queue.size() == 0
    letters = queue.dead_letters()
    assert [d.event.correlation_id for d in letters] == [second.correlation_id]
    assert letters[0].reason == "tagId: bad"


@pytest.mark.asyncio
async def test_unanswered_events_stay_queued(queue, make_event, transport_factory):
    first, second = fill(queue, make_event, 2)

    def respond(events):
        return [Acknowledgement(correlation_id=first.correlation_id, accepted=True)]

    engine = SyncEngine(queue, online_monitor(), transport_factory(respond=respond))

    report = await engine.sync_now()

    assert report.unanswered == 1
    remaining = queue.all()
    assert [e.correlation_id for e in remaining] == [second.correlation_id]
    assert remaining[0].state is EventState.QUEUED
    assert queue.dead_letter_count() == 0


@pytest.mark.asyncio
async def test_many_triggers_during_a_run_coalesce_into_one_followup(queue, make_event, transport_factory):
    fill(queue, make_event, 1)
    gate = asyncio.Event()
    transport = transport_factory(gate=gate)
    engine = SyncEngine(queue, online_monitor(), transport)

    engine.trigger()
    await transport.started.wait()
    for _ in range(5):
        engine.trigger()
    assert engine.state is SyncRunState.RUNNING_WITH_FOLLOWUP

    gate.set()
    await engine.wait_idle()

    assert engine.runs == 2
    assert len(transport.batches) == 1
    assert engine.last_report.outcome is SyncOutcome.QUEUE_EMPTY
    assert engine.state is SyncRunState.IDLE


@pytest.mark.asyncio
async def test_full_batches_drain_the_backlog(queue, make_event, transport_factory):
    fill(queue, make_event, 5)
    transport = transport_factory()
    engine = SyncEngine(queue, online_monitor(), transport, batch_size=2)

    await engine.sync_now()

    assert [len(batch) for batch in transport.batches] == [2, 2, 1]
    assert engine.runs == 3
    assert queue.size() == 0


@pytest.mark.asyncio
async def test_transport_failure_keeps_queue_and_backs_off(queue, make_event, transport_factory):
    fill(queue, make_event, 3)
    transport = transport_factory(respond=lambda events: TransientNetworkError("connection reset"))
    engine = SyncEngine(queue, online_monitor(), transport, backoff_base=30)

    report = await engine.sync_now()

    assert report.outcome is SyncOutcome.TRANSPORT_FAILED
    assert queue.size() == 3
    assert all(e.state is EventState.QUEUED for e in queue.all())
    assert engine.consecutive_failures == 1
    assert engine.next_backoff() == 60

    transport.respond = accept_all
    report = await engine.sync_now()

    assert report.outcome is SyncOutcome.DELIVERED
    assert engine.consecutive_failures == 0
    assert queue.size() == 0
    await engine.stop()


@pytest.mark.asyncio
async def test_send_timeout_is_a_transport_failure(queue, make_event, transport_factory):
    fill(queue, make_event, 2)
    transport = transport_factory(gate=asyncio.Event())
    engine = SyncEngine(queue, online_monitor(), transport, timeout=0.05, backoff_base=30)

    report = await engine.sync_now()

    assert report.outcome is SyncOutcome.TRANSPORT_FAILED
    assert queue.size() == 2
    await engine.stop()


@pytest.mark.asyncio
async def test_retry_fires_after_backoff(queue, make_event, transport_factory):
    fill(queue, make_event, 1)
    outcomes = iter([TransientNetworkError("down")])
    transport = transport_factory(respond=lambda events: next(outcomes, None) or accept_all(events))
    engine = SyncEngine(queue, online_monitor(), transport, backoff_base=0.01)

    await engine.sync_now()
    await asyncio.sleep(0.1)
    await engine.wait_idle()

    assert len(transport.batches) == 2
    assert queue.size() == 0
    await engine.stop()


@pytest.mark.asyncio
async def test_retry_is_skipped_after_a_connectivity_change(queue, make_event, transport_factory):
    fill(queue, make_event, 1)
    monitor = online_monitor()
    transport = transport_factory(respond=lambda events: TransientNetworkError("down"))
    engine = SyncEngine(queue, monitor, transport, backoff_base=0.05)

    await engine.sync_now()
    monitor.report(False)
    await asyncio.sleep(0.15)

    assert engine.runs == 1
    assert len(transport.batches) == 1
    await engine.stop()


@pytest.mark.asyncio
async def test_connectivity_flip_mid_send_forces_followup(queue, make_event, transport_factory):
    fill(queue, make_event, 1)
    monitor = online_monitor()
    gate = asyncio.Event()
    transport = transport_factory(gate=gate)
    engine = SyncEngine(queue, monitor, transport)

    engine.trigger()
    await transport.started.wait()
    monitor.report(False)
    monitor.report(True)
    gate.set()
    await engine.wait_idle()

    assert engine.runs == 2
    assert queue.size() == 0


def test_backoff_is_capped(queue, transport_factory):
    engine = SyncEngine(queue, online_monitor(), transport_factory(), backoff_base=1, backoff_max=8)

    delays = []
    for failures in range(6):
        engine.consecutive_failures = failures
        delays.append(engine.next_backoff())

    assert delays == [1, 2, 4, 8, 8, 8]



def test_batch_size_is_clamped_to_the_server_limit(queue, transport_factory):
    engine = SyncEngine(queue, online_monitor(), transport_factory(), batch_size=MAX_BATCH_EVENTS * 5)

    assert engine.batch_size == MAX_BATCH_EVENTS

@pytest.mark.asyncio
async def test_stopped_engine_ignores_triggers(queue, make_event, transport_factory):
    fill(queue, make_event, 1)
    transport = transport_factory()
    engine = SyncEngine(queue, online_monitor(), transport)

    await engine.stop()
    engine.trigger()
    await engine.wait_idle()

    assert transport.batches == []
    assert engine.status()["state"] == "idle"
