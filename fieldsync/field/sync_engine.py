# =======================================================================================
# fieldsync/field/sync_engine.py - Sync Engine
# =======================================================================================
"""
Drains the durable queue to the ingestion gateway.

Triggers may arrive from anywhere on the unit's event loop (connectivity
transitions, captures, the periodic timer, retry timers, a manual "sync now").
They are coalesced by a three-state machine:

    IDLE --trigger--> RUNNING --trigger--> RUNNING_WITH_FOLLOWUP
      ^                  |                        |
      +---run finished---+      run finished -> RUNNING (one more run)

so any number of triggers during a run yields at most one extra run.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from ..config import config
from ..models.enums import EventState
from ..models.schemas import MAX_BATCH_EVENTS
from ..utils.exceptions import TransientNetworkError, AuthRejectedError
from .connectivity import ConnectivityMonitor
from .queue import DurableQueue

logger = logging.getLogger(__name__)


class SyncRunState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    RUNNING_WITH_FOLLOWUP = "running+followup"


class SyncSignal(Enum):
    TRIGGER = "trigger"
    RUN_FINISHED = "run_finished"


_TRANSITIONS: Dict[Tuple[SyncRunState, SyncSignal], Tuple[SyncRunState, bool]] = {
    (SyncRunState.IDLE, SyncSignal.TRIGGER): (SyncRunState.RUNNING, True),
    (SyncRunState.RUNNING, SyncSignal.TRIGGER): (SyncRunState.RUNNING_WITH_FOLLOWUP, False),
    (SyncRunState.RUNNING_WITH_FOLLOWUP, SyncSignal.TRIGGER): (SyncRunState.RUNNING_WITH_FOLLOWUP, False),
    (SyncRunState.RUNNING, SyncSignal.RUN_FINISHED): (SyncRunState.IDLE, False),
    (SyncRunState.RUNNING_WITH_FOLLOWUP, SyncSignal.RUN_FINISHED): (SyncRunState.RUNNING, True),
}


def advance(state: SyncRunState, signal: SyncSignal) -> Tuple[SyncRunState, bool]:
    """Next state, and whether a run must start now."""
    try:
        return _TRANSITIONS[(state, signal)]
    except KeyError:
        raise ValueError(f"No transition from {state.value} on {signal.value}")


class SyncOutcome(Enum):
    SKIPPED_OFFLINE = "skipped_offline"
    QUEUE_EMPTY = "queue_empty"
    DELIVERED = "delivered"
    TRANSPORT_FAILED = "transport_failed"


@dataclass
class SyncReport:
    outcome: SyncOutcome
    accepted: int = 0
    rejected: int = 0
    unanswered: int = 0
    followup: bool = False


class SyncEngine:
    def __init__(
        self,
        queue: DurableQueue,
        monitor: ConnectivityMonitor,
        transport,
        batch_size: Optional[int] = None,
        timeout: Optional[float] = None,
        interval: Optional[float] = None,
        backoff_base: Optional[float] = None,
        backoff_max: Optional[float] = None,
    ):
        self.queue = queue
        self.monitor = monitor
        self.transport = transport
        self.batch_size = min(batch_size or config.SYNC_BATCH_SIZE, MAX_BATCH_EVENTS)
        self.timeout = timeout or config.SYNC_TIMEOUT
        self.interval = interval or config.SYNC_INTERVAL
        self.backoff_base = backoff_base or config.SYNC_BACKOFF_BASE
        self.backoff_max = backoff_max or config.SYNC_BACKOFF_MAX

        self.state = SyncRunState.IDLE
        self.runs = 0
        self.consecutive_failures = 0
        self.last_synced_at: Optional[datetime] = None
        self.last_report: Optional[SyncReport] = None

        self._worker: Optional[asyncio.Task] = None
        self._periodic: Optional[asyncio.Task] = None
        self._retry_handle: Optional[asyncio.TimerHandle] = None
        self._stopped = False

    # ------------------------------------------------------------------
    # Triggering
    # ------------------------------------------------------------------
    def trigger(self) -> None:
        """Request a sync. Must be called on the unit's event loop."""
        if self._stopped:
            return
        self.state, start = advance(self.state, SyncSignal.TRIGGER)
        if start:
            self._worker = asyncio.get_running_loop().create_task(self._drive())

    async def sync_now(self) -> Optional[SyncReport]:
        """Manual sync: trigger and wait until the engine is idle again."""
        self.trigger()
        await self.wait_idle()
        return self.last_report

    async def wait_idle(self) -> None:
        while self._worker is not None and not self._worker.done():
            await asyncio.shield(self._worker)

    async def _drive(self) -> None:
        start = True
        while start:
            self.runs += 1
            try:
                self.last_report = await self.run_once()
            except Exception:
                logger.exception("Sync run failed unexpectedly")
                self._schedule_retry()
            self.state, start = advance(self.state, SyncSignal.RUN_FINISHED)

    # ------------------------------------------------------------------
    # One run
    # ------------------------------------------------------------------
    async def run_once(self) -> SyncReport:
        t0 = self.monitor.transition_count
        if not self.monitor.is_online:
            return SyncReport(SyncOutcome.SKIPPED_OFFLINE)

        batch = self.queue.peek_batch(self.batch_size)
        if not batch:
            self._record_success()
            return SyncReport(SyncOutcome.QUEUE_EMPTY)

        ids = [event.correlation_id for event in batch]
        self.queue.mark_state(ids, EventState.TRANSMITTING)
        try:
            acks = await asyncio.wait_for(self.transport.send_batch(batch), self.timeout)
        except (TransientNetworkError, asyncio.TimeoutError) as e:
            self.queue.mark_state(ids, EventState.QUEUED)
            if isinstance(e, AuthRejectedError):
                logger.error("Sync rejected by server auth: %s", e)
            else:
                logger.warning("Sync of %d events failed: %s", len(batch), str(e) or "timeout")
            self._schedule_retry()
            return SyncReport(SyncOutcome.TRANSPORT_FAILED, unanswered=len(batch))

        pending = {event.correlation_id: event for event in batch}
        accepted: List[str] = []
        rejected = 0
        for ack in acks:
            event = pending.pop(ack.correlation_id, None)
            if event is None:
                continue
            if ack.accepted:
                accepted.append(event.correlation_id)
            else:
                reason = ack.reason or "Rejected by server"
                logger.warning("Event %s rejected: %s", event.correlation_id, reason)
                self.queue.dead_letter(event, reason)
                rejected += 1

        self.queue.remove(accepted)
        unanswered = list(pending)
        if unanswered:
            self.queue.mark_state(unanswered, EventState.QUEUED)

        self._record_success()

        # connectivity flipped mid-send, or there may be more behind a full batch
        progressed = bool(accepted) or rejected > 0
        followup = self.monitor.transition_count != t0 or (len(batch) >= self.batch_size and progressed)
        if followup:
            self.trigger()

        logger.info("Synced batch: %d accepted, %d rejected, %d unanswered",
                    len(accepted), rejected, len(unanswered))
        return SyncReport(
            SyncOutcome.DELIVERED,
            accepted=len(accepted),
            rejected=rejected,
            unanswered=len(unanswered),
            followup=followup,
        )

    # ------------------------------------------------------------------
    # Backoff
    # ------------------------------------------------------------------
    def next_backoff(self) -> float:
        return min(self.backoff_base * (2 ** self.consecutive_failures), self.backoff_max)

    def _schedule_retry(self) -> None:
        if self._stopped:
            return
        delay = self.next_backoff()
        self.consecutive_failures += 1
        self._cancel_retry()
        loop = asyncio.get_running_loop()
        self._retry_handle = loop.call_later(delay, self._retry, self.monitor.transition_count)
        logger.debug("Retry %d scheduled in %.1fs", self.consecutive_failures, delay)

    def _retry(self, scheduled_at: int) -> None:
        self._retry_handle = None
        # a transition since then already triggered (online) or made the retry moot (offline)
        if self.monitor.transition_count != scheduled_at:
            logger.debug("Skipping retry superseded by a connectivity change")
            return
        self.trigger()

    def _cancel_retry(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

    def _record_success(self) -> None:
        self.consecutive_failures = 0
        self._cancel_retry()
        self.last_synced_at = datetime.now(timezone.utc)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.trigger()

    def start(self) -> None:
        """Start the periodic timer."""
        self._stopped = False
        if self._periodic is None:
            self._periodic = asyncio.get_running_loop().create_task(self._tick())

    async def stop(self) -> None:
        """Stop timers; an in-flight run is allowed to finish."""
        self._stopped = True
        self._cancel_retry()
        if self._periodic is not None:
            self._periodic.cancel()
            try:
                await self._periodic
            except asyncio.CancelledError:
                pass
            self._periodic = None
        await self.wait_idle()

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "runs": self.runs,
            "consecutive_failures": self.consecutive_failures,
            "last_synced_at": self.last_synced_at.isoformat() if self.last_synced_at else None,
        }
