# =======================================================================================
# fieldsync/field/unit.py - Field Unit Wiring
# =======================================================================================
import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Set, Union
from ..config import config
from ..models.enums import ConnectivityState
from ..models.schemas import ScanEvent
from ..utils.exceptions import FieldSyncError
from .battery import BatteryMonitor
from .capture import EventCapturer
from .connectivity import ConnectivityMonitor, HttpReachabilityProbe
from .live_feed import LiveFeed
from .local_store import LocalStore
from .position import PositionProvider
from .queue import DurableQueue
from .sync_engine import SyncEngine
from .task_cache import PendingTaskCache
from .transport import ServerTransport

logger = logging.getLogger(__name__)


class FieldUnit:
    """
    All client components for one handheld, constructed once per process.

    Nothing here is a module global: downstream components receive the monitor,
    queue and transport they use through their constructors.
    """

    def __init__(
        self,
        store_path: Union[str, Path, None] = None,
        server_url: Optional[str] = None,
        token: Optional[str] = None,
        unit_id: Optional[str] = None,
        position_provider: Optional[PositionProvider] = None,
        transport=None,
        probe: bool = True,
        live_feed: bool = True,
        battery: Optional[BatteryMonitor] = None,
    ):
        self.store = LocalStore(store_path or config.LOCAL_DB_PATH)
        self.queue = DurableQueue(self.store)
        self.monitor = ConnectivityMonitor()
        self.transport = transport or ServerTransport(server_url, token)
        self.capturer = EventCapturer(self.queue, position_provider)
        self.engine = SyncEngine(self.queue, self.monitor, self.transport)
        self.tasks = PendingTaskCache(self.store, self.monitor, self.transport)
        self.probe = HttpReachabilityProbe(self.monitor, server_url) if probe else None
        self.feed = LiveFeed(server_url, token, unit_id) if live_feed else None
        self.battery = battery

        self._background: Set[asyncio.Task] = set()
        self._subscriptions = [
            self.monitor.on_change(self._on_connectivity_change),
            self.capturer.on_captured(self._on_captured),
        ]

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------
    def _on_connectivity_change(self, state: ConnectivityState) -> None:
        if state is not ConnectivityState.ONLINE:
            return
        self.engine.trigger()
        task = asyncio.get_running_loop().create_task(self._refresh_tasks())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _on_captured(self, _event: ScanEvent) -> None:
        if self.monitor.is_online:
            self.engine.trigger()

    async def _refresh_tasks(self) -> None:
        try:
            await self.tasks.refresh()
        except FieldSyncError as e:
            logger.info("Task refresh skipped: %s", e)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> None:
        self.engine.start()
        if self.probe is not None:
            await self.probe.check()
            self.probe.start()
        if self.feed is not None:
            self.feed.start()
        logger.info("Field unit started (%d scans queued)", self.queue.size())

    async def stop(self) -> None:
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        if self.probe is not None:
            await self.probe.stop()
        if self.feed is not None:
            await self.feed.stop()
        await self.engine.stop()
        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)
        await self.transport.aclose()
        self.capturer.close()
        self.monitor.close()
        if self.battery is not None:
            self.battery.close()
        self.store.close()
        logger.info("Field unit stopped")

    def status(self) -> Dict[str, Any]:
        dead = self.queue.dead_letter_count()
        battery = self.battery.current() if self.battery is not None else None
        return {
            "online": self.monitor.is_online,
            "queued": self.queue.size(),
            "dead_letters": dead,
            "sync": self.engine.status(),
            "battery": battery.model_dump() if battery is not None else None,
            "message": f"{dead} scans could not be synced" if dead else None,
        }
