# =======================================================================================
# fieldsync/field/connectivity.py - Connectivity Monitor
# =======================================================================================
import asyncio
import logging
from typing import Callable, Optional
import httpx
from ..config import config
from ..models.enums import ConnectivityState
from .subscriptions import HandlerRegistry, Subscription

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """
    Tracks online/offline for the unit.

    `report()` is fed by a reachability source. Only a real change counts as a
    transition: it bumps `transition_count` and notifies handlers synchronously.
    Repeated signals for the current state are ignored.
    """

    def __init__(self, initial: ConnectivityState = ConnectivityState.OFFLINE):
        self._state = initial
        self._transition_count = 0
        self._handlers: HandlerRegistry[ConnectivityState] = HandlerRegistry("connectivity")

    def current_state(self) -> ConnectivityState:
        return self._state

    @property
    def is_online(self) -> bool:
        return self._state is ConnectivityState.ONLINE

    @property
    def transition_count(self) -> int:
        return self._transition_count

    def on_change(self, handler: Callable[[ConnectivityState], None]) -> Subscription:
        return self._handlers.add(handler)

    def report(self, reachable: bool) -> bool:
        """Feed a reachability signal. Returns True if it caused a transition."""
        new_state = ConnectivityState.ONLINE if reachable else ConnectivityState.OFFLINE
        if new_state is self._state:
            return False

        self._state = new_state
        self._transition_count += 1
        logger.info("Connectivity changed to %s (transition %d)", new_state.value, self._transition_count)
        self._handlers.emit(new_state)
        return True

    def close(self) -> None:
        self._handlers.clear()


class HttpReachabilityProbe:
    """Polls the server health endpoint and feeds the monitor."""

    def __init__(
        self,
        monitor: ConnectivityMonitor,
        server_url: Optional[str] = None,
        interval: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.monitor = monitor
        self.interval = interval or config.REACHABILITY_INTERVAL
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=server_url or config.SERVER_URL,
            timeout=httpx.Timeout(min(self.interval, 5.0)),
        )
        self._task: Optional[asyncio.Task] = None

    async def check(self) -> bool:
        """One probe. Any answer below 500 means the server is reachable."""
        try:
            response = await self.client.get("/api/health")
            reachable = response.status_code < 500
        except httpx.HTTPError as e:
            logger.debug("Reachability probe failed: %s", e)
            reachable = False
        self.monitor.report(reachable)
        return reachable

    async def _run(self) -> None:
        while True:
            await self.check()
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._owns_client:
            await self.client.aclose()
