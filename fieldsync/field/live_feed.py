# =======================================================================================
# fieldsync/field/live_feed.py - Live Accepted-Event Feed (client end)
# =======================================================================================
import asyncio
import json
import logging
import random
from typing import Callable, Optional
import websockets
from pydantic import ValidationError
from ..config import config
from ..models.enums import EVENT_ACCEPTED
from ..models.schemas import AcceptedEventMessage
from .subscriptions import HandlerRegistry, Subscription

logger = logging.getLogger(__name__)


class LiveFeed:
    """
    Receives event:accepted pushes and hands them to subscribers.

    Best effort: whatever is pushed while the socket is down is not replayed.
    Reconnects with delay = min(BASE * 2^attempt, MAX) + jitter.
    """

    BASE_DELAY_SECONDS = 0.5
    MAX_DELAY_SECONDS = 30.0
    JITTER_RANGE = 0.5

    def __init__(self, server_url: Optional[str] = None, token: Optional[str] = None,
                 unit_id: Optional[str] = None):
        base = (server_url or config.SERVER_URL).rstrip("/")
        uri = base.replace("https://", "wss://", 1).replace("http://", "ws://", 1) + "/ws/events"
        unit = unit_id or config.UNIT_ID
        self.uri = f"{uri}?unit_id={unit}" if unit else uri
        self.token = token or config.API_TOKEN or ""
        self.connected = False
        self.reconnect_attempts = 0
        self._handlers: HandlerRegistry[AcceptedEventMessage] = HandlerRegistry("live-feed")
        self._task: Optional[asyncio.Task] = None

    def on_event(self, handler: Callable[[AcceptedEventMessage], None]) -> Subscription:
        return self._handlers.add(handler)

    def dispatch(self, raw: str) -> Optional[AcceptedEventMessage]:
        """Decode one frame and fan it out locally. Unknown frames are ignored."""
        try:
            data = json.loads(raw)
        except ValueError:
            logger.debug("Ignoring non-JSON frame: %r", raw[:80])
            return None
        if not isinstance(data, dict) or data.get("type") != EVENT_ACCEPTED:
            return None
        try:
            message = AcceptedEventMessage.model_validate(data)
        except ValidationError as e:
            logger.warning("Malformed %s push: %s", EVENT_ACCEPTED, e)
            return None
        self._handlers.emit(message)
        return message

    def reconnect_delay(self, attempt: int) -> float:
        delay = min(self.BASE_DELAY_SECONDS * (2 ** attempt), self.MAX_DELAY_SECONDS)
        return max(0.0, delay + random.uniform(-self.JITTER_RANGE, self.JITTER_RANGE))

    async def _listen_once(self) -> None:
        headers = {"Authorization": f"Bearer {self.token}"}
        async with websockets.connect(self.uri, additional_headers=headers) as ws:
            self.connected = True
            self.reconnect_attempts = 0
            logger.info("Live feed connected to %s", self.uri)
            async for frame in ws:
                if isinstance(frame, bytes):
                    frame = frame.decode("utf-8", errors="replace")
                self.dispatch(frame)

    async def _run(self) -> None:
        while True:
            try:
                await self._listen_once()
            except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as e:
                logger.debug("Live feed dropped: %s", e)
            self.connected = False
            delay = self.reconnect_delay(self.reconnect_attempts)
            self.reconnect_attempts += 1
            await asyncio.sleep(delay)

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
        self.connected = False
        self._handlers.clear()
