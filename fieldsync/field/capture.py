# =======================================================================================
# fieldsync/field/capture.py - Event Capturer
# =======================================================================================
import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Deque, List, Optional
from uuid import uuid4
from ..config import config
from ..models.enums import ScanAction
from ..models.schemas import ScanEvent, Position
from ..utils.validators import TagValidator
from .position import PositionProvider, NoPositionProvider
from .queue import DurableQueue
from .subscriptions import HandlerRegistry, Subscription

logger = logging.getLogger(__name__)

RECENT_LIMIT = 10


class EventCapturer:
    """
    Turns a tag read into a queued ScanEvent.

    Capture never looks at connectivity: the event is written to the durable
    queue and the call returns. Sending is the sync engine's job.
    """

    def __init__(
        self,
        queue: DurableQueue,
        position_provider: Optional[PositionProvider] = None,
        position_timeout: Optional[float] = None,
    ):
        self.queue = queue
        self.position_provider = position_provider or NoPositionProvider()
        self.position_timeout = position_timeout if position_timeout is not None else config.POSITION_TIMEOUT
        self._recent: Deque[ScanEvent] = deque(maxlen=RECENT_LIMIT)
        self._listeners: HandlerRegistry[ScanEvent] = HandlerRegistry("capture")
        # held from stamping to append so queue order follows captured_at
        self._append_lock = asyncio.Lock()

    def on_captured(self, handler: Callable[[ScanEvent], None]) -> Subscription:
        return self._listeners.add(handler)

    def recent(self) -> List[ScanEvent]:
        """Latest captures, newest first."""
        return list(reversed(self._recent))

    async def _position_fix(self) -> Optional[Position]:
        try:
            return await asyncio.wait_for(self.position_provider.current_fix(), self.position_timeout)
        except asyncio.TimeoutError:
            logger.debug("No position fix within %.1fs; capturing without one", self.position_timeout)
        except Exception as e:
            logger.warning("Position provider failed: %s", e)
        return None

    async def capture(self, tag_id: str, action: ScanAction = ScanAction.SCAN) -> ScanEvent:
        """
        Capture one read and append it to the durable queue.

        Raises InvalidTagError for a malformed read; nothing is queued then.
        """
        tag = TagValidator.normalize_tag(tag_id)
        action = ScanAction(action)

        async with self._append_lock:
            captured_at = datetime.now(timezone.utc)
            position = await self._position_fix()

            event = ScanEvent(
                correlation_id=uuid4().hex,
                tag_id=tag,
                captured_at=captured_at,
                position=position,
                action=action,
            )
            self.queue.append(event)
        self._recent.append(event)
        logger.debug("Captured %s tag=%s action=%s", event.correlation_id, tag, action.value)

        self._listeners.emit(event)
        return event

    def close(self) -> None:
        self._listeners.clear()
        self.position_provider.close()
