# =======================================================================================
# fieldsync/services/broadcast_service.py - Live Event Fan-Out
# =======================================================================================
import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, Optional, Any
from uuid import uuid4
from starlette.websockets import WebSocket
from ..config import config
from ..models.schemas import ScanEvent, AcceptedEventMessage

logger = logging.getLogger(__name__)


class ClientSession:
    """One connected push channel. Exists only while the socket is open."""

    def __init__(self, websocket: WebSocket, unit_id: Optional[str] = None):
        self.session_id = uuid4().hex
        self.unit_id = unit_id
        self.websocket = websocket
        self.connected_at = datetime.now(timezone.utc)

    async def send(self, message: Dict[str, Any]) -> None:
        await self.websocket.send_json(message)

    def __repr__(self) -> str:
        return f"ClientSession({self.session_id[:8]}, unit={self.unit_id})"


class BroadcastHub:
    """
    Pushes accepted events to every registered session.

    Delivery is at-most-once and best effort: no per-session acknowledgement,
    no retry. A session that goes away mid-publish is skipped and dropped.
    Every session receives every event, including the sessions opened by the
    unit that captured it.

    Each send is bounded by `send_timeout`; a session that does not take the
    message in time is dropped like one whose socket failed.
    """

    def __init__(self, send_timeout: Optional[float] = None):
        self.send_timeout = send_timeout if send_timeout is not None else config.BROADCAST_SEND_TIMEOUT
        self._sessions: Dict[str, ClientSession] = {}

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def register_session(self, session: ClientSession) -> None:
        self._sessions[session.session_id] = session
        logger.debug("Session registered: %r (%d live)", session, len(self._sessions))

    def unregister_session(self, session: ClientSession) -> None:
        """Remove a session; unknown sessions are ignored."""
        if self._sessions.pop(session.session_id, None) is not None:
            logger.debug("Session unregistered: %r (%d live)", session, len(self._sessions))

    async def publish(self, event: ScanEvent, received_at: Optional[datetime] = None) -> int:
        """Deliver an accepted event to all live sessions. Returns successful deliveries."""
        message = AcceptedEventMessage(
            event=event,
            received_at=received_at or datetime.now(timezone.utc),
        ).to_wire()

        delivered = 0
        for session in list(self._sessions.values()):
            # unregistered while an earlier send was awaiting
            if session.session_id not in self._sessions:
                continue
            try:
                await asyncio.wait_for(session.send(message), self.send_timeout)
                delivered += 1
            except asyncio.TimeoutError:
                logger.warning("Dropping session %r: send not taken within %.1fs", session, self.send_timeout)
                self.unregister_session(session)
            except Exception as e:
                logger.debug("Dropping session %r after failed send: %s", session, e)
                self.unregister_session(session)

        return delivered
