# =======================================================================================
# fieldsync/api/routes/events.py - Live Event Push Channel
# =======================================================================================
import logging
from typing import Optional
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from ...services.broadcast_service import ClientSession
from ..dependencies import parse_bearer

logger = logging.getLogger(__name__)
router = APIRouter()

@router.websocket("/ws/events")
async def event_stream(websocket: WebSocket, unit_id: Optional[str] = None):
    """Duplex channel per session; the server pushes event:accepted messages."""
    if parse_bearer(websocket.headers.get("authorization")) is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    hub = websocket.app.state.hub
    await websocket.accept()
    session = ClientSession(websocket, unit_id=unit_id)
    hub.register_session(session)
    try:
        while True:
            # clients only send keepalives
            message = await websocket.receive_text()
            if message == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect as e:
        logger.debug("Session %r closed (code=%s)", session, e.code)
    finally:
        hub.unregister_session(session)
