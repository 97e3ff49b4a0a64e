# =======================================================================================
# fieldsync/services/ingestion_service.py - Server Ingestion Gateway
# =======================================================================================
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError
from starlette.concurrency import run_in_threadpool
from ..database import DatabaseManager
from ..models.schemas import ScanEvent, Acknowledgement, SyncStatusResponse
from ..utils.validators import EventValidator
from ..utils.exceptions import ValidationRejection
from .broadcast_service import BroadcastHub

logger = logging.getLogger(__name__)


class ScanEventRepository:
    """Persistence for accepted scan events, keyed by correlation id."""

    @staticmethod
    def insert(conn: Connection, event: ScanEvent, received_at: datetime) -> None:
        """Insert an event. The primary key rejects a second insert of the same id."""
        position = event.position
        conn.execute(
            text("""
                INSERT INTO scan_events (correlation_id, tag_id, action, captured_at,
                                         lat, lng, accuracy, received_at)
                VALUES (:cid, :tag, :action, :captured, :lat, :lng, :acc, :received)
            """),
            {
                "cid": event.correlation_id,
                "tag": event.tag_id,
                "action": event.action.value,
                "captured": event.captured_at.isoformat(),
                "lat": position.lat if position else None,
                "lng": position.lng if position else None,
                "acc": position.accuracy if position else None,
                "received": received_at.isoformat(),
            }
        )

    @staticmethod
    def get(conn: Connection, correlation_id: str) -> Optional[Dict[str, Any]]:
        row = conn.execute(
            text("SELECT * FROM scan_events WHERE correlation_id = :cid"),
            {"cid": correlation_id}
        ).mappings().first()
        return dict(row) if row else None

    @staticmethod
    def count(conn: Connection) -> int:
        return conn.execute(text("SELECT COUNT(*) FROM scan_events")).scalar_one()

    @staticmethod
    def last_received_at(conn: Connection) -> Optional[str]:
        return conn.execute(text("SELECT MAX(received_at) FROM scan_events")).scalar_one()


class IngestionGateway:
    """
    Validates and persists incoming batches, one acknowledgement per event.

    Acknowledgements come back in submission order. A correlation id seen before
    is acknowledged as accepted without a second insert (re-delivery after a
    client crash is expected). An event is handed to the fan-out only after its
    insert has committed.
    """

    def __init__(self, db: DatabaseManager, hub: BroadcastHub):
        self.db = db
        self.hub = hub
        self.repository = ScanEventRepository()

    def _persist(self, event: ScanEvent, received_at: datetime) -> bool:
        """Insert in its own transaction. Returns False for an already-accepted id."""
        try:
            with self.db.get_connection() as conn:
                self.repository.insert(conn, event, received_at)
        except IntegrityError:
            return False
        return True

    async def ingest(self, raw_events: Sequence[Any]) -> List[Acknowledgement]:
        received_at = datetime.now(timezone.utc)
        acks: List[Acknowledgement] = []

        for raw in raw_events:
            try:
                event = EventValidator.validate_event(raw)
            except ValidationRejection as rejection:
                logger.info("Rejected event %s: %s", rejection.correlation_id, rejection.reason)
                acks.append(Acknowledgement(
                    correlation_id=rejection.correlation_id,
                    accepted=False,
                    reason=rejection.reason,
                ))
                continue

            inserted = await run_in_threadpool(self._persist, event, received_at)
            if inserted:
                await self.hub.publish(event, received_at)
            else:
                logger.debug("Duplicate suppressed: %s", event.correlation_id)

            acks.append(Acknowledgement(
                correlation_id=event.correlation_id,
                accepted=True,
                duplicate=not inserted,
            ))

        accepted = sum(1 for ack in acks if ack.accepted)
        logger.info("Ingested batch of %d: %d accepted, %d rejected",
                    len(acks), accepted, len(acks) - accepted)
        return acks

    def stats(self) -> SyncStatusResponse:
        with self.db.get_connection() as conn:
            total = self.repository.count(conn)
            last = self.repository.last_received_at(conn)
        return SyncStatusResponse(
            accepted_total=total,
            last_received_at=last,
            sessions_connected=self.hub.session_count,
        )
