# =======================================================================================
# fieldsync/field/queue.py - Durable Local Scan Queue
# =======================================================================================
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional
from sqlalchemy import text, bindparam
from sqlalchemy.exc import IntegrityError
from ..config import config
from ..models.enums import EventState
from ..models.schemas import ScanEvent, DeadLetter
from ..utils.exceptions import DuplicateEventError
from .local_store import LocalStore

logger = logging.getLogger(__name__)

_DELETE_PENDING = text(
    "DELETE FROM pending_scans WHERE correlation_id IN :ids"
).bindparams(bindparam("ids", expanding=True))

_UPDATE_STATE = text(
    "UPDATE pending_scans SET state = :state WHERE correlation_id IN :ids"
).bindparams(bindparam("ids", expanding=True))


def _load(payload: str, state: str) -> ScanEvent:
    event = ScanEvent.model_validate_json(payload)
    event.state = EventState(state)
    return event


class DurableQueue:
    """
    Ordered, append-only queue of captured but unconfirmed scans.

    Entries leave the queue only through `remove` (acknowledged by the server)
    or `dead_letter` (rejected by the server). Order is the append order and is
    never changed.
    """

    def __init__(self, store: LocalStore, dead_letter_limit: Optional[int] = None):
        self.store = store
        self.dead_letter_limit = dead_letter_limit or config.DEAD_LETTER_LIMIT

    # ------------------------------------------------------------------
    # Active queue
    # ------------------------------------------------------------------
    def append(self, event: ScanEvent) -> None:
        """Persist an event at the tail. Committed before this returns."""
        try:
            with self.store.transaction() as conn:
                conn.execute(
                    text("""
                        INSERT INTO pending_scans (correlation_id, payload, state)
                        VALUES (:cid, :payload, :state)
                    """),
                    {
                        "cid": event.correlation_id,
                        "payload": event.model_dump_json(by_alias=True),
                        "state": EventState.QUEUED.value,
                    }
                )
        except IntegrityError:
            raise DuplicateEventError(f"Event {event.correlation_id} is already queued")
        event.state = EventState.QUEUED

    def peek_batch(self, max_size: int) -> List[ScanEvent]:
        """Oldest `max_size` entries, in append order. Nothing is removed."""
        with self.store.transaction() as conn:
            rows = conn.execute(
                text("SELECT payload, state FROM pending_scans ORDER BY seq LIMIT :n"),
                {"n": max_size}
            ).all()
        return [_load(payload, state) for payload, state in rows]

    def remove(self, correlation_ids: Iterable[str]) -> int:
        """Drop acknowledged entries. Ids not in the queue are ignored."""
        ids = list(correlation_ids)
        if not ids:
            return 0
        with self.store.transaction() as conn:
            return conn.execute(_DELETE_PENDING, {"ids": ids}).rowcount

    def mark_state(self, correlation_ids: Iterable[str], state: EventState) -> None:
        ids = list(correlation_ids)
        if not ids:
            return
        with self.store.transaction() as conn:
            conn.execute(_UPDATE_STATE, {"ids": ids, "state": state.value})

    def all(self) -> List[ScanEvent]:
        with self.store.transaction() as conn:
            rows = conn.execute(
                text("SELECT payload, state FROM pending_scans ORDER BY seq")
            ).all()
        return [_load(payload, state) for payload, state in rows]

    def size(self) -> int:
        with self.store.transaction() as conn:
            return conn.execute(text("SELECT COUNT(*) FROM pending_scans")).scalar_one()

    # ------------------------------------------------------------------
    # Dead letters
    # ------------------------------------------------------------------
    def dead_letter(self, event: ScanEvent, reason: str) -> None:
        """
        Move a rejected event out of the active queue into the dead-letter set.
        When the set is full the oldest dead letters are evicted.
        """
        event.state = EventState.FAILED
        with self.store.transaction() as conn:
            conn.execute(_DELETE_PENDING, {"ids": [event.correlation_id]})
            conn.execute(
                text("""
                    INSERT OR REPLACE INTO dead_letters (correlation_id, payload, reason, failed_at)
                    VALUES (:cid, :payload, :reason, :failed_at)
                """),
                {
                    "cid": event.correlation_id,
                    "payload": event.model_dump_json(by_alias=True),
                    "reason": reason,
                    "failed_at": datetime.now(timezone.utc).isoformat(),
                }
            )
            evicted = conn.execute(
                text("""
                    DELETE FROM dead_letters WHERE seq NOT IN (
                        SELECT seq FROM dead_letters ORDER BY seq DESC LIMIT :limit
                    )
                """),
                {"limit": self.dead_letter_limit}
            ).rowcount

        if evicted:
            logger.warning("Dead-letter set full; evicted %d oldest entries", evicted)

    def dead_letters(self) -> List[DeadLetter]:
        with self.store.transaction() as conn:
            rows = conn.execute(
                text("SELECT payload, reason, failed_at FROM dead_letters ORDER BY seq")
            ).all()
        return [
            DeadLetter(event=_load(payload, EventState.FAILED.value), reason=reason, failed_at=failed_at)
            for payload, reason, failed_at in rows
        ]

    def dead_letter_count(self) -> int:
        with self.store.transaction() as conn:
            return conn.execute(text("SELECT COUNT(*) FROM dead_letters")).scalar_one()

    def requeue_dead_letter(self, correlation_id: str) -> Optional[ScanEvent]:
        """Operator recovery: put a dead letter back at the tail of the queue."""
        with self.store.transaction() as conn:
            row = conn.execute(
                text("SELECT payload FROM dead_letters WHERE correlation_id = :cid"),
                {"cid": correlation_id}
            ).first()
            if row is None:
                return None
            conn.execute(
                text("DELETE FROM dead_letters WHERE correlation_id = :cid"),
                {"cid": correlation_id}
            )
            conn.execute(
                text("""
                    INSERT INTO pending_scans (correlation_id, payload, state)
                    VALUES (:cid, :payload, :state)
                """),
                {"cid": correlation_id, "payload": row[0], "state": EventState.QUEUED.value}
            )
        logger.info("Requeued dead letter %s", correlation_id)
        return _load(row[0], EventState.QUEUED.value)

    def discard_dead_letter(self, correlation_id: str) -> bool:
        with self.store.transaction() as conn:
            return conn.execute(
                text("DELETE FROM dead_letters WHERE correlation_id = :cid"),
                {"cid": correlation_id}
            ).rowcount > 0
