# =======================================================================================
# fieldsync/field/task_cache.py - Pending-Task Cache
# =======================================================================================
import logging
from datetime import datetime, timezone
from typing import List, Optional
from sqlalchemy import text
from ..models.schemas import PendingTask, sort_tasks
from ..utils.exceptions import ConnectivityLost, TaskCompletionError
from .connectivity import ConnectivityMonitor
from .local_store import LocalStore

logger = logging.getLogger(__name__)

_LAST_REFRESH_KEY = "tasks_last_refreshed_at"


class PendingTaskCache:
    """
    Local mirror of the tasks assigned by the server.

    Reads always come from the local store, online or not. Only a successful
    refresh replaces the mirror, and only a confirmed completion removes a task.
    Completions are never queued for later: a failed completion is reported
    to the caller straight away.
    """

    def __init__(self, store: LocalStore, monitor: ConnectivityMonitor, transport):
        self.store = store
        self.monitor = monitor
        self.transport = transport

    @property
    def last_refreshed_at(self) -> Optional[datetime]:
        value = self.store.get_meta(_LAST_REFRESH_KEY)
        return datetime.fromisoformat(value) if value else None

    async def refresh(self) -> List[PendingTask]:
        """Replace the cache with the server's list. Raises and keeps the cache on failure."""
        if not self.monitor.is_online:
            raise ConnectivityLost("Cannot refresh tasks while offline")

        tasks = await self.transport.fetch_pending_tasks()

        with self.store.transaction() as conn:
            conn.execute(text("DELETE FROM task_cache"))
            for task in tasks:
                conn.execute(
                    text("INSERT INTO task_cache (id, payload) VALUES (:id, :payload)"),
                    {"id": task.id, "payload": task.model_dump_json(by_alias=True)}
                )
        self.store.set_meta(_LAST_REFRESH_KEY, datetime.now(timezone.utc).isoformat())
        logger.info("Task cache refreshed with %d tasks", len(tasks))
        return sort_tasks(tasks)

    def list(self) -> List[PendingTask]:
        """Cached tasks, urgent first. Empty if the cache was never filled."""
        with self.store.transaction() as conn:
            rows = conn.execute(text("SELECT payload FROM task_cache")).scalars().all()
        return sort_tasks([PendingTask.model_validate_json(p) for p in rows])

    async def complete(self, task_id: str) -> None:
        """Complete a task on the server, then drop it locally."""
        if not self.monitor.is_online:
            raise ConnectivityLost("Cannot complete tasks while offline")

        try:
            await self.transport.complete_task(task_id)
        except TaskCompletionError:
            logger.warning("Completion of task %s failed; it stays pending", task_id)
            raise

        with self.store.transaction() as conn:
            conn.execute(text("DELETE FROM task_cache WHERE id = :id"), {"id": task_id})
