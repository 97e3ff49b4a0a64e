# =======================================================================================
# fieldsync/services/task_service.py - Field Task Management Service
# =======================================================================================
from datetime import datetime, timezone
from typing import List
from uuid import uuid4
from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError
from ..models.schemas import PendingTask, TaskCreateRequest, sort_tasks
from ..utils.exceptions import TaskNotFoundError, TaskAlreadyCompletedError, TaskAlreadyExistsError


class TaskService:
    """Handles server-assigned field tasks."""

    @staticmethod
    def _row_to_task(row) -> PendingTask:
        return PendingTask(
            id=row["id"],
            task_type=row["task_type"],
            title=row["title"],
            priority=row["priority"],
            location=row["location"],
            due_time=row["due_time"],
            status=row["status"],
        )

    def list_open_tasks(self, conn: Connection) -> List[PendingTask]:
        """All tasks that are not completed yet."""
        rows = conn.execute(
            text("""
                SELECT id, task_type, title, priority, location, due_time, status
                FROM field_tasks
                WHERE status <> 'completed'
            """)
        ).mappings().all()
        return sort_tasks([self._row_to_task(r) for r in rows])

    def get_task(self, conn: Connection, task_id: str) -> PendingTask:
        row = conn.execute(
            text("""
                SELECT id, task_type, title, priority, location, due_time, status
                FROM field_tasks WHERE id = :tid
            """),
            {"tid": task_id}
        ).mappings().first()
        if not row:
            raise TaskNotFoundError(f"Task {task_id} not found")
        return self._row_to_task(row)

    def create_task(self, conn: Connection, request: TaskCreateRequest) -> PendingTask:
        task = PendingTask(
            id=request.id or uuid4().hex,
            task_type=request.task_type,
            title=request.title,
            priority=request.priority,
            location=request.location,
            due_time=request.due_time,
            status="pending",
        )
        try:
            conn.execute(
                text("""
                    INSERT INTO field_tasks (id, task_type, title, priority, location, due_time, status)
                    VALUES (:id, :type, :title, :priority, :location, :due, 'pending')
                """),
                {
                    "id": task.id,
                    "type": task.task_type,
                    "title": task.title,
                    "priority": task.priority.value,
                    "location": task.location,
                    "due": task.due_time.isoformat(),
                }
            )
        except IntegrityError:
            raise TaskAlreadyExistsError(f"Task {task.id} already exists")
        return task

    def complete_task(self, conn: Connection, task_id: str) -> PendingTask:
        """Mark a task completed. Completing twice is an error, not a no-op."""
        task = self.get_task(conn, task_id)

        result = conn.execute(
            text("""
                UPDATE field_tasks
                SET status = 'completed', completed_at = :now
                WHERE id = :tid AND status <> 'completed'
            """),
            {"tid": task_id, "now": datetime.now(timezone.utc).isoformat()}
        )
        if result.rowcount == 0:
            raise TaskAlreadyCompletedError(f"Task {task_id} is already completed")

        return task.model_copy(update={"status": "completed"})
