# =======================================================================================
# fieldsync/api/routes/tasks.py - Field Task Endpoints
# =======================================================================================
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.engine import Connection
from ...models.schemas import PendingTask, TaskCreateRequest, TaskListResponse, TaskCompleteResponse
from ...services.task_service import TaskService
from ...utils.exceptions import TaskNotFoundError, TaskAlreadyCompletedError, TaskAlreadyExistsError
from ..dependencies import get_db_connection, require_bearer

router = APIRouter(dependencies=[Depends(require_bearer)])
task_service = TaskService()

@router.get("/mobile/tasks/pending", response_model=TaskListResponse)
def list_pending_tasks(conn: Connection = Depends(get_db_connection)):
    """Open tasks, urgent first."""
    return TaskListResponse(success=True, data=task_service.list_open_tasks(conn))

@router.post("/mobile/tasks", response_model=PendingTask, status_code=status.HTTP_201_CREATED)
def create_task(request: TaskCreateRequest, conn: Connection = Depends(get_db_connection)):
    """Create a task (dispatcher side)."""
    try:
        return task_service.create_task(conn, request)
    except TaskAlreadyExistsError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

@router.post("/mobile/tasks/{task_id}/complete", response_model=TaskCompleteResponse)
def complete_task(task_id: str, conn: Connection = Depends(get_db_connection)):
    try:
        task = task_service.complete_task(conn, task_id)
    except TaskNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except TaskAlreadyCompletedError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return TaskCompleteResponse(success=True, message="Task completed", task=task)
