# =======================================================================================
# fieldsync/models/schemas.py - Pydantic Models
# =======================================================================================
from datetime import datetime, timezone
from typing import Optional, List, Any, Dict
from pydantic import BaseModel, ConfigDict, Field
from .enums import (
    ScanAction, EventState, TaskPriority, TaskStatus, TaskType, HealthStatus, EVENT_ACCEPTED,
)

# ========== Scan events ==========
# largest batch the ingestion endpoint takes
MAX_BATCH_EVENTS = 1000

class Position(BaseModel):
    """Coordinate fix attached to a scan."""
    lat: float = Field(..., ge=-90, le=90, description="Latitude in degrees")
    lng: float = Field(..., ge=-180, le=180, description="Longitude in degrees")
    accuracy: Optional[float] = Field(None, ge=0, description="Accuracy radius in metres")

class ScanEvent(BaseModel):
    """One captured field action."""
    model_config = ConfigDict(populate_by_name=True)

    correlation_id: str = Field(..., alias="correlationId", min_length=1, max_length=64,
                                description="Client-generated idempotency key")
    tag_id: str = Field(..., alias="tagId", min_length=1, max_length=100,
                        description="Identifier of the physical token read")
    captured_at: datetime = Field(..., alias="capturedAt", description="Client clock at capture")
    position: Optional[Position] = Field(None, description="Position fix, if one was available")
    action: ScanAction = Field(..., description="Kind of field action")
    # local bookkeeping only, never sent
    state: EventState = Field(EventState.CAPTURED, exclude=True)

    def to_wire(self) -> Dict[str, Any]:
        """JSON-serializable payload for the ingestion call."""
        return self.model_dump(mode="json", by_alias=True)

class Acknowledgement(BaseModel):
    """Per-event answer from the ingestion gateway."""
    model_config = ConfigDict(populate_by_name=True)

    correlation_id: Optional[str] = Field(None, alias="correlationId")
    accepted: bool
    duplicate: bool = False
    reason: Optional[str] = None

class BatchRequest(BaseModel):
    """Batch of events submitted by a field unit."""
    # entries are validated one by one by the gateway
    events: List[Any] = Field(..., max_length=MAX_BATCH_EVENTS)

class BatchAckResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    acks: List[Acknowledgement]
    received_at: datetime = Field(..., alias="receivedAt")

class AcceptedEventMessage(BaseModel):
    """Push message emitted to live sessions after persistence."""
    model_config = ConfigDict(populate_by_name=True)

    type: str = EVENT_ACCEPTED
    event: ScanEvent
    received_at: datetime = Field(..., alias="receivedAt")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

class DeadLetter(BaseModel):
    """An event the server definitively rejected."""
    event: ScanEvent
    reason: str
    failed_at: datetime

# ========== Field tasks ==========
class PendingTask(BaseModel):
    """Server-assigned unit of field work."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    task_type: TaskType = Field("retrieval", alias="type")
    title: str = ""
    priority: TaskPriority
    location: str
    due_time: datetime = Field(..., alias="dueTime")
    status: TaskStatus = "pending"

    def sort_key(self):
        """Urgent first, then by due time. Naive due times are taken as UTC."""
        due = self.due_time
        if due.tzinfo is None:
            due = due.replace(tzinfo=timezone.utc)
        return self.priority.rank, due

def sort_tasks(tasks: List[PendingTask]) -> List[PendingTask]:
    return sorted(tasks, key=PendingTask.sort_key)

class TaskCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(None, description="Task id; generated when omitted")
    task_type: TaskType = Field("retrieval", alias="type")
    title: str = Field(..., min_length=1, max_length=200)
    priority: TaskPriority = TaskPriority.MEDIUM
    location: str = Field(..., min_length=1, max_length=200)
    due_time: datetime = Field(..., alias="dueTime")

class TaskListResponse(BaseModel):
    success: bool
    data: List[PendingTask]

class TaskCompleteResponse(BaseModel):
    success: bool
    message: str
    task: Optional[PendingTask] = None

# ========== Serial bridge ==========
class SerialMessage(BaseModel):
    t: str
    id: Optional[int] = None
    mac: Optional[str] = None
    dev_id: Optional[int] = None
    uid: Optional[str] = None
    status: Optional[int] = None
    ts: Optional[int] = None
    event: Optional[int] = None
    ticket: Optional[str] = None
    name: Optional[str] = None

# ========== Platform signals ==========
class BatteryStatus(BaseModel):
    level: int = Field(..., ge=0, le=100, description="Charge in percent")
    charging: bool = False

# ========== Health / status ==========
class HealthResponse(BaseModel):
    status: HealthStatus
    dataAvailable: bool
    message: Optional[str] = None

class SyncStatusResponse(BaseModel):
    """Server-side ingestion summary."""
    accepted_total: int
    last_received_at: Optional[datetime] = None
    sessions_connected: int
