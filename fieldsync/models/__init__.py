# =======================================================================================
# fieldsync/models/__init__.py - Models Package
# =======================================================================================
from .schemas import *
from .enums import *

__all__ = [
    "MAX_BATCH_EVENTS", "Position", "ScanEvent", "Acknowledgement", "BatchRequest", "BatchAckResponse",
    "AcceptedEventMessage", "DeadLetter", "PendingTask", "sort_tasks", "TaskCreateRequest",
    "TaskListResponse", "TaskCompleteResponse", "SerialMessage", "HealthResponse",
    "SyncStatusResponse", "BatteryStatus", "ScanAction", "EventState", "ConnectivityState", "TaskPriority",
    "TaskStatus", "TaskType", "EventCode", "EVENT_ACCEPTED",
]
