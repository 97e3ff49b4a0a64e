# =======================================================================================
# fieldsync/models/enums.py - Enums and Constants
# =======================================================================================
from enum import Enum
from typing import Literal

# Type aliases for better type hints
TaskStatus = Literal["pending", "in_progress", "completed"]
TaskType = Literal["retrieval", "storage", "audit", "transfer"]
HealthStatus = Literal["ok", "error", "offline"]

class ScanAction(str, Enum):
    """Kinds of field action a scan records."""
    SCAN = "scan"
    CHECK_IN = "check-in"
    CHECK_OUT = "check-out"

class EventState(str, Enum):
    """Local lifecycle of a captured event."""
    CAPTURED = "captured"
    QUEUED = "queued"
    TRANSMITTING = "transmitting"
    ACKNOWLEDGED = "acknowledged"
    FAILED = "failed"

class ConnectivityState(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"

class TaskPriority(str, Enum):
    """Task priority, ordered urgent > high > medium > low."""
    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Sort key; lower ranks come first."""
        return _PRIORITY_RANK[self]

_PRIORITY_RANK = {
    TaskPriority.URGENT: 0,
    TaskPriority.HIGH: 1,
    TaskPriority.MEDIUM: 2,
    TaskPriority.LOW: 3,
}

class EventCode(Enum):
    """Action codes for serial communication with the reader bridge."""
    SCAN = 0
    CHECK_IN = 1
    CHECK_OUT = 2

    @classmethod
    def to_action(cls, code) -> ScanAction:
        try:
            return ScanAction[cls(code).name]
        except ValueError:
            return ScanAction.SCAN

# Push message types
EVENT_ACCEPTED = "event:accepted"
