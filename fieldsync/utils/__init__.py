# =======================================================================================
# fieldsync/utils/__init__.py - Utils Package
# =======================================================================================
from .exceptions import *
from .validators import *

__all__ = [
    "FieldSyncError", "TransientNetworkError", "AuthRejectedError", "ValidationRejection",
    "ConnectivityLost", "InvalidTagError", "DuplicateEventError", "TaskCompletionError",
    "TaskNotFoundError", "TaskAlreadyCompletedError", "TaskAlreadyExistsError", "TagValidator", "EventValidator",
]
