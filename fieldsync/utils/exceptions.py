# =======================================================================================
# fieldsync/utils/exceptions.py - Custom Exceptions
# =======================================================================================
class FieldSyncError(Exception):
    """Base exception for the field sync system."""
    pass

class TransientNetworkError(FieldSyncError):
    """Raised when the server could not be reached or gave no usable answer."""
    pass

class AuthRejectedError(TransientNetworkError):
    """Raised when the server refused the bearer credential."""
    pass

class ValidationRejection(FieldSyncError):
    """Raised when an event is structurally invalid and must not be retried."""

    def __init__(self, reason: str, correlation_id: str = None):
        super().__init__(reason)
        self.reason = reason
        self.correlation_id = correlation_id

class ConnectivityLost(FieldSyncError):
    """Raised when an online-only operation is attempted while offline."""
    pass

class InvalidTagError(FieldSyncError):
    """Raised when a tag read is malformed."""
    pass

class DuplicateEventError(FieldSyncError):
    """Raised when a correlation id is appended to the local queue twice."""
    pass

class TaskCompletionError(FieldSyncError):
    """Raised when the server did not confirm a task completion."""
    pass

class TaskNotFoundError(FieldSyncError):
    """Raised when a task is not found."""
    pass

class TaskAlreadyCompletedError(FieldSyncError):
    """Raised when completing a task that is already completed."""
    pass

class TaskAlreadyExistsError(FieldSyncError):
    """Raised when creating a task with an id that is already taken."""
    pass
