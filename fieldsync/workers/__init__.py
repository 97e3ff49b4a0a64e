# =======================================================================================
# fieldsync/workers/__init__.py - Workers Package
# =======================================================================================
from .serial_worker import SerialWorker, TagReadDebouncer, capture_on_loop

__all__ = ["SerialWorker", "TagReadDebouncer", "capture_on_loop"]
