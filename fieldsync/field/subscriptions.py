# =======================================================================================
# fieldsync/field/subscriptions.py - Explicit Subscription Handles
# =======================================================================================
import logging
from typing import Callable, Dict, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Subscription:
    """Handle returned by every `on_*` registration. `unsubscribe` is idempotent."""

    def __init__(self, cancel: Callable[[], None]):
        self._cancel = cancel
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._cancel()


class HandlerRegistry(Generic[T]):
    """Ordered set of handlers called synchronously with one value."""

    def __init__(self, name: str):
        self.name = name
        self._handlers: Dict[int, Callable[[T], None]] = {}
        self._next_id = 0

    def __len__(self) -> int:
        return len(self._handlers)

    def add(self, handler: Callable[[T], None]) -> Subscription:
        handler_id = self._next_id
        self._next_id += 1
        self._handlers[handler_id] = handler
        return Subscription(lambda: self._handlers.pop(handler_id, None))

    def emit(self, value: T) -> None:
        """Call every handler; a failing handler is logged and does not stop the others."""
        for handler in list(self._handlers.values()):
            try:
                handler(value)
            except Exception:
                logger.exception("%s handler %r failed", self.name, handler)

    def clear(self) -> None:
        self._handlers.clear()
