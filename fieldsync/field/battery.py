# =======================================================================================
# fieldsync/field/battery.py - Battery Signal
# =======================================================================================
import logging
from typing import Callable, Optional
from ..config import config
from ..models.schemas import BatteryStatus
from .subscriptions import HandlerRegistry, Subscription

logger = logging.getLogger(__name__)


class BatteryMonitor:
    """
    Latest battery reading pushed by the platform.

    Handlers are called only when the level or the charging flag changes.
    """

    def __init__(self, low_percent: Optional[int] = None):
        self.low_percent = low_percent if low_percent is not None else config.BATTERY_LOW_PERCENT
        self._status: Optional[BatteryStatus] = None
        self._handlers: HandlerRegistry[BatteryStatus] = HandlerRegistry("battery")

    def current(self) -> Optional[BatteryStatus]:
        return self._status

    @property
    def is_low(self) -> bool:
        status = self._status
        return status is not None and not status.charging and status.level <= self.low_percent

    def on_change(self, handler: Callable[[BatteryStatus], None]) -> Subscription:
        return self._handlers.add(handler)

    def update(self, level_percent: int, charging: bool = False) -> None:
        status = BatteryStatus(level=level_percent, charging=charging)
        if status == self._status:
            return

        was_low = self.is_low
        self._status = status
        if self.is_low and not was_low:
            logger.warning("Battery low: %d%%", status.level)
        self._handlers.emit(status)

    def close(self) -> None:
        self._handlers.clear()
