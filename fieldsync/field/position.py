# =======================================================================================
# fieldsync/field/position.py - Position Fix Providers
# =======================================================================================
from typing import Optional
from ..models.schemas import Position
from .subscriptions import Subscription


class PositionProvider:
    """Source of position fixes. `current_fix` may wait; callers bound the wait."""

    async def current_fix(self) -> Optional[Position]:
        raise NotImplementedError

    def close(self) -> None:
        pass


class NoPositionProvider(PositionProvider):
    """Unit without a location source."""

    async def current_fix(self) -> Optional[Position]:
        return None


class StaticPositionProvider(PositionProvider):
    """Fixed site position, e.g. for a unit mounted at a known dock."""

    def __init__(self, lat: float, lng: float, accuracy: Optional[float] = None):
        self.position = Position(lat=lat, lng=lng, accuracy=accuracy)

    async def current_fix(self) -> Optional[Position]:
        return self.position


class WatchingPositionProvider(PositionProvider):
    """
    Keeps the latest fix pushed by a platform position watch.

    The platform side calls `update()`; `watch()` returns the handle used to
    stop feeding it on shutdown.
    """

    def __init__(self):
        self._latest: Optional[Position] = None
        self._watching = False

    def update(self, lat: float, lng: float, accuracy: Optional[float] = None) -> None:
        if self._watching:
            self._latest = Position(lat=lat, lng=lng, accuracy=accuracy)

    def watch(self) -> Subscription:
        self._watching = True
        return Subscription(self._stop)

    def _stop(self) -> None:
        self._watching = False
        self._latest = None

    async def current_fix(self) -> Optional[Position]:
        return self._latest

    def close(self) -> None:
        self._stop()
