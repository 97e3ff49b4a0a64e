# =======================================================================================
# fieldsync/field/__init__.py - Field Unit Package
# =======================================================================================
from .battery import BatteryMonitor
from .capture import EventCapturer
from .connectivity import ConnectivityMonitor, HttpReachabilityProbe
from .live_feed import LiveFeed
from .local_store import LocalStore
from .position import PositionProvider, NoPositionProvider, StaticPositionProvider, WatchingPositionProvider
from .queue import DurableQueue
from .subscriptions import Subscription
from .sync_engine import SyncEngine, SyncOutcome, SyncRunState, SyncSignal, advance
from .task_cache import PendingTaskCache
from .transport import ServerTransport
from .unit import FieldUnit

__all__ = [
    "BatteryMonitor", "EventCapturer", "ConnectivityMonitor", "HttpReachabilityProbe", "LiveFeed", "LocalStore",
    "PositionProvider", "NoPositionProvider", "StaticPositionProvider", "WatchingPositionProvider",
    "DurableQueue", "Subscription", "SyncEngine", "SyncOutcome", "SyncRunState", "SyncSignal",
    "advance", "PendingTaskCache", "ServerTransport", "FieldUnit",
]
