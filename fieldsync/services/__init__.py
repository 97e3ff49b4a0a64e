# =======================================================================================
# fieldsync/services/__init__.py - Services Package
# =======================================================================================
from .broadcast_service import BroadcastHub, ClientSession
from .ingestion_service import IngestionGateway, ScanEventRepository
from .task_service import TaskService

__all__ = ["BroadcastHub", "ClientSession", "IngestionGateway", "ScanEventRepository", "TaskService"]
