# =======================================================================================
# fieldsync/api/routes/sync.py - Synchronization Endpoints
# =======================================================================================
from fastapi import APIRouter, Depends
from ...models.schemas import SyncStatusResponse
from ...services.ingestion_service import IngestionGateway
from ..dependencies import get_gateway

router = APIRouter()

@router.get("/sync/status", response_model=SyncStatusResponse)
def get_sync_status(gateway: IngestionGateway = Depends(get_gateway)):
    """Accepted event totals and live session count."""
    return gateway.stats()
