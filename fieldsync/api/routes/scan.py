# =======================================================================================
# fieldsync/api/routes/scan.py - Scan Ingestion Endpoints
# =======================================================================================
from datetime import datetime, timezone
from fastapi import APIRouter, Depends
from ...models.schemas import BatchRequest, BatchAckResponse
from ...services.ingestion_service import IngestionGateway
from ..dependencies import get_gateway, require_bearer

router = APIRouter()

@router.post("/scans/batch", response_model=BatchAckResponse)
async def ingest_batch(
    request: BatchRequest,
    gateway: IngestionGateway = Depends(get_gateway),
    _credential: str = Depends(require_bearer),
):
    """Accept a batch of field scans; one acknowledgement per event, in order."""
    acks = await gateway.ingest(request.events)
    return BatchAckResponse(acks=acks, received_at=datetime.now(timezone.utc))
