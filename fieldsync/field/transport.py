# =======================================================================================
# fieldsync/field/transport.py - HTTP Client for the Field Unit
# =======================================================================================
import logging
from typing import List, Optional, Sequence
import httpx
from pydantic import ValidationError
from ..config import config
from ..models.schemas import ScanEvent, Acknowledgement, BatchAckResponse, PendingTask, TaskListResponse
from ..utils.exceptions import (
    TransientNetworkError, AuthRejectedError, TaskCompletionError,
)

logger = logging.getLogger(__name__)


class ServerTransport:
    """
    Request/response calls from the unit to the server.

    The bearer credential comes from the auth collaborator and is passed
    through unchanged.
    """

    def __init__(
        self,
        server_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        headers = {"Authorization": f"Bearer {token or config.API_TOKEN or ''}".strip()}
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=server_url or config.SERVER_URL,
            timeout=httpx.Timeout(timeout or config.SYNC_TIMEOUT),
        )
        self.client.headers.update(headers)

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"Timed out calling {url}") from e
        except httpx.TransportError as e:
            raise TransientNetworkError(f"Could not reach server: {e}") from e

        if response.status_code in (401, 403):
            raise AuthRejectedError(f"Server refused credential ({response.status_code})")
        return response

    async def send_batch(self, events: Sequence[ScanEvent]) -> List[Acknowledgement]:
        """POST one batch; any answer other than 2xx leaves the batch unconsumed."""
        response = await self._request(
            "POST", "/api/scans/batch", json={"events": [e.to_wire() for e in events]}
        )
        if response.status_code >= 300:
            raise TransientNetworkError(f"Ingestion returned {response.status_code}")

        try:
            return BatchAckResponse.model_validate(response.json()).acks
        except (ValueError, ValidationError) as e:
            raise TransientNetworkError(f"Unreadable ingestion response: {e}") from e

    async def fetch_pending_tasks(self) -> List[PendingTask]:
        response = await self._request("GET", "/api/mobile/tasks/pending")
        if response.status_code >= 300:
            raise TransientNetworkError(f"Task refresh returned {response.status_code}")
        try:
            return TaskListResponse.model_validate(response.json()).data
        except (ValueError, ValidationError) as e:
            raise TransientNetworkError(f"Unreadable task list: {e}") from e

    async def complete_task(self, task_id: str) -> None:
        try:
            response = await self._request("POST", f"/api/mobile/tasks/{task_id}/complete")
        except TransientNetworkError as e:
            raise TaskCompletionError(f"Completion of {task_id} not confirmed: {e}") from e

        if response.status_code >= 300:
            detail = response.text[:200]
            raise TaskCompletionError(
                f"Completion of {task_id} rejected ({response.status_code}): {detail}"
            )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
