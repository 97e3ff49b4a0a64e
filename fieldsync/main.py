# =======================================================================================
# fieldsync/main.py - FastAPI Application Entry Point
# =======================================================================================
import logging
from typing import Optional
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError
from .config import config, configure_logging
from .api.routes.scan import router as scan_router
from .api.routes.sync import router as sync_router
from .api.routes.tasks import router as tasks_router
from .api.routes.events import router as events_router
from .database import DatabaseManager
from .models.schemas import HealthResponse
from .services.broadcast_service import BroadcastHub
from .services.ingestion_service import IngestionGateway

logger = logging.getLogger(__name__)


def create_app(db: Optional[DatabaseManager] = None, hub: Optional[BroadcastHub] = None) -> FastAPI:
    app = FastAPI(
        title="FieldSync API",
        version="1.0.0",
        description="Offline-tolerant field scan ingestion with live fan-out",
        debug=config.API_DEBUG,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.db = db or DatabaseManager()
    app.state.hub = hub or BroadcastHub()
    app.state.gateway = IngestionGateway(app.state.db, app.state.hub)

    # Routers
    app.include_router(scan_router, prefix="/api", tags=["scan"])
    app.include_router(sync_router, prefix="/api", tags=["sync"])
    app.include_router(tasks_router, prefix="/api", tags=["tasks"])
    app.include_router(events_router, tags=["events"])

    @app.get("/api/health", response_model=HealthResponse, tags=["health"])
    def api_health(request: Request):
        try:
            request.app.state.db.fetch_one("SELECT 1")
            return HealthResponse(status="ok", dataAvailable=True, message=None)
        except SQLAlchemyError as e:
            return HealthResponse(status="error", dataAvailable=False, message=str(e))

    @app.on_event("startup")
    async def startup_event():
        app.state.db.init_schema()
        logger.info("FieldSync API started")

    @app.on_event("shutdown")
    async def shutdown_event():
        app.state.db.dispose()

    return app


def run() -> None:
    """Console entry point for the API server."""
    configure_logging()
    uvicorn.run(create_app(), host=config.API_HOST, port=config.API_PORT)
