# =======================================================================================
# fieldsync/api/dependencies.py - FastAPI Dependencies
# =======================================================================================
from typing import Optional
from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.engine import Connection
from ..database import DatabaseManager
from ..services.ingestion_service import IngestionGateway

def get_db_manager(request: Request) -> DatabaseManager:
    return request.app.state.db

def get_db_connection(db: DatabaseManager = Depends(get_db_manager)) -> Connection:
    """Dependency to get a database connection inside one transaction."""
    with db.get_connection() as conn:
        yield conn

def get_gateway(request: Request) -> IngestionGateway:
    return request.app.state.gateway

def parse_bearer(authorization: Optional[str]) -> Optional[str]:
    """Return the opaque bearer credential, or None if absent or malformed."""
    if not authorization:
        return None
    scheme, _, credential = authorization.partition(" ")
    if scheme.lower() != "bearer" or not credential.strip():
        return None
    return credential.strip()

def require_bearer(authorization: Optional[str] = Header(None)) -> str:
    """
    Require *some* bearer credential. Issuing and checking credentials belongs
    to the auth service in front of this API; here it is passed through as-is.
    """
    credential = parse_bearer(authorization)
    if credential is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer credential",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credential
