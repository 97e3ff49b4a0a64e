# =======================================================================================
# fieldsync/database.py - Database Management
# =======================================================================================
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import QueuePool
from contextlib import contextmanager
from typing import Optional
from .config import config

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS scan_events (
        correlation_id VARCHAR(64) NOT NULL PRIMARY KEY,
        tag_id VARCHAR(100) NOT NULL,
        action VARCHAR(20) NOT NULL,
        captured_at VARCHAR(40) NOT NULL,
        lat DOUBLE PRECISION NULL,
        lng DOUBLE PRECISION NULL,
        accuracy DOUBLE PRECISION NULL,
        received_at VARCHAR(40) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS field_tasks (
        id VARCHAR(64) NOT NULL PRIMARY KEY,
        task_type VARCHAR(20) NOT NULL,
        title VARCHAR(200) NOT NULL,
        priority VARCHAR(10) NOT NULL,
        location VARCHAR(200) NOT NULL,
        due_time VARCHAR(40) NOT NULL,
        status VARCHAR(20) NOT NULL,
        completed_at VARCHAR(40) NULL
    )
    """,
)

class DatabaseManager:
    """Manages database connections and transactions."""

    def __init__(self, url: Optional[str] = None):
        self.url = url or config.DB_URL
        options = {"pool_pre_ping": True, "future": True}
        if self.url.startswith("sqlite"):
            options["connect_args"] = {"check_same_thread": False}
        else:
            options.update(
                poolclass=QueuePool,
                pool_size=config.DB_POOL_SIZE,
                max_overflow=config.DB_MAX_OVERFLOW,
                isolation_level="READ COMMITTED",
            )
        self.engine: Engine = create_engine(self.url, **options)

    @contextmanager
    def get_connection(self):
        """Get a database connection with automatic cleanup."""
        with self.engine.begin() as conn:
            yield conn

    def init_schema(self) -> None:
        """Create the ingestion and task tables if they do not exist."""
        with self.get_connection() as conn:
            for statement in SCHEMA:
                conn.execute(text(statement))

    def fetch_one(self, query: str, params: dict = None):
        """Fetch a single result."""
        with self.get_connection() as conn:
            result = conn.execute(text(query), params or {})
            return result.mappings().first()

    def dispose(self) -> None:
        self.engine.dispose()
