# =======================================================================================
# fieldsync/field/local_store.py - Durable Local Storage for the Field Unit
# =======================================================================================
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, Union
from sqlalchemy import create_engine, text, event
from sqlalchemy.engine import Engine

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS pending_scans (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        correlation_id TEXT NOT NULL UNIQUE,
        payload TEXT NOT NULL,
        state TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS dead_letters (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        correlation_id TEXT NOT NULL UNIQUE,
        payload TEXT NOT NULL,
        reason TEXT NOT NULL,
        failed_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS task_cache (
        id TEXT PRIMARY KEY,
        payload TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS unit_meta (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    )
    """,
)


class LocalStore:
    """
    SQLite file on the unit, shared by the scan queue and the task cache.

    Every `transaction()` commits before it returns, so whatever was written is
    on disk and survives a restart of the process.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # the serial reader thread captures through the unit's loop, tests read from others
        self.engine: Engine = create_engine(
            f"sqlite:///{self.path}",
            connect_args={"check_same_thread": False},
            future=True,
        )
        event.listen(self.engine, "connect", self._on_connect)
        self._init_schema()

    @staticmethod
    def _on_connect(dbapi_conn, _record) -> None:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=FULL")
        cursor.close()

    def _init_schema(self) -> None:
        with self.transaction() as conn:
            for statement in SCHEMA:
                conn.execute(text(statement))

    @contextmanager
    def transaction(self):
        """Connection inside one committed transaction."""
        with self.engine.begin() as conn:
            yield conn

    def get_meta(self, key: str) -> Optional[str]:
        with self.transaction() as conn:
            return conn.execute(
                text("SELECT value FROM unit_meta WHERE key = :k"), {"k": key}
            ).scalar_one_or_none()

    def set_meta(self, key: str, value: str) -> None:
        with self.transaction() as conn:
            conn.execute(
                text("INSERT OR REPLACE INTO unit_meta (key, value) VALUES (:k, :v)"),
                {"k": key, "v": value}
            )

    def close(self) -> None:
        self.engine.dispose()
