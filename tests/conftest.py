"""
Pytest configuration and fixtures for FieldSync tests
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from fieldsync.database import DatabaseManager
from fieldsync.field.local_store import LocalStore
from fieldsync.field.queue import DurableQueue
from fieldsync.main import create_app
from fieldsync.models.enums import ScanAction, TaskPriority
from fieldsync.models.schemas import Acknowledgement, PendingTask, ScanEvent

AUTH = {"Authorization": "Bearer field-unit-token"}


def accept_all(events) -> List[Acknowledgement]:
    return [Acknowledgement(correlation_id=e.correlation_id, accepted=True) for e in events]


class FakeTransport:
    """In-memory stand-in for ServerTransport."""

    def __init__(self, respond: Optional[Callable] = None, gate: Optional[asyncio.Event] = None):
        self.respond = respond or accept_all
        self.gate = gate
        self.batches: List[List[str]] = []
        self.started = asyncio.Event()
        self.tasks: List[PendingTask] = []
        self.task_error: Optional[Exception] = None
        self.completed: List[str] = []
        self.complete_error: Optional[Exception] = None

    async def send_batch(self, events):
        self.batches.append([e.correlation_id for e in events])
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        result = self.respond(events)
        if isinstance(result, Exception):
            raise result
        return result

    async def fetch_pending_tasks(self):
        if self.task_error is not None:
            raise self.task_error
        return list(self.tasks)

    async def complete_task(self, task_id):
        if self.complete_error is not None:
            raise self.complete_error
        self.completed.append(task_id)

    async def aclose(self):
        pass


class FakeSession:
    """Push session that records what it was sent."""

    def __init__(self, fail: bool = False, on_send: Optional[Callable] = None, stall: bool = False):
        self.session_id = uuid4().hex
        self.fail = fail
        self.stall = stall
        self.on_send = on_send
        self.attempts = 0
        self.received = []

    async def send(self, message):
        self.attempts += 1
        if self.stall:
            # peer that never reads its socket
            await asyncio.Event().wait()
        if self.fail:
            raise RuntimeError("socket closed")
        self.received.append(message)
        if self.on_send is not None:
            self.on_send()


@pytest.fixture
def transport_factory():
    return FakeTransport


@pytest.fixture
def session_factory():
    return FakeSession


@pytest.fixture
def make_event():
    """Factory for ScanEvent instances"""

    def _make(tag_id: str = "TAG0001", action: ScanAction = ScanAction.SCAN, **overrides) -> ScanEvent:
        values = dict(
            correlation_id=uuid4().hex,
            tag_id=tag_id,
            captured_at=datetime.now(timezone.utc),
            action=action,
        )
        values.update(overrides)
        return ScanEvent(**values)

    return _make


@pytest.fixture
def make_task():
    def _make(task_id: str, priority: TaskPriority = TaskPriority.MEDIUM, hours: int = 1) -> PendingTask:
        return PendingTask(
            id=task_id,
            task_type="retrieval",
            title=f"Task {task_id}",
            priority=priority,
            location="Store room B",
            due_time=datetime(2026, 1, 1, tzinfo=timezone.utc) + timedelta(hours=hours),
        )

    return _make


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "unit.db"


@pytest.fixture
def store(store_path):
    local_store = LocalStore(store_path)
    yield local_store
    local_store.close()


@pytest.fixture
def queue(store):
    return DurableQueue(store)


@pytest.fixture
def server_db(tmp_path):
    db = DatabaseManager(f"sqlite:///{tmp_path / 'server.db'}")
    db.init_schema()
    yield db
    db.dispose()


@pytest.fixture
def app(server_db):
    return create_app(db=server_db)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers():
    return dict(AUTH)
