"""Shared pytest fixtures for the workflow engine test suite.

Provides:
- Async SQLite database in a temporary file (one per test)
- Frozen, advanceable clock shared by every service
- Services bundle with a recording notification sender and an
  in-memory record repository
- FastAPI test client (httpx.AsyncClient over ASGITransport)
- Helpers to build workflow definitions
"""

import os
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Override settings BEFORE any app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")

from db.database import create_db_engine, create_session_factory, init_db  # noqa: E402
from notifications.channels import LogOnlyNotificationSender  # noqa: E402
from services.container import build_services  # noqa: E402
from services.record_repository import InMemoryRecordRepository  # noqa: E402
from workflow.retry_strategies import RetryStrategy  # noqa: E402

ORG_ID = "org-1"
OTHER_ORG_ID = "org-2"


class FrozenClock:
    """Callable clock passed as ``now_fn``; only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def set(self, value: datetime) -> None:
        self.now = value

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Fresh database file with every table created."""
    engine = create_db_engine(f"sqlite+aiosqlite:///{tmp_path / 'workflows.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


# ---------------------------------------------------------------------------
# Service fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def clock():
    return FrozenClock(utc(2025, 1, 5, 9, 15))


@pytest.fixture
def sender():
    return LogOnlyNotificationSender()


@pytest.fixture
def records():
    return InMemoryRecordRepository()


@pytest.fixture
def retry_strategy():
    return RetryStrategy.exponential(base_delay=60, max_delay=86400, max_consecutive_failures=0)


@pytest.fixture
def services(session_factory, clock, sender, records, retry_strategy):
    return build_services(
        session_factory,
        now_fn=clock,
        notification_sender=sender,
        record_repository=records,
        retry_strategy=retry_strategy,
        approvals_enabled=True,
    )


@pytest.fixture
def create_workflow(services):
    """Store a workflow through the service (validates and syncs schedules)."""

    async def _create(definition=None, name="Test Workflow", organization_id=ORG_ID, is_active=True):
        return await services.workflows.create_workflow(
            organization_id,
            name,
            definition or simple_definition(),
            is_active=is_active,
        )

    return _create


# ---------------------------------------------------------------------------
# App / HTTP client fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def app(services):
    """FastAPI app whose routes use the test services."""
    from app.dependencies import get_app_services
    from app.main import create_app

    test_app = create_app()
    test_app.dependency_overrides[get_app_services] = lambda: services
    return test_app


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client; lifespan is not run."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", follow_redirects=True) as ac:
        yield ac


@pytest.fixture
def org_headers() -> dict:
    return {"X-Organization-Id": ORG_ID}


# ---------------------------------------------------------------------------
# Definition builders
# ---------------------------------------------------------------------------

def trigger_node(node_id="t1", schedule=None) -> dict:
    node = {"id": node_id, "type": "TRIGGER", "name": "Start"}
    if schedule is not None:
        node["config"] = {"schedule": schedule}
    return node


def email_node(node_id, to="{trigger.payload.email}", subject="Hello", message=None, **extra) -> dict:
    config = {"template_mode": "CUSTOM", "to": to, "subject": subject, **extra}
    if message is not None:
        config["message"] = message
    return {"id": node_id, "type": "EMAIL", "config": config}


def edge(source, target, label=None) -> dict:
    connection = {"from_node_id": source, "to_node_id": target}
    if label is not None:
        connection["label"] = label
    return connection


def simple_definition(schedule=None, **trigger_filters) -> dict:
    """TRIGGER -> EMAIL, optionally scheduled, with one event trigger."""
    trigger = {"node_id": "t1", "type": "schedule" if schedule else "event", **trigger_filters}
    return {
        "triggers": [trigger],
        "nodes": [
            trigger_node("t1", schedule=schedule),
            email_node("n1", to="ops@example.com", subject="Run {trigger.type}"),
        ],
        "connections": [edge("t1", "n1")],
    }
