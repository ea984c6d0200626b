import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from app.core.database import get_database
from app.main import app
from app.models import subscription as _billing_models  # noqa: F401 - registers tables
from app.services.billing.repository import SqlSubscriptionRepository


class _SyncASGIClient:
    """Minimal synchronous wrapper around httpx.AsyncClient for ASGI apps."""

    def __init__(self, app):
        transport = httpx.ASGITransport(app=app)
        self._client = httpx.AsyncClient(transport=transport, base_url="http://testserver")

    def request(self, method: str, url: str, **kwargs):
        return asyncio.run(self._client.request(method, url, **kwargs))

    def get(self, url: str, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs):
        return self.request("POST", url, **kwargs)

    def close(self) -> None:
        asyncio.run(self._client.aclose())


class SyncAsyncSession:
    """Async-shaped facade over a sync SQLite session for repository tests."""

    def __init__(self, factory: sessionmaker[Session]):
        self._session = factory()

    async def execute(self, stmt):
        return self._session.execute(stmt)

    async def commit(self):
        self._session.commit()

    async def rollback(self):
        self._session.rollback()

    def add(self, obj):
        self._session.add(obj)

    def close(self) -> None:
        self._session.close()


@pytest.fixture
def client():
    """Create test client compatible with older/newer httpx releases."""
    try:
        test_client = TestClient(app)
        yield test_client
    except TypeError:
        fallback_client = _SyncASGIClient(app)
        try:
            yield fallback_client
        finally:
            fallback_client.close()


@pytest.fixture
def session_factory():
    """Real in-memory SQLite store with the billing tables created."""
    engine = create_engine(
        "sqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    SQLModel.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, class_=Session, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def repository(session_factory):
    session = SyncAsyncSession(session_factory)
    yield SqlSubscriptionRepository(session)
    session.close()


@pytest.fixture
def override_db(session_factory):
    """Route `get_database` to the SQLite store for API tests."""

    async def override():
        session = SyncAsyncSession(session_factory)
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_database] = override
    yield session_factory
    app.dependency_overrides.pop(get_database, None)
