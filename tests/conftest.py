"""Shared fixtures: a throwaway SQLite database per test and the ASGI app wired to it."""
import os

# Must be set before anything imports core.config
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["AI_API_URL"] = ""
os.environ["AI_PRIMARY_MODEL"] = ""
os.environ["AI_SECONDARY_MODEL"] = ""
os.environ["DEMO_ADMIN_EMAIL"] = ""
os.environ["DEMO_ADMIN_PASSWORD"] = ""

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from core import (
    Base, IncidentCreateRequest, IncidentCategory, IncidentSeverity,
    ServiceCreateRequest, get_db
)
from engines import IncidentStore, ServiceRegistry


ADMIN_KEY = "test-admin-key"


@pytest.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(db):
    return IncidentStore(db)


@pytest.fixture
def registry(db):
    return ServiceRegistry(db)


@pytest.fixture
def make_service(registry):
    async def _make(name="checkout-api", url="http://checkout.internal", **fields):
        return await registry.create(ServiceCreateRequest(name=name, url=url, **fields))
    return _make


@pytest.fixture
def make_incident(store):
    async def _make(title="Checkout latency", **fields):
        fields.setdefault("severity", IncidentSeverity.MEDIUM)
        fields.setdefault("category", IncidentCategory.PERFORMANCE)
        return await store.create(IncidentCreateRequest(title=title, **fields))
    return _make


@pytest.fixture
def app(session_factory):
    from main import app as fastapi_app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    fastapi_app.dependency_overrides[get_db] = override_get_db
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client


@pytest.fixture
def auth_headers():
    return {"X-API-Key": ADMIN_KEY}
