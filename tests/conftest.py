"""Shared test fixtures — async SQLite in-memory DB + test client."""

import os
from collections.abc import AsyncGenerator

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

# Import all models so metadata is populated
import storekit.models  # noqa: E402, F401
from storekit.core.database import get_session  # noqa: E402
from storekit.main import app  # noqa: E402


@pytest.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def test_session_factory(engine):
    """Session factory bound to the test SQLite engine."""
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(test_session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with test_session_factory() as sess:
        yield sess
        await sess.rollback()


@pytest.fixture
async def client(session) -> AsyncGenerator[AsyncClient, None]:
    """HTTPX async test client with DB session override."""

    async def _override_session():
        yield session

    app.dependency_overrides[get_session] = _override_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def _bootstrap(client: AsyncClient, slug: str = "acme") -> dict:
    """Register a store and return its bootstrap payload plus auth headers."""
    resp = await client.post("/v1/tenants", json={
        "store_name": slug.title(),
        "store_slug": slug,
        "owner_email": f"owner@{slug}.com",
        "owner_password": "supersecret123",
    })
    assert resp.status_code == 201, resp.text
    data = resp.json()
    data["headers"] = {"Authorization": f"Bearer {data['api_token']}"}
    return data


@pytest.fixture
async def tenant(client) -> dict:
    return await _bootstrap(client, "acme")


@pytest.fixture
async def other_tenant(client) -> dict:
    return await _bootstrap(client, "globex")
