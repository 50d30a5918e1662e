"""
Test fixtures for the Ledger Service test suite.

This module provides shared fixtures used across all test files:

  - db_engine / session_factory / db_session: Fresh in-memory SQLite
    database per test
  - dispatcher: Notification dispatcher that delivers inline
  - client: Async HTTP test client (unauthenticated)
  - member_client / other_member_client / admin_client: Clients carrying a
    bearer token for two distinct members and one admin
  - make_account: Helper that opens an account through the API

Key design decisions:
  - In-memory SQLite (sqlite+aiosqlite://) is used for speed and isolation.
    Each test gets a completely fresh database — no state leaks between tests.
  - get_db is overridden with the same commit/rollback rules as production,
    so FAILED transactions survive a ledger error exactly as they would live.
  - There is no login endpoint: tokens are minted with create_access_token,
    the way the external authentication service would sign them.
"""

import os
import uuid

os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from app.database import Base, configure_sqlite, get_db
from app.exceptions import LedgerAPIError
from app.main import app
from app.security import Role, create_access_token
from app.services.notification_service import (
    NotificationDispatcher,
    get_notification_dispatcher,
)


# In-memory SQLite for fast, isolated tests
TEST_DATABASE_URL = "sqlite+aiosqlite://"


def auth_headers(client_id: uuid.UUID, role: Role = Role.MEMBER) -> dict[str, str]:
    token = create_access_token({"sub": str(client_id), "role": role.value})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def db_engine():
    """Create a fresh async engine with all tables for each test."""
    engine = configure_sqlite(create_async_engine(TEST_DATABASE_URL))
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Provide an async session bound to the test engine (service-level tests)."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def dispatcher(session_factory):
    """Dispatcher that finishes delivery before the request returns."""
    return NotificationDispatcher(session_factory, background=False)


@pytest_asyncio.fixture
async def client(session_factory, dispatcher):
    """
    Async HTTP test client with the test database injected.

    This overrides the get_db dependency so all requests hit the
    in-memory test database instead of the real one.
    """

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except LedgerAPIError:
                await session.commit()
                raise
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def member_id():
    return uuid.uuid4()


@pytest.fixture
def other_member_id():
    return uuid.uuid4()


@pytest.fixture
def admin_id():
    return uuid.uuid4()


async def _client_as(headers: dict[str, str]):
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers=headers,
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def member_client(client, member_id):
    """Test client authenticated as a MEMBER."""
    async for ac in _client_as(auth_headers(member_id)):
        yield ac


@pytest_asyncio.fixture
async def other_member_client(client, other_member_id):
    """
    A second MEMBER for cross-client authorization tests.

    Use this alongside member_client to verify that client A cannot
    touch client B's accounts.
    """
    async for ac in _client_as(auth_headers(other_member_id)):
        yield ac


@pytest_asyncio.fixture
async def admin_client(client, admin_id):
    """
    Test client authenticated as an ADMIN.

    The admin can view all accounts/balances/transactions and adjust
    balances, but cannot move money or change accounts.
    """
    async for ac in _client_as(auth_headers(admin_id, Role.ADMIN)):
        yield ac


@pytest.fixture
def make_account():
    """Open an account through the API and return its JSON body."""

    async def _make(ac: AsyncClient, initial_deposit=0, account_type="CHECKING") -> dict:
        response = await ac.post(
            "/accounts",
            json={"accountType": account_type, "initialDeposit": initial_deposit},
        )
        assert response.status_code == 201, f"Account creation failed: {response.text}"
        return response.json()

    return _make
