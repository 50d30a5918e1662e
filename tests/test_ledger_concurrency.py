"""
Tests for the ledger engine under contention.

These tests verify:
  - Concurrent withdrawals can never overdraw an account
  - Opposing transfers between the same pair of accounts both complete
  - Version conflicts are retried, then surfaced as a retryable 503
  - A storage timeout fails the transaction without moving money

The concurrency tests use a file-backed SQLite database: an in-memory
database shares a single connection, which would serialize everything in
the client instead of in the database.
"""

import asyncio
import logging
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.config import settings
from app.database import Base, configure_sqlite
from app.exceptions import (
    ConcurrentModificationError,
    InsufficientFundsError,
    StorageTimeoutError,
    VersionConflictError,
)
from app.models.account import Account
from app.models.transaction import Transaction, TransactionStatus
from app.security import Principal
from app.services import account_store, ledger, transaction_log


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    engine = configure_sqlite(
        create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def principal(member_id):
    return Principal(client_id=member_id)


async def _open(factory, principal, initial_deposit) -> Account:
    async with factory() as session:
        account = await ledger.open_account(
            session, principal, initial_deposit=Decimal(initial_deposit)
        )
        await session.commit()
        return account


async def _balance_cents(factory, account_id) -> int:
    async with factory() as session:
        account = await account_store.get(session, account_id)
        return account.balance_cents


class TestConcurrentMutations:
    """Real concurrency: one session per task, one connection per session."""

    async def test_concurrent_withdrawals_never_overdraw(
        self, file_session_factory, principal
    ):
        """Two withdrawals of 80 against 100: exactly one succeeds, 20 remains."""
        account = await _open(file_session_factory, principal, "100")

        async def withdraw():
            async with file_session_factory() as session:
                try:
                    txn, _ = await ledger.withdraw(session, account.id, Decimal("80"), principal)
                    return txn.status
                except InsufficientFundsError:
                    return TransactionStatus.FAILED

        outcomes = await asyncio.gather(withdraw(), withdraw())

        assert sorted(o.value for o in outcomes) == ["COMPLETED", "FAILED"]
        assert await _balance_cents(file_session_factory, account.id) == 2000

        async with file_session_factory() as session:
            assert await transaction_log.compute_balance(session, account.id) == 2000

    async def test_opposing_transfers(self, file_session_factory, principal):
        """A->B and B->A at the same time both complete; the pair's sum is kept."""
        a = await _open(file_session_factory, principal, "100")
        b = await _open(file_session_factory, principal, "100")

        async def move(source, destination, amount):
            async with file_session_factory() as session:
                txn, _ = await ledger.transfer(
                    session, source, destination, Decimal(amount), principal
                )
                return txn.status

        outcomes = await asyncio.gather(move(a.id, b.id, "30"), move(b.id, a.id, "20"))

        assert outcomes == [TransactionStatus.COMPLETED, TransactionStatus.COMPLETED]
        assert await _balance_cents(file_session_factory, a.id) == 9000
        assert await _balance_cents(file_session_factory, b.id) == 11000

    async def test_many_small_withdrawals(self, file_session_factory, principal):
        """Ten withdrawals of 15 against 100: six succeed, never below zero."""
        account = await _open(file_session_factory, principal, "100")

        async def withdraw():
            async with file_session_factory() as session:
                try:
                    await ledger.withdraw(session, account.id, Decimal("15"), principal)
                    return True
                except InsufficientFundsError:
                    return False

        outcomes = await asyncio.gather(*(withdraw() for _ in range(10)))

        assert outcomes.count(True) == 6
        assert await _balance_cents(file_session_factory, account.id) == 1000


class TestRetries:
    """Version conflicts and timeouts, driven through the service layer."""

    async def test_conflict_is_retried(self, db_session, principal, monkeypatch, caplog):
        account = await ledger.open_account(db_session, principal, initial_deposit=Decimal("10"))
        real_apply_delta = account_store.apply_delta
        calls = []

        async def conflicting_once(db, account_id, delta_cents, expected_version):
            calls.append(expected_version)
            if len(calls) == 1:
                raise VersionConflictError(account_id, expected_version, expected_version + 1)
            return await real_apply_delta(db, account_id, delta_cents, expected_version)

        monkeypatch.setattr(account_store, "apply_delta", conflicting_once)

        with caplog.at_level(logging.WARNING, logger="app.services.ledger"):
            txn, replayed = await ledger.deposit(db_session, account.id, Decimal("5"), principal)

        assert txn.status == TransactionStatus.COMPLETED
        assert replayed is False
        assert len(calls) == 2
        assert "lost a race" in caplog.text
        assert (await account_store.get(db_session, account.id)).balance_cents == 1500

    async def test_retries_exhausted(self, db_session, principal, monkeypatch):
        account = await ledger.open_account(db_session, principal, initial_deposit=Decimal("10"))
        attempts = []

        async def always_conflicting(db, account_id, delta_cents, expected_version):
            attempts.append(1)
            raise VersionConflictError(account_id, expected_version, expected_version + 1)

        monkeypatch.setattr(account_store, "apply_delta", always_conflicting)

        with pytest.raises(ConcurrentModificationError) as exc_info:
            await ledger.withdraw(db_session, account.id, Decimal("5"), principal)

        assert exc_info.value.retryable is True
        assert len(attempts) == settings.LEDGER_MAX_ATTEMPTS
        assert (await account_store.get(db_session, account.id)).balance_cents == 1000

        failed = await transaction_log.list_by_account(
            db_session, account.id, status_filter=TransactionStatus.FAILED
        )
        assert [t.failure_reason for t in failed] == ["concurrent_modification"]

    async def test_retries_exhausted_over_http(
        self, member_client, make_account, monkeypatch
    ):
        """The caller sees a retryable 503 with a Retry-After header."""
        account = await make_account(member_client, initial_deposit=10)

        async def always_conflicting(db, account_id, delta_cents, expected_version):
            raise VersionConflictError(account_id, expected_version, expected_version + 1)

        monkeypatch.setattr(account_store, "apply_delta", always_conflicting)

        response = await member_client.post(
            "/transactions/retrait", json={"accountId": account["id"], "amount": 1}
        )
        assert response.status_code == 503
        assert response.json()["error_type"] == "concurrent_modification"
        assert response.json()["retryable"] is True
        assert response.headers["retry-after"] == "1"

    async def test_storage_timeout(self, db_session, principal, monkeypatch):
        account = await ledger.open_account(db_session, principal, initial_deposit=Decimal("10"))
        monkeypatch.setattr(settings, "STORAGE_TIMEOUT_SECONDS", 0.05)

        async def stalled_lock(db, account_id):
            await asyncio.sleep(1)

        monkeypatch.setattr(account_store, "lock", stalled_lock)

        with pytest.raises(StorageTimeoutError):
            await ledger.withdraw(db_session, account.id, Decimal("5"), principal)

        monkeypatch.undo()
        assert (await account_store.get(db_session, account.id)).balance_cents == 1000

        result = await db_session.execute(
            select(func.count())
            .select_from(Transaction)
            .where(Transaction.status == TransactionStatus.FAILED)
            .where(Transaction.failure_reason == "storage_timeout")
        )
        assert result.scalar_one() == 1
