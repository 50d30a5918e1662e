"""
Account store — durable access to Account records.

This module handles:
  - Account creation (with unique account number generation)
  - Lookups by id, by account number, and by owning client
  - Account type changes and closing
  - apply_delta(): the ONLY function that writes balance_cents

Compare-and-set:
  apply_delta() issues a single conditional UPDATE:

      UPDATE accounts
         SET balance_cents = balance_cents + :delta, version = version + 1
       WHERE id = :id AND version = :expected
         AND status = 'ACTIVE' AND balance_cents + :delta >= 0

  If no row matched, the row is re-read to say why (missing, closed, changed
  underneath us, or short of funds). Two writers that read the same version
  can never both succeed, which is what prevents double-spending.
  close() uses the same pattern so a close racing a withdrawal is also
  serialized through the version column.

Ownership:
  get_owned() scopes a lookup to the caller. Admins bypass the ownership
  check (read-only oversight); members only see their own accounts.
"""

import logging
import random
import string
import uuid
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.exceptions import (
    AccountAlreadyClosedError,
    AccountClosedError,
    AccountHasBalanceError,
    AccountNotFoundError,
    BalanceLimitError,
    InsufficientFundsError,
    UnauthorizedAccessError,
    VersionConflictError,
)
from app.models.account import Account, AccountStatus, AccountType
from app.money import MAX_CENTS
from app.security import Principal

logger = logging.getLogger(__name__)


def _generate_account_number() -> str:
    """Generate a random 10-digit account number."""
    return "".join(random.choices(string.digits, k=10))


async def create(
    db: AsyncSession,
    client_id: uuid.UUID,
    account_type: AccountType = AccountType.CHECKING,
    initial_balance_cents: int = 0,
) -> Account:
    """
    Create a new ACTIVE account for a client.

    Args:
        db: Database session.
        client_id: The owner's client id.
        account_type: CHECKING, SAVINGS or BUSINESS.
        initial_balance_cents: Opening balance in cents (>= 0).

    Returns:
        The newly created Account instance.
    """
    if initial_balance_cents < 0:
        raise ValueError("initial_balance_cents must be >= 0")

    # Retry on collision; with 10 random digits this is extremely unlikely
    for _ in range(10):
        account_number = _generate_account_number()
        existing = await db.execute(
            select(Account.id).where(Account.account_number == account_number)
        )
        if existing.scalar_one_or_none() is None:
            break
    else:
        raise RuntimeError("Failed to generate a unique account number")

    account = Account(
        client_id=client_id,
        account_type=account_type,
        account_number=account_number,
        balance_cents=initial_balance_cents,
        currency=settings.CURRENCY,
        status=AccountStatus.ACTIVE,
        version=1,
    )
    db.add(account)
    await db.flush()
    logger.info("Created %s account %s for client %s", account_type.value, account.id, client_id)
    return account


async def get(db: AsyncSession, account_id: uuid.UUID) -> Account:
    """
    Get a single account by id.

    Raises:
        AccountNotFoundError: If the account doesn't exist.
    """
    result = await db.execute(select(Account).where(Account.id == account_id))
    account = result.scalar_one_or_none()

    if account is None:
        raise AccountNotFoundError(account_id)

    return account


async def get_by_number(db: AsyncSession, account_number: str) -> Account:
    """
    Get a single account by its (unmasked) account number.

    Raises:
        AccountNotFoundError: If no account carries that number. The number
                              itself is not echoed back in the error.
    """
    result = await db.execute(
        select(Account).where(Account.account_number == account_number)
    )
    account = result.scalar_one_or_none()

    if account is None:
        raise AccountNotFoundError("with the given account number")

    return account


async def get_owned(
    db: AsyncSession,
    account_id: uuid.UUID,
    principal: Principal,
) -> Account:
    """
    Get a single account, verifying the caller may see it.

    Raises:
        AccountNotFoundError: If the account doesn't exist.
        UnauthorizedAccessError: If a member asks for someone else's account.
    """
    account = await get(db, account_id)

    if not principal.is_admin and account.client_id != principal.client_id:
        raise UnauthorizedAccessError("You do not have access to this account")

    return account


async def list_by_owner(db: AsyncSession, client_id: uuid.UUID) -> list[Account]:
    """List all accounts owned by a client, oldest first."""
    result = await db.execute(
        select(Account)
        .where(Account.client_id == client_id)
        .order_by(Account.created_at, Account.id)
    )
    return list(result.scalars().all())


async def lock(db: AsyncSession, account_id: uuid.UUID) -> Account:
    """
    Re-read an account for a write, bypassing the session's identity map.

    with_for_update() takes a row lock on PostgreSQL; it is a no-op on
    SQLite, where BEGIN IMMEDIATE already serializes writers.

    Raises:
        AccountNotFoundError: If the account doesn't exist.
    """
    result = await db.execute(
        select(Account)
        .where(Account.id == account_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    account = result.scalar_one_or_none()

    if account is None:
        raise AccountNotFoundError(account_id)

    return account


async def update_type(
    db: AsyncSession,
    account_id: uuid.UUID,
    account_type: AccountType,
) -> Account:
    """
    Change an account's type. Never touches the balance.

    Raises:
        AccountNotFoundError: If the account doesn't exist.
        AccountClosedError: If the account is CLOSED.
    """
    account = await lock(db, account_id)

    if account.status == AccountStatus.CLOSED:
        raise AccountClosedError(account_id)

    if account.account_type != account_type:
        account.account_type = account_type
        account.version += 1
        await db.flush()

    return account


async def close(
    db: AsyncSession,
    account_id: uuid.UUID,
    policy: str | None = None,
) -> Account:
    """
    Close an account (ACTIVE -> CLOSED). The balance is left untouched.

    Args:
        db: Database session.
        account_id: The account to close.
        policy: "allow" or "require_zero_balance"; defaults to
                settings.CLOSE_ACCOUNT_POLICY.

    Raises:
        AccountNotFoundError: If the account doesn't exist.
        AccountAlreadyClosedError: If the account is already CLOSED.
        AccountHasBalanceError: If the policy requires a zero balance.
        VersionConflictError: If the account changed between read and write.
    """
    policy = policy or settings.CLOSE_ACCOUNT_POLICY
    account = await lock(db, account_id)

    if account.status == AccountStatus.CLOSED:
        raise AccountAlreadyClosedError(account_id)

    if policy == "require_zero_balance" and account.balance_cents != 0:
        raise AccountHasBalanceError(account_id, account.balance_cents)

    result = await db.execute(
        update(Account)
        .where(
            Account.id == account_id,
            Account.version == account.version,
            Account.status == AccountStatus.ACTIVE,
        )
        .values(
            status=AccountStatus.CLOSED,
            closed_at=datetime.now(timezone.utc),
            version=Account.version + 1,
        )
        .execution_options(synchronize_session=False)
    )

    if result.rowcount != 1:
        current = await lock(db, account_id)
        if current.status == AccountStatus.CLOSED:
            raise AccountAlreadyClosedError(account_id)
        raise VersionConflictError(account_id, account.version, current.version)

    logger.info("Closed account %s (balance %d cents left in place)", account_id, account.balance_cents)
    return await lock(db, account_id)


async def apply_delta(
    db: AsyncSession,
    account_id: uuid.UUID,
    delta_cents: int,
    expected_version: int,
) -> Account:
    """
    Add a signed amount to an account's balance with compare-and-set.

    This is the sole balance-mutation primitive. Callers pass the version
    they read; if anything changed since, the write is refused.

    Args:
        db: Database session.
        account_id: The account to mutate.
        delta_cents: Positive to credit, negative to debit.
        expected_version: The version the caller's checks were based on.

    Returns:
        The refreshed Account.

    Raises:
        AccountNotFoundError: If the account doesn't exist.
        AccountClosedError: If the account is CLOSED.
        VersionConflictError: If the version moved on.
        InsufficientFundsError: If the balance would drop below zero.
        BalanceLimitError: If the balance would exceed MAX_CENTS.
    """
    # Written so neither bound can overflow inside the database
    if delta_cents < 0:
        bound = Account.balance_cents >= -delta_cents
    else:
        bound = Account.balance_cents <= MAX_CENTS - delta_cents

    result = await db.execute(
        update(Account)
        .where(
            Account.id == account_id,
            Account.version == expected_version,
            Account.status == AccountStatus.ACTIVE,
            bound,
        )
        .values(
            balance_cents=Account.balance_cents + delta_cents,
            version=Account.version + 1,
        )
        .execution_options(synchronize_session=False)
    )

    if result.rowcount == 1:
        return await lock(db, account_id)

    # Nothing matched: re-read to classify the refusal
    current = await lock(db, account_id)
    if current.status == AccountStatus.CLOSED:
        raise AccountClosedError(account_id)
    if current.version != expected_version:
        raise VersionConflictError(account_id, expected_version, current.version)
    if delta_cents > 0:
        raise BalanceLimitError(account_id)
    raise InsufficientFundsError(
        account_id=account_id,
        requested_cents=-delta_cents,
        available_cents=current.balance_cents,
    )
