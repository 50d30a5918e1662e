"""
Transaction log — append-only, queryable history of money movements.

Records are written once (PENDING) and changed exactly once more, when the
ledger resolves them to COMPLETED or FAILED. Nothing else ever updates or
deletes a row.

History queries are newest first and paginated with limit/offset, so a
caller can restart a listing from any page.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import (
    IdempotencyKeyReuseError,
    TransactionNotFoundError,
    UnauthorizedAccessError,
)
from app.models.account import Account
from app.models.transaction import Transaction, TransactionStatus, TransactionType
from app.security import Principal


async def record_pending(
    db: AsyncSession,
    txn_type: TransactionType,
    amount_cents: int,
    initiated_by: uuid.UUID,
    source_account_id: uuid.UUID | None = None,
    destination_account_id: uuid.UUID | None = None,
    description: str | None = None,
    idempotency_key: str | None = None,
) -> Transaction:
    """
    Append a PENDING transaction.

    The insert runs in its own SAVEPOINT: if a concurrent request already
    claimed the same idempotency key, only the savepoint is rolled back and
    the caller gets a clean 409 instead of an aborted session.

    Raises:
        IdempotencyKeyReuseError: If the (initiator, key) pair already exists.
    """
    txn = Transaction(
        type=txn_type,
        amount_cents=amount_cents,
        source_account_id=source_account_id,
        destination_account_id=destination_account_id,
        status=TransactionStatus.PENDING,
        description=description,
        initiated_by=initiated_by,
        idempotency_key=idempotency_key,
    )
    try:
        async with db.begin_nested():
            db.add(txn)
            await db.flush()
    except IntegrityError:
        if idempotency_key is None:
            raise
        raise IdempotencyKeyReuseError(idempotency_key)
    return txn


async def resolve(
    db: AsyncSession,
    txn: Transaction,
    status: TransactionStatus,
    failure_reason: str | None = None,
) -> Transaction:
    """
    Move a transaction from PENDING to its terminal status.

    Raises:
        ValueError: If status is PENDING.
        RuntimeError: If the transaction was already resolved.
    """
    if status == TransactionStatus.PENDING:
        raise ValueError("A transaction can only be resolved to COMPLETED or FAILED")
    if txn.is_terminal:
        raise RuntimeError(f"Transaction {txn.id} is already {txn.status.value}")

    txn.status = status
    txn.failure_reason = failure_reason if status == TransactionStatus.FAILED else None
    txn.resolved_at = datetime.now(timezone.utc)
    await db.flush()
    return txn


async def get(db: AsyncSession, transaction_id: uuid.UUID) -> Transaction:
    """
    Get a single transaction by id.

    Raises:
        TransactionNotFoundError: If the transaction doesn't exist.
    """
    result = await db.execute(
        select(Transaction).where(Transaction.id == transaction_id)
    )
    txn = result.scalar_one_or_none()

    if txn is None:
        raise TransactionNotFoundError(transaction_id)

    return txn


async def get_visible(
    db: AsyncSession,
    transaction_id: uuid.UUID,
    principal: Principal,
) -> Transaction:
    """
    Get a transaction the caller is allowed to see.

    Members see transactions they initiated or that touch one of their
    accounts (so the receiver of a transfer sees it too).

    Raises:
        TransactionNotFoundError: If the transaction doesn't exist.
        UnauthorizedAccessError: If it has nothing to do with the caller.
    """
    txn = await get(db, transaction_id)
    if principal.is_admin or txn.initiated_by == principal.client_id:
        return txn

    owned = await db.execute(
        select(func.count())
        .select_from(Account)
        .where(Account.id.in_(txn.account_ids()))
        .where(Account.client_id == principal.client_id)
    )
    if owned.scalar_one() == 0:
        raise UnauthorizedAccessError("You do not have access to this transaction")
    return txn


async def find_by_idempotency_key(
    db: AsyncSession,
    initiated_by: uuid.UUID,
    idempotency_key: str,
) -> Transaction | None:
    result = await db.execute(
        select(Transaction)
        .where(Transaction.initiated_by == initiated_by)
        .where(Transaction.idempotency_key == idempotency_key)
    )
    return result.scalar_one_or_none()


def _apply_filters(query, status_filter, type_filter):
    if status_filter:
        query = query.where(Transaction.status == status_filter)
    if type_filter:
        query = query.where(Transaction.type == type_filter)
    return query


async def list_by_account(
    db: AsyncSession,
    account_id: uuid.UUID,
    status_filter: TransactionStatus | None = None,
    type_filter: TransactionType | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Transaction]:
    """
    List transactions where the account is the source or the destination.

    Ownership of the account is the caller's concern (see
    account_store.get_owned).

    Returns:
        Transactions ordered by created_at descending.
    """
    query = (
        select(Transaction)
        .where(
            or_(
                Transaction.source_account_id == account_id,
                Transaction.destination_account_id == account_id,
            )
        )
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .limit(limit)
        .offset(offset)
    )
    query = _apply_filters(query, status_filter, type_filter)

    result = await db.execute(query)
    return list(result.scalars().all())


async def list_all(
    db: AsyncSession,
    client_id: uuid.UUID | None = None,
    status_filter: TransactionStatus | None = None,
    type_filter: TransactionType | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Transaction]:
    """
    List transactions across accounts, newest first.

    Args:
        client_id: Restrict to transactions touching this client's accounts
                   or initiated by this client. None lists everything
                   (admin audit view).
    """
    query = (
        select(Transaction)
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .limit(limit)
        .offset(offset)
    )

    if client_id is not None:
        owned_accounts = select(Account.id).where(Account.client_id == client_id)
        query = query.where(
            or_(
                Transaction.initiated_by == client_id,
                Transaction.source_account_id.in_(owned_accounts),
                Transaction.destination_account_id.in_(owned_accounts),
            )
        )
    query = _apply_filters(query, status_filter, type_filter)

    result = await db.execute(query)
    return list(result.scalars().all())


async def compute_balance(db: AsyncSession, account_id: uuid.UUID) -> int:
    """
    Recompute a balance from the log: COMPLETED credits minus COMPLETED debits.

    This is the integrity-check counterpart to Account.balance_cents; the two
    must always agree.
    """
    credit_result = await db.execute(
        select(func.coalesce(func.sum(Transaction.amount_cents), 0))
        .where(Transaction.destination_account_id == account_id)
        .where(Transaction.status == TransactionStatus.COMPLETED)
    )
    total_credits = credit_result.scalar()

    debit_result = await db.execute(
        select(func.coalesce(func.sum(Transaction.amount_cents), 0))
        .where(Transaction.source_account_id == account_id)
        .where(Transaction.status == TransactionStatus.COMPLETED)
    )
    total_debits = debit_result.scalar()

    return int(total_credits) - int(total_debits)
