"""
Ledger engine — validated, atomic money movement.

THIS IS THE MOST CRITICAL FILE IN THE PROJECT. It handles:
  - Deposits, withdrawals and transfers
  - Administrative balance adjustments
  - Opening (with an initial deposit), updating and closing accounts
  - Retrying optimistic-concurrency conflicts
  - Idempotent replays

Every money movement runs through _execute(), in three phases:

  1. Validate, with no side effects. Malformed amounts, self-transfers,
     unknown accounts and foreign source accounts are rejected before
     anything is written.
  2. Record a PENDING transaction, then apply all balance deltas inside one
     SAVEPOINT. Closed accounts and insufficient funds are detected here,
     against freshly locked rows, on every attempt.
  3. Resolve the transaction to COMPLETED or FAILED and COMMIT. The PENDING
     record, the deltas and the resolution land in one database transaction,
     so a balance can never change without a terminal record. Only then is
     the notification dispatcher told.

Atomicity:
  For a transfer both deltas are applied inside the same SAVEPOINT. If the
  second one is refused, the first is rolled back with it; no reader can see
  a state where only one side has moved.

Deadlock prevention:
  Accounts are always locked and version-checked in ascending id order,
  whichever of them is the source. Two opposing transfers between the same
  pair therefore take their locks in the same order.

Retries:
  VersionConflictError from the account store means another writer got there
  first. The whole SAVEPOINT is rolled back and re-run (re-reading and
  re-validating) up to LEDGER_MAX_ATTEMPTS times; after that the caller gets
  a retryable ConcurrentModificationError. Each attempt is bounded by
  STORAGE_TIMEOUT_SECONDS.
"""

import asyncio
import logging
import uuid
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.exceptions import (
    AccountClosedError,
    BalanceLimitError,
    ConcurrentModificationError,
    IdempotencyKeyReuseError,
    InsufficientFundsError,
    LedgerAPIError,
    LedgerValidationError,
    SelfTransferError,
    StorageTimeoutError,
    UnauthorizedAccessError,
    VersionConflictError,
)
from app.models.account import Account, AccountStatus, AccountType
from app.models.transaction import Transaction, TransactionStatus, TransactionType
from app.money import MAX_CENTS, to_minor_units
from app.security import Principal
from app.services import account_store, transaction_log
from app.services.notification_service import NotificationDispatcher, TransactionEvent

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Money movement
# ---------------------------------------------------------------------------

async def deposit(
    db: AsyncSession,
    account_id: uuid.UUID,
    amount: Decimal,
    principal: Principal,
    description: str | None = None,
    idempotency_key: str | None = None,
    notifier: NotificationDispatcher | None = None,
) -> tuple[Transaction, bool]:
    """
    Credit an account the caller owns.

    Returns:
        Tuple of (transaction, replayed). replayed is True when an earlier
        transaction was returned for the same idempotency key.

    Raises:
        InvalidAmountError: If the amount is not a positive 2-place decimal.
        AccountNotFoundError: If the account doesn't exist.
        UnauthorizedAccessError: If the account belongs to someone else.
        AccountClosedError: If the account is CLOSED (transaction FAILED).
    """
    amount_cents = to_minor_units(amount)
    return await _execute(
        db,
        principal,
        TransactionType.DEPOSIT,
        amount_cents,
        destination_account_id=account_id,
        description=description,
        idempotency_key=idempotency_key,
        notifier=notifier,
    )


async def withdraw(
    db: AsyncSession,
    account_id: uuid.UUID,
    amount: Decimal,
    principal: Principal,
    description: str | None = None,
    idempotency_key: str | None = None,
    notifier: NotificationDispatcher | None = None,
) -> tuple[Transaction, bool]:
    """
    Debit an account the caller owns.

    If the balance is too low, a FAILED transaction is recorded for the audit
    trail and InsufficientFundsError is raised.

    Raises:
        InvalidAmountError, AccountNotFoundError, UnauthorizedAccessError,
        AccountClosedError, InsufficientFundsError, TransientLedgerError.
    """
    amount_cents = to_minor_units(amount)
    return await _execute(
        db,
        principal,
        TransactionType.WITHDRAW,
        amount_cents,
        source_account_id=account_id,
        description=description,
        idempotency_key=idempotency_key,
        notifier=notifier,
    )


async def transfer(
    db: AsyncSession,
    source_account_id: uuid.UUID,
    destination_account_id: uuid.UUID,
    amount: Decimal,
    principal: Principal,
    description: str | None = None,
    idempotency_key: str | None = None,
    notifier: NotificationDispatcher | None = None,
) -> tuple[Transaction, bool]:
    """
    Move money between two distinct accounts as one atomic unit.

    The source must belong to the caller; the destination may belong to
    anyone (inter-client transfers). A missing destination fails the whole
    operation. There is no deposit-only fallback.

    Raises:
        InvalidAmountError, SelfTransferError, AccountNotFoundError,
        UnauthorizedAccessError, AccountClosedError, InsufficientFundsError,
        TransientLedgerError.
    """
    amount_cents = to_minor_units(amount)
    if source_account_id == destination_account_id:
        raise SelfTransferError(source_account_id)

    return await _execute(
        db,
        principal,
        TransactionType.TRANSFER,
        amount_cents,
        source_account_id=source_account_id,
        destination_account_id=destination_account_id,
        description=description,
        idempotency_key=idempotency_key,
        notifier=notifier,
    )


async def adjust_balance(
    db: AsyncSession,
    account_number: str,
    amount: Decimal,
    principal: Principal,
    notifier: NotificationDispatcher | None = None,
) -> Account:
    """
    [ADMIN ONLY] Apply a signed correction to an account's balance.

    Recorded like any other movement: a positive amount is a DEPOSIT, a
    negative one a WITHDRAW, both described as "Balance adjustment".

    Returns:
        The account with its new balance.
    """
    delta_cents = to_minor_units(amount, allow_negative=True)
    account = await account_store.get_by_number(db, account_number)

    if delta_cents > 0:
        txn_type, source_id, destination_id = TransactionType.DEPOSIT, None, account.id
    else:
        txn_type, source_id, destination_id = TransactionType.WITHDRAW, account.id, None

    await _execute(
        db,
        principal,
        txn_type,
        abs(delta_cents),
        source_account_id=source_id,
        destination_account_id=destination_id,
        description="Balance adjustment",
        notifier=notifier,
        check_ownership=False,
    )
    await db.refresh(account)
    return account


async def _execute(
    db: AsyncSession,
    principal: Principal,
    txn_type: TransactionType,
    amount_cents: int,
    source_account_id: uuid.UUID | None = None,
    destination_account_id: uuid.UUID | None = None,
    description: str | None = None,
    idempotency_key: str | None = None,
    notifier: NotificationDispatcher | None = None,
    check_ownership: bool = True,
) -> tuple[Transaction, bool]:
    if idempotency_key is not None:
        existing = await transaction_log.find_by_idempotency_key(
            db, principal.client_id, idempotency_key
        )
        if existing is not None:
            same_request = (
                existing.type == txn_type
                and existing.amount_cents == amount_cents
                and existing.source_account_id == source_account_id
                and existing.destination_account_id == destination_account_id
            )
            if not same_request:
                raise IdempotencyKeyReuseError(idempotency_key)
            logger.info("Replaying transaction %s for a repeated idempotency key", existing.id)
            return existing, True

    # Phase 1: existence and ownership, no side effects
    accounts = {}
    for account_id in (source_account_id, destination_account_id):
        if account_id is not None:
            accounts[account_id] = await account_store.get(db, account_id)

    if check_ownership:
        # Withdrawals and transfers debit the caller's account; deposits credit it
        charged_id = source_account_id if source_account_id is not None else destination_account_id
        if accounts[charged_id].client_id != principal.client_id:
            raise UnauthorizedAccessError("You do not have access to this account")

    # Phase 2: record intent, then mutate
    txn = await transaction_log.record_pending(
        db,
        txn_type,
        amount_cents,
        initiated_by=principal.client_id,
        source_account_id=source_account_id,
        destination_account_id=destination_account_id,
        description=description,
        idempotency_key=idempotency_key,
    )

    legs = []
    if source_account_id is not None:
        legs.append((source_account_id, -amount_cents))
    if destination_account_id is not None:
        legs.append((destination_account_id, amount_cents))

    failure: LedgerAPIError | None = None
    try:
        await _with_retries(lambda: _apply_legs(db, legs))
    except LedgerAPIError as exc:
        failure = exc

    # Phase 3: resolve and make it durable
    if failure is None:
        await transaction_log.resolve(db, txn, TransactionStatus.COMPLETED)
        logger.info(
            "Transaction %s %s of %d cents COMPLETED", txn.id, txn_type.value, amount_cents
        )
    else:
        await transaction_log.resolve(
            db, txn, TransactionStatus.FAILED, failure_reason=failure.error_type
        )
        logger.info(
            "Transaction %s %s of %d cents FAILED: %s",
            txn.id, txn_type.value, amount_cents, failure.error_type,
        )
    await db.commit()

    if notifier is not None:
        owners = [account.client_id for account in accounts.values()]
        await notifier.notify(TransactionEvent.from_transaction(txn, owners))

    if failure is not None:
        raise failure
    return txn, False


async def _apply_legs(db: AsyncSession, legs: list[tuple[uuid.UUID, int]]) -> None:
    """Apply every (account_id, delta) pair, all or nothing."""
    ordered = sorted(legs, key=lambda leg: leg[0])

    async with db.begin_nested():
        versions = {}
        for account_id, delta_cents in ordered:
            account = await account_store.lock(db, account_id)
            if account.status == AccountStatus.CLOSED:
                raise AccountClosedError(account_id)
            if account.balance_cents + delta_cents < 0:
                raise InsufficientFundsError(
                    account_id=account_id,
                    requested_cents=-delta_cents,
                    available_cents=account.balance_cents,
                )
            if delta_cents > 0 and account.balance_cents > MAX_CENTS - delta_cents:
                raise BalanceLimitError(account_id)
            versions[account_id] = account.version

        for account_id, delta_cents in ordered:
            await account_store.apply_delta(db, account_id, delta_cents, versions[account_id])


async def _with_retries(operation):
    """
    Run operation(), retrying on VersionConflictError.

    Raises:
        ConcurrentModificationError: If every attempt conflicted.
        StorageTimeoutError: If an attempt exceeded STORAGE_TIMEOUT_SECONDS.
    """
    max_attempts = max(1, settings.LEDGER_MAX_ATTEMPTS)

    for attempt in range(1, max_attempts + 1):
        try:
            return await asyncio.wait_for(operation(), timeout=settings.STORAGE_TIMEOUT_SECONDS)
        except VersionConflictError as exc:
            logger.warning("Attempt %d/%d lost a race: %s", attempt, max_attempts, exc.detail)
            if attempt < max_attempts:
                await asyncio.sleep(settings.LEDGER_RETRY_BACKOFF_SECONDS * attempt)
        except asyncio.TimeoutError:
            logger.error("Storage did not answer within %ss", settings.STORAGE_TIMEOUT_SECONDS)
            raise StorageTimeoutError(settings.STORAGE_TIMEOUT_SECONDS) from None

    raise ConcurrentModificationError(max_attempts)


# ---------------------------------------------------------------------------
# Account lifecycle
# ---------------------------------------------------------------------------

async def open_account(
    db: AsyncSession,
    principal: Principal,
    account_type: AccountType = AccountType.CHECKING,
    initial_deposit: Decimal = Decimal("0"),
    client_id: uuid.UUID | None = None,
) -> Account:
    """
    Open an account for the caller, optionally with an initial deposit.

    A positive initial deposit is recorded as a COMPLETED DEPOSIT so that
    the transaction log always reconciles with the balance.

    Raises:
        UnauthorizedAccessError: If client_id names someone other than the caller.
        InvalidAmountError: If the initial deposit is negative or over-precise.
    """
    if client_id is not None and client_id != principal.client_id:
        raise UnauthorizedAccessError("You can only open accounts for yourself")

    initial_cents = to_minor_units(initial_deposit, allow_zero=True)
    account = await account_store.create(db, principal.client_id, account_type, initial_cents)

    if initial_cents > 0:
        txn = await transaction_log.record_pending(
            db,
            TransactionType.DEPOSIT,
            initial_cents,
            initiated_by=principal.client_id,
            destination_account_id=account.id,
            description="Initial deposit",
        )
        await transaction_log.resolve(db, txn, TransactionStatus.COMPLETED)

    return account


async def close_account(
    db: AsyncSession,
    account_id: uuid.UUID,
    principal: Principal,
) -> Account:
    """
    Close an account the caller owns; the balance stays where it is.

    Raises:
        AccountNotFoundError, UnauthorizedAccessError,
        AccountAlreadyClosedError, AccountHasBalanceError.
    """
    await account_store.get_owned(db, account_id, principal)
    return await _with_retries(lambda: account_store.close(db, account_id))


async def update_account(
    db: AsyncSession,
    account_id: uuid.UUID,
    principal: Principal,
    account_type: AccountType | None = None,
    status: AccountStatus | None = None,
) -> Account:
    """
    Change an account's type and/or close it.

    Raises:
        LedgerValidationError: If neither field is given.
        AccountClosedError: If the account is CLOSED and a type change or
                            reopening is requested.
        AccountAlreadyClosedError: If closing an already CLOSED account.
    """
    if account_type is None and status is None:
        raise LedgerValidationError("Nothing to update: provide accountType and/or status")

    account = await account_store.get_owned(db, account_id, principal)

    if status == AccountStatus.ACTIVE and account.status == AccountStatus.CLOSED:
        raise AccountClosedError(account_id)

    # A refused close must not leave the type change behind
    async with db.begin_nested():
        if account_type is not None:
            account = await account_store.update_type(db, account_id, account_type)

        if status == AccountStatus.CLOSED:
            account = await close_account(db, account_id, principal)

    return account
