"""
Accounts router — account lifecycle and read endpoints.

Member endpoints (require JWT, scoped to the caller's accounts):
    POST   /accounts                          — Open an account
    PUT    /accounts/{account_id}             — Change type and/or close
    PUT    /accounts/{account_id}/close       — Close

Read endpoints (members see their own accounts, admins see everything):
    GET    /accounts/client/{client_id}       — List a client's accounts
    GET    /accounts/{account_id}             — Account details
    GET    /accounts/{account_id}/balance     — Balance with reconciliation
    GET    /accounts/{account_id}/transactions — Account history

Admin endpoint:
    PUT    /accounts/{account_number}/balance — Signed balance adjustment

Admins are read-only everywhere else: they cannot open, change or close
accounts, and the adjustment goes through the ledger like any other
movement so it shows up in the transaction log.
"""

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_member, get_current_principal, require_admin
from app.exceptions import UnauthorizedAccessError
from app.models.transaction import TransactionStatus, TransactionType
from app.money import to_major_units
from app.schemas.account import (
    AccountCreateRequest,
    AccountResponse,
    AccountUpdateRequest,
    BalanceResponse,
    BalanceUpdateRequest,
)
from app.schemas.transaction import TransactionResponse
from app.security import Principal
from app.services import account_store, ledger, transaction_log
from app.services.notification_service import (
    NotificationDispatcher,
    get_notification_dispatcher,
)

router = APIRouter()


@router.get(
    "/client/{client_id}",
    response_model=list[AccountResponse],
    summary="List a client's accounts",
)
async def list_client_accounts(
    client_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """
    List every account owned by a client, oldest first.

    Members may only list their own accounts (403 otherwise); admins may
    list anyone's.
    """
    if not principal.is_admin and client_id != principal.client_id:
        raise UnauthorizedAccessError("You can only list your own accounts")
    return await account_store.list_by_owner(db, client_id)


@router.post(
    "",
    response_model=AccountResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open a new account",
)
async def create_account(
    request: AccountCreateRequest,
    principal: Principal = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
):
    """
    Open a CHECKING, SAVINGS or BUSINESS account for the caller.

    A randomly generated 10-digit account number is assigned. A positive
    **initialDeposit** becomes the opening balance and is recorded as a
    completed deposit.
    """
    return await ledger.open_account(
        db=db,
        principal=principal,
        account_type=request.account_type,
        initial_deposit=request.initial_deposit,
        client_id=request.client_id,
    )


@router.get(
    "/{account_id}",
    response_model=AccountResponse,
    summary="Get account details",
)
async def get_account(
    account_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """
    Get details for a specific account.

    Returns 403 if the account belongs to a different client, or 404 if
    the account doesn't exist.
    """
    return await account_store.get_owned(db, account_id, principal)


@router.get(
    "/{account_id}/balance",
    response_model=BalanceResponse,
    summary="Check account balance",
)
async def get_balance(
    account_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """
    Get the stored balance next to the balance recomputed from the log.

    The `match` flag is False only if the two disagree, which would
    indicate a data integrity issue that needs investigation.
    """
    account = await account_store.get_owned(db, account_id, principal)
    computed_cents = await transaction_log.compute_balance(db, account.id)

    return BalanceResponse(
        account_id=account.id,
        balance=account.balance,
        computed_balance=to_major_units(computed_cents),
        match=account.balance_cents == computed_cents,
        currency=account.currency,
    )


@router.get(
    "/{account_id}/transactions",
    response_model=list[TransactionResponse],
    summary="List transactions for an account",
)
async def list_account_transactions(
    account_id: uuid.UUID,
    status: TransactionStatus | None = Query(None, description="Filter by status"),
    type: TransactionType | None = Query(None, description="Filter by type"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """
    List transactions where the account is the source or the destination,
    newest first. FAILED attempts are included.
    """
    await account_store.get_owned(db, account_id, principal)
    return await transaction_log.list_by_account(
        db,
        account_id,
        status_filter=status,
        type_filter=type,
        limit=limit,
        offset=offset,
    )


@router.put(
    "/{account_id}",
    response_model=AccountResponse,
    summary="Update an account",
)
async def update_account(
    account_id: uuid.UUID,
    request: AccountUpdateRequest,
    principal: Principal = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
):
    """
    Change the account type and/or close the account.

    Closing is one-way: a CLOSED account cannot be reopened or retyped.
    """
    return await ledger.update_account(
        db=db,
        account_id=account_id,
        principal=principal,
        account_type=request.account_type,
        status=request.status,
    )


@router.put(
    "/{account_id}/close",
    response_model=AccountResponse,
    summary="Close an account",
)
async def close_account(
    account_id: uuid.UUID,
    principal: Principal = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
):
    """
    Close an account. The balance is left in place; closing twice is a 409.
    """
    return await ledger.close_account(db, account_id, principal)


@router.put(
    "/{account_number}/balance",
    response_model=AccountResponse,
    summary="[Admin] Adjust an account's balance",
    tags=["Admin"],
)
async def adjust_balance(
    account_number: str,
    request: BalanceUpdateRequest,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """
    [ADMIN ONLY] Apply a signed correction to an account's balance.

    A positive **amount** is recorded as a deposit, a negative one as a
    withdrawal. A correction that would overdraw the account is refused
    with 402 and recorded as FAILED.
    """
    return await ledger.adjust_balance(
        db=db,
        account_number=account_number,
        amount=request.amount,
        principal=admin,
        notifier=notifier,
    )
