"""
Transactions router — money movement and history.

Member endpoints:
    POST /transactions          — Transfer between two accounts
    POST /transactions/depot    — Deposit into an own account
    POST /transactions/retrait  — Withdraw from an own account

Read endpoints (members see what touches them, admins see everything):
    GET  /transactions          — List transactions
    GET  /transactions/{id}     — Get a single transaction

Idempotency:
  The POST endpoints accept an optional Idempotency-Key header. Repeating a
  request with the same key returns the original transaction with 200 and
  `Idempotent-Replayed: true` instead of moving money again.
"""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Header, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_member, get_current_principal
from app.models.transaction import Transaction, TransactionStatus, TransactionType
from app.schemas.transaction import (
    DepositRequest,
    TransactionResponse,
    TransferRequest,
    WithdrawRequest,
)
from app.security import Principal
from app.services import ledger, transaction_log
from app.services.notification_service import (
    NotificationDispatcher,
    get_notification_dispatcher,
)

router = APIRouter()

IdempotencyKey = Annotated[
    str | None,
    Header(
        alias="Idempotency-Key",
        max_length=128,
        description="Optional client-chosen key; repeats replay the first result",
    ),
]


def _replayed(response: Response, txn: Transaction, replayed: bool) -> Transaction:
    if replayed:
        response.status_code = status.HTTP_200_OK
        response.headers["Idempotent-Replayed"] = "true"
    return txn


@router.get(
    "",
    response_model=list[TransactionResponse],
    summary="List transactions",
)
async def list_transactions(
    status: TransactionStatus | None = Query(None, description="Filter by status"),
    type: TransactionType | None = Query(None, description="Filter by type"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """
    List transactions, newest first.

    Members get everything they initiated or that touches one of their
    accounts; admins get the full audit view.
    """
    return await transaction_log.list_all(
        db,
        client_id=None if principal.is_admin else principal.client_id,
        status_filter=status,
        type_filter=type,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/{transaction_id}",
    response_model=TransactionResponse,
    summary="Get a single transaction",
)
async def get_transaction(
    transaction_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Get one transaction. Returns 403 if it does not involve the caller."""
    return await transaction_log.get_visible(db, transaction_id, principal)


@router.post(
    "",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Transfer money between accounts",
)
async def create_transfer(
    request: TransferRequest,
    response: Response,
    idempotency_key: IdempotencyKey = None,
    principal: Principal = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """
    Transfer money from one account to another.

    This is an atomic operation — either both balances change or neither
    does. A declined transfer is still recorded (status FAILED).

    - **sourceAccountId**: Must belong to the caller
    - **destinationAccountId**: Can belong to any client
    - **amount**: Positive, at most two decimal places
    - Cannot transfer to the same account
    """
    txn, replayed = await ledger.transfer(
        db=db,
        source_account_id=request.source_account_id,
        destination_account_id=request.destination_account_id,
        amount=request.amount,
        principal=principal,
        description=request.description,
        idempotency_key=idempotency_key,
        notifier=notifier,
    )
    return _replayed(response, txn, replayed)


@router.post(
    "/depot",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Deposit into an account",
)
async def create_deposit(
    request: DepositRequest,
    response: Response,
    idempotency_key: IdempotencyKey = None,
    principal: Principal = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """Credit one of the caller's ACTIVE accounts."""
    txn, replayed = await ledger.deposit(
        db=db,
        account_id=request.account_id,
        amount=request.amount,
        principal=principal,
        description=request.description,
        idempotency_key=idempotency_key,
        notifier=notifier,
    )
    return _replayed(response, txn, replayed)


@router.post(
    "/retrait",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Withdraw from an account",
)
async def create_withdrawal(
    request: WithdrawRequest,
    response: Response,
    idempotency_key: IdempotencyKey = None,
    principal: Principal = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """
    Debit one of the caller's ACTIVE accounts.

    Withdrawals larger than the balance are refused with 402 and recorded
    as FAILED for the audit trail.
    """
    txn, replayed = await ledger.withdraw(
        db=db,
        account_id=request.account_id,
        amount=request.amount,
        principal=principal,
        description=request.description,
        idempotency_key=idempotency_key,
        notifier=notifier,
    )
    return _replayed(response, txn, replayed)
