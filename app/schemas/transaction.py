"""
Pydantic schemas for the money-movement endpoints.

Amounts are decimals with at most two fractional digits; anything finer is
rejected by the ledger with 400 rather than rounded.
"""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import Field

from app.models.transaction import TransactionStatus, TransactionType
from app.schemas.common import ApiModel, Money, RequestModel


class TransferRequest(RequestModel):
    """Request body for POST /transactions."""
    amount: Decimal = Field(description="Positive amount, e.g. 50.25")
    source_account_id: uuid.UUID
    destination_account_id: uuid.UUID
    description: str | None = Field(default=None, max_length=255)


class DepositRequest(RequestModel):
    """Request body for POST /transactions/depot."""
    account_id: uuid.UUID
    amount: Decimal = Field(description="Positive amount, e.g. 150.00")
    description: str | None = Field(default=None, max_length=255)


class WithdrawRequest(RequestModel):
    """Request body for POST /transactions/retrait."""
    account_id: uuid.UUID
    amount: Decimal = Field(description="Positive amount, e.g. 20.00")
    description: str | None = Field(default=None, max_length=255)


class TransactionResponse(ApiModel):
    """Public representation of a transaction."""
    id: uuid.UUID
    type: TransactionType
    amount: Money
    source_account_id: uuid.UUID | None = None
    destination_account_id: uuid.UUID | None = None
    status: TransactionStatus
    failure_reason: str | None = None
    description: str | None = None
    initiated_by: uuid.UUID
    created_at: datetime
    resolved_at: datetime | None = None
