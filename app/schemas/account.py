"""
Pydantic schemas for Account endpoints.

Account numbers are masked in every response (******1234); the full number
is only ever accepted as input, on the admin balance-update path.
"""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import Field, field_serializer

from app.models.account import AccountStatus, AccountType
from app.money import mask_account_number
from app.schemas.common import ApiModel, Money, RequestModel


class AccountCreateRequest(RequestModel):
    """Request body for POST /accounts."""
    client_id: uuid.UUID | None = Field(
        default=None,
        description="Owner of the new account; defaults to (and must equal) the caller",
    )
    account_type: AccountType = Field(
        default=AccountType.CHECKING,
        description="Type of account to open",
    )
    initial_deposit: Decimal = Field(
        default=Decimal("0"),
        description="Opening balance, recorded as a deposit when positive",
    )


class AccountUpdateRequest(RequestModel):
    """Request body for PUT /accounts/{id}. At least one field is required."""
    account_type: AccountType | None = None
    status: AccountStatus | None = None


class BalanceUpdateRequest(RequestModel):
    """Request body for the admin balance adjustment. Signed, never zero."""
    amount: Decimal


class AccountResponse(ApiModel):
    """Public representation of an account."""
    id: uuid.UUID
    client_id: uuid.UUID
    account_type: AccountType
    account_number: str
    balance: Money
    currency: str
    status: AccountStatus
    version: int
    created_at: datetime
    updated_at: datetime
    closed_at: datetime | None = None

    @field_serializer("account_number")
    def mask_number(self, account_number: str) -> str:
        return mask_account_number(account_number)


class BalanceResponse(ApiModel):
    """
    Balance check response — stored balance next to the one recomputed from
    the transaction log.

    `match` is False only if the two disagree, which would indicate a data
    integrity issue.
    """
    account_id: uuid.UUID
    balance: Money
    computed_balance: Money
    match: bool
    currency: str
