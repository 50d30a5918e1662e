"""
Account model — a balance-holding entity owned by a client.

Each account has:
  - A unique account number (randomly generated 10-digit string)
  - A type: CHECKING, SAVINGS or BUSINESS
  - A balance in integer cents, mutated only by the ledger
  - A status: ACTIVE or CLOSED (one-way)
  - A version counter for optimistic concurrency

Balance management:
  `balance_cents` is only ever written by AccountStore.apply_delta(), a single
  conditional UPDATE that also checks the version, the status and the
  resulting balance. A CHECK constraint at the database level enforces that
  the balance can never go negative, as a final safety net.

Ownership:
  `client_id` is the subject of the bearer token issued by the external
  authentication service. There is no client table in the ledger.
"""

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Enum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.money import to_major_units


class AccountType(str, enum.Enum):
    CHECKING = "CHECKING"
    SAVINGS = "SAVINGS"
    BUSINESS = "BUSINESS"


class AccountStatus(str, enum.Enum):
    """ACTIVE -> CLOSED is the only transition."""
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"


class Account(Base):
    __tablename__ = "accounts"

    __table_args__ = (
        CheckConstraint(
            "balance_cents >= 0",
            name="ck_accounts_non_negative_balance",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    # Owning client (token subject)
    client_id: Mapped[uuid.UUID] = mapped_column(
        nullable=False,
        index=True,
    )

    account_type: Mapped[AccountType] = mapped_column(
        Enum(AccountType),
        nullable=False,
        default=AccountType.CHECKING,
    )

    # Unique 10-digit account number, masked in every API response
    account_number: Mapped[str] = mapped_column(
        String(20),
        unique=True,
        nullable=False,
    )

    balance_cents: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )

    # ISO 4217 currency code
    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="USD",
    )

    status: Mapped[AccountStatus] = mapped_column(
        Enum(AccountStatus),
        nullable=False,
        default=AccountStatus.ACTIVE,
    )

    # Incremented by every write; compare-and-set target for apply_delta
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
    )

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    closed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    @property
    def balance(self) -> Decimal:
        return to_major_units(self.balance_cents)

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE
