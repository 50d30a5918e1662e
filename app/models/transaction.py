"""
Transaction model — one attempted money movement and its resolution.

Every deposit, withdrawal and transfer creates exactly ONE Transaction:

  - DEPOSIT:  destination_account_id set, source NULL
  - WITHDRAW: source_account_id set, destination NULL
  - TRANSFER: both set, and always different

Status lifecycle:
  PENDING -> COMPLETED   all balance mutations were applied together
  PENDING -> FAILED      a check or mutation was rejected; failure_reason
                         holds the error type

  The PENDING record, the balance mutations and the resolution are committed
  in one database transaction, so PENDING is never visible to other readers.
  FAILED records are kept for the audit trail.

Why amount_cents is always positive:
  The direction is implied by which account columns are set. Reconciliation
  (TransactionLog.compute_balance) sums COMPLETED rows where an account is the
  destination and subtracts those where it is the source.

Idempotency:
  (initiated_by, idempotency_key) is unique, so a caller's retry with the same
  key finds the original record instead of moving money twice.
"""

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.money import to_major_units


class TransactionType(str, enum.Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAW = "WITHDRAW"
    TRANSFER = "TRANSFER"


class TransactionStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Transaction(Base):
    __tablename__ = "transactions"

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_transactions_positive_amount"),
        CheckConstraint(
            "source_account_id IS NULL OR destination_account_id IS NULL "
            "OR source_account_id != destination_account_id",
            name="ck_transactions_distinct_accounts",
        ),
        UniqueConstraint(
            "initiated_by", "idempotency_key", name="uq_transactions_idempotency_key"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType),
        nullable=False,
    )

    # Amount in cents — always positive
    amount_cents: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    source_account_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("accounts.id"),
        nullable=True,
        index=True,
    )

    destination_account_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("accounts.id"),
        nullable=True,
        index=True,
    )

    status: Mapped[TransactionStatus] = mapped_column(
        Enum(TransactionStatus),
        nullable=False,
        default=TransactionStatus.PENDING,
    )

    # error_type of the exception that failed the transaction
    failure_reason: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )

    description: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    # Client that requested the movement (token subject)
    initiated_by: Mapped[uuid.UUID] = mapped_column(
        nullable=False,
        index=True,
    )

    idempotency_key: Mapped[str | None] = mapped_column(
        String(128),
        nullable=True,
    )

    # Indexed for newest-first history queries
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    @property
    def amount(self) -> Decimal:
        return to_major_units(self.amount_cents)

    @property
    def is_terminal(self) -> bool:
        return self.status != TransactionStatus.PENDING

    def account_ids(self) -> list[uuid.UUID]:
        return [
            account_id
            for account_id in (self.source_account_id, self.destination_account_id)
            if account_id is not None
        ]
