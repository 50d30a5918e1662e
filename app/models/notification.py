"""
Notification model — the ledger's outbox for the external messaging component.

After a transaction reaches a terminal state, the NotificationDispatcher
writes one row per (account owner, channel) and forwards the batch over HTTP.
The row's status tracks delivery:

  PENDING  written, not (yet) acknowledged by the messaging component
  SENT     the messaging component accepted it
  FAILED   delivery failed; the financial transaction is unaffected
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Enum, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class NotificationType(str, enum.Enum):
    EMAIL = "EMAIL"
    SMS = "SMS"


class NotificationStatus(str, enum.Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    # Account owner this notification is about
    client_id: Mapped[uuid.UUID] = mapped_column(
        nullable=False,
        index=True,
    )

    transaction_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("transactions.id"),
        nullable=True,
        index=True,
    )

    type: Mapped[NotificationType] = mapped_column(
        Enum(NotificationType),
        nullable=False,
        default=NotificationType.EMAIL,
    )

    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    # Address resolution is the messaging component's job; the ledger only
    # knows the client id.
    recipient: Mapped[str] = mapped_column(String(255), nullable=False)

    status: Mapped[NotificationStatus] = mapped_column(
        Enum(NotificationStatus),
        nullable=False,
        default=NotificationStatus.PENDING,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
    sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
