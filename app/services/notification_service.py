"""
Notification service — tells account owners about resolved transactions.

The ledger calls NotificationDispatcher.notify() only after a transaction's
terminal state has been committed. From there on nothing can affect the money:

  1. One Notification row (PENDING) is written per owner and channel, in a
     session of the dispatcher's own.
  2. The batch is POSTed to the external messaging component
     (NOTIFICATION_SERVICE_URL) with httpx.
  3. Rows are marked SENT on a 2xx answer, FAILED otherwise.

Errors at any step are logged and dropped; they are never raised back into
the request that moved the money, and nothing is retried.

In background mode (the default) notify() schedules the delivery as an
asyncio task and returns immediately. Tests construct the dispatcher with
background=False so deliveries finish before the response is returned.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.database import AsyncSessionLocal
from app.models.notification import Notification, NotificationStatus, NotificationType
from app.models.transaction import Transaction, TransactionStatus, TransactionType
from app.money import to_major_units

logger = logging.getLogger(__name__)


_SUBJECTS = {
    (TransactionType.DEPOSIT, TransactionStatus.COMPLETED): "Deposit received",
    (TransactionType.DEPOSIT, TransactionStatus.FAILED): "Deposit failed",
    (TransactionType.WITHDRAW, TransactionStatus.COMPLETED): "Withdrawal completed",
    (TransactionType.WITHDRAW, TransactionStatus.FAILED): "Withdrawal declined",
    (TransactionType.TRANSFER, TransactionStatus.COMPLETED): "Transfer completed",
    (TransactionType.TRANSFER, TransactionStatus.FAILED): "Transfer declined",
}


@dataclass(frozen=True)
class TransactionEvent:
    """Immutable snapshot of a resolved transaction, safe to hand to another task."""

    transaction_id: uuid.UUID
    type: TransactionType
    status: TransactionStatus
    amount_cents: int
    recipients: tuple[uuid.UUID, ...]
    source_account_id: uuid.UUID | None = None
    destination_account_id: uuid.UUID | None = None
    failure_reason: str | None = None
    currency: str = field(default_factory=lambda: settings.CURRENCY)

    @classmethod
    def from_transaction(
        cls, txn: Transaction, recipients: list[uuid.UUID]
    ) -> "TransactionEvent":
        return cls(
            transaction_id=txn.id,
            type=txn.type,
            status=txn.status,
            amount_cents=txn.amount_cents,
            recipients=tuple(dict.fromkeys(recipients)),
            source_account_id=txn.source_account_id,
            destination_account_id=txn.destination_account_id,
            failure_reason=txn.failure_reason,
        )

    @property
    def subject(self) -> str:
        return _SUBJECTS[(self.type, self.status)]

    @property
    def message(self) -> str:
        amount = f"{to_major_units(self.amount_cents)} {self.currency}"
        if self.status == TransactionStatus.COMPLETED:
            return f"{self.subject}: {amount} (transaction {self.transaction_id})."
        reason = (self.failure_reason or "unknown").replace("_", " ")
        return f"{self.subject}: {amount} was not moved ({reason}, transaction {self.transaction_id})."


class NotificationDispatcher:
    """Writes notification rows and forwards them to the messaging component."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        service_url: str | None = None,
        channels: list[str] | None = None,
        timeout: float = 5.0,
        background: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.session_factory = session_factory
        self.service_url = service_url
        self.channels = [NotificationType(c) for c in (channels or ["EMAIL"])]
        self.timeout = timeout
        self.background = background
        self.transport = transport
        self._tasks: set[asyncio.Task] = set()

    async def notify(self, event: TransactionEvent) -> None:
        """Hand over a resolved transaction. Never raises."""
        if not event.recipients:
            return
        if self.background:
            task = asyncio.create_task(self._deliver(event))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        else:
            await self._deliver(event)

    async def drain(self) -> None:
        """Wait for all scheduled deliveries (used at shutdown and in tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _deliver(self, event: TransactionEvent) -> None:
        try:
            async with self.session_factory() as session:
                notifications = [
                    Notification(
                        client_id=client_id,
                        transaction_id=event.transaction_id,
                        type=channel,
                        subject=event.subject,
                        message=event.message,
                        recipient=str(client_id),
                        status=NotificationStatus.PENDING,
                    )
                    for client_id in event.recipients
                    for channel in self.channels
                ]
                session.add_all(notifications)
                await session.commit()

                if self.service_url is None:
                    logger.debug(
                        "No notification service configured; %d notification(s) left pending",
                        len(notifications),
                    )
                    return

                delivered = await self._send(notifications)
                now = datetime.now(timezone.utc)
                for notification in notifications:
                    notification.status = (
                        NotificationStatus.SENT if delivered else NotificationStatus.FAILED
                    )
                    notification.sent_at = now if delivered else None
                await session.commit()
        except Exception:
            logger.exception("Notification delivery for transaction %s failed", event.transaction_id)

    async def _send(self, notifications: list[Notification]) -> bool:
        payload = [
            {
                "id": str(n.id),
                "type": n.type.value,
                "recipient": n.recipient,
                "subject": n.subject,
                "message": n.message,
                "transactionId": str(n.transaction_id),
            }
            for n in notifications
        ]
        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
                response = await client.post(self.service_url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Messaging component rejected %d notification(s): %s", len(payload), exc)
            return False
        return True


_dispatcher: NotificationDispatcher | None = None


def get_notification_dispatcher() -> NotificationDispatcher:
    """FastAPI dependency returning the process-wide dispatcher."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher(
            AsyncSessionLocal,
            service_url=settings.NOTIFICATION_SERVICE_URL,
            channels=list(settings.NOTIFICATION_CHANNELS),
            timeout=settings.NOTIFICATION_TIMEOUT_SECONDS,
        )
    return _dispatcher


async def list_notifications(
    db: AsyncSession,
    client_id: uuid.UUID | None = None,
    type_filter: NotificationType | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Notification]:
    """
    List notifications, newest first.

    Args:
        client_id: Restrict to one client; None lists everything (admin view).
    """
    query = (
        select(Notification)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
        .offset(offset)
    )
    if client_id is not None:
        query = query.where(Notification.client_id == client_id)
    if type_filter:
        query = query.where(Notification.type == type_filter)

    result = await db.execute(query)
    return list(result.scalars().all())
