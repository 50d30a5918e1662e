"""Pydantic schemas for Notification endpoints."""

import uuid
from datetime import datetime

from app.models.notification import NotificationStatus, NotificationType
from app.schemas.common import ApiModel


class NotificationResponse(ApiModel):
    id: uuid.UUID
    client_id: uuid.UUID
    transaction_id: uuid.UUID | None = None
    type: NotificationType
    subject: str
    message: str
    recipient: str
    status: NotificationStatus
    created_at: datetime
    sent_at: datetime | None = None
