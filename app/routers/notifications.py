"""
Notifications router — what the ledger told account owners.

    GET /notifications — List notifications (own for members, all for admins)
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_principal
from app.models.notification import NotificationType
from app.schemas.notification import NotificationResponse
from app.security import Principal
from app.services.notification_service import list_notifications

router = APIRouter()


@router.get(
    "",
    response_model=list[NotificationResponse],
    summary="List notifications",
)
async def get_notifications(
    type: NotificationType | None = Query(None, description="Filter by channel"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """List notifications, newest first."""
    return await list_notifications(
        db,
        client_id=None if principal.is_admin else principal.client_id,
        type_filter=type,
        limit=limit,
        offset=offset,
    )
