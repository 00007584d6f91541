"""
The caller's step reminders.

  GET  /notifications            -- newest first; ?unread_only=true to filter
  POST /notifications/{id}/read  -- mark one as read

Rows are created only by the notification sweep.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from services.tripcrew.db.models import Notification
from services.tripcrew.db.session import get_db
from services.tripcrew.deps import current_user_id
from services.tripcrew.errors import NotFound
from services.tripcrew.routers._envelope import ok

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
async def list_notifications(
    request: Request,
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    user_id: int = Depends(current_user_id),
    session: AsyncSession = Depends(get_db),
) -> dict:
    stmt = select(Notification).where(Notification.userId == user_id)
    if unread_only:
        stmt = stmt.where(Notification.isRead.is_(False))
    stmt = stmt.order_by(Notification.createdAt.desc()).limit(limit)

    result = await session.execute(stmt)
    return ok(
        request,
        [
            {
                "id": n.id,
                "eventId": n.eventId,
                "stepId": n.stepId,
                "title": n.title,
                "message": n.message,
                "isRead": n.isRead,
                "createdAt": n.createdAt.isoformat() if n.createdAt else None,
            }
            for n in result.scalars().all()
        ],
    )


@router.post("/{notification_id}/read")
async def mark_read(
    notification_id: int,
    request: Request,
    user_id: int = Depends(current_user_id),
    session: AsyncSession = Depends(get_db),
) -> dict:
    stmt = (
        update(Notification)
        .where(and_(Notification.id == notification_id, Notification.userId == user_id))
        .values(isRead=True)
    )
    result = await session.execute(stmt)
    if result.rowcount == 0:
        await session.rollback()
        raise NotFound("Notification not found.")
    await session.commit()
    logger.info("notification_read user=%s notification=%s", user_id, notification_id)
    return ok(request, {"id": notification_id, "isRead": True})
