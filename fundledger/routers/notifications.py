"""Notification API endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends

from .. import crud, schemas
from ..deps import ActorDep, SessionDep, get_current_actor
from ..notification_service import NotificationService
from . import ok

router = APIRouter(
    prefix="/api/v1/notifications",
    tags=["notifications"],
    dependencies=[Depends(get_current_actor)],
)


@router.get("")
async def list_notifications(
    db_session: SessionDep,
    actor: ActorDep,
    investor_id: Optional[int] = None,
    status: Optional[str] = None,
    skip: int = 0,
    limit: int = 50,
):
    """Notifications for the current admin, or for one investor when investor_id is given."""
    actor_id = None if investor_id is not None else actor.id
    notifications = await crud.get_notifications(db_session, actor_id, investor_id, status, skip, limit)
    return ok("Notifications retrieved", [schemas.Notification.model_validate(n) for n in notifications])


@router.get("/unread/count")
async def get_unread_count(db_session: SessionDep, actor: ActorDep):
    count = await crud.get_unread_notifications_count(db_session, actor.id)
    return ok("Unread notifications counted", {"unread_count": count})


@router.get("/stats")
async def get_notification_stats(db_session: SessionDep, actor: ActorDep):
    stats = await NotificationService.notification_stats(db_session, actor.id)
    return ok("Notification statistics retrieved", stats)


@router.put("/read-all")
async def mark_all_as_read(db_session: SessionDep, actor: ActorDep):
    updated = await NotificationService.mark_all_as_read(db_session, actor.id)
    return ok("Notifications marked as read", {"updated": updated})


@router.put("/{notification_id}/read")
async def mark_as_read(notification_id: int, db_session: SessionDep):
    notification = await NotificationService.mark_as_read(db_session, notification_id)
    return ok("Notification marked as read", schemas.Notification.model_validate(notification))


@router.put("/{notification_id}/archive")
async def archive_notification(notification_id: int, db_session: SessionDep):
    notification = await NotificationService.archive_notification(db_session, notification_id)
    return ok("Notification archived", schemas.Notification.model_validate(notification))


@router.delete("/{notification_id}")
async def delete_notification(notification_id: int, db_session: SessionDep):
    await NotificationService.delete_notification(db_session, notification_id)
    return ok("Notification deleted")
