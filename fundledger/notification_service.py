# notification_service.py
# Persisted notifications for admins and investors about profit lifecycle events

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence
import logging

from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession

from . import crud, models
from .actor import Actor
from .config import settings
from .errors import NotFound
from .period_calendar import utcnow

log = logging.getLogger(__name__)

NOTIFICATION_TYPES = (
    "profit_calculated",
    "profit_approved",
    "profit_distributed",
    "profit_rolled_over",
    "financial_year_created",
    "financial_year_closed",
    "auto_rollover_completed",
    "auto_rollover_failed",
    "transaction_created",
    "system_alert",
)

_ADMIN_TEMPLATES = {
    "profit_calculated": (
        "Profits calculated for financial year {year}",
        "Profit distributions for financial year {year} were calculated with a total of {total_profit} {currency}. Investors: {count}",
    ),
    "profit_approved": (
        "Profits approved for financial year {year}",
        "Profit distributions for financial year {year} were approved and can now be distributed or rolled over.",
    ),
    "profit_distributed": (
        "Profits distributed for financial year {year}",
        "Profit distributions for financial year {year} were paid out. Investors: {count}",
    ),
    "profit_rolled_over": (
        "Profits rolled over for financial year {year}",
        "Profits of financial year {year} were rolled over into capital at {percentage}%.",
    ),
}

_INVESTOR_TEMPLATES = {
    "profit_calculated": (
        "Your profit for financial year {year} was calculated",
        "Your profit for financial year {year} was calculated: {amount} {currency}",
    ),
    "profit_approved": (
        "Your profit for financial year {year} was approved",
        "Your profit for financial year {year} was approved: {amount} {currency}",
    ),
    "profit_distributed": (
        "Your profit for financial year {year} was distributed",
        "Your profit for financial year {year} was distributed: {amount} {currency}",
    ),
    "profit_rolled_over": (
        "Your profit for financial year {year} was rolled over",
        "{amount} {currency} of your profit for financial year {year} was added to your capital.",
    ),
}

_DEFAULT_ADMIN = ("Financial year {year} updated", "Financial year {year} was updated")
_DEFAULT_INVESTOR = ("Your profit for financial year {year} was updated", "Your profit for financial year {year} was updated")


class NotificationService:
    """Fire-and-forget notification sink backed by the notifications table"""

    @staticmethod
    async def notify(
        db: AsyncSession,
        event_type: str,
        recipients: Sequence[Dict[str, Any]],
        payload: Dict[str, Any],
        created_by: Optional[Actor] = None,
    ) -> int:
        """
        Persist one notification per recipient.

        Each recipient dict carries ``actor_id`` or ``investor_id`` and may
        override any payload key (title, message, amount, priority, ...).
        Notifications are written in their own session on the same engine,
        so a failure here is logged and swallowed without touching the
        caller's session or the objects it has loaded.

        Returns:
            Number of notifications stored (0 on failure)
        """
        expires_at = utcnow() + timedelta(days=settings.NOTIFICATION_TTL_DAYS)
        async with AsyncSession(bind=db.bind, expire_on_commit=False) as session:
            try:
                for recipient in recipients:
                    data = {**payload, **recipient}
                    session.add(models.Notification(
                        notification_type=event_type,
                        title=data["title"][:200],
                        message=data["message"][:1000],
                        recipient_actor_id=data.get("actor_id"),
                        recipient_investor_id=data.get("investor_id"),
                        financial_year_id=data.get("financial_year_id"),
                        distribution_id=data.get("distribution_id"),
                        transaction_id=data.get("transaction_id"),
                        amount=data.get("amount"),
                        currency=data.get("currency"),
                        priority=data.get("priority", "medium"),
                        created_by=created_by.id if created_by else None,
                        expires_at=expires_at,
                    ))
                await session.commit()
                log.info(f"Notifications sent: {event_type} x{len(recipients)}")
                return len(recipients)
            except Exception as e:
                log.error(f"Error sending {event_type} notifications: {e}")
                await session.rollback()
                return 0

    @staticmethod
    async def notify_profit_event(
        db: AsyncSession,
        event_type: str,
        financial_year: models.FinancialYear,
        distributions: Sequence[models.ProfitDistribution],
        actor: Actor,
    ) -> int:
        """One medium-priority notice for the acting admin, one high-priority notice per investor"""
        context = {
            "year": financial_year.year,
            "total_profit": financial_year.total_profit,
            "currency": financial_year.currency,
            "count": len(distributions),
            "percentage": financial_year.rollover_percentage,
        }
        title, message = _ADMIN_TEMPLATES.get(event_type, _DEFAULT_ADMIN)
        recipients: List[Dict[str, Any]] = [{
            "actor_id": actor.id,
            "title": title.format(**context),
            "message": message.format(**context),
            "amount": financial_year.total_profit,
            "priority": "medium",
        }]

        investor_title, investor_message = _INVESTOR_TEMPLATES.get(event_type, _DEFAULT_INVESTOR)
        for distribution in distributions:
            amount = distribution.rollover_amount if event_type == "profit_rolled_over" else distribution.calculated_profit
            investor_context = {**context, "amount": amount, "currency": distribution.currency}
            recipients.append({
                "investor_id": distribution.investor_id,
                "distribution_id": distribution.id,
                "title": investor_title.format(**investor_context),
                "message": investor_message.format(**investor_context),
                "amount": amount,
                "currency": distribution.currency,
                "priority": "high",
            })

        payload = {"financial_year_id": financial_year.id, "currency": financial_year.currency}
        return await NotificationService.notify(db, event_type, recipients, payload, created_by=actor)

    @staticmethod
    async def notify_system_alert(
        db: AsyncSession,
        event_type: str,
        title: str,
        message: str,
        financial_year_id: Optional[int] = None,
    ) -> int:
        recipient = {"actor_id": Actor.system().id, "title": title, "message": message, "priority": "high"}
        payload = {"financial_year_id": financial_year_id}
        return await NotificationService.notify(db, event_type, [recipient], payload, created_by=Actor.system())

    @staticmethod
    async def mark_as_read(db: AsyncSession, notification_id: int) -> models.Notification:
        notification = await crud.get_notification(db, notification_id)
        if not notification:
            raise NotFound(f"Notification {notification_id} not found")
        notification.status = "read"
        notification.read_at = utcnow()
        await crud.commit(db)
        return notification

    @staticmethod
    async def mark_all_as_read(db: AsyncSession, actor_id: str) -> int:
        result = await db.execute(
            update(models.Notification)
            .where(models.Notification.recipient_actor_id == actor_id, models.Notification.status == "unread")
            .values(status="read", read_at=utcnow())
        )
        await crud.commit(db)
        return result.rowcount or 0

    @staticmethod
    async def archive_notification(db: AsyncSession, notification_id: int) -> models.Notification:
        notification = await crud.get_notification(db, notification_id)
        if not notification:
            raise NotFound(f"Notification {notification_id} not found")
        notification.status = "archived"
        await crud.commit(db)
        return notification

    @staticmethod
    async def notification_stats(db: AsyncSession, actor_id: str) -> Dict[str, Any]:
        """
        Counts of an admin's notifications.

        ``by_priority`` covers unread notifications only; every known status
        and priority is present even when its count is 0.
        """
        by_status = {"unread": 0, "read": 0, "archived": 0}
        by_status.update(await crud.count_notifications_by(db, "status", actor_id))
        by_priority = {"low": 0, "medium": 0, "high": 0, "urgent": 0}
        by_priority.update(await crud.count_notifications_by(db, "priority", actor_id, status="unread"))
        return {
            "by_status": by_status,
            "by_priority": by_priority,
            "by_type": await crud.count_notifications_by(db, "notification_type", actor_id),
            "total_unread": by_status["unread"],
        }

    @staticmethod
    async def delete_notification(db: AsyncSession, notification_id: int) -> None:
        notification = await crud.get_notification(db, notification_id)
        if not notification:
            raise NotFound(f"Notification {notification_id} not found")
        await db.delete(notification)
        await crud.commit(db)

    @staticmethod
    async def cleanup_expired(db: AsyncSession, now: Optional[datetime] = None) -> int:
        """Delete notifications whose expiry has passed"""
        now = now or utcnow()
        result = await db.execute(delete(models.Notification).where(models.Notification.expires_at < now))
        await crud.commit(db)
        deleted = result.rowcount or 0
        log.info(f"Deleted {deleted} expired notification(s)")
        return deleted
