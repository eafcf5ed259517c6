# crud.py
# Contains database operations (Create, Read, Update, Delete) for all models.

import logging
from typing import Dict, List, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from . import models
from .errors import FundLedgerError, PersistenceError, ValidationError

log = logging.getLogger(__name__)


async def commit(db: AsyncSession, conflict_error: Optional[FundLedgerError] = None) -> None:
    """
    Commit the session, translating storage failures into domain errors.

    A unique-constraint violation becomes ``conflict_error`` (or a generic
    ValidationError); any other SQLAlchemy failure becomes PersistenceError.
    The session is rolled back in both cases.
    """
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        log.warning(f"Integrity error on commit: {e.orig}")
        if conflict_error is not None:
            raise conflict_error from e
        raise ValidationError("Record conflicts with an existing record") from e
    except SQLAlchemyError as e:
        await db.rollback()
        log.error(f"Database error on commit: {e}")
        raise PersistenceError("Storage layer failure", {"reason": str(e)}) from e


# ===== INVESTORS =====

async def get_investor(db: AsyncSession, investor_id: int):
    result = await db.execute(select(models.Investor).filter(models.Investor.id == investor_id))
    return result.scalar_one_or_none()


async def get_investor_by_national_id(db: AsyncSession, national_id: str):
    result = await db.execute(select(models.Investor).filter(models.Investor.national_id == national_id))
    return result.scalar_one_or_none()


async def get_investors(
    db: AsyncSession,
    is_active: Optional[bool] = True,
    search: Optional[str] = None,
    skip: int = 0,
    limit: int = 50,
):
    query = select(models.Investor)
    if is_active is not None:
        query = query.filter(models.Investor.is_active == is_active)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(models.Investor.full_name.ilike(pattern), models.Investor.national_id.ilike(pattern)))
    result = await db.execute(query.order_by(models.Investor.full_name).offset(skip).limit(limit))
    return result.scalars().all()


async def get_active_investors(db: AsyncSession):
    result = await db.execute(
        select(models.Investor).filter(models.Investor.is_active == True).order_by(models.Investor.id)  # noqa: E712
    )
    return result.scalars().all()


async def sum_active_capital(db: AsyncSession) -> float:
    result = await db.execute(
        select(func.coalesce(func.sum(models.Investor.contributed_capital), 0.0))
        .filter(models.Investor.is_active == True)  # noqa: E712
    )
    return float(result.scalar() or 0.0)


# ===== FINANCIAL YEARS =====

async def get_financial_year(db: AsyncSession, year_id: int):
    result = await db.execute(select(models.FinancialYear).filter(models.FinancialYear.id == year_id))
    return result.scalar_one_or_none()


async def get_financial_year_status(db: AsyncSession, year_id: int):
    """Current status straight from the database, bypassing loaded instances"""
    result = await db.execute(select(models.FinancialYear.status).filter(models.FinancialYear.id == year_id))
    return result.scalar_one_or_none()


async def get_financial_year_by_period_name(db: AsyncSession, period_name: str):
    result = await db.execute(select(models.FinancialYear).filter(models.FinancialYear.period_name == period_name))
    return result.scalar_one_or_none()


async def get_financial_years(db: AsyncSession, status: Optional[str] = None, skip: int = 0, limit: int = 50):
    query = select(models.FinancialYear)
    if status:
        query = query.filter(models.FinancialYear.status == status)
    result = await db.execute(query.order_by(models.FinancialYear.year.desc(), models.FinancialYear.id.desc()).offset(skip).limit(limit))
    return result.scalars().all()


# ===== DISTRIBUTIONS =====

async def get_distribution(db: AsyncSession, distribution_id: int):
    result = await db.execute(select(models.ProfitDistribution).filter(models.ProfitDistribution.id == distribution_id))
    return result.scalar_one_or_none()


async def get_distribution_for_investor(db: AsyncSession, year_id: int, investor_id: int):
    result = await db.execute(
        select(models.ProfitDistribution).filter(
            models.ProfitDistribution.financial_year_id == year_id,
            models.ProfitDistribution.investor_id == investor_id,
        )
    )
    return result.scalar_one_or_none()


async def get_distributions(db: AsyncSession, year_id: int, status: Optional[str] = None):
    query = select(models.ProfitDistribution).filter(models.ProfitDistribution.financial_year_id == year_id)
    if status:
        query = query.filter(models.ProfitDistribution.status == status)
    result = await db.execute(query.order_by(models.ProfitDistribution.calculated_profit.desc(), models.ProfitDistribution.id))
    return result.scalars().all()


async def get_investor_distributions(db: AsyncSession, investor_id: int):
    result = await db.execute(
        select(models.ProfitDistribution)
        .filter(models.ProfitDistribution.investor_id == investor_id)
        .order_by(models.ProfitDistribution.created_at.desc())
    )
    return result.scalars().all()


async def count_distributions(db: AsyncSession, year_id: int, exclude_statuses: Optional[List[str]] = None) -> int:
    query = select(func.count(models.ProfitDistribution.id)).filter(models.ProfitDistribution.financial_year_id == year_id)
    if exclude_statuses:
        query = query.filter(models.ProfitDistribution.status.not_in(exclude_statuses))
    result = await db.execute(query)
    return int(result.scalar() or 0)


async def delete_unlocked_distributions(db: AsyncSession, year_id: int) -> int:
    """Delete every distribution of the year that is not locked (approved/distributed/rolled_over)."""
    result = await db.execute(
        delete(models.ProfitDistribution).where(
            models.ProfitDistribution.financial_year_id == year_id,
            models.ProfitDistribution.status.not_in(models.LOCKED_DISTRIBUTION_STATUSES),
        )
    )
    return result.rowcount or 0


async def bulk_update_distribution_status(db: AsyncSession, year_id: int, from_status: str, values: dict) -> int:
    result = await db.execute(
        update(models.ProfitDistribution)
        .where(
            models.ProfitDistribution.financial_year_id == year_id,
            models.ProfitDistribution.status == from_status,
        )
        .values(**values)
    )
    return result.rowcount or 0


async def distribution_status_counts(db: AsyncSession, year_id: int) -> Dict[str, int]:
    """GROUP BY status -> count for one year's distributions."""
    result = await db.execute(
        select(models.ProfitDistribution.status, func.count(models.ProfitDistribution.id))
        .filter(models.ProfitDistribution.financial_year_id == year_id)
        .group_by(models.ProfitDistribution.status)
    )
    return {status: int(count) for status, count in result.all()}


async def distribution_status_stats(db: AsyncSession, year_id: int) -> List[dict]:
    result = await db.execute(
        select(
            models.ProfitDistribution.status,
            func.count(models.ProfitDistribution.id),
            func.sum(models.ProfitDistribution.calculated_profit),
            func.sum(models.ProfitDistribution.total_days),
            func.avg(models.ProfitDistribution.calculated_profit),
        )
        .filter(models.ProfitDistribution.financial_year_id == year_id)
        .group_by(models.ProfitDistribution.status)
    )
    return [
        {
            "status": status,
            "count": int(count),
            "total_profit": float(total_profit or 0.0),
            "total_days": int(total_days or 0),
            "avg_profit": float(avg_profit or 0.0),
        }
        for status, count, total_profit, total_days, avg_profit in result.all()
    ]


async def distribution_totals(db: AsyncSession, year_id: int) -> dict:
    result = await db.execute(
        select(
            func.count(models.ProfitDistribution.id),
            func.sum(models.ProfitDistribution.calculated_profit),
            func.max(models.ProfitDistribution.calculated_profit),
            func.min(models.ProfitDistribution.calculated_profit),
            func.avg(models.ProfitDistribution.calculated_profit),
        ).filter(models.ProfitDistribution.financial_year_id == year_id)
    )
    count, total, max_profit, min_profit, avg_profit = result.one()
    if not count:
        return {}
    return {
        "total_investors": int(count),
        "total_distributed_profit": float(total or 0.0),
        "max_profit": float(max_profit or 0.0),
        "min_profit": float(min_profit or 0.0),
        "avg_profit": float(avg_profit or 0.0),
    }


# ===== TRANSACTIONS =====

async def get_transaction(db: AsyncSession, transaction_id: int):
    result = await db.execute(select(models.Transaction).filter(models.Transaction.id == transaction_id))
    return result.scalar_one_or_none()


async def get_transactions(
    db: AsyncSession,
    investor_id: Optional[int] = None,
    transaction_type: Optional[str] = None,
    start_date=None,
    end_date=None,
    skip: int = 0,
    limit: int = 50,
):
    query = select(models.Transaction)
    if investor_id is not None:
        query = query.filter(models.Transaction.investor_id == investor_id)
    if transaction_type:
        query = query.filter(models.Transaction.transaction_type == transaction_type)
    if start_date is not None:
        query = query.filter(models.Transaction.transaction_date >= start_date)
    if end_date is not None:
        query = query.filter(models.Transaction.transaction_date <= end_date)
    result = await db.execute(query.order_by(models.Transaction.transaction_date.desc(), models.Transaction.id.desc()).offset(skip).limit(limit))
    return result.scalars().all()


async def sum_transactions_by_type(db: AsyncSession, investor_id: int) -> Dict[str, float]:
    """Totals per transaction type, leaving out contribution deposits already counted in capital."""
    result = await db.execute(
        select(models.Transaction.transaction_type, func.sum(models.Transaction.amount))
        .filter(models.Transaction.investor_id == investor_id)
        .filter(models.Transaction.is_contribution == False)  # noqa: E712
        .group_by(models.Transaction.transaction_type)
    )
    return {tx_type: float(total or 0.0) for tx_type, total in result.all()}


# ===== NOTIFICATIONS =====

async def get_notifications(
    db: AsyncSession,
    actor_id: Optional[str] = None,
    investor_id: Optional[int] = None,
    status: Optional[str] = None,
    skip: int = 0,
    limit: int = 50,
):
    query = select(models.Notification)
    if actor_id is not None:
        query = query.filter(models.Notification.recipient_actor_id == actor_id)
    if investor_id is not None:
        query = query.filter(models.Notification.recipient_investor_id == investor_id)
    if status:
        query = query.filter(models.Notification.status == status)
    result = await db.execute(query.order_by(models.Notification.created_at.desc(), models.Notification.id.desc()).offset(skip).limit(limit))
    return result.scalars().all()


async def get_notification(db: AsyncSession, notification_id: int):
    result = await db.execute(select(models.Notification).filter(models.Notification.id == notification_id))
    return result.scalar_one_or_none()


async def get_unread_notifications_count(db: AsyncSession, actor_id: str) -> int:
    result = await db.execute(
        select(func.count(models.Notification.id)).filter(
            models.Notification.recipient_actor_id == actor_id,
            models.Notification.status == "unread",
        )
    )
    return int(result.scalar() or 0)


async def count_notifications_by(db: AsyncSession, column: str, actor_id: str, status: Optional[str] = None) -> Dict[str, int]:
    """Notification counts for one admin grouped by ``status``, ``priority`` or ``notification_type``"""
    group_column = getattr(models.Notification, column)
    query = select(group_column, func.count(models.Notification.id)).filter(models.Notification.recipient_actor_id == actor_id)
    if status:
        query = query.filter(models.Notification.status == status)
    result = await db.execute(query.group_by(group_column))
    return {key: int(count) for key, count in result.all()}


# ===== SETTINGS =====

async def get_system_settings(db: AsyncSession):
    result = await db.execute(select(models.SystemSettings).order_by(models.SystemSettings.id).limit(1))
    return result.scalar_one_or_none()
