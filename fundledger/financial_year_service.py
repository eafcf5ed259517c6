# financial_year_service.py
# Financial year records and the distribution lifecycle state machine:
# draft/active -> calculated -> approved -> distributed -> closed

from datetime import date, datetime
from typing import Dict, List, Optional
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from . import crud, models, schemas
from .actor import Actor
from .audit_service import AuditService
from .errors import InvalidState, NotFound, ValidationError
from .notification_service import NotificationService
from .period_calendar import inclusive_days, utcnow

log = logging.getLogger(__name__)

# Core fields may not change once profit has been calculated
_FROZEN_STATUSES = (models.YEAR_CALCULATED, models.YEAR_CLOSED)


def derive_year_status(current: str, counts: Dict[str, int]) -> str:
    """
    Year status implied by its distributions' status breakdown.

    all distributed (or rolled over) -> distributed
    all approved                     -> approved
    any calculated                   -> calculated

    A closed year, a year without distributions and a mix of locked statuses
    keep their current status.
    """
    total = sum(counts.values())
    if current == models.YEAR_CLOSED or total == 0:
        return current

    paid_out = counts.get(models.DIST_DISTRIBUTED, 0) + counts.get(models.DIST_ROLLED_OVER, 0)
    if paid_out == total:
        return models.YEAR_DISTRIBUTED
    if counts.get(models.DIST_APPROVED, 0) == total:
        return models.YEAR_APPROVED
    if counts.get(models.DIST_CALCULATED, 0) > 0:
        return models.YEAR_CALCULATED
    return current


def _check_dates(start_date: date, end_date: date) -> None:
    if end_date <= start_date:
        raise ValidationError(
            "end_date must be after start_date",
            {"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )


class FinancialYearService:
    """Financial year CRUD and lifecycle transitions"""

    @staticmethod
    async def get_financial_year(db: AsyncSession, year_id: int) -> models.FinancialYear:
        financial_year = await crud.get_financial_year(db, year_id)
        if not financial_year:
            raise NotFound(f"Financial year {year_id} not found")
        return financial_year

    @staticmethod
    async def create_financial_year(
        db: AsyncSession,
        data: schemas.FinancialYearCreate,
        actor: Actor,
    ) -> models.FinancialYear:
        _check_dates(data.start_date, data.end_date)
        duplicate = ValidationError("A financial year with this period name already exists", {"period_name": data.period_name})
        if data.period_name and await crud.get_financial_year_by_period_name(db, data.period_name):
            raise duplicate

        financial_year = models.FinancialYear(
            **data.model_dump(),
            total_days=inclusive_days(data.start_date, data.end_date),
            daily_profit_rate=0.0,
            status=models.YEAR_DRAFT,
            rollover_enabled=False,
            auto_rollover_status=models.AUTO_ROLLOVER_PENDING,
            created_by=actor.id,
        )
        db.add(financial_year)
        await crud.commit(db, conflict_error=duplicate)
        await db.refresh(financial_year)

        AuditService.log_year_action("create", financial_year.id, actor, {"year": financial_year.year})
        await NotificationService.notify(
            db,
            "financial_year_created",
            [{"actor_id": actor.id}],
            {
                "title": f"Financial year {financial_year.year} created",
                "message": f"Financial year {financial_year.year} was created with a total profit of {financial_year.total_profit} {financial_year.currency}",
                "financial_year_id": financial_year.id,
                "amount": financial_year.total_profit,
                "currency": financial_year.currency,
                "priority": "low",
            },
            created_by=actor,
        )
        return financial_year

    @staticmethod
    async def update_financial_year(
        db: AsyncSession,
        year_id: int,
        data: schemas.FinancialYearUpdate,
        actor: Actor,
    ) -> models.FinancialYear:
        financial_year = await FinancialYearService.get_financial_year(db, year_id)
        if financial_year.status in _FROZEN_STATUSES:
            raise InvalidState(
                f"Cannot edit a financial year in status {financial_year.status}",
                {"financial_year_id": year_id, "status": financial_year.status},
            )

        changes = data.model_dump(exclude_unset=True)
        start_date = changes.get("start_date", financial_year.start_date)
        end_date = changes.get("end_date", financial_year.end_date)
        _check_dates(start_date, end_date)

        duplicate = ValidationError("A financial year with this period name already exists", {"period_name": changes.get("period_name")})
        if changes.get("period_name") and changes["period_name"] != financial_year.period_name:
            if await crud.get_financial_year_by_period_name(db, changes["period_name"]):
                raise duplicate

        for key, value in changes.items():
            setattr(financial_year, key, value)
        financial_year.total_days = inclusive_days(start_date, end_date)

        await crud.commit(db, conflict_error=duplicate)
        await db.refresh(financial_year)
        AuditService.log_year_action("update", year_id, actor, changes)
        return financial_year

    @staticmethod
    async def delete_financial_year(db: AsyncSession, year_id: int, actor: Actor) -> None:
        financial_year = await FinancialYearService.get_financial_year(db, year_id)
        distribution_count = await crud.count_distributions(db, year_id)
        if distribution_count > 0:
            raise InvalidState(
                "Cannot delete a financial year that has profit distributions",
                {"financial_year_id": year_id, "distributions": distribution_count},
            )
        await db.delete(financial_year)
        await crud.commit(db)
        AuditService.log_year_action("delete", year_id, actor)

    @staticmethod
    async def heal_status(db: AsyncSession, financial_year: models.FinancialYear) -> str:
        """Repair a stale year status from its distributions and persist the change"""
        counts = await crud.distribution_status_counts(db, financial_year.id)
        status = derive_year_status(financial_year.status, counts)
        if status != financial_year.status:
            log.info(f"Financial year {financial_year.id} status healed: {financial_year.status} -> {status}")
            financial_year.status = status
            await crud.commit(db)
        return status

    @staticmethod
    async def list_financial_years(
        db: AsyncSession,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> List[models.FinancialYear]:
        if status and status not in models.YEAR_STATUSES:
            raise ValidationError(f"Unknown financial year status {status}")
        financial_years = await crud.get_financial_years(db, status=status, skip=skip, limit=limit)
        for financial_year in financial_years:
            await FinancialYearService.heal_status(db, financial_year)
        return financial_years

    @staticmethod
    async def get_distributions(db: AsyncSession, year_id: int) -> dict:
        financial_year = await FinancialYearService.get_financial_year(db, year_id)
        distributions = await crud.get_distributions(db, year_id)

        total_investors = len(distributions)
        total_calculated_profit = sum(d.calculated_profit for d in distributions)
        return {
            "financial_year": financial_year,
            "distributions": distributions,
            "summary": {
                "total_investors": total_investors,
                "total_calculated_profit": round(total_calculated_profit, 3),
                "total_days": sum(d.total_days for d in distributions),
                "average_profit": round(total_calculated_profit / total_investors, 3) if total_investors else 0.0,
                "daily_profit_rate": financial_year.daily_profit_rate,
            },
        }

    @staticmethod
    async def get_summary(db: AsyncSession, year_id: int) -> dict:
        """Per-status and overall distribution statistics plus profit efficiency"""
        financial_year = await FinancialYearService.get_financial_year(db, year_id)
        totals = await crud.distribution_totals(db, year_id)

        if totals and financial_year.total_profit > 0:
            efficiency = f"{totals['total_distributed_profit'] / financial_year.total_profit * 100:.2f}%"
        else:
            efficiency = "0%"

        return {
            "financial_year": financial_year,
            "distribution_stats": await crud.distribution_status_stats(db, year_id),
            "total_stats": totals,
            "profit_efficiency": efficiency,
        }

    @staticmethod
    async def approve_distributions(
        db: AsyncSession,
        year_id: int,
        actor: Actor,
        now: Optional[datetime] = None,
    ) -> dict:
        """calculated -> approved for the year and every calculated distribution"""
        now = now or utcnow()
        financial_year = await FinancialYearService.get_financial_year(db, year_id)
        if financial_year.status != models.YEAR_CALCULATED:
            raise InvalidState(
                "Profit distributions must be calculated before they can be approved",
                {"financial_year_id": year_id, "status": financial_year.status},
            )

        approved_count = await crud.bulk_update_distribution_status(
            db, year_id, models.DIST_CALCULATED,
            {"status": models.DIST_APPROVED, "approved_by": actor.id, "distribution_date": now},
        )
        financial_year.status = models.YEAR_APPROVED
        financial_year.approved_by = actor.id
        financial_year.approved_at = now
        await crud.commit(db)

        log.info(f"Approved {approved_count} distribution(s) for financial year {year_id}")
        AuditService.log_year_action("approve", year_id, actor, {"approved_count": approved_count})
        distributions = await crud.get_distributions(db, year_id, status=models.DIST_APPROVED)
        await NotificationService.notify_profit_event(db, "profit_approved", financial_year, distributions, actor)
        return {"approved_count": approved_count, "financial_year": financial_year}

    @staticmethod
    async def distribute_profits(
        db: AsyncSession,
        year_id: int,
        actor: Actor,
        now: Optional[datetime] = None,
    ) -> dict:
        """approved -> distributed without rollover"""
        now = now or utcnow()
        financial_year = await FinancialYearService.get_financial_year(db, year_id)
        if financial_year.status != models.YEAR_APPROVED:
            raise InvalidState(
                "Profit distributions must be approved before they can be distributed",
                {"financial_year_id": year_id, "status": financial_year.status},
            )

        distributions = await crud.get_distributions(db, year_id, status=models.DIST_APPROVED)
        distributed_count = await crud.bulk_update_distribution_status(
            db, year_id, models.DIST_APPROVED,
            {
                "status": models.DIST_DISTRIBUTED,
                "distribution_date": now,
                "distributed_by": actor.id,
                "distributed_at": now,
            },
        )
        financial_year.status = models.YEAR_DISTRIBUTED
        financial_year.distributed_by = actor.id
        financial_year.distributed_at = now
        await crud.commit(db)

        log.info(f"Distributed {distributed_count} distribution(s) for financial year {year_id}")
        AuditService.log_year_action("distribute", year_id, actor, {"distributed_count": distributed_count})
        await NotificationService.notify_profit_event(db, "profit_distributed", financial_year, distributions, actor)
        return {"distributed_count": distributed_count, "financial_year": financial_year}

    @staticmethod
    async def close_financial_year(db: AsyncSession, year_id: int, actor: Actor) -> models.FinancialYear:
        """Irreversible; refused while any distribution is still only calculated"""
        financial_year = await FinancialYearService.get_financial_year(db, year_id)
        if financial_year.status == models.YEAR_CLOSED:
            raise InvalidState("Financial year is already closed", {"financial_year_id": year_id})

        pending = await crud.count_distributions(db, year_id, exclude_statuses=list(models.LOCKED_DISTRIBUTION_STATUSES))
        if pending > 0:
            raise InvalidState(
                "All profit distributions must be approved before the financial year can be closed",
                {"financial_year_id": year_id, "pending_distributions": pending},
            )

        financial_year.status = models.YEAR_CLOSED
        await crud.commit(db)
        AuditService.log_year_action("close", year_id, actor)
        await NotificationService.notify(
            db,
            "financial_year_closed",
            [{"actor_id": actor.id}],
            {
                "title": f"Financial year {financial_year.year} closed",
                "message": f"Financial year {financial_year.year} was closed",
                "financial_year_id": financial_year.id,
            },
            created_by=actor,
        )
        return financial_year

    @staticmethod
    async def toggle_auto_rollover(
        db: AsyncSession,
        year_id: int,
        data: schemas.AutoRolloverRequest,
        actor: Actor,
    ) -> models.FinancialYear:
        if not 0 <= data.rollover_percentage <= 100:
            raise ValidationError("Rollover percentage must be between 0 and 100", {"rollover_percentage": data.rollover_percentage})

        financial_year = await FinancialYearService.get_financial_year(db, year_id)
        financial_year.auto_rollover = data.auto_rollover
        financial_year.rollover_percentage = data.rollover_percentage
        if data.auto_rollover_date is not None:
            financial_year.auto_rollover_date = data.auto_rollover_date
        if data.auto_rollover:
            financial_year.auto_rollover_status = models.AUTO_ROLLOVER_PENDING

        await crud.commit(db)
        AuditService.log_year_action(
            "toggle_auto_rollover", year_id, actor,
            {"auto_rollover": data.auto_rollover, "rollover_percentage": data.rollover_percentage},
        )
        return financial_year
