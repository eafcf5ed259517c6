"""
Rollover Service - reinvest approved profit as capital-injection transactions
"""

from datetime import datetime
from typing import List, Optional
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from . import crud, models
from .actor import Actor
from .audit_service import AuditService
from .errors import FundLedgerError, InvalidState, NotFound, ValidationError
from .notification_service import NotificationService
from .period_calendar import as_utc, utcnow
from .transaction_service import generate_receipt_number

log = logging.getLogger(__name__)


def _check_percentage(percentage: float) -> None:
    if not 0 <= percentage <= 100:
        raise ValidationError("Rollover percentage must be between 0 and 100", {"percentage": percentage})


class RolloverService:
    """Manual, bulk and scheduled profit rollover"""

    @staticmethod
    async def rollover(
        db: AsyncSession,
        distribution_id: int,
        percentage: float = 100.0,
        actor: Optional[Actor] = None,
        now: Optional[datetime] = None,
    ) -> dict:
        """
        Roll one approved distribution's profit over into a profit transaction.

        Raises:
            NotFound: unknown distribution
            InvalidState: distribution is not approved (nothing is changed)
            ValidationError: percentage outside 0-100
        """
        _check_percentage(percentage)
        actor = actor or Actor.system()
        now = now or utcnow()

        distribution = await crud.get_distribution(db, distribution_id)
        if not distribution:
            raise NotFound(f"Distribution {distribution_id} not found")
        if distribution.status != models.DIST_APPROVED:
            raise InvalidState(
                "Profit can only be rolled over after the distribution is approved",
                {"distribution_id": distribution_id, "status": distribution.status},
            )

        financial_year = await crud.get_financial_year(db, distribution.financial_year_id)
        rollover_amount = distribution.calculated_profit * percentage / 100

        transaction = models.Transaction(
            investor_id=distribution.investor_id,
            transaction_type="profit",
            amount=rollover_amount,
            currency=distribution.currency,
            transaction_date=now,
            profit_year=financial_year.year,
            financial_year_id=financial_year.id,
            is_contribution=False,
            reference=f"Profit rollover for financial year {financial_year.year}",
            notes=f"Rollover of {percentage}% of profit ({distribution.calculated_profit} {distribution.currency}) into capital",
            receipt_number=generate_receipt_number(now),
            created_by=distribution.approved_by or actor.id,
        )
        db.add(transaction)

        distribution.is_rolled_over = True
        distribution.rollover_amount = rollover_amount
        distribution.rollover_date = now
        distribution.status = models.DIST_DISTRIBUTED
        distribution.distributed_by = actor.id
        distribution.distributed_at = now

        await crud.commit(db)
        await db.refresh(transaction)

        log.info(f"Rolled over {rollover_amount} for investor {distribution.investor_id} (distribution {distribution_id})")
        return {
            "distribution": distribution,
            "transaction": transaction,
            "rollover_amount": rollover_amount,
            "percentage": percentage,
        }

    @staticmethod
    async def _rollover_batch(
        db: AsyncSession,
        distributions: List[models.ProfitDistribution],
        percentage: float,
        actor: Actor,
        now: datetime,
    ) -> List[dict]:
        """Roll over each distribution independently; failures are reported, not raised"""
        # Keep ids and amounts as plain values: a failed commit expires loaded rows
        items = [(d.id, d.investor_id, d.calculated_profit) for d in distributions]
        results = []
        for distribution_id, investor_id, profit in items:
            try:
                outcome = await RolloverService.rollover(db, distribution_id, percentage, actor, now)
                results.append({
                    "distribution_id": distribution_id,
                    "investor_id": investor_id,
                    "success": True,
                    "original_profit": profit,
                    "rollover_amount": outcome["rollover_amount"],
                    "transaction_id": outcome["transaction"].id,
                })
            except FundLedgerError as e:
                log.error(f"Rollover failed for distribution {distribution_id}: {e.message}")
                results.append({
                    "distribution_id": distribution_id,
                    "investor_id": investor_id,
                    "success": False,
                    "original_profit": profit,
                    "error": e.message,
                })
        return results

    @staticmethod
    async def rollover_profits(
        db: AsyncSession,
        year_id: int,
        percentage: float,
        actor: Actor,
        now: Optional[datetime] = None,
    ) -> dict:
        """
        Roll over every approved distribution of a financial year.

        Per-investor failures are collected in ``rollover_results``; the year
        moves to distributed with its rollover settings recorded.
        """
        _check_percentage(percentage)
        now = now or utcnow()

        financial_year = await crud.get_financial_year(db, year_id)
        if not financial_year:
            raise NotFound(f"Financial year {year_id} not found")

        distributions = await crud.get_distributions(db, year_id, status=models.DIST_APPROVED)
        if not distributions:
            raise ValidationError("No approved distributions to roll over", {"financial_year_id": year_id})

        results = await RolloverService._rollover_batch(db, distributions, percentage, actor, now)

        await db.refresh(financial_year)
        financial_year.rollover_enabled = True
        financial_year.rollover_percentage = percentage
        financial_year.status = models.YEAR_DISTRIBUTED
        financial_year.distributed_by = actor.id
        financial_year.distributed_at = now
        await crud.commit(db)

        succeeded = [r for r in results if r["success"]]
        AuditService.log_year_action(
            "rollover", year_id, actor,
            {"percentage": percentage, "rolled_over": len(succeeded), "failed": len(results) - len(succeeded)},
        )
        rolled = [d for d in await crud.get_distributions(db, year_id) if d.is_rolled_over]
        await NotificationService.notify_profit_event(db, "profit_rolled_over", financial_year, rolled, actor)

        return {
            "rollover_percentage": percentage,
            "total_rolled_over": len(succeeded),
            "total_failed": len(results) - len(succeeded),
            "rollover_results": results,
        }

    @staticmethod
    async def execute_auto_rollover(db: AsyncSession, now: Optional[datetime] = None) -> dict:
        """
        Sweep every financial year due for automatic rollover.

        Eligible: auto_rollover on, auto_rollover_date <= now, status pending,
        year status calculated. A year without approved distributions, or with
        any failed rollover, is marked failed; the sweep always continues.
        """
        now = now or utcnow()
        actor = Actor.system()

        result = await db.execute(
            select(models.FinancialYear.id).filter(
                models.FinancialYear.auto_rollover == True,  # noqa: E712
                models.FinancialYear.auto_rollover_date.is_not(None),
                models.FinancialYear.auto_rollover_status == models.AUTO_ROLLOVER_PENDING,
                models.FinancialYear.status == models.YEAR_CALCULATED,
            ).order_by(models.FinancialYear.id)
        )
        candidate_ids = list(result.scalars().all())

        results = []
        for year_id in candidate_ids:
            try:
                outcome = await RolloverService._auto_rollover_year(db, year_id, actor, now)
                if outcome is not None:
                    results.append(outcome)
            except (FundLedgerError, SQLAlchemyError) as e:
                log.error(f"Auto rollover failed for financial year {year_id}: {e}")
                await db.rollback()
                await RolloverService._mark_auto_rollover_failed(db, year_id)
                results.append({"financial_year_id": year_id, "status": models.AUTO_ROLLOVER_FAILED, "error": str(e)})

        log.info(f"Auto rollover processed {len(results)} financial year(s)")
        return {"processed_years": len(results), "results": results}

    @staticmethod
    async def _mark_auto_rollover_failed(db: AsyncSession, year_id: int) -> None:
        """Record a failed sweep so the year is not retried until rescheduled"""
        try:
            await db.execute(
                update(models.FinancialYear)
                .where(models.FinancialYear.id == year_id)
                .values(auto_rollover_status=models.AUTO_ROLLOVER_FAILED)
            )
            await db.commit()
        except SQLAlchemyError as e:
            log.error(f"Could not mark auto rollover failed for financial year {year_id}: {e}")
            await db.rollback()

    @staticmethod
    async def _auto_rollover_year(db: AsyncSession, year_id: int, actor: Actor, now: datetime) -> Optional[dict]:
        financial_year = await crud.get_financial_year(db, year_id)
        # auto_rollover_date is compared here rather than in SQL: SQLite keeps naive datetimes
        if financial_year is None or as_utc(financial_year.auto_rollover_date) > now:
            return None

        distributions = await crud.get_distributions(db, year_id, status=models.DIST_APPROVED)
        if not distributions:
            financial_year.auto_rollover_status = models.AUTO_ROLLOVER_FAILED
            await crud.commit(db)
            log.warning(f"Auto rollover for financial year {year_id}: no approved distributions")
            await NotificationService.notify_system_alert(
                db, "auto_rollover_failed",
                f"Auto rollover failed for financial year {financial_year.year}",
                "No approved distributions to roll over",
                financial_year_id=year_id,
            )
            return {"financial_year_id": year_id, "status": models.AUTO_ROLLOVER_FAILED, "error": "No approved distributions"}

        percentage = financial_year.rollover_percentage
        results = await RolloverService._rollover_batch(db, distributions, percentage, actor, now)
        failed = [r for r in results if not r["success"]]

        await db.refresh(financial_year)
        if failed:
            financial_year.auto_rollover_status = models.AUTO_ROLLOVER_FAILED
        else:
            financial_year.auto_rollover_status = models.AUTO_ROLLOVER_COMPLETED
            financial_year.rollover_enabled = True
            financial_year.status = models.YEAR_DISTRIBUTED
            financial_year.distributed_by = actor.id
            financial_year.distributed_at = now
        await crud.commit(db)

        status = financial_year.auto_rollover_status
        AuditService.log_year_action(
            "auto_rollover", year_id, actor,
            {"status": status, "rolled_over": len(results) - len(failed), "failed": len(failed)},
        )
        event_type = "auto_rollover_completed" if not failed else "auto_rollover_failed"
        await NotificationService.notify_system_alert(
            db, event_type,
            f"Auto rollover {status} for financial year {financial_year.year}",
            f"{len(results) - len(failed)} of {len(results)} distribution(s) rolled over at {percentage}%",
            financial_year_id=year_id,
        )
        return {
            "financial_year_id": year_id,
            "year": financial_year.year,
            "status": status,
            "rollover_percentage": percentage,
            "total_investors": len(results),
            "rollover_results": results,
        }
