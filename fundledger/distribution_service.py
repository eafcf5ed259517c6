"""
Distribution Engine
===================

Computes each investor's share of a financial year's profit.

Rate:
    daily_profit_rate = total_profit / total_invested_capital / total_days

where total_invested_capital covers ALL active investors (locked or not)
and total_days is the full inclusive length of the year.

Profit per investor:
    full period   -> capital / total_invested_capital * total_profit
    elapsed days  -> capital * participation_days * daily_profit_rate

rounded half-up to 3 decimals.

RULE: approved / distributed / rolled_over distributions are locked. A
recalculation never deletes, rewrites or re-derives them, which is what
makes concurrent recalculations (manual or the periodic sweep) safe.
"""

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from . import crud, models
from .actor import Actor
from .audit_service import AuditService
from .config import settings
from .errors import InvalidState, NotFound
from .notification_service import NotificationService
from .period_calendar import effective_window, reporting_window, utcnow

log = logging.getLogger(__name__)

FULL_PERIOD_METHOD = "Full period: investor profit = capital share x total profit"
ELAPSED_METHOD = "Elapsed days: investor profit = capital x days x daily profit rate"

_PROFIT_QUANTUM = Decimal("0.001")


def round_profit(value: float) -> float:
    """Round half-up to 3 decimals"""
    return float(Decimal(repr(value)).quantize(_PROFIT_QUANTUM, rounding=ROUND_HALF_UP))


def classify_investors(
    investors: List[models.Investor],
    existing: Dict[int, models.ProfitDistribution],
) -> Dict[str, List[models.Investor]]:
    """Split active investors into new (no distribution), pending (recomputable) and locked"""
    groups = {"new": [], "pending": [], "locked": []}
    for investor in investors:
        distribution = existing.get(investor.id)
        if distribution is None:
            groups["new"].append(investor)
        elif distribution.status in models.LOCKED_DISTRIBUTION_STATUSES:
            groups["locked"].append(investor)
        else:
            groups["pending"].append(investor)
    return groups


class DistributionEngine:
    """Profit distribution calculation for one financial year"""

    @staticmethod
    async def calculate_distributions(
        db: AsyncSession,
        financial_year_id: int,
        force_full_period: bool = False,
        actor: Optional[Actor] = None,
        now: Optional[datetime] = None,
    ) -> dict:
        """
        (Re)calculate distributions for a financial year.

        Args:
            force_full_period: treat the year as complete even if it is still running
            actor: acting identity, Actor.system() for background sweeps
            now: reference time, defaults to the current UTC time

        Returns:
            {"financial_year", "distributions", "summary", "message"}

        Raises:
            NotFound: unknown financial year
            InvalidState: year closed, not started yet, or no active investors
        """
        actor = actor or Actor.system()
        now = now or utcnow()

        financial_year = await crud.get_financial_year(db, financial_year_id)
        if not financial_year:
            raise NotFound(f"Financial year {financial_year_id} not found")
        if financial_year.status == models.YEAR_CLOSED:
            raise InvalidState("Cannot calculate distributions for a closed financial year", {"financial_year_id": financial_year_id})

        investors = await crud.get_active_investors(db)
        if not investors:
            raise InvalidState("No active investors to distribute profit to")

        window = reporting_window(financial_year.start_date, financial_year.end_date, now, force_full_period)

        existing = {d.investor_id: d for d in await crud.get_distributions(db, financial_year_id)}
        groups = classify_investors(investors, existing)
        new_count, pending_count, locked_count = len(groups["new"]), len(groups["pending"]), len(groups["locked"])
        log.info(
            f"Financial year {financial_year.year} (id={financial_year_id}): "
            f"{new_count} new, {pending_count} pending, {locked_count} locked investors"
        )

        if locked_count > 0 and new_count == 0:
            # Every locked row, including those of investors deactivated since approval
            locked = [d for d in existing.values() if d.status in models.LOCKED_DISTRIBUTION_STATUSES]
            return {
                "financial_year": financial_year,
                "distributions": locked,
                "message": "Distributions are already approved; showing existing results",
                "summary": {
                    "view_only": True,
                    "total_new_investors": 0,
                    "total_pending_investors": pending_count,
                    "total_locked_investors": locked_count,
                    "total_calculated_profit": round(sum(d.calculated_profit for d in locked), 2),
                    "original_profit": financial_year.total_profit,
                    "daily_profit_rate": financial_year.daily_profit_rate,
                },
            }

        deleted = await crud.delete_unlocked_distributions(db, financial_year_id)
        if deleted:
            log.info(f"Cleared {deleted} pending distribution(s) for financial year {financial_year_id}")

        # Pool covers every active investor, locked ones included
        total_invested_capital = sum(investor.contributed_capital for investor in investors)
        total_days = financial_year.total_days
        total_profit = financial_year.total_profit
        if total_invested_capital > 0 and total_days > 0:
            daily_rate = total_profit / total_invested_capital / total_days
        else:
            daily_rate = 0.0

        financial_year.daily_profit_rate = round(daily_rate, 6)
        await crud.commit(db)

        # A rollback on a raced insert expires loaded instances, so the loop
        # works from plain values captured up front.
        year_values = {
            "start_date": financial_year.start_date,
            "end_date": financial_year.end_date,
            "currency": financial_year.currency,
        }
        to_process = [
            {
                "id": investor.id,
                "capital": investor.contributed_capital,
                "join_date": investor.join_date,
                "currency": investor.currency or year_values["currency"],
            }
            for investor in groups["new"] + groups["pending"]
        ]

        processed_ids = []
        total_calculated_profit = 0.0
        for investor in to_process:
            calc_window = effective_window(
                investor["join_date"], year_values["start_date"], year_values["end_date"], now, force_full_period
            )
            if calc_window.is_empty:
                log.debug(f"Investor {investor['id']} has no participation days in financial year {financial_year_id}")
                continue

            if window.is_full_period:
                share = investor["capital"] / total_invested_capital if total_invested_capital > 0 else 0.0
                profit = share * total_profit
            else:
                profit = investor["capital"] * calc_window.days * daily_rate
            profit = round_profit(profit)

            values = {
                "start_date": calc_window.start,
                "investment_amount": investor["capital"],
                "total_days": calc_window.days,
                "daily_profit_rate": daily_rate,
                "calculated_profit": profit,
                "currency": investor["currency"],
                "status": models.DIST_CALCULATED,
                "created_by": actor.id,
            }
            if await DistributionEngine._store_distribution(db, financial_year_id, investor["id"], values):
                processed_ids.append(investor["id"])
                total_calculated_profit += profit

        await db.refresh(financial_year)
        if financial_year.status not in (models.YEAR_APPROVED, models.YEAR_DISTRIBUTED, models.YEAR_CLOSED):
            financial_year.status = models.YEAR_CALCULATED
            await crud.commit(db)

        processed = set(processed_ids)
        distributions = [d for d in await crud.get_distributions(db, financial_year_id) if d.investor_id in processed]

        profit_difference = abs(total_profit - total_calculated_profit)
        if profit_difference > settings.PROFIT_TOLERANCE:
            log.warning(
                f"Financial year {financial_year_id}: calculated profit {total_calculated_profit:.3f} differs from "
                f"total profit {total_profit} by {profit_difference:.3f} ({window.message})"
            )

        AuditService.log_year_action(
            "calculate", financial_year_id, actor,
            {"investors": len(distributions), "total_calculated_profit": total_calculated_profit, "mode": window.mode},
        )
        await NotificationService.notify_profit_event(db, "profit_calculated", financial_year, distributions, actor)

        message = (
            "Profit distributions calculated for new investors"
            if new_count > 0
            else "Profit distributions recalculated for pending investors"
        )
        return {
            "financial_year": financial_year,
            "distributions": distributions,
            "message": message,
            "summary": {
                "view_only": False,
                "total_new_investors": new_count,
                "total_pending_investors": pending_count,
                "total_locked_investors": locked_count,
                "total_calculated_profit": round(total_calculated_profit, 2),
                "original_profit": total_profit,
                "profit_difference": round(profit_difference, 2),
                "daily_profit_rate": daily_rate,
                "elapsed_days": window.elapsed_days,
                "total_days_in_year": total_days,
                "calculation_message": window.message,
                "calculation_method": FULL_PERIOD_METHOD if window.is_full_period else ELAPSED_METHOD,
            },
        }

    @staticmethod
    async def _store_distribution(db: AsyncSession, financial_year_id: int, investor_id: int, values: dict) -> bool:
        """
        Insert one distribution and commit it on its own.

        If a concurrent run already inserted the (year, investor) row, the
        unique constraint rejects ours: a still-calculated row is overwritten
        (last write wins), a locked row is left alone.

        Returns:
            True when this run's figures are stored

        Raises:
            InvalidState: the year was closed while this run was in progress
        """
        if await crud.get_financial_year_status(db, financial_year_id) == models.YEAR_CLOSED:
            raise InvalidState(
                "Financial year was closed during calculation",
                {"financial_year_id": financial_year_id, "investor_id": investor_id},
            )

        db.add(models.ProfitDistribution(financial_year_id=financial_year_id, investor_id=investor_id, **values))
        try:
            await db.commit()
            return True
        except IntegrityError:
            await db.rollback()

        current = await crud.get_distribution_for_investor(db, financial_year_id, investor_id)
        if current is None or current.status != models.DIST_CALCULATED:
            log.info(f"Distribution for investor {investor_id} in year {financial_year_id} was locked concurrently; skipped")
            return False

        for key, value in values.items():
            setattr(current, key, value)
        await crud.commit(db)
        log.info(f"Distribution for investor {investor_id} in year {financial_year_id} was raced in; overwritten")
        return True
