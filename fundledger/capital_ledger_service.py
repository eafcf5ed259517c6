"""
Capital Ledger Service
======================

Investor capital and the aggregate pool used by every profit calculation.

PRINCIPLE: the pool total is always read fresh from storage.
Share percentages are a cached projection of that total and are
recomputed explicitly after every capital-affecting mutation.
"""

from typing import Dict, List, Optional
import logging

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from . import crud, models, schemas
from .actor import Actor
from .audit_service import AuditService
from .errors import NotFound, ValidationError

log = logging.getLogger(__name__)

_CREDIT_TYPES = ("deposit", "profit")
_DEBIT_TYPES = ("withdrawal", "fee")


class CapitalLedgerService:
    """Investor records, pool capital and cached share percentages"""

    @staticmethod
    async def total_active_capital(db: AsyncSession) -> float:
        """Sum of contributed capital over active investors"""
        return await crud.sum_active_capital(db)

    @staticmethod
    async def recompute_share_percentages(db: AsyncSession) -> Dict[int, float]:
        """
        Set share_percentage = capital / total active capital * 100 (2 dp)
        for every active investor; inactive investors get 0.

        An empty pool (total == 0) leaves every share at 0. Concurrent runs
        are last-writer-wins.

        Returns:
            {investor_id: share_percentage}
        """
        total = await crud.sum_active_capital(db)
        result = await db.execute(select(models.Investor))
        investors = result.scalars().all()

        shares = {}
        for investor in investors:
            if investor.is_active and total > 0:
                share = round(investor.contributed_capital / total * 100, 2)
            else:
                share = 0.0
            investor.share_percentage = share
            shares[investor.id] = share

        await crud.commit(db)
        log.debug(f"Recomputed share percentages for {len(shares)} investors (pool {total})")
        return shares

    @staticmethod
    async def get_investor(db: AsyncSession, investor_id: int) -> models.Investor:
        investor = await crud.get_investor(db, investor_id)
        if not investor:
            raise NotFound(f"Investor {investor_id} not found")
        return investor

    @staticmethod
    async def list_investors(
        db: AsyncSession,
        is_active: Optional[bool] = True,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> List[models.Investor]:
        return await crud.get_investors(db, is_active=is_active, search=search, skip=skip, limit=limit)

    @staticmethod
    async def create_investor(db: AsyncSession, data: schemas.InvestorCreate, actor: Actor) -> models.Investor:
        if await crud.get_investor_by_national_id(db, data.national_id):
            raise ValidationError("An investor with this national ID already exists", {"national_id": data.national_id})

        investor = models.Investor(**data.model_dump(), is_active=True, share_percentage=0.0)
        db.add(investor)
        await crud.commit(
            db,
            conflict_error=ValidationError("An investor with this national ID already exists", {"national_id": data.national_id}),
        )
        await db.refresh(investor)

        await CapitalLedgerService.recompute_share_percentages(db)
        AuditService.log_investor_action("create", investor.id, actor, {"capital": investor.contributed_capital})
        log.info(f"Investor {investor.id} created with capital {investor.contributed_capital} {investor.currency}")
        return investor

    @staticmethod
    async def update_investor(
        db: AsyncSession,
        investor_id: int,
        data: schemas.InvestorUpdate,
        actor: Actor,
    ) -> models.Investor:
        investor = await CapitalLedgerService.get_investor(db, investor_id)
        changes = data.model_dump(exclude_unset=True)

        if "national_id" in changes and changes["national_id"] != investor.national_id:
            if await crud.get_investor_by_national_id(db, changes["national_id"]):
                raise ValidationError("An investor with this national ID already exists", {"national_id": changes["national_id"]})

        capital_changed = any(
            key in changes and changes[key] != getattr(investor, key)
            for key in ("contributed_capital", "is_active")
        )
        for key, value in changes.items():
            setattr(investor, key, value)

        await crud.commit(db, conflict_error=ValidationError("An investor with this national ID already exists"))

        if capital_changed:
            await CapitalLedgerService.recompute_share_percentages(db)
        await db.refresh(investor)

        AuditService.log_investor_action("update", investor.id, actor, changes)
        return investor

    @staticmethod
    async def delete_investor(db: AsyncSession, investor_id: int, actor: Actor, force: bool = False) -> dict:
        """
        Deactivate an investor, or with force=True delete it together with its
        transactions, distributions and notifications.
        """
        investor = await CapitalLedgerService.get_investor(db, investor_id)

        if force:
            deleted_transactions = await db.execute(
                delete(models.Transaction).where(models.Transaction.investor_id == investor_id)
            )
            deleted_distributions = await db.execute(
                delete(models.ProfitDistribution).where(models.ProfitDistribution.investor_id == investor_id)
            )
            await db.execute(
                delete(models.Notification).where(models.Notification.recipient_investor_id == investor_id)
            )
            await db.delete(investor)
            await crud.commit(db)
            result = {
                "deleted": True,
                "deleted_transactions": deleted_transactions.rowcount or 0,
                "deleted_distributions": deleted_distributions.rowcount or 0,
            }
        else:
            investor.is_active = False
            await crud.commit(db)
            result = {"deleted": False, "deactivated": True}

        await CapitalLedgerService.recompute_share_percentages(db)
        AuditService.log_investor_action("delete" if force else "deactivate", investor_id, actor, result)
        return result

    @staticmethod
    async def investor_balance(db: AsyncSession, investor_id: int) -> dict:
        """
        Current balance = contributed capital
                          + deposits and profit transactions
                          - withdrawals and fees
                          + paid-out profit of distributions not rolled over
        """
        investor = await CapitalLedgerService.get_investor(db, investor_id)
        totals = await crud.sum_transactions_by_type(db, investor_id)

        credits = sum(totals.get(tx_type, 0.0) for tx_type in _CREDIT_TYPES)
        debits = sum(totals.get(tx_type, 0.0) for tx_type in _DEBIT_TYPES)

        # Rolled-over profit already shows up as a profit transaction
        paid_out = 0.0
        for distribution in await crud.get_investor_distributions(db, investor_id):
            if distribution.status in (models.DIST_DISTRIBUTED, models.DIST_ROLLED_OVER) and not distribution.is_rolled_over:
                paid_out += distribution.calculated_profit

        return {
            "investor_id": investor.id,
            "full_name": investor.full_name,
            "contributed_capital": investor.contributed_capital,
            "share_percentage": investor.share_percentage,
            "current_balance": round(investor.contributed_capital + credits - debits + paid_out, 3),
        }

    @staticmethod
    async def investor_profits(db: AsyncSession, investor_id: int) -> List[models.ProfitDistribution]:
        await CapitalLedgerService.get_investor(db, investor_id)
        return await crud.get_investor_distributions(db, investor_id)

