"""Investor API endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, status

from .. import schemas
from ..capital_ledger_service import CapitalLedgerService
from ..deps import ActorDep, SessionDep, get_current_actor
from . import ok

router = APIRouter(
    prefix="/api/v1/investors",
    tags=["investors"],
    dependencies=[Depends(get_current_actor)],
)


@router.get("")
async def list_investors(
    db_session: SessionDep,
    is_active: Optional[bool] = True,
    search: Optional[str] = None,
    skip: int = 0,
    limit: int = 50,
):
    investors = await CapitalLedgerService.list_investors(db_session, is_active, search, skip, limit)
    total_capital = await CapitalLedgerService.total_active_capital(db_session)
    return ok("Investors retrieved", {
        "investors": [schemas.Investor.model_validate(i) for i in investors],
        "total_active_capital": total_capital,
    })


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_investor(investor: schemas.InvestorCreate, db_session: SessionDep, actor: ActorDep):
    created = await CapitalLedgerService.create_investor(db_session, investor, actor)
    return ok("Investor created", schemas.Investor.model_validate(created))


@router.get("/{investor_id}")
async def get_investor(investor_id: int, db_session: SessionDep):
    investor = await CapitalLedgerService.get_investor(db_session, investor_id)
    return ok("Investor retrieved", schemas.Investor.model_validate(investor))


@router.put("/{investor_id}")
async def update_investor(investor_id: int, investor: schemas.InvestorUpdate, db_session: SessionDep, actor: ActorDep):
    updated = await CapitalLedgerService.update_investor(db_session, investor_id, investor, actor)
    return ok("Investor updated", schemas.Investor.model_validate(updated))


@router.delete("/{investor_id}")
async def delete_investor(investor_id: int, db_session: SessionDep, actor: ActorDep, force: bool = False):
    """Deactivates by default; force=true removes the investor with all dependent records."""
    result = await CapitalLedgerService.delete_investor(db_session, investor_id, actor, force=force)
    return ok("Investor deleted" if force else "Investor deactivated", result)


@router.get("/{investor_id}/balance")
async def get_investor_balance(investor_id: int, db_session: SessionDep):
    balance = await CapitalLedgerService.investor_balance(db_session, investor_id)
    return ok("Investor balance retrieved", schemas.InvestorBalance(**balance))


@router.get("/{investor_id}/profits")
async def get_investor_profits(investor_id: int, db_session: SessionDep):
    distributions = await CapitalLedgerService.investor_profits(db_session, investor_id)
    return ok("Investor profits retrieved", {
        "distributions": [schemas.ProfitDistribution.model_validate(d) for d in distributions],
        "total_profit": round(sum(d.calculated_profit for d in distributions), 3),
    })
