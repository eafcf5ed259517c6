"""
Financial Year Router
=====================

Financial year records and the profit distribution lifecycle:

1. POST /{id}/calculate    - compute distributions (new and pending investors)
2. POST /{id}/approve      - calculated -> approved
3. POST /{id}/rollover     - approved -> distributed, profit reinvested
   POST /{id}/distribute   - approved -> distributed, profit paid out
4. POST /{id}/close        - irreversible
"""

from typing import Optional

from fastapi import APIRouter, Depends

from .. import schemas
from ..deps import ActorDep, SessionDep, get_current_actor
from ..distribution_service import DistributionEngine
from ..financial_year_service import FinancialYearService
from ..rollover_service import RolloverService
from . import ok

router = APIRouter(
    prefix="/api/v1/financial-years",
    tags=["financial_years"],
    dependencies=[Depends(get_current_actor)],
)


def _year(financial_year) -> schemas.FinancialYear:
    return schemas.FinancialYear.model_validate(financial_year)


def _distributions(distributions) -> list:
    return [schemas.ProfitDistribution.model_validate(d) for d in distributions]


@router.get("")
async def list_financial_years(db_session: SessionDep, status: Optional[str] = None, skip: int = 0, limit: int = 50):
    financial_years = await FinancialYearService.list_financial_years(db_session, status, skip, limit)
    return ok("Financial years retrieved", [_year(fy) for fy in financial_years])


@router.post("", status_code=201)
async def create_financial_year(financial_year: schemas.FinancialYearCreate, db_session: SessionDep, actor: ActorDep):
    created = await FinancialYearService.create_financial_year(db_session, financial_year, actor)
    return ok("Financial year created", _year(created))


@router.post("/execute-auto-rollover")
async def execute_auto_rollover(db_session: SessionDep):
    """Run the auto-rollover sweep now; it always acts as the system identity."""
    result = await RolloverService.execute_auto_rollover(db_session)
    return ok("Auto rollover executed", result)


@router.post("/distributions/{distribution_id}/rollover")
async def rollover_distribution(
    distribution_id: int,
    db_session: SessionDep,
    actor: ActorDep,
    request: Optional[schemas.RolloverRequest] = None,
):
    request = request or schemas.RolloverRequest()
    result = await RolloverService.rollover(db_session, distribution_id, request.percentage, actor)
    return ok("Profit rolled over", {
        "distribution": schemas.ProfitDistribution.model_validate(result["distribution"]),
        "transaction": schemas.Transaction.model_validate(result["transaction"]),
        "rollover_amount": result["rollover_amount"],
        "percentage": result["percentage"],
    })


@router.get("/{year_id}")
async def get_financial_year(year_id: int, db_session: SessionDep):
    result = await FinancialYearService.get_distributions(db_session, year_id)
    return ok("Financial year retrieved", {
        "financial_year": _year(result["financial_year"]),
        "distributions": _distributions(result["distributions"]),
    })


@router.put("/{year_id}")
async def update_financial_year(
    year_id: int,
    financial_year: schemas.FinancialYearUpdate,
    db_session: SessionDep,
    actor: ActorDep,
):
    updated = await FinancialYearService.update_financial_year(db_session, year_id, financial_year, actor)
    return ok("Financial year updated", _year(updated))


@router.delete("/{year_id}")
async def delete_financial_year(year_id: int, db_session: SessionDep, actor: ActorDep):
    await FinancialYearService.delete_financial_year(db_session, year_id, actor)
    return ok("Financial year deleted")


@router.post("/{year_id}/calculate")
async def calculate_distributions(
    year_id: int,
    db_session: SessionDep,
    actor: ActorDep,
    request: Optional[schemas.CalculateDistributionsRequest] = None,
):
    request = request or schemas.CalculateDistributionsRequest()
    result = await DistributionEngine.calculate_distributions(
        db_session, year_id, force_full_period=request.force_full_period, actor=actor
    )
    return ok(result["message"], {
        "financial_year": _year(result["financial_year"]),
        "distributions": _distributions(result["distributions"]),
        "summary": result["summary"],
    })


@router.get("/{year_id}/distributions")
async def get_distributions(year_id: int, db_session: SessionDep):
    result = await FinancialYearService.get_distributions(db_session, year_id)
    return ok("Profit distributions retrieved", {
        "financial_year": _year(result["financial_year"]),
        "distributions": _distributions(result["distributions"]),
        "summary": result["summary"],
    })


@router.get("/{year_id}/summary")
async def get_financial_year_summary(year_id: int, db_session: SessionDep):
    summary = await FinancialYearService.get_summary(db_session, year_id)
    return ok("Financial year summary retrieved", {**summary, "financial_year": _year(summary["financial_year"])})


@router.post("/{year_id}/approve")
async def approve_distributions(year_id: int, db_session: SessionDep, actor: ActorDep):
    result = await FinancialYearService.approve_distributions(db_session, year_id, actor)
    return ok("Profit distributions approved", {
        "approved_count": result["approved_count"],
        "financial_year": _year(result["financial_year"]),
    })


@router.post("/{year_id}/rollover")
async def rollover_profits(year_id: int, request: schemas.RolloverRequest, db_session: SessionDep, actor: ActorDep):
    result = await RolloverService.rollover_profits(db_session, year_id, request.percentage, actor)
    return ok("Profits rolled over", schemas.RolloverResults(**result))


@router.post("/{year_id}/distribute")
async def distribute_profits(year_id: int, db_session: SessionDep, actor: ActorDep):
    result = await FinancialYearService.distribute_profits(db_session, year_id, actor)
    return ok("Profits distributed", {
        "distributed_count": result["distributed_count"],
        "financial_year": _year(result["financial_year"]),
    })


@router.post("/{year_id}/close")
async def close_financial_year(year_id: int, db_session: SessionDep, actor: ActorDep):
    closed = await FinancialYearService.close_financial_year(db_session, year_id, actor)
    return ok("Financial year closed", _year(closed))


@router.put("/{year_id}/auto-rollover")
async def toggle_auto_rollover(
    year_id: int,
    request: schemas.AutoRolloverRequest,
    db_session: SessionDep,
    actor: ActorDep,
):
    updated = await FinancialYearService.toggle_auto_rollover(db_session, year_id, request, actor)
    message = "Auto rollover enabled" if request.auto_rollover else "Auto rollover disabled"
    return ok(message, _year(updated))
