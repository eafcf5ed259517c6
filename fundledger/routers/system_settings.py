"""System settings, exchange rates and background job control."""

from fastapi import APIRouter, Depends, HTTPException, Request, status

from .. import schemas
from ..currency_exchange_service import CurrencyExchangeService
from ..deps import ActorDep, SessionDep, get_current_actor
from . import ok

router = APIRouter(
    prefix="/api/v1/settings",
    tags=["settings"],
    dependencies=[Depends(get_current_actor)],
)


@router.get("")
async def get_settings(db_session: SessionDep):
    system_settings = await CurrencyExchangeService.get_settings(db_session)
    return ok("Settings retrieved", schemas.SystemSettings.model_validate(system_settings))


@router.put("")
async def update_settings(request: schemas.SystemSettingsUpdate, db_session: SessionDep, actor: ActorDep):
    system_settings = await CurrencyExchangeService.update_settings(db_session, request, actor)
    return ok("Settings updated", schemas.SystemSettings.model_validate(system_settings))


@router.put("/exchange-rate")
async def update_exchange_rate(request: schemas.ExchangeRateUpdate, db_session: SessionDep, actor: ActorDep):
    system_settings = await CurrencyExchangeService.update_exchange_rate(db_session, request.usd_to_iqd, actor)
    return ok("Exchange rate updated", schemas.SystemSettings.model_validate(system_settings))


@router.post("/exchange-rate/refresh")
async def refresh_exchange_rate(db_session: SessionDep, actor: ActorDep):
    result = await CurrencyExchangeService.fetch_latest_rate(db_session, actor)
    return ok("Exchange rate refreshed", {
        "rate": result["rate"],
        "settings": schemas.SystemSettings.model_validate(result["settings"]),
    })


@router.post("/convert")
async def convert_currency(request: schemas.ConvertRequest, db_session: SessionDep):
    result = await CurrencyExchangeService.convert(
        db_session, request.amount, request.from_currency, request.to_currency
    )
    return ok("Amount converted", result)


@router.post("/display-amount")
async def display_amount(request: schemas.DisplayAmountRequest, db_session: SessionDep):
    result = await CurrencyExchangeService.get_display_amount(db_session, request.amount, request.currency)
    return ok("Display amount prepared", result)


@router.get("/scheduler")
async def scheduler_status(request: Request):
    return ok("Scheduler status retrieved", request.app.state.scheduler.status())


@router.post("/scheduler/{job_name}/run")
async def run_scheduler_job(job_name: str, request: Request):
    scheduler = request.app.state.scheduler
    if job_name not in scheduler.jobs:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown job {job_name}")
    result = await scheduler.run_now(job_name)
    job = scheduler.jobs[job_name]
    return ok(f"Job {job_name} executed", {"result": result, "error": job.last_error})
