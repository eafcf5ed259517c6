import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .database import Base, SessionLocal, engine
from .errors import FundLedgerError
from .routers import financial_years, investors, notifications, system_settings, transactions
from .scheduler_service import TaskScheduler

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
log = logging.getLogger(__name__)


async def create_db_and_tables():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    log.info("Database tables ready")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_db_and_tables()

    scheduler = TaskScheduler(SessionLocal)
    app.state.scheduler = scheduler
    if settings.SCHEDULER_ENABLED:
        scheduler.start()
    log.info("Application ready")
    try:
        yield
    finally:
        await scheduler.stop()
        await engine.dispose()


app = FastAPI(title="Fund Ledger", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(FundLedgerError)
async def fund_ledger_error_handler(request: Request, exc: FundLedgerError):
    if exc.status_code >= 500:
        log.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/health")
async def health():
    return {"status": "ok"}


app.include_router(investors.router)
app.include_router(transactions.router)
app.include_router(financial_years.router)
app.include_router(notifications.router)
app.include_router(system_settings.router)


if __name__ == "__main__":
    uvicorn.run("fundledger.main:app", host="0.0.0.0", port=8000, reload=False)
