"""
Scheduler Service
=================

Owns the recurring background sweeps:

    auto_rollover          daily at AUTO_ROLLOVER_HOUR
    export_cleanup         weekly on EXPORT_CLEANUP_WEEKDAY at EXPORT_CLEANUP_HOUR
    notification_cleanup   daily at NOTIFICATION_CLEANUP_HOUR
    profit_recalculation   every PROFIT_RECALC_INTERVAL_MINUTES

Each job is an asyncio task with its own stop event, so jobs can be started
and stopped independently and never hold up shutdown. Every sweep opens its
own database session and acts as Actor.system().
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional
import asyncio
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from . import models
from .actor import Actor
from .config import settings
from .database import SessionLocal
from .distribution_service import DistributionEngine
from .errors import FundLedgerError
from .notification_service import NotificationService
from .period_calendar import as_utc, to_utc_date, utcnow
from .rollover_service import RolloverService

log = logging.getLogger(__name__)

NextRun = Callable[[datetime], datetime]
JobFunc = Callable[[datetime], Awaitable[Any]]


# ===== SCHEDULES =====

def every(minutes: int) -> NextRun:
    def next_run(after: datetime) -> datetime:
        return after + timedelta(minutes=minutes)
    return next_run


def daily_at(hour: int) -> NextRun:
    def next_run(after: datetime) -> datetime:
        candidate = after.replace(hour=hour, minute=0, second=0, microsecond=0)
        if candidate <= after:
            candidate += timedelta(days=1)
        return candidate
    return next_run


def weekly_at(weekday: int, hour: int) -> NextRun:
    """weekday follows datetime.weekday(): Monday is 0, Sunday is 6"""
    def next_run(after: datetime) -> datetime:
        candidate = after.replace(hour=hour, minute=0, second=0, microsecond=0)
        candidate += timedelta(days=(weekday - after.weekday()) % 7)
        if candidate <= after:
            candidate += timedelta(days=7)
        return candidate
    return next_run


# ===== SWEEPS =====

async def recalculate_active_years(session_factory: async_sessionmaker, now: Optional[datetime] = None) -> dict:
    """
    Recalculate every in-progress calculated year (start_date <= today < end_date)
    in elapsed mode. One year's failure does not stop the others.
    """
    now = now or utcnow()
    today = to_utc_date(now)

    async with session_factory() as db:
        result = await db.execute(
            select(models.FinancialYear.id).filter(
                models.FinancialYear.status == models.YEAR_CALCULATED,
                models.FinancialYear.start_date <= today,
                models.FinancialYear.end_date > today,
            )
        )
        year_ids = list(result.scalars().all())

    results = []
    for year_id in year_ids:
        try:
            async with session_factory() as db:
                outcome = await DistributionEngine.calculate_distributions(
                    db, year_id, force_full_period=False, actor=Actor.system(), now=now
                )
            results.append({
                "financial_year_id": year_id,
                "success": True,
                "view_only": outcome["summary"]["view_only"],
                "distributions": len(outcome["distributions"]),
            })
        except (FundLedgerError, SQLAlchemyError) as e:
            log.error(f"Automatic recalculation failed for financial year {year_id}: {e}")
            results.append({"financial_year_id": year_id, "success": False, "error": str(e)})

    log.info(f"Automatic profit recalculation processed {len(results)} financial year(s)")
    return {"processed_years": len(results), "results": results}


async def cleanup_old_exports(
    now: Optional[datetime] = None,
    directory: Optional[str] = None,
    max_age_days: Optional[int] = None,
) -> int:
    """Delete exported report files older than max_age_days; returns the number removed"""
    now = now or utcnow()
    exports_dir = Path(directory or settings.EXPORTS_DIR)
    max_age = timedelta(days=max_age_days if max_age_days is not None else settings.EXPORT_MAX_AGE_DAYS)
    if not exports_dir.is_dir():
        return 0

    removed = 0
    cutoff = (now - max_age).timestamp()
    for path in exports_dir.iterdir():
        if path.is_file() and path.stat().st_mtime < cutoff:
            try:
                path.unlink()
                removed += 1
            except OSError as e:
                log.error(f"Could not delete export {path}: {e}")
    log.info(f"Removed {removed} old export file(s) from {exports_dir}")
    return removed


# ===== JOBS =====

@dataclass
class RecurringJob:
    name: str
    func: JobFunc
    next_run: NextRun
    last_run: Optional[datetime] = None
    last_result: Any = None
    last_error: Optional[str] = None
    run_count: int = 0
    _task: Optional[asyncio.Task] = field(default=None, repr=False)
    _stop: Optional[asyncio.Event] = field(default=None, repr=False)
    _next_run_at: Optional[datetime] = field(default=None, repr=False)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def next_run_at(self) -> Optional[datetime]:
        """When the running loop fires next"""
        return self._next_run_at if self.running else None

    def start(self) -> None:
        if self.running:
            return
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name=f"job:{self.name}")
        log.info(f"Job {self.name} started")

    async def stop(self) -> None:
        if not self.running:
            return
        self._stop.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self._next_run_at = None
        log.info(f"Job {self.name} stopped")

    async def run_once(self, now: Optional[datetime] = None) -> Any:
        """Run the job body; failures are recorded, never raised"""
        now = now or utcnow()
        self.last_run = now
        self.run_count += 1
        try:
            self.last_result = await self.func(now)
            self.last_error = None
        except Exception as e:
            log.exception(f"Job {self.name} failed: {e}")
            self.last_result = None
            self.last_error = str(e)
        return self.last_result

    async def _loop(self) -> None:
        while not self._stop.is_set():
            now = utcnow()
            self._next_run_at = self.next_run(now)
            delay = (self._next_run_at - now).total_seconds()
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=max(delay, 0))
                return
            except asyncio.TimeoutError:
                pass
            await self.run_once()


class TaskScheduler:
    """Named, independently controllable recurring jobs"""

    def __init__(self, session_factory: async_sessionmaker = SessionLocal, jobs: Optional[List[RecurringJob]] = None):
        self.session_factory = session_factory
        self.jobs: Dict[str, RecurringJob] = {}
        for job in jobs if jobs is not None else self.default_jobs():
            self.jobs[job.name] = job

    def default_jobs(self) -> List[RecurringJob]:
        return [
            RecurringJob("auto_rollover", self._auto_rollover, daily_at(settings.AUTO_ROLLOVER_HOUR)),
            RecurringJob(
                "export_cleanup",
                self._export_cleanup,
                weekly_at(settings.EXPORT_CLEANUP_WEEKDAY, settings.EXPORT_CLEANUP_HOUR),
            ),
            RecurringJob("notification_cleanup", self._notification_cleanup, daily_at(settings.NOTIFICATION_CLEANUP_HOUR)),
            RecurringJob(
                "profit_recalculation",
                self._profit_recalculation,
                every(settings.PROFIT_RECALC_INTERVAL_MINUTES),
            ),
        ]

    async def _auto_rollover(self, now: datetime) -> dict:
        async with self.session_factory() as db:
            return await RolloverService.execute_auto_rollover(db, now)

    async def _export_cleanup(self, now: datetime) -> int:
        return await cleanup_old_exports(now)

    async def _notification_cleanup(self, now: datetime) -> int:
        async with self.session_factory() as db:
            return await NotificationService.cleanup_expired(db, now)

    async def _profit_recalculation(self, now: datetime) -> dict:
        return await recalculate_active_years(self.session_factory, now)

    def _get(self, name: str) -> RecurringJob:
        try:
            return self.jobs[name]
        except KeyError:
            raise KeyError(f"Unknown job {name}") from None

    def start(self) -> None:
        for job in self.jobs.values():
            job.start()
        log.info(f"Scheduler started with {len(self.jobs)} job(s)")

    async def stop(self) -> None:
        await asyncio.gather(*(job.stop() for job in self.jobs.values()))
        log.info("Scheduler stopped")

    def start_job(self, name: str) -> None:
        self._get(name).start()

    async def stop_job(self, name: str) -> None:
        await self._get(name).stop()

    async def run_now(self, name: str, now: Optional[datetime] = None) -> Any:
        return await self._get(name).run_once(now)

    def status(self) -> Dict[str, dict]:
        return {
            name: {
                "running": job.running,
                "run_count": job.run_count,
                "last_run": as_utc(job.last_run).isoformat() if job.last_run else None,
                "last_error": job.last_error,
                "next_run": job.next_run_at.isoformat() if job.next_run_at else None,
            }
            for name, job in self.jobs.items()
        }
