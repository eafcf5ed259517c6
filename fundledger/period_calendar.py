"""
Period calendar
===============

Calendar-day arithmetic for financial years and investor participation.

All day counts are inclusive of both the first and the last calendar day,
computed on dates normalized to UTC midnight: a window that starts and ends
on the same day is one day long, and a window whose ends are one calendar
day apart is two days long. The same convention gives
``FinancialYear.total_days`` and the elapsed-day figure reported by a
calculation run.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Union

from .errors import InvalidState

DateLike = Union[date, datetime]

MODE_FULL_PERIOD = "full_period"
MODE_ELAPSED = "elapsed"


@dataclass(frozen=True)
class CalculationWindow:
    start: date
    end: date
    days: int

    @property
    def is_empty(self) -> bool:
        return self.days == 0


@dataclass(frozen=True)
class ReportingWindow:
    mode: str
    elapsed_days: int
    total_days: int
    message: str

    @property
    def is_full_period(self) -> bool:
        return self.mode == MODE_FULL_PERIOD


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo) and convert aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_utc_date(value: DateLike) -> date:
    """Normalize a date or datetime to its UTC calendar day."""
    if isinstance(value, datetime):
        return as_utc(value).date()
    return value


def inclusive_days(start: DateLike, end: DateLike) -> int:
    """Number of calendar days from start to end, counting both ends; 0 if end precedes start."""
    start_day = to_utc_date(start)
    end_day = to_utc_date(end)
    if end_day < start_day:
        return 0
    return (end_day - start_day).days + 1


def effective_window(
    investor_join_date: DateLike,
    year_start: DateLike,
    year_end: DateLike,
    now: DateLike,
    force_full_period: bool = False,
) -> CalculationWindow:
    """
    Participation window of one investor inside a financial year.

    start = max(join date, year start)
    end   = year end when forced or the year is over, otherwise today

    Returns a zero-day window when end falls before start; the caller must not
    assign profit for it.
    """
    start = max(to_utc_date(investor_join_date), to_utc_date(year_start))
    year_end_day = to_utc_date(year_end)
    today = to_utc_date(now)

    if force_full_period or today >= year_end_day:
        end = year_end_day
    else:
        end = today

    return CalculationWindow(start=start, end=end, days=inclusive_days(start, end))


def reporting_window(
    year_start: DateLike,
    year_end: DateLike,
    now: DateLike,
    force_full_period: bool = False,
) -> ReportingWindow:
    """
    Classify a calculation run for the whole year.

    Raises:
        InvalidState: the year has not started and full-period calculation was not forced
    """
    total_days = inclusive_days(year_start, year_end)
    today = to_utc_date(now)

    if force_full_period:
        return ReportingWindow(
            mode=MODE_FULL_PERIOD,
            elapsed_days=total_days,
            total_days=total_days,
            message=f"Calculated for the full period: {total_days} days",
        )

    if today >= to_utc_date(year_end):
        return ReportingWindow(
            mode=MODE_FULL_PERIOD,
            elapsed_days=total_days,
            total_days=total_days,
            message=f"Financial year has ended - calculated for the full period: {total_days} days",
        )

    if today >= to_utc_date(year_start):
        elapsed = inclusive_days(year_start, today)
        if elapsed == 1:
            message = "Financial year started today - calculated for one day"
        else:
            message = f"Financial year in progress - calculated for {elapsed} of {total_days} elapsed days"
        return ReportingWindow(
            mode=MODE_ELAPSED,
            elapsed_days=elapsed,
            total_days=total_days,
            message=message,
        )

    raise InvalidState(
        "Financial year has not started yet; profits cannot be calculated",
        {"start_date": to_utc_date(year_start).isoformat()},
    )
