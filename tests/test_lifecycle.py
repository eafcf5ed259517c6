from datetime import date

import pytest
from pydantic import ValidationError as SchemaValidationError

from fundledger import crud, models, schemas
from fundledger.distribution_service import DistributionEngine
from fundledger.errors import InvalidState, ValidationError
from fundledger.financial_year_service import FinancialYearService, derive_year_status

from tests.factories import ADMIN, add_investor, add_year, set_distribution_status, utc

AFTER_YEAR_END = utc(2025, 1, 15)


async def _calculated_year(db, total_profit=60000):
    await add_investor(db, "A", 10000, join_date=date(2023, 1, 1))
    await add_investor(db, "B", 50000, join_date=date(2023, 1, 1))
    year = await add_year(db, total_profit)
    await DistributionEngine.calculate_distributions(db, year.id, actor=ADMIN, now=AFTER_YEAR_END)
    return year


@pytest.mark.parametrize("current,counts,expected", [
    ("calculated", {"distributed": 2, "rolled_over": 1}, "distributed"),
    ("calculated", {"approved": 3}, "approved"),
    ("approved", {"approved": 1, "calculated": 2}, "calculated"),
    ("approved", {"approved": 1, "distributed": 1}, "approved"),
    ("draft", {}, "draft"),
    ("closed", {"calculated": 3}, "closed"),
])
def test_derive_year_status(current, counts, expected):
    assert derive_year_status(current, counts) == expected


def test_create_computes_total_days_and_starts_as_draft(run_db):
    async def scenario(sessions):
        async with sessions() as db:
            year = await add_year(db, 1000, start_date=date(2024, 1, 1), end_date=date(2024, 3, 31), period_name="Q1 2024")
            assert year.total_days == 91
            assert year.status == models.YEAR_DRAFT
            assert year.created_by == ADMIN.id
            with pytest.raises(ValidationError):
                await add_year(db, 1000, period_name="Q1 2024")

    run_db(scenario)


def test_end_date_must_follow_start_date():
    with pytest.raises(SchemaValidationError):
        schemas.FinancialYearCreate(year=2024, total_profit=1, start_date=date(2024, 5, 1), end_date=date(2024, 5, 1))


def test_update_recomputes_days_until_calculated(run_db):
    async def scenario(sessions):
        async with sessions() as db:
            await add_investor(db, "A", 1000, join_date=date(2023, 1, 1))
            year = await add_year(db, 1000)
            updated = await FinancialYearService.update_financial_year(
                db, year.id, schemas.FinancialYearUpdate(end_date=date(2024, 6, 30)), ADMIN
            )
            assert updated.total_days == 182

            with pytest.raises(ValidationError):
                await FinancialYearService.update_financial_year(
                    db, year.id, schemas.FinancialYearUpdate(end_date=date(2023, 6, 30)), ADMIN
                )

            await DistributionEngine.calculate_distributions(db, year.id, actor=ADMIN, now=AFTER_YEAR_END)
            with pytest.raises(InvalidState):
                await FinancialYearService.update_financial_year(
                    db, year.id, schemas.FinancialYearUpdate(total_profit=5), ADMIN
                )

    run_db(scenario)


def test_delete_refused_once_distributions_exist(run_db):
    async def scenario(sessions):
        async with sessions() as db:
            empty = await add_year(db, 10, start_date=date(2023, 1, 1), end_date=date(2023, 12, 31))
            await FinancialYearService.delete_financial_year(db, empty.id, ADMIN)
            assert await crud.get_financial_year(db, empty.id) is None

            year = await _calculated_year(db)
            with pytest.raises(InvalidState):
                await FinancialYearService.delete_financial_year(db, year.id, ADMIN)

    run_db(scenario)


def test_approve_then_distribute(run_db):
    async def scenario(sessions):
        async with sessions() as db:
            year = await _calculated_year(db)

            with pytest.raises(InvalidState):
                await FinancialYearService.distribute_profits(db, year.id, ADMIN, now=AFTER_YEAR_END)

            approved = await FinancialYearService.approve_distributions(db, year.id, ADMIN, now=AFTER_YEAR_END)
            assert approved["approved_count"] == 2
            assert approved["financial_year"].status == models.YEAR_APPROVED
            assert approved["financial_year"].approved_by == ADMIN.id
            for distribution in await crud.get_distributions(db, year.id):
                assert distribution.status == models.DIST_APPROVED
                assert distribution.approved_by == ADMIN.id

            with pytest.raises(InvalidState):
                await FinancialYearService.approve_distributions(db, year.id, ADMIN, now=AFTER_YEAR_END)

            distributed = await FinancialYearService.distribute_profits(db, year.id, ADMIN, now=AFTER_YEAR_END)
            assert distributed["distributed_count"] == 2
            assert distributed["financial_year"].status == models.YEAR_DISTRIBUTED
            for distribution in await crud.get_distributions(db, year.id):
                assert distribution.status == models.DIST_DISTRIBUTED
                assert distribution.is_rolled_over is False
                assert distribution.distributed_by == ADMIN.id

    run_db(scenario)


def test_approve_requires_calculated_year(run_db):
    async def scenario(sessions):
        async with sessions() as db:
            year = await add_year(db, 100)
            with pytest.raises(InvalidState):
                await FinancialYearService.approve_distributions(db, year.id, ADMIN)

    run_db(scenario)


def test_close_requires_every_distribution_locked(run_db):
    async def scenario(sessions):
        async with sessions() as db:
            year = await _calculated_year(db)
            with pytest.raises(InvalidState):
                await FinancialYearService.close_financial_year(db, year.id, ADMIN)

            await FinancialYearService.approve_distributions(db, year.id, ADMIN, now=AFTER_YEAR_END)
            closed = await FinancialYearService.close_financial_year(db, year.id, ADMIN)
            assert closed.status == models.YEAR_CLOSED

            with pytest.raises(InvalidState):
                await FinancialYearService.close_financial_year(db, year.id, ADMIN)
            with pytest.raises(InvalidState):
                await DistributionEngine.calculate_distributions(db, year.id, actor=ADMIN, now=AFTER_YEAR_END)

    run_db(scenario)


def test_listing_heals_stale_status(run_db):
    async def scenario(sessions):
        async with sessions() as db:
            year = await _calculated_year(db)
            await set_distribution_status(db, year.id, models.DIST_APPROVED)

            [listed] = await FinancialYearService.list_financial_years(db)
            assert listed.status == models.YEAR_APPROVED
            with pytest.raises(ValidationError):
                await FinancialYearService.list_financial_years(db, status="archived")

    run_db(scenario)


def test_summary_reports_profit_efficiency(run_db):
    async def scenario(sessions):
        async with sessions() as db:
            year = await _calculated_year(db, total_profit=60000)
            summary = await FinancialYearService.get_summary(db, year.id)
            assert summary["profit_efficiency"] == "100.00%"
            assert summary["total_stats"]["total_investors"] == 2
            assert summary["total_stats"]["max_profit"] == 50000.0
            [stats] = summary["distribution_stats"]
            assert stats["status"] == models.DIST_CALCULATED
            assert stats["count"] == 2

            empty = await add_year(db, 500, start_date=date(2023, 1, 1), end_date=date(2023, 12, 31))
            assert (await FinancialYearService.get_summary(db, empty.id))["profit_efficiency"] == "0%"

    run_db(scenario)


def test_get_distributions_summary(run_db):
    async def scenario(sessions):
        async with sessions() as db:
            year = await _calculated_year(db)
            result = await FinancialYearService.get_distributions(db, year.id)
            assert result["summary"]["total_investors"] == 2
            assert result["summary"]["total_calculated_profit"] == 60000.0
            assert result["summary"]["average_profit"] == 30000.0
            # Highest profit first
            assert [d.calculated_profit for d in result["distributions"]] == [50000.0, 10000.0]

    run_db(scenario)


def test_toggle_auto_rollover(run_db):
    async def scenario(sessions):
        async with sessions() as db:
            year = await add_year(db, 100)
            updated = await FinancialYearService.toggle_auto_rollover(
                db, year.id,
                schemas.AutoRolloverRequest(auto_rollover=True, rollover_percentage=40, auto_rollover_date=utc(2025, 1, 1)),
                ADMIN,
            )
            assert updated.auto_rollover is True
            assert updated.rollover_percentage == 40
            assert updated.auto_rollover_status == models.AUTO_ROLLOVER_PENDING

            with pytest.raises(ValidationError):
                await FinancialYearService.toggle_auto_rollover(
                    db, year.id, schemas.AutoRolloverRequest(auto_rollover=True, rollover_percentage=120), ADMIN
                )

    run_db(scenario)
