from datetime import date

import pytest

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from fundledger import crud, models
from fundledger.actor import SYSTEM_ACTOR_ID
from fundledger.distribution_service import DistributionEngine
from fundledger.errors import InvalidState, ValidationError
from fundledger.financial_year_service import FinancialYearService
from fundledger.rollover_service import RolloverService

from tests.factories import ADMIN, add_investor, add_year, set_distribution_status, utc

AFTER_YEAR_END = utc(2025, 1, 15)


async def _year_with_distributions(db, approve=True):
    a = await add_investor(db, "A", 10000, join_date=date(2023, 1, 1))
    b = await add_investor(db, "B", 30000, join_date=date(2023, 1, 1))
    year = await add_year(db, 4000)
    await DistributionEngine.calculate_distributions(db, year.id, actor=ADMIN, now=AFTER_YEAR_END)
    if approve:
        await FinancialYearService.approve_distributions(db, year.id, ADMIN, now=AFTER_YEAR_END)
    return year, a, b


def test_rollover_records_profit_transaction(run_db):
    async def scenario(sessions):
        async with sessions() as db:
            year, a, _ = await _year_with_distributions(db)
            distribution = await crud.get_distribution_for_investor(db, year.id, a.id)

            result = await RolloverService.rollover(db, distribution.id, 50, ADMIN, now=AFTER_YEAR_END)

            assert result["rollover_amount"] == 500.0
            transaction = result["transaction"]
            assert transaction.transaction_type == "profit"
            assert transaction.amount == 500.0
            assert transaction.profit_year == 2024
            assert transaction.financial_year_id == year.id
            assert transaction.created_by == ADMIN.id
            assert transaction.receipt_number.startswith("TRX-")

            rolled = result["distribution"]
            assert rolled.is_rolled_over is True
            assert rolled.rollover_amount == 500.0
            assert rolled.status == models.DIST_DISTRIBUTED
            # Capital is untouched; the profit lives in the transaction
            assert (await crud.get_investor(db, a.id)).contributed_capital == 10000

    run_db(scenario)


def test_rollover_of_unapproved_distribution_changes_nothing(run_db):
    async def scenario(sessions):
        async with sessions() as db:
            year, a, _ = await _year_with_distributions(db, approve=False)
            distribution = await crud.get_distribution_for_investor(db, year.id, a.id)

            with pytest.raises(InvalidState):
                await RolloverService.rollover(db, distribution.id, 100, ADMIN, now=AFTER_YEAR_END)

            assert distribution.status == models.DIST_CALCULATED
            assert distribution.is_rolled_over is False
            assert await crud.get_transactions(db, investor_id=a.id) == []

    run_db(scenario)


def test_rollover_percentage_must_be_within_range(run_db):
    async def scenario(sessions):
        async with sessions() as db:
            year, _, _ = await _year_with_distributions(db)
            with pytest.raises(ValidationError):
                await RolloverService.rollover_profits(db, year.id, 101, ADMIN)
            with pytest.raises(ValidationError):
                await RolloverService.rollover_profits(db, year.id, -1, ADMIN)

    run_db(scenario)


def test_rollover_profits_for_whole_year(run_db):
    async def scenario(sessions):
        async with sessions() as db:
            year, a, b = await _year_with_distributions(db)

            result = await RolloverService.rollover_profits(db, year.id, 100, ADMIN, now=AFTER_YEAR_END)

            assert result["total_rolled_over"] == 2
            assert result["total_failed"] == 0
            amounts = {r["investor_id"]: r["rollover_amount"] for r in result["rollover_results"]}
            assert amounts == {a.id: 1000.0, b.id: 3000.0}

            refreshed = await crud.get_financial_year(db, year.id)
            assert refreshed.status == models.YEAR_DISTRIBUTED
            assert refreshed.rollover_enabled is True
            assert refreshed.rollover_percentage == 100

            notices = await crud.get_notifications(db, investor_id=b.id)
            assert "profit_rolled_over" in {n.notification_type for n in notices}

            # Nothing left to roll over
            with pytest.raises(ValidationError):
                await RolloverService.rollover_profits(db, year.id, 100, ADMIN, now=AFTER_YEAR_END)

    run_db(scenario)


async def _schedule_auto_rollover(db, year, percentage=100):
    year.auto_rollover = True
    year.auto_rollover_date = utc(2025, 1, 10)
    year.rollover_percentage = percentage
    await db.commit()


def test_auto_rollover_completes_due_years(run_db):
    async def scenario(sessions):
        async with sessions() as db:
            year, a, _ = await _year_with_distributions(db, approve=False)
            year_id = year.id
            # Distributions approved while the year itself is still calculated
            await set_distribution_status(db, year_id, models.DIST_APPROVED)
            await _schedule_auto_rollover(db, year, percentage=50)

            result = await RolloverService.execute_auto_rollover(db, now=AFTER_YEAR_END)

            assert result["processed_years"] == 1
            [outcome] = result["results"]
            assert outcome["status"] == models.AUTO_ROLLOVER_COMPLETED
            assert outcome["total_investors"] == 2

            refreshed = await crud.get_financial_year(db, year_id)
            assert refreshed.auto_rollover_status == models.AUTO_ROLLOVER_COMPLETED
            assert refreshed.status == models.YEAR_DISTRIBUTED
            assert refreshed.distributed_by == SYSTEM_ACTOR_ID

            [transaction] = await crud.get_transactions(db, investor_id=a.id)
            assert transaction.amount == 500.0

            alerts = await crud.get_notifications(db, actor_id=SYSTEM_ACTOR_ID)
            assert [n.notification_type for n in alerts] == ["auto_rollover_completed"]

    run_db(scenario)


def test_auto_rollover_fails_without_approved_distributions(run_db):
    async def scenario(sessions):
        async with sessions() as db:
            year, _, _ = await _year_with_distributions(db, approve=False)
            year_id = year.id
            await _schedule_auto_rollover(db, year)

            result = await RolloverService.execute_auto_rollover(db, now=AFTER_YEAR_END)

            [outcome] = result["results"]
            assert outcome["status"] == models.AUTO_ROLLOVER_FAILED
            refreshed = await crud.get_financial_year(db, year_id)
            assert refreshed.auto_rollover_status == models.AUTO_ROLLOVER_FAILED
            assert refreshed.status == models.YEAR_CALCULATED

            # A failed year is not picked up again
            again = await RolloverService.execute_auto_rollover(db, now=AFTER_YEAR_END)
            assert again["processed_years"] == 0

    run_db(scenario)


def test_auto_rollover_waits_for_its_date(run_db):
    async def scenario(sessions):
        async with sessions() as db:
            year, _, _ = await _year_with_distributions(db, approve=False)
            await _schedule_auto_rollover(db, year)

            result = await RolloverService.execute_auto_rollover(db, now=utc(2025, 1, 5))
            assert result == {"processed_years": 0, "results": []}

    run_db(scenario)


def _demote_before_rollover(monkeypatch, victim_id):
    """Put one distribution back to calculated just before its turn in a batch"""
    rollover = RolloverService.rollover

    async def demote_then_rollover(db, distribution_id, percentage=100.0, actor=None, now=None):
        if distribution_id == victim_id:
            await db.execute(
                update(models.ProfitDistribution)
                .where(models.ProfitDistribution.id == distribution_id)
                .values(status=models.DIST_CALCULATED)
            )
            await db.commit()
        return await rollover(db, distribution_id, percentage, actor, now)

    monkeypatch.setattr(RolloverService, "rollover", demote_then_rollover)


def test_rollover_profits_reports_failed_item_and_keeps_going(run_db, monkeypatch):
    async def scenario(sessions):
        async with sessions() as db:
            year, a, b = await _year_with_distributions(db)
            year_id, a_id, b_id = year.id, a.id, b.id
            victim = await crud.get_distribution_for_investor(db, year_id, b_id)
            _demote_before_rollover(monkeypatch, victim.id)

            result = await RolloverService.rollover_profits(db, year_id, 100, ADMIN, now=AFTER_YEAR_END)

            assert result["total_rolled_over"] == 1
            assert result["total_failed"] == 1
            by_investor = {r["investor_id"]: r for r in result["rollover_results"]}
            assert by_investor[a_id]["success"] is True
            assert by_investor[a_id]["rollover_amount"] == 1000.0
            assert by_investor[b_id]["success"] is False
            assert "approved" in by_investor[b_id]["error"]

            assert (await crud.get_distribution_for_investor(db, year_id, a_id)).is_rolled_over is True
            assert (await crud.get_distribution_for_investor(db, year_id, b_id)).status == models.DIST_CALCULATED
            assert await crud.get_transactions(db, investor_id=b_id) == []

    run_db(scenario)


def test_auto_rollover_with_failed_item_marks_year_failed(run_db, monkeypatch):
    async def scenario(sessions):
        async with sessions() as db:
            year, a, b = await _year_with_distributions(db, approve=False)
            year_id, a_id, b_id = year.id, a.id, b.id
            await set_distribution_status(db, year_id, models.DIST_APPROVED)
            await _schedule_auto_rollover(db, year)
            victim = await crud.get_distribution_for_investor(db, year_id, b_id)
            _demote_before_rollover(monkeypatch, victim.id)

            result = await RolloverService.execute_auto_rollover(db, now=AFTER_YEAR_END)

            [outcome] = result["results"]
            assert outcome["status"] == models.AUTO_ROLLOVER_FAILED
            assert [r["success"] for r in outcome["rollover_results"] if r["investor_id"] == a_id] == [True]

            refreshed = await crud.get_financial_year(db, year_id)
            assert refreshed.auto_rollover_status == models.AUTO_ROLLOVER_FAILED
            assert refreshed.status == models.YEAR_CALCULATED
            [transaction] = await crud.get_transactions(db, investor_id=a_id)
            assert transaction.amount == 1000.0

            alerts = await crud.get_notifications(db, actor_id=SYSTEM_ACTOR_ID)
            assert [n.notification_type for n in alerts] == ["auto_rollover_failed"]

    run_db(scenario)


def test_auto_rollover_sweep_continues_after_a_year_raises(run_db, monkeypatch):
    async def scenario(sessions):
        async with sessions() as db:
            broken, _, _ = await _year_with_distributions(db, approve=False)
            healthy = await add_year(db, 4000, start_date=date(2023, 1, 1), end_date=date(2023, 12, 31))
            broken_id, healthy_id = broken.id, healthy.id
            await DistributionEngine.calculate_distributions(db, healthy_id, actor=ADMIN, now=AFTER_YEAR_END)
            for year in (broken, healthy):
                await set_distribution_status(db, year.id, models.DIST_APPROVED)
                await _schedule_auto_rollover(db, year)

            run_year = RolloverService._auto_rollover_year

            async def fail_first(db, year_id, actor, now):
                if year_id == broken_id:
                    raise SQLAlchemyError("connection reset")
                return await run_year(db, year_id, actor, now)

            monkeypatch.setattr(RolloverService, "_auto_rollover_year", fail_first)

            result = await RolloverService.execute_auto_rollover(db, now=AFTER_YEAR_END)

            assert result["processed_years"] == 2
            statuses = {r["financial_year_id"]: r["status"] for r in result["results"]}
            assert statuses == {broken_id: models.AUTO_ROLLOVER_FAILED, healthy_id: models.AUTO_ROLLOVER_COMPLETED}
            assert "connection reset" in result["results"][0]["error"]

            assert (await crud.get_financial_year(db, broken_id)).auto_rollover_status == models.AUTO_ROLLOVER_FAILED
            assert (await crud.get_financial_year(db, healthy_id)).status == models.YEAR_DISTRIBUTED

    run_db(scenario)
