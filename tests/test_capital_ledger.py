from datetime import date

import pytest

from fundledger import crud, models, schemas
from fundledger.capital_ledger_service import CapitalLedgerService
from fundledger.errors import NotFound, ValidationError
from fundledger.transaction_service import TransactionService

from tests.factories import ADMIN, add_investor


def test_shares_follow_active_capital(run_db):
    async def scenario(sessions):
        async with sessions() as db:
            a = await add_investor(db, "A-1", 10000)
            b = await add_investor(db, "B-1", 30000)
            assert await CapitalLedgerService.total_active_capital(db) == 40000
            assert a.share_percentage == 25.0
            assert b.share_percentage == 75.0

    run_db(scenario)


def test_shares_are_rounded_to_two_decimals(run_db):
    async def scenario(sessions):
        async with sessions() as db:
            for national_id in ("A", "B", "C"):
                await add_investor(db, national_id, 1000)
            shares = await CapitalLedgerService.recompute_share_percentages(db)
            assert sorted(shares.values()) == [33.33, 33.33, 33.33]

    run_db(scenario)


def test_empty_pool_leaves_every_share_at_zero(run_db):
    async def scenario(sessions):
        async with sessions() as db:
            investor = await add_investor(db, "ZERO", 0)
            assert investor.share_percentage == 0.0
            assert await CapitalLedgerService.total_active_capital(db) == 0.0

    run_db(scenario)


def test_duplicate_national_id_is_rejected(run_db):
    async def scenario(sessions):
        async with sessions() as db:
            await add_investor(db, "DUP", 100)
            with pytest.raises(ValidationError):
                await add_investor(db, "DUP", 200)

    run_db(scenario)


def test_capital_update_recomputes_shares(run_db):
    async def scenario(sessions):
        async with sessions() as db:
            a = await add_investor(db, "A", 10000)
            b = await add_investor(db, "B", 10000)
            await CapitalLedgerService.update_investor(
                db, a.id, schemas.InvestorUpdate(contributed_capital=30000), ADMIN
            )
            refreshed = await crud.get_investor(db, b.id)
            assert refreshed.share_percentage == 25.0

    run_db(scenario)


def test_deactivation_removes_investor_from_pool(run_db):
    async def scenario(sessions):
        async with sessions() as db:
            a = await add_investor(db, "A", 10000)
            b = await add_investor(db, "B", 30000)
            result = await CapitalLedgerService.delete_investor(db, b.id, ADMIN)
            assert result == {"deleted": False, "deactivated": True}

            assert await CapitalLedgerService.total_active_capital(db) == 10000
            assert (await crud.get_investor(db, a.id)).share_percentage == 100.0
            inactive = await crud.get_investor(db, b.id)
            assert inactive.is_active is False
            assert inactive.share_percentage == 0.0

    run_db(scenario)


def test_force_delete_removes_dependent_records(run_db):
    async def scenario(sessions):
        async with sessions() as db:
            investor = await add_investor(db, "GONE", 5000)
            await TransactionService.create_transaction(
                db,
                schemas.TransactionCreate(investor_id=investor.id, transaction_type="withdrawal", amount=100),
                ADMIN,
            )
            result = await CapitalLedgerService.delete_investor(db, investor.id, ADMIN, force=True)
            assert result["deleted"] is True
            assert result["deleted_transactions"] == 1

            with pytest.raises(NotFound):
                await CapitalLedgerService.get_investor(db, investor.id)
            assert await crud.get_transactions(db, investor_id=investor.id) == []

    run_db(scenario)


def test_balance_combines_capital_transactions_and_paid_out_profit(run_db):
    async def scenario(sessions):
        async with sessions() as db:
            investor = await add_investor(db, "BAL", 10000)
            for tx_type, amount in (("deposit", 500), ("withdrawal", 200), ("fee", 50)):
                await TransactionService.create_transaction(
                    db,
                    schemas.TransactionCreate(investor_id=investor.id, transaction_type=tx_type, amount=amount),
                    ADMIN,
                )
            # Contribution deposits are already part of the capital figure
            await TransactionService.create_transaction(
                db,
                schemas.TransactionCreate(
                    investor_id=investor.id, transaction_type="deposit", amount=1000, is_contribution=True
                ),
                ADMIN,
            )

            year = models.FinancialYear(
                year=2024, total_profit=1000, start_date=date(2024, 1, 1), end_date=date(2024, 12, 31),
                total_days=366, status=models.YEAR_DISTRIBUTED, created_by=ADMIN.id,
            )
            db.add(year)
            await db.commit()
            db.add(models.ProfitDistribution(
                financial_year_id=year.id, investor_id=investor.id, start_date=date(2024, 1, 1),
                investment_amount=10000, total_days=366, daily_profit_rate=0.0001,
                calculated_profit=250.5, status=models.DIST_DISTRIBUTED,
            ))
            await db.commit()

            balance = await CapitalLedgerService.investor_balance(db, investor.id)
            assert balance["contributed_capital"] == 11000
            assert balance["current_balance"] == 11000 + 500 - 200 - 50 + 250.5

    run_db(scenario)


def test_unknown_investor_is_not_found(run_db):
    async def scenario(sessions):
        async with sessions() as db:
            with pytest.raises(NotFound):
                await CapitalLedgerService.investor_balance(db, 999)

    run_db(scenario)
