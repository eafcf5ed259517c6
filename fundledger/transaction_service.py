# transaction_service.py
# Investor cash-flow transactions: deposits, withdrawals, profit, fees and transfers

from datetime import datetime
from typing import List, Optional
import logging
import random

from sqlalchemy.ext.asyncio import AsyncSession

from . import crud, models, schemas
from .actor import Actor
from .audit_service import AuditService
from .capital_ledger_service import CapitalLedgerService
from .errors import NotFound, ValidationError
from .notification_service import NotificationService
from .period_calendar import utcnow

log = logging.getLogger(__name__)


def generate_receipt_number(now: Optional[datetime] = None) -> str:
    """TRX-<epoch milliseconds>-<3 random digits>"""
    now = now or utcnow()
    return f"TRX-{int(now.timestamp() * 1000)}-{random.randint(0, 999):03d}"


class TransactionService:
    """Create and maintain investor transactions"""

    @staticmethod
    async def create_transaction(
        db: AsyncSession,
        data: schemas.TransactionCreate,
        actor: Actor,
        now: Optional[datetime] = None,
    ) -> models.Transaction:
        """
        Record a transaction for an existing investor.

        Only a deposit flagged ``is_contribution`` changes the investor's
        contributed capital; every other transaction leaves capital untouched.
        """
        now = now or utcnow()
        investor = await crud.get_investor(db, data.investor_id)
        if not investor:
            raise NotFound(f"Investor {data.investor_id} not found")
        if data.is_contribution and data.transaction_type != "deposit":
            raise ValidationError("Only deposits can be recorded as capital contributions")

        transaction = models.Transaction(
            investor_id=data.investor_id,
            transaction_type=data.transaction_type,
            amount=data.amount,
            currency=data.currency,
            transaction_date=data.transaction_date or now,
            profit_year=data.profit_year,
            is_contribution=data.is_contribution,
            reference=data.reference,
            notes=data.notes,
            receipt_number=data.receipt_number or generate_receipt_number(now),
            created_by=actor.id,
        )
        db.add(transaction)
        if data.is_contribution:
            investor.contributed_capital += data.amount
        await crud.commit(db)
        await db.refresh(transaction)

        if data.is_contribution:
            await CapitalLedgerService.recompute_share_percentages(db)
            log.info(f"Contribution of {data.amount} added to investor {investor.id} capital")

        AuditService.log_action(
            "create", "transaction", transaction.id, actor,
            new_value={"type": transaction.transaction_type, "amount": transaction.amount},
        )
        await NotificationService.notify(
            db,
            "transaction_created",
            [{"investor_id": investor.id, "priority": "low"}],
            {
                "title": f"New {transaction.transaction_type} transaction",
                "message": f"A {transaction.transaction_type} of {transaction.amount} {transaction.currency} was recorded (receipt {transaction.receipt_number})",
                "transaction_id": transaction.id,
                "amount": transaction.amount,
                "currency": transaction.currency,
            },
            created_by=actor,
        )
        return transaction

    @staticmethod
    async def get_transaction(db: AsyncSession, transaction_id: int) -> models.Transaction:
        transaction = await crud.get_transaction(db, transaction_id)
        if not transaction:
            raise NotFound(f"Transaction {transaction_id} not found")
        return transaction

    @staticmethod
    async def update_transaction(
        db: AsyncSession,
        transaction_id: int,
        data: schemas.TransactionUpdate,
        actor: Actor,
    ) -> models.Transaction:
        """Only reference, notes, receipt number and date may change"""
        transaction = await TransactionService.get_transaction(db, transaction_id)
        changes = data.model_dump(exclude_unset=True)
        for key, value in changes.items():
            setattr(transaction, key, value)
        await crud.commit(db)
        await db.refresh(transaction)
        AuditService.log_action("update", "transaction", transaction.id, actor, new_value=changes)
        return transaction

    @staticmethod
    async def delete_transaction(db: AsyncSession, transaction_id: int, actor: Actor) -> None:
        transaction = await TransactionService.get_transaction(db, transaction_id)
        old_value = {"type": transaction.transaction_type, "amount": transaction.amount}
        await db.delete(transaction)
        await crud.commit(db)
        AuditService.log_action("delete", "transaction", transaction_id, actor, old_value=old_value)

    @staticmethod
    async def list_transactions(
        db: AsyncSession,
        investor_id: Optional[int] = None,
        transaction_type: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> List[models.Transaction]:
        if transaction_type and transaction_type not in models.TRANSACTION_TYPES:
            raise ValidationError(f"Unknown transaction type {transaction_type}")
        return await crud.get_transactions(
            db,
            investor_id=investor_id,
            transaction_type=transaction_type,
            start_date=start_date,
            end_date=end_date,
            skip=skip,
            limit=limit,
        )
