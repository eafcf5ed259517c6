"""Transaction API endpoints."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, status

from .. import schemas
from ..deps import ActorDep, SessionDep, get_current_actor
from ..transaction_service import TransactionService
from . import ok

router = APIRouter(
    prefix="/api/v1/transactions",
    tags=["transactions"],
    dependencies=[Depends(get_current_actor)],
)


@router.get("")
async def list_transactions(
    db_session: SessionDep,
    investor_id: Optional[int] = None,
    transaction_type: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    skip: int = 0,
    limit: int = 50,
):
    transactions = await TransactionService.list_transactions(
        db_session, investor_id, transaction_type, start_date, end_date, skip, limit
    )
    return ok("Transactions retrieved", [schemas.Transaction.model_validate(t) for t in transactions])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_transaction(transaction: schemas.TransactionCreate, db_session: SessionDep, actor: ActorDep):
    created = await TransactionService.create_transaction(db_session, transaction, actor)
    return ok("Transaction created", schemas.Transaction.model_validate(created))


@router.get("/{transaction_id}")
async def get_transaction(transaction_id: int, db_session: SessionDep):
    transaction = await TransactionService.get_transaction(db_session, transaction_id)
    return ok("Transaction retrieved", schemas.Transaction.model_validate(transaction))


@router.put("/{transaction_id}")
async def update_transaction(
    transaction_id: int,
    transaction: schemas.TransactionUpdate,
    db_session: SessionDep,
    actor: ActorDep,
):
    """Only metadata (reference, notes, receipt number, date) can be changed."""
    updated = await TransactionService.update_transaction(db_session, transaction_id, transaction, actor)
    return ok("Transaction updated", schemas.Transaction.model_validate(updated))


@router.delete("/{transaction_id}")
async def delete_transaction(transaction_id: int, db_session: SessionDep, actor: ActorDep):
    await TransactionService.delete_transaction(db_session, transaction_id, actor)
    return ok("Transaction deleted")
