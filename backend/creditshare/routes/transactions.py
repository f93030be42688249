"""
CreditShare Backend - Transaction History Route
================================================

What:  GET /api/transactions/history returns the caller's balance and most
       recent ledger entries, newest first.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from creditshare.config import Settings
from creditshare.dependencies import get_current_user, get_ledger, get_session_factory, get_settings
from creditshare.models.user import User
from creditshare.schemas.files import ErrorResponse, TransactionHistoryResponse, TransactionResponse
from creditshare.services.ledger_service import LedgerService

router = APIRouter(prefix="/api/transactions", tags=["Transactions"])


@router.get(
    "/history",
    response_model=TransactionHistoryResponse,
    responses={401: {"description": "No identity supplied", "model": ErrorResponse}},
    summary="Credit balance and recent transactions",
)
async def transaction_history(
    limit: Optional[int] = Query(default=None, ge=1, le=100, description="Entries to return"),
    user: User = Depends(get_current_user),
    ledger: LedgerService = Depends(get_ledger),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> TransactionHistoryResponse:
    async with session_factory() as session:
        balance = await ledger.balance(session, user.id)
        entries = await ledger.history(session, user.id, limit=limit or settings.history_limit)

    return TransactionHistoryResponse(
        user_id=user.id,
        balance=balance,
        transactions=[TransactionResponse.model_validate(entry) for entry in entries],
    )
