"""
CreditShare Backend - Ledger Service
=====================================

What:  Credit balances and the append-only transaction log.
How:   Every balance change is a single conditional UPDATE ... RETURNING on
       the user row followed by one CreditTransaction insert, both inside the
       caller's unit of work. Nothing here commits; the caller decides.
Who:   UploadService (reward credit), DownloadService (download debit),
       the history route (read-only).

Debit as compare-and-set:
    UPDATE users SET credits = credits - :amount
    WHERE id = :user AND credits >= :amount
    RETURNING credits

    If no row comes back the balance was too low (or the user is missing),
    so no change happened. Two concurrent debits can never both pass the
    WHERE clause against the same remaining balance.
"""

import logging
import uuid
from typing import List

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from creditshare.exceptions import InsufficientCreditsError, InvalidInputError, NotFoundError
from creditshare.models.transaction import CreditTransaction, TransactionKind
from creditshare.models.user import User

logger = logging.getLogger(__name__)


class LedgerService:
    """
    Balance mutations with their audit records.

    Invariant: each successful credit()/debit() call adds exactly one
    CreditTransaction whose signed amount equals the balance delta.
    """

    async def credit(
        self,
        session: AsyncSession,
        user_id: uuid.UUID,
        amount: int,
        reason: str,
    ) -> int:
        """
        Add `amount` credits to a user and record a credit transaction.

        Returns:
            The balance after the credit.

        Raises:
            InvalidInputError: amount is not a positive integer
            NotFoundError: the user does not exist
        """
        self._check_amount(amount)

        result = await session.execute(
            update(User)
            .where(User.id == user_id)
            .values(credits=User.credits + amount)
            .returning(User.credits)
        )
        balance = result.scalar_one_or_none()
        if balance is None:
            raise NotFoundError(resource="user", resource_id=str(user_id))

        session.add(
            CreditTransaction(
                user_id=user_id,
                amount=amount,
                kind=TransactionKind.CREDIT.value,
                description=reason,
            )
        )
        await session.flush()

        logger.info("Credits added: user=%s credits=%+d balance=%d", user_id, amount, balance)
        return balance

    async def debit(
        self,
        session: AsyncSession,
        user_id: uuid.UUID,
        amount: int,
        reason: str,
    ) -> int:
        """
        Remove `amount` credits from a user and record a debit transaction.

        Returns:
            The balance after the debit.

        Raises:
            InvalidInputError: amount is not a positive integer
            NotFoundError: the user does not exist
            InsufficientCreditsError: amount exceeds the balance (no change made)
        """
        self._check_amount(amount)

        result = await session.execute(
            update(User)
            .where(User.id == user_id, User.credits >= amount)
            .values(credits=User.credits - amount)
            .returning(User.credits)
        )
        balance = result.scalar_one_or_none()
        if balance is None:
            available = await self.balance(session, user_id)
            raise InsufficientCreditsError(
                required=amount,
                available=available,
                context={"user_id": str(user_id)},
            )

        session.add(
            CreditTransaction(
                user_id=user_id,
                amount=-amount,
                kind=TransactionKind.DEBIT.value,
                description=reason,
            )
        )
        await session.flush()

        logger.info("Credits deducted: user=%s credits=%+d balance=%d", user_id, -amount, balance)
        return balance

    async def balance(self, session: AsyncSession, user_id: uuid.UUID) -> int:
        """Current balance; NotFoundError if the user does not exist."""
        result = await session.execute(select(User.credits).where(User.id == user_id))
        credits = result.scalar_one_or_none()
        if credits is None:
            raise NotFoundError(resource="user", resource_id=str(user_id))
        return credits

    async def history(
        self,
        session: AsyncSession,
        user_id: uuid.UUID,
        limit: int = 10,
    ) -> List[CreditTransaction]:
        """Most recent transactions for a user, newest first."""
        result = await session.execute(
            select(CreditTransaction)
            .where(CreditTransaction.user_id == user_id)
            .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    @staticmethod
    def _check_amount(amount: int) -> None:
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise InvalidInputError(
                message="Credit amount must be a positive integer",
                field="amount",
                context={"amount": repr(amount)},
            )
