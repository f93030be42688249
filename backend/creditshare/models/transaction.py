"""
CreditShare Backend - Credit Transaction SQLAlchemy Model
==========================================================

What:  Append-only audit trail of every balance change (`credit_transactions`).
Who:   Written only by LedgerService, in the same unit of work as the
       balance update it records. Read by the history endpoint.

Sign convention:
    credit → amount > 0, debit → amount < 0. A CHECK constraint enforces it
    so a mismatched row can never be committed.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from creditshare.database import Base


class TransactionKind(str, enum.Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class CreditTransaction(Base):
    """One credit or debit event. Never updated or deleted."""

    __tablename__ = "credit_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    amount: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Signed amount: positive for credit, negative for debit",
    )

    kind: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        comment="credit or debit",
    )

    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        CheckConstraint(
            "(kind = 'credit' AND amount > 0) OR (kind = 'debit' AND amount < 0)",
            name="ck_credit_transactions_sign",
        ),
        # History is always read per user, newest first
        Index("idx_credit_transactions_user_created", user_id, created_at.desc()),
    )

    def __repr__(self) -> str:
        return f"<CreditTransaction(id={self.id}, user_id={self.user_id}, amount={self.amount:+d})>"
