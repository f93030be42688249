"""
CreditShare Backend - User SQLAlchemy Model
============================================

What:  ORM model for the `users` table: identity mapping and credit balance.
Who:   Created by UserService.ensure_user(); the balance is changed only by
       LedgerService (credit/debit).
When:  Created on first authenticated access; never deleted by the core.

Table Design:
    - id: internal UUID used by every foreign key
    - external_id: identity supplied by the auth collaborator (unique)
    - email: display identifier for catalog listings (nullable)
    - credits: current balance; CHECK (credits >= 0) backs the
      "never negative" invariant at the storage level
    - The downloaded-file set lives in `file_downloads` (see models/file.py)
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Integer, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from creditshare.database import Base

EXTERNAL_ID_MAX_LENGTH = 128
EMAIL_MAX_LENGTH = 320


class User(Base):
    """A user account with an integer credit balance."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        comment="Internal user identifier",
    )

    external_id: Mapped[str] = mapped_column(
        String(EXTERNAL_ID_MAX_LENGTH),
        nullable=False,
        unique=True,
        comment="Identity supplied by the auth collaborator",
    )

    email: Mapped[Optional[str]] = mapped_column(
        String(EMAIL_MAX_LENGTH),
        nullable=True,
        comment="Display identifier shown as the uploader in listings",
    )

    credits: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
        comment="Current credit balance (never negative)",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        comment="When the user was first seen (UTC)",
    )

    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_users_credits_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, external_id='{self.external_id}', credits={self.credits})>"
