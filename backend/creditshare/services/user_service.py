"""
CreditShare Backend - User Service
===================================

What:  Resolves the identity supplied by the auth collaborator to a User row,
       creating it on first access.
Who:   The `get_current_user` dependency, before any core operation runs.

Concurrent first requests:
    Two requests from a brand-new user may race to create the row. The insert
    uses ON CONFLICT DO NOTHING on external_id, so exactly one row is created
    and both requests then read it.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from creditshare.database import insert_if_absent, unit_of_work
from creditshare.exceptions import InvalidInputError
from creditshare.models.user import EMAIL_MAX_LENGTH, EXTERNAL_ID_MAX_LENGTH, User

logger = logging.getLogger(__name__)


class UserService:
    """Get-or-create of users keyed by external identity."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def ensure_user(self, external_id: str, email: Optional[str] = None) -> User:
        """
        Return the user for `external_id`, creating it with 0 credits if new.

        A changed email on an existing user is stored.
        """
        external_id = (external_id or "").strip()
        if not external_id:
            raise InvalidInputError(message="User identity must not be empty", field="user_id")
        if len(external_id) > EXTERNAL_ID_MAX_LENGTH:
            raise InvalidInputError(
                message=f"User identity must be at most {EXTERNAL_ID_MAX_LENGTH} characters",
                field="user_id",
                context={"length": len(external_id)},
            )
        if email and len(email) > EMAIL_MAX_LENGTH:
            raise InvalidInputError(
                message=f"Email must be at most {EMAIL_MAX_LENGTH} characters",
                field="email",
                context={"length": len(email)},
            )

        async with unit_of_work(self.session_factory) as session:
            created = await insert_if_absent(
                session,
                User.__table__,
                {
                    "id": uuid.uuid4(),
                    "external_id": external_id,
                    "email": email,
                    "credits": 0,
                    "created_at": datetime.now(timezone.utc),
                },
                conflict_columns=["external_id"],
            )
            result = await session.execute(select(User).where(User.external_id == external_id))
            user = result.scalar_one()

            if created:
                logger.info("User created: id=%s external_id=%s", user.id, external_id)
            elif email and user.email != email:
                user.email = email
            return user
