"""
CreditShare Backend - Issue Report Service
===========================================

What:  Lets a user attach an issue report to a file they have downloaded.
Who:   POST /api/files/{file_id}/report.

Eligibility:
    Only members of the file's downloader set may report. Reports never touch
    credits or download counts, and a user may file any number of reports
    on the same file.
"""

import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from creditshare.database import unit_of_work
from creditshare.exceptions import ForbiddenError, InvalidInputError, NotFoundError
from creditshare.models.file import FileRecord, IssueReport
from creditshare.models.user import User
from creditshare.services.blob_store import validate_file_id
from creditshare.services.catalog_service import has_downloaded

logger = logging.getLogger(__name__)


class IssueService:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def report_issue(
        self,
        user_id: uuid.UUID,
        file_id: str,
        issue_type: str,
        description: str = "",
    ) -> IssueReport:
        """
        Append an issue report to a file's record.

        Raises:
            InvalidInputError: malformed file id or blank issue type
            NotFoundError: unknown user or file
            ForbiddenError: the user has not downloaded the file
        """
        validate_file_id(file_id)
        issue_type = (issue_type or "").strip()
        if not issue_type:
            raise InvalidInputError(message="Issue type must not be blank.", field="issueType")

        async with unit_of_work(self.session_factory) as session:
            if await session.get(User, user_id) is None:
                raise NotFoundError(resource="user", resource_id=str(user_id))
            if await session.get(FileRecord, file_id) is None:
                raise NotFoundError(resource="file", resource_id=file_id)

            if not await has_downloaded(session, user_id, file_id):
                logger.info("Issue report refused, file not downloaded: user=%s file=%s", user_id, file_id)
                raise ForbiddenError(
                    message="You can only report files you have downloaded.",
                    context={"file_id": file_id},
                )

            report = IssueReport(
                file_id=file_id,
                user_id=user_id,
                issue_type=issue_type,
                description=description or "",
            )
            session.add(report)
            await session.flush()

        logger.info("Issue reported: user=%s file=%s type=%s", user_id, file_id, issue_type)
        return report
