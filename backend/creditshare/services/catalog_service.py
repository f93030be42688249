"""
CreditShare Backend - Catalog Service
======================================

What:  Read side of the file catalog: filtered/sorted listings, single-file
       lookup and downloader-set membership.
How:   One SELECT with an outer join to users resolves uploader emails in the
       same round trip; results are materialized into a list.
Who:   The files routes (listing, metadata), DownloadService and IssueService
       (membership).

Sort options (sortBy query parameter):
    newest          uploaded_at DESC (default)
    oldest          uploaded_at ASC
    most_downloads  download_count DESC
    most_likes      like_count DESC

    Every ordering is followed by uploaded_at DESC, file_id ASC so that ties
    come back in a stable order.
"""

import logging
import uuid
from typing import List, Optional

from sqlalchemy import and_, asc, desc, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from creditshare.exceptions import InvalidInputError, NotFoundError
from creditshare.models.file import FileDownload, FileRecord
from creditshare.models.user import User
from creditshare.schemas.files import CatalogFilter, FileListing
from creditshare.services.blob_store import validate_file_id

logger = logging.getLogger(__name__)

UNKNOWN_UPLOADER = "Unknown"

SORT_ORDERS = {
    "newest": (desc(FileRecord.uploaded_at),),
    "oldest": (asc(FileRecord.uploaded_at),),
    "most_downloads": (desc(FileRecord.download_count),),
    "most_likes": (desc(FileRecord.like_count),),
}

TIE_BREAKERS = (desc(FileRecord.uploaded_at), asc(FileRecord.file_id))


async def has_downloaded(session: AsyncSession, user_id: uuid.UUID, file_id: str) -> bool:
    """True if (user_id, file_id) is in the downloader set."""
    result = await session.execute(
        select(FileDownload.user_id).where(
            and_(FileDownload.user_id == user_id, FileDownload.file_id == file_id)
        )
    )
    return result.first() is not None


class CatalogService:
    """Catalog queries. Read-only; never raises for unresolved owners."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def list_files(self, catalog_filter: Optional[CatalogFilter] = None) -> List[FileListing]:
        """
        List catalog entries matching `catalog_filter`, in the requested order.

        Filters:
            file_type: exact match on content type
            min_size / max_size: inclusive bounds on size in bytes

        Returns:
            Fully materialized list; an uploader without a resolvable email
            is rendered as "Unknown".

        Raises:
            InvalidInputError: unknown sort option
        """
        catalog_filter = catalog_filter or CatalogFilter()
        ordering = SORT_ORDERS.get(catalog_filter.sort_by)
        if ordering is None:
            raise InvalidInputError(
                message=(
                    f"Invalid sortBy '{catalog_filter.sort_by}'. "
                    f"Must be one of: {', '.join(SORT_ORDERS)}"
                ),
                field="sortBy",
            )

        query = select(FileRecord, User.email).outerjoin(User, User.id == FileRecord.uploaded_by)

        if catalog_filter.file_type:
            query = query.where(FileRecord.content_type == catalog_filter.file_type)
        if catalog_filter.min_size is not None:
            query = query.where(FileRecord.size >= catalog_filter.min_size)
        if catalog_filter.max_size is not None:
            query = query.where(FileRecord.size <= catalog_filter.max_size)

        query = query.order_by(*ordering, *TIE_BREAKERS)

        async with self.session_factory() as session:
            result = await session.execute(query)
            rows = result.all()

        listings = [
            FileListing.from_record(record, uploader=email or UNKNOWN_UPLOADER)
            for record, email in rows
        ]
        logger.debug("Catalog listing returned %d files (sort=%s)", len(listings), catalog_filter.sort_by)
        return listings

    async def get_file(self, file_id: str) -> FileListing:
        """Single catalog entry by id, rendered like a listing row; NotFoundError if absent."""
        validate_file_id(file_id)
        query = (
            select(FileRecord, User.email)
            .outerjoin(User, User.id == FileRecord.uploaded_by)
            .where(FileRecord.file_id == file_id)
        )
        async with self.session_factory() as session:
            row = (await session.execute(query)).first()
        if row is None:
            raise NotFoundError(resource="file", resource_id=file_id)
        record, email = row
        return FileListing.from_record(record, uploader=email or UNKNOWN_UPLOADER)
