"""
CreditShare Backend - Download Service (Download Gate)
=======================================================

What:  Decides whether a download is free or costs credits, records the
       charge and ownership atomically, then opens the blob stream.
Who:   GET /api/files/{file_id}/download.

Orchestration Flow:
    ┌───────────┐   ┌──────────────┐   ┌────────────────────────┐   ┌──────────┐
    │ validate  │──▶│ resolve user │──▶│ charge-and-record      │──▶│ open     │
    │ file id   │   │ + file       │   │ (one unit of work,     │   │ blob     │
    └───────────┘   └──────────────┘   │  per-(user,file) lock) │   │ stream   │
                                       └────────────────────────┘   └──────────┘

Charge-and-record (only when the user does not already own the file):
    1. insert (user, file) into file_downloads with ON CONFLICT DO NOTHING
    2. only if this call inserted it: conditional debit of DOWNLOAD_COST
       plus its debit transaction, and downloads counter + 1
    All of it commits together or rolls back together.

Failure policy:
    - NotFound / InvalidInput / InsufficientCredits: nothing written
    - DatabaseError: unit of work rolled back, nothing written
    - Blob missing or unreadable after commit: the charge stands; the error is
      logged with the charge outcome and returned to the caller. Re-issuing
      the request streams the file for free.
"""

import logging
import uuid
from contextlib import aclosing
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from creditshare.database import insert_if_absent, unit_of_work
from creditshare.exceptions import CreditShareError, InsufficientCreditsError, NotFoundError
from creditshare.models.file import FileDownload, FileRecord
from creditshare.models.user import User
from creditshare.services.blob_store import BlobReader, BlobStore, validate_file_id
from creditshare.services.catalog_service import has_downloaded
from creditshare.services.ledger_service import LedgerService
from creditshare.services.locks import KeyedLock

logger = logging.getLogger(__name__)


@dataclass
class DownloadTicket:
    """Outcome of a granted download: what was charged and the byte stream."""

    file: FileRecord
    charged: bool
    balance: int
    reader: BlobReader

    @property
    def content_type(self) -> str:
        return self.reader.info.content_type

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        """
        Stream the blob. A failure here never reverts the recorded charge.

        The reader is closed as soon as this generator is, so a client that
        disconnects mid-stream releases the file handle immediately.
        """
        try:
            async with aclosing(self.reader.iter_chunks()) as chunks:
                async for chunk in chunks:
                    yield chunk
        except CreditShareError as e:
            logger.error(
                "Stream failed after access was granted: file=%s charged=%s error=%s",
                self.file.file_id,
                self.charged,
                e.message,
            )
            raise


class DownloadService:
    """The download gate."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: BlobStore,
        ledger: LedgerService,
        download_cost: int = 5,
        locks: Optional[KeyedLock] = None,
    ):
        self.session_factory = session_factory
        self.blob_store = blob_store
        self.ledger = ledger
        self.download_cost = download_cost
        self.locks = locks or KeyedLock()

    async def request_download(self, user_id: uuid.UUID, file_id: str) -> DownloadTicket:
        """
        Grant access to a file, charging DOWNLOAD_COST on the first download.

        Returns:
            DownloadTicket with the file record, whether this call charged,
            the balance afterwards and an open blob reader.

        Raises:
            InvalidInputError: malformed file id
            NotFoundError: unknown user, file, or missing blob
            InsufficientCreditsError: not owned and balance < DOWNLOAD_COST
            DatabaseError: the charge could not be committed (nothing changed)
            FileStorageError: blob could not be opened (charge, if any, stands)
        """
        validate_file_id(file_id)

        async with self.locks.hold((user_id, file_id)):
            record, charged, balance = await self._charge_and_record(user_id, file_id)

        try:
            reader = await self.blob_store.open_read(file_id)
        except CreditShareError as e:
            logger.error(
                "Blob unavailable after access was granted: user=%s file=%s charged=%s error=%s",
                user_id,
                file_id,
                charged,
                e.message,
            )
            raise

        return DownloadTicket(file=record, charged=charged, balance=balance, reader=reader)

    async def _charge_and_record(self, user_id: uuid.UUID, file_id: str):
        async with unit_of_work(self.session_factory) as session:
            # FOR UPDATE serializes concurrent charges for this user on
            # PostgreSQL; SQLite ignores it and relies on its write lock.
            result = await session.execute(
                select(User).where(User.id == user_id).with_for_update()
            )
            user = result.scalar_one_or_none()
            if user is None:
                raise NotFoundError(resource="user", resource_id=str(user_id))

            record = await session.get(FileRecord, file_id)
            if record is None:
                raise NotFoundError(resource="file", resource_id=file_id)

            if await has_downloaded(session, user_id, file_id):
                logger.info("Re-download without charge: user=%s file=%s", user_id, file_id)
                return record, False, user.credits

            if user.credits < self.download_cost:
                logger.info(
                    "Download refused, insufficient credits: user=%s file=%s balance=%d cost=%d",
                    user_id,
                    file_id,
                    user.credits,
                    self.download_cost,
                )
                raise InsufficientCreditsError(
                    required=self.download_cost,
                    available=user.credits,
                    context={"file_id": file_id},
                )

            inserted = await insert_if_absent(
                session,
                FileDownload.__table__,
                {
                    "user_id": user_id,
                    "file_id": file_id,
                    "downloaded_at": datetime.now(timezone.utc),
                },
                conflict_columns=["user_id", "file_id"],
            )
            if not inserted:
                # Another worker recorded ownership between our check and insert
                logger.info("Concurrent download already recorded: user=%s file=%s", user_id, file_id)
                return record, False, user.credits

            balance = await self.ledger.debit(
                session,
                user_id,
                self.download_cost,
                f"Downloaded file ID: {file_id}",
            )
            await session.execute(
                update(FileRecord)
                .where(FileRecord.file_id == file_id)
                .values(download_count=FileRecord.download_count + 1)
            )
            logger.info(
                "Download charged: user=%s file=%s cost=%d balance=%d",
                user_id,
                file_id,
                self.download_cost,
                balance,
            )
            return record, True, balance
