"""
CreditShare Backend - Upload Service
=====================================

What:  Stores an uploaded file, creates its catalog record and rewards the
       uploader.
Who:   POST /api/files/upload.

Orchestration Flow:
    ┌──────────┐    ┌───────────────┐    ┌──────────────────────────────┐
    │ Validate │───▶│ Blob write    │───▶│ Unit of work:                │
    │ (size,   │    │ open_write →  │    │   FileRecord + credit reward │
    │  user)   │    │ write→finish  │    │   + credit transaction       │
    └──────────┘    └───────────────┘    └──────────────────────────────┘

    The catalog is only touched after finish() has confirmed the blob is
    durable.

On failure:
    - Validation fails → nothing stored
    - Blob write fails → temporary file discarded, FileStorageError,
      no catalog or ledger rows
    - Unit of work fails → rolled back, DatabaseError. The finished blob is
      left in place and logged as an orphan with its id; no compensating
      delete is attempted.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

import magic
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from creditshare.database import unit_of_work
from creditshare.exceptions import CreditShareError, InvalidInputError, NotFoundError
from creditshare.models.file import FileRecord
from creditshare.models.user import User
from creditshare.services.blob_store import BlobStore
from creditshare.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
# libmagic only needs the header
SNIFF_BYTES = 2048


@dataclass
class UploadResult:
    file: FileRecord
    credits: int


def resolve_content_type(content: bytes, declared: Optional[str]) -> str:
    """
    Content type to store with the blob.

    The client-declared type wins. A missing or generic declaration is
    replaced by libmagic's reading of the file header, so a renamed or
    extensionless file still lands under its real type.
    """
    if declared and declared != DEFAULT_CONTENT_TYPE:
        return declared
    return magic.from_buffer(content[:SNIFF_BYTES], mime=True) or DEFAULT_CONTENT_TYPE


class UploadService:
    """Blob-first upload with a transactional reward."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: BlobStore,
        ledger: LedgerService,
        credit_reward: int = 10,
        max_file_size: int = 52_428_800,
    ):
        self.session_factory = session_factory
        self.blob_store = blob_store
        self.ledger = ledger
        self.credit_reward = credit_reward
        self.max_file_size = max_file_size

    async def upload(
        self,
        user_id: uuid.UUID,
        filename: str,
        content: bytes,
        content_type: Optional[str] = None,
        description: str = "",
    ) -> UploadResult:
        """
        Store `content` and reward the uploader with CREDIT_REWARD.

        Args:
            user_id: Uploader (internal id)
            filename: Original file name (kept as display name)
            content: Raw file bytes
            content_type: Client-declared MIME type, may be None
            description: Optional free text

        Returns:
            UploadResult with the new FileRecord and the uploader's balance.

        Raises:
            InvalidInputError: missing name or file too large
            NotFoundError: unknown user (checked before any write)
            FileStorageError: blob could not be stored
            DatabaseError: catalog/reward could not be committed
        """
        filename = (filename or "").strip()
        self._validate(filename, content)
        await self._require_user(user_id)

        stored_type = resolve_content_type(content, content_type)
        file_id = await self._store_blob(filename, stored_type, content)

        try:
            async with unit_of_work(self.session_factory) as session:
                record = FileRecord(
                    file_id=file_id,
                    file_name=filename,
                    uploaded_by=user_id,
                    size=len(content),
                    content_type=stored_type,
                    description=description or "",
                )
                session.add(record)
                await session.flush()

                balance = await self.ledger.credit(
                    session,
                    user_id,
                    self.credit_reward,
                    f'Earned credits for uploading "{filename}"',
                )
        except CreditShareError:
            logger.warning(
                "Orphaned blob left after failed catalog save: file_id=%s name=%s",
                file_id,
                filename,
            )
            raise

        logger.info(
            "Upload complete: user=%s file=%s size=%d reward=%d balance=%d",
            user_id,
            file_id,
            record.size,
            self.credit_reward,
            balance,
        )
        return UploadResult(file=record, credits=balance)

    def _validate(self, filename: str, content: bytes) -> None:
        if not filename:
            raise InvalidInputError(message="No file uploaded.", field="file")
        if len(filename) > 255:
            raise InvalidInputError(
                message="File name must be at most 255 characters.",
                field="file",
                context={"length": len(filename)},
            )
        if len(content) > self.max_file_size:
            max_mb = self.max_file_size / (1024 * 1024)
            raise InvalidInputError(
                message=f"File size exceeds maximum of {max_mb:.0f}MB.",
                field="file",
                context={"max_size": self.max_file_size, "actual_size": len(content)},
            )

    async def _require_user(self, user_id: uuid.UUID) -> None:
        async with self.session_factory() as session:
            if await session.get(User, user_id) is None:
                raise NotFoundError(resource="user", resource_id=str(user_id))

    async def _store_blob(self, filename: str, content_type: str, content: bytes) -> str:
        writer = await self.blob_store.open_write(filename, content_type)
        try:
            await writer.write(content)
            return await writer.finish()
        except BaseException:
            await writer.abort()
            raise
