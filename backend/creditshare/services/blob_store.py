"""
CreditShare Backend - Blob Store
=================================

What:  Write-once, read-many storage of raw file contents keyed by an opaque
       file identifier.
How:   `BlobStore` is the abstract interface; `LocalBlobStore` implements it
       on a local directory with aiofiles. Uploads go to a unique temporary
       file and become visible only when `finish()` fsyncs and renames them
       into place.
Who:   UploadService writes; DownloadService and the public-by-name route read.
When:  Once per upload; once per download request.

Directory Structure:
    storage/
    ├── tmp/
    │   └── 3f2a...e1.part          (in-flight uploads)
    └── blobs/
        └── 3f/
            ├── 3f2a...e1           (content)
            └── 3f2a...e1.json      (BlobInfo sidecar: name, type, size, time)

    Two-character shards keep directory sizes small. The sidecar is written
    before the content is renamed into place, so a visible blob always has
    metadata.

Bounded failure:
    Every disk step runs under asyncio.wait_for(io_timeout). Timeouts and
    OS errors become FileStorageError; a missing blob is NotFoundError.
"""

import asyncio
import json
import logging
import os
import re
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, List, Optional, TypeVar

import aiofiles
import aiofiles.os
from pydantic import BaseModel, Field

from creditshare.exceptions import FileStorageError, InvalidInputError, NotFoundError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# uuid4().hex: 32 lowercase hex characters
FILE_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")


def validate_file_id(file_id: str) -> str:
    """
    Check that `file_id` is a well-formed blob identifier.

    Returns the identifier unchanged; raises InvalidInputError otherwise.
    """
    if not isinstance(file_id, str) or not FILE_ID_PATTERN.fullmatch(file_id):
        raise InvalidInputError(
            message="Invalid file ID format",
            field="file_id",
            context={"file_id": str(file_id)[:64]},
        )
    return file_id


def fsync_directory(path: Path) -> None:
    """Flush a directory's entries to disk (POSIX; a no-op where directories cannot be opened)."""
    if not hasattr(os, "O_DIRECTORY"):
        return
    fd = os.open(path, os.O_RDONLY | os.O_DIRECTORY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


class BlobInfo(BaseModel):
    """Metadata stored alongside each blob."""

    file_id: str = Field(description="Blob identifier")
    name: str = Field(description="Original file name")
    content_type: str = Field(description="MIME type recorded at upload")
    size: int = Field(ge=0, description="Size in bytes")
    created_at: datetime = Field(description="When finish() completed (UTC)")


# ══════════════════════════════════════════════════════════════════════════
# Interfaces
# ══════════════════════════════════════════════════════════════════════════


class BlobWriter(ABC):
    """Handle for one in-flight upload, returned by BlobStore.open_write()."""

    @abstractmethod
    async def write(self, chunk: bytes) -> None:
        """Append bytes to the pending blob."""
        ...

    @abstractmethod
    async def finish(self) -> str:
        """
        Make the blob durable and visible.

        Returns only after the content is on disk; the returned file id is
        safe to reference from the catalog.
        """
        ...

    @abstractmethod
    async def abort(self) -> None:
        """Discard the pending blob. Safe to call more than once."""
        ...


class BlobReader(ABC):
    """An opened blob: metadata plus a chunk iterator."""

    info: BlobInfo

    @abstractmethod
    def iter_chunks(self) -> AsyncIterator[bytes]:
        """Yield the blob content in order."""
        ...


class BlobStore(ABC):
    """
    Abstract interface for blob storage.

    Contract:
        - open_write() + finish() yields a new, never reused file id
        - open_read() raises NotFoundError for unknown ids, eagerly
        - lookup() returns the newest blob with the given original name
        - Storage failures are FileStorageError
    """

    @abstractmethod
    async def open_write(self, name: str, content_type: str) -> BlobWriter:
        ...

    @abstractmethod
    async def open_read(self, file_id: str) -> BlobReader:
        ...

    @abstractmethod
    async def stat(self, file_id: str) -> BlobInfo:
        ...

    @abstractmethod
    async def lookup(self, name: str) -> str:
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """True if the store can currently accept writes."""
        ...


# ══════════════════════════════════════════════════════════════════════════
# Local filesystem implementation
# ══════════════════════════════════════════════════════════════════════════


class LocalBlobStore(BlobStore):
    """Blob store on a local (or mounted) directory."""

    def __init__(self, root: str, chunk_size: int = 65_536, io_timeout: float = 30.0):
        """
        Args:
            root: Storage root; created if missing.
            chunk_size: Bytes per chunk when streaming reads.
            io_timeout: Upper bound in seconds for each disk step.
        """
        self.root = Path(root).resolve()
        self.chunk_size = chunk_size
        self.io_timeout = io_timeout
        self.blob_dir = self.root / "blobs"
        self.tmp_dir = self.root / "tmp"
        self.blob_dir.mkdir(parents=True, exist_ok=True)
        self.tmp_dir.mkdir(parents=True, exist_ok=True)
        logger.info("LocalBlobStore initialized with root=%s", self.root)

    # ── Paths ─────────────────────────────────────────────────────────────

    def _blob_path(self, file_id: str) -> Path:
        return self.blob_dir / file_id[:2] / file_id

    def _info_path(self, file_id: str) -> Path:
        return self.blob_dir / file_id[:2] / f"{file_id}.json"

    # ── Bounded I/O ───────────────────────────────────────────────────────

    async def _bounded(self, awaitable: Awaitable[T], operation: str, file_id: str) -> T:
        """Run one disk step under the I/O timeout, translating failures."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.io_timeout)
        except asyncio.TimeoutError:
            logger.error("Blob %s timed out after %.1fs: %s", operation, self.io_timeout, file_id)
            raise FileStorageError(
                message="File storage timed out. Please try again.",
                context={"operation": operation, "file_id": file_id},
            )
        except OSError as e:
            logger.error("Blob %s failed for %s: %s", operation, file_id, str(e))
            raise FileStorageError(
                context={"operation": operation, "file_id": file_id, "os_error": str(e)},
            ) from e

    # ── BlobStore API ─────────────────────────────────────────────────────

    async def open_write(self, name: str, content_type: str) -> BlobWriter:
        file_id = uuid.uuid4().hex
        temp_path = self.tmp_dir / f"{file_id}.part"
        handle = await self._bounded(aiofiles.open(temp_path, "wb"), "open_write", file_id)
        return LocalBlobWriter(self, file_id, name, content_type, temp_path, handle)

    async def open_read(self, file_id: str) -> BlobReader:
        info = await self.stat(file_id)
        return LocalBlobReader(self, info, self._blob_path(file_id))

    async def stat(self, file_id: str) -> BlobInfo:
        validate_file_id(file_id)
        blob_path = self._blob_path(file_id)
        if not blob_path.exists():
            raise NotFoundError(resource="blob", resource_id=file_id)
        return await self._bounded(self._read_info(file_id), "stat", file_id)

    async def lookup(self, name: str) -> str:
        matches = await self._bounded(
            asyncio.get_running_loop().run_in_executor(None, self._scan_by_name, name),
            "lookup",
            name,
        )
        if not matches:
            raise NotFoundError(resource="file", resource_id=name)
        newest = max(matches, key=lambda info: info.created_at)
        return newest.file_id

    async def health_check(self) -> bool:
        return os.access(self.tmp_dir, os.W_OK) and os.access(self.blob_dir, os.W_OK)

    # ── Internals ─────────────────────────────────────────────────────────

    async def _read_info(self, file_id: str) -> BlobInfo:
        async with aiofiles.open(self._info_path(file_id), "r", encoding="utf-8") as f:
            return BlobInfo.model_validate_json(await f.read())

    def _scan_by_name(self, name: str) -> List[BlobInfo]:
        """Synchronous sidecar scan, run in the default executor."""
        found: List[BlobInfo] = []
        for info_path in self.blob_dir.glob("*/*.json"):
            try:
                data: Any = json.loads(info_path.read_text(encoding="utf-8"))
            except (OSError, ValueError):
                logger.warning("Skipping unreadable blob metadata: %s", info_path.name)
                continue
            if data.get("name") == name and self._blob_path(data.get("file_id", "")).exists():
                found.append(BlobInfo.model_validate(data))
        return found

    async def _commit(self, writer: "LocalBlobWriter") -> BlobInfo:
        """Publish a finished temporary file under its final name."""
        info = BlobInfo(
            file_id=writer.file_id,
            name=writer.name,
            content_type=writer.content_type,
            size=writer.size,
            created_at=datetime.now(timezone.utc),
        )
        shard = self._blob_path(writer.file_id).parent
        shard.mkdir(parents=True, exist_ok=True)

        loop = asyncio.get_running_loop()
        async with aiofiles.open(self._info_path(writer.file_id), "w", encoding="utf-8") as f:
            await f.write(info.model_dump_json())
            await f.flush()
            await loop.run_in_executor(None, os.fsync, f.fileno())

        # rename is the commit point: the blob is visible from here on
        await aiofiles.os.rename(writer.temp_path, self._blob_path(writer.file_id))
        # Directory entries for the sidecar and the renamed blob
        await loop.run_in_executor(None, fsync_directory, shard)
        return info


class LocalBlobWriter(BlobWriter):
    """Pending upload backed by a temporary file."""

    def __init__(
        self,
        store: LocalBlobStore,
        file_id: str,
        name: str,
        content_type: str,
        temp_path: Path,
        handle: Any,
    ):
        self.store = store
        self.file_id = file_id
        self.name = name
        self.content_type = content_type
        self.temp_path = temp_path
        self.size = 0
        self._handle: Optional[Any] = handle
        self._finished = False

    async def write(self, chunk: bytes) -> None:
        if self._handle is None:
            raise FileStorageError(
                message="Upload stream is already closed.",
                context={"file_id": self.file_id},
            )
        await self.store._bounded(self._handle.write(chunk), "write", self.file_id)
        self.size += len(chunk)

    async def finish(self) -> str:
        if self._finished:
            return self.file_id
        if self._handle is None:
            raise FileStorageError(
                message="Upload stream is already closed.",
                context={"file_id": self.file_id},
            )
        await self.store._bounded(self._flush_and_close(), "finish", self.file_id)
        info = await self.store._bounded(self.store._commit(self), "commit", self.file_id)
        self._finished = True
        logger.info("Blob stored: %s (%d bytes, %s)", info.file_id, info.size, info.content_type)
        return self.file_id

    async def abort(self) -> None:
        if self._finished:
            return
        try:
            if self._handle is not None:
                await self._handle.close()
                self._handle = None
            if self.temp_path.exists():
                await aiofiles.os.remove(self.temp_path)
                logger.info("Aborted blob upload: %s", self.file_id)
        except OSError as e:
            # Leftover .part files are harmless; they are never listed or read
            logger.warning("Failed to discard temporary blob %s: %s", self.file_id, str(e))

    async def _flush_and_close(self) -> None:
        handle = self._handle
        await handle.flush()
        await asyncio.get_running_loop().run_in_executor(None, os.fsync, handle.fileno())
        await handle.close()
        self._handle = None


class LocalBlobReader(BlobReader):
    """Streams a stored blob in fixed-size chunks."""

    def __init__(self, store: LocalBlobStore, info: BlobInfo, path: Path):
        self.store = store
        self.info = info
        self.path = path

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        file_id = self.info.file_id
        handle = await self.store._bounded(aiofiles.open(self.path, "rb"), "open_read", file_id)
        try:
            while True:
                chunk = await self.store._bounded(
                    handle.read(self.store.chunk_size), "read", file_id
                )
                if not chunk:
                    break
                yield chunk
        finally:
            await handle.close()
