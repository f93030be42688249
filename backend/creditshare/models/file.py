"""
CreditShare Backend - File Catalog SQLAlchemy Models
=====================================================

What:  ORM models for catalog metadata: `files`, `file_downloads` and
       `issue_reports`.
Who:   Written by UploadService (files), DownloadService (file_downloads,
       download counter) and IssueService (issue_reports); read by
       CatalogService.
When:  Files are created after a durable blob write; never deleted here.

Downloader set:
    `file_downloads` holds one row per (user, file) pair, keyed by the
    composite primary key. The user's downloaded set and the file's
    downloader set are both read from this one relation, so they can never
    disagree. The primary key is also what insert_if_absent() conflicts on,
    which makes "add to downloader set" a compare-and-set.

Issue reports:
    Owned by their file (ON DELETE CASCADE, no route addresses them by id)
    and ordered by report time, then insertion order.
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from creditshare.database import Base


class FileRecord(Base):
    """
    Catalog entry for one stored blob.

    Query Patterns:
        - Listing newest/oldest: ORDER BY uploaded_at → idx_files_uploaded_at
        - Filter by type: WHERE content_type = :type → idx_files_content_type
        - Lookup by id: primary key
    """

    __tablename__ = "files"

    # The Blob Store identifier doubles as the catalog key
    file_id: Mapped[str] = mapped_column(
        String(32),
        primary_key=True,
        comment="Blob Store identifier (32 lowercase hex characters)",
    )

    file_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Original file name as uploaded",
    )

    uploaded_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        comment="Owning user; NULL renders as 'Unknown'",
    )

    size: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Size in bytes",
    )

    content_type: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        default="application/octet-stream",
        comment="MIME type stored with the blob",
    )

    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
        server_default=text("''"),
    )

    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        comment="When the record was created (UTC)",
    )

    download_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
        comment="Number of distinct users who downloaded the file",
    )

    like_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )

    issues: Mapped[List["IssueReport"]] = relationship(
        back_populates="file",
        order_by=lambda: [IssueReport.reported_at, IssueReport.id],
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_files_uploaded_at", uploaded_at.desc()),
        Index("idx_files_content_type", content_type),
    )

    def __repr__(self) -> str:
        return (
            f"<FileRecord(file_id='{self.file_id}', file_name='{self.file_name}', "
            f"size={self.size})>"
        )


class FileDownload(Base):
    """Membership of one user in one file's downloader set."""

    __tablename__ = "file_downloads"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )

    file_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("files.file_id", ondelete="CASCADE"),
        primary_key=True,
    )

    downloaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("idx_file_downloads_file_id", file_id),
    )

    def __repr__(self) -> str:
        return f"<FileDownload(user_id={self.user_id}, file_id='{self.file_id}')>"


class IssueReport(Base):
    """An immutable problem report filed by a user who downloaded the file."""

    __tablename__ = "issue_reports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    file_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("files.file_id", ondelete="CASCADE"),
        nullable=False,
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    issue_type: Mapped[str] = mapped_column(String(100), nullable=False)

    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
    )

    reported_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    file: Mapped[FileRecord] = relationship(back_populates="issues")

    def __repr__(self) -> str:
        return f"<IssueReport(id={self.id}, file_id='{self.file_id}', type='{self.issue_type}')>"
