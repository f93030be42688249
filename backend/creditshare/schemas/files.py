"""
CreditShare Backend - Pydantic Request/Response Schemas
========================================================

What:  The API contract between clients and the backend, plus the catalog
       filter passed from routes to CatalogService.
How:   FastAPI validates request bodies against these models, serializes
       responses through them and generates OpenAPI docs from them.

Schemas are separate from SQLAlchemy models so the API exposes exactly the
fields listed here (no internal user ids, no raw downloader rows).
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


# ══════════════════════════════════════════════════════════════════════════
# Catalog
# ══════════════════════════════════════════════════════════════════════════


class CatalogFilter(BaseModel):
    """
    Recognized listing options.

    file_type: exact match on content type
    min_size / max_size: inclusive size bounds in bytes
    sort_by: newest (default), oldest, most_downloads, most_likes
    """
    file_type: Optional[str] = Field(default=None, description="Exact content type match")
    min_size: Optional[int] = Field(default=None, ge=0, description="Minimum size in bytes")
    max_size: Optional[int] = Field(default=None, ge=0, description="Maximum size in bytes")
    sort_by: str = Field(default="newest", description="newest, oldest, most_downloads, most_likes")


class IssueReportResponse(BaseModel):
    """An issue report as embedded in a file listing."""
    issue_type: str = Field(description="Issue category chosen by the reporter")
    description: str = Field(description="Free-text details")
    reported_at: datetime = Field(description="When the report was filed (UTC)")

    model_config = {"from_attributes": True}


class FileListing(BaseModel):
    """A catalog entry with the uploader resolved to a display identifier."""
    file_id: str = Field(description="File identifier used for download and report")
    file_name: str = Field(description="Original file name")
    uploaded_by: str = Field(description="Uploader email, or 'Unknown'")
    size: int = Field(description="Size in bytes")
    content_type: str = Field(description="MIME type")
    description: str = Field(description="Uploader-provided description")
    uploaded_at: datetime = Field(description="Upload time (UTC)")
    downloads: int = Field(description="Distinct users who downloaded the file")
    likes: int = Field(description="Like counter")
    issues: List[IssueReportResponse] = Field(default_factory=list)

    @classmethod
    def from_record(cls, record, uploader: str) -> "FileListing":
        return cls(
            file_id=record.file_id,
            file_name=record.file_name,
            uploaded_by=uploader,
            size=record.size,
            content_type=record.content_type,
            description=record.description,
            uploaded_at=record.uploaded_at,
            downloads=record.download_count,
            likes=record.like_count,
            issues=[IssueReportResponse.model_validate(issue) for issue in record.issues],
        )


# ══════════════════════════════════════════════════════════════════════════
# Upload
# ══════════════════════════════════════════════════════════════════════════


class UploadedFile(BaseModel):
    id: str = Field(description="File identifier")
    filename: str = Field(description="Original file name")
    size: int = Field(description="Size in bytes")
    content_type: str = Field(description="Stored MIME type")


class UploadResponse(BaseModel):
    """Returned by POST /api/files/upload with HTTP 201."""
    message: str = Field(default="File uploaded successfully, credits awarded")
    file: UploadedFile
    credits: int = Field(description="Uploader balance after the reward")


# ══════════════════════════════════════════════════════════════════════════
# Issue reports
# ══════════════════════════════════════════════════════════════════════════


class ReportIssueRequest(BaseModel):
    """
    Body of POST /api/files/{file_id}/report.

    Accepts `issueType` (as sent by the web client) or `issue_type`.
    """
    issue_type: str = Field(alias="issueType", min_length=1, max_length=100)
    description: str = Field(default="", max_length=5000)

    model_config = {"populate_by_name": True}

    @field_validator("issue_type")
    @classmethod
    def validate_issue_type(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("issueType must not be blank")
        return v.strip()


class ReportIssueResponse(BaseModel):
    message: str = Field(default="Issue reported successfully.")


# ══════════════════════════════════════════════════════════════════════════
# Ledger
# ══════════════════════════════════════════════════════════════════════════


class TransactionResponse(BaseModel):
    """One ledger entry."""
    id: int
    amount: int = Field(description="Signed amount: positive credit, negative debit")
    kind: str = Field(description="credit or debit")
    description: str
    created_at: datetime

    model_config = {"from_attributes": True}


class TransactionHistoryResponse(BaseModel):
    """Returned by GET /api/transactions/history."""
    user_id: uuid.UUID
    balance: int = Field(description="Current credit balance")
    transactions: List[TransactionResponse] = Field(description="Newest first")


# ══════════════════════════════════════════════════════════════════════════
# Errors & health
# ══════════════════════════════════════════════════════════════════════════


class ErrorResponse(BaseModel):
    """
    Standardized error response format for all API errors.

    Example:
        {
            "error": "insufficient_credits",
            "message": "Insufficient credits: 5 required, 2 available.",
            "details": {"required": 5, "available": 2},
            "request_id": "a1b2c3d4"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    status: str = Field(description="Overall service status: healthy, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="connected or disconnected")
    storage: str = Field(description="writable or unavailable")
    uptime_seconds: float = Field(description="Seconds since service started")
