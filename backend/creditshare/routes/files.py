"""
CreditShare Backend - File Route Handlers
==========================================

What:  Upload, catalog listing and per-file metadata, credit-gated download,
       public fetch by name and issue reporting.
Who:   Called by the web client; identity comes from the X-User-ID header
       forwarded by the auth collaborator.

Download response:
    200 with the file bytes streamed in chunks, plus
        Content-Disposition: attachment; filename="<original name>"
        X-Credits-Charged:   DOWNLOAD_COST on the first download, 0 afterwards
        X-Credits-Balance:   balance after the request
"""

import logging
from contextlib import aclosing
from typing import AsyncIterator, List, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Path, Query, UploadFile
from fastapi.responses import StreamingResponse

from creditshare.dependencies import (
    get_blob_store,
    get_catalog_service,
    get_current_user,
    get_download_service,
    get_issue_service,
    get_upload_service,
)
from creditshare.models.user import User
from creditshare.schemas.files import (
    CatalogFilter,
    ErrorResponse,
    FileListing,
    ReportIssueRequest,
    ReportIssueResponse,
    UploadedFile,
    UploadResponse,
)
from creditshare.services.blob_store import BlobReader, BlobStore
from creditshare.services.catalog_service import CatalogService
from creditshare.services.download_service import DownloadService
from creditshare.services.issue_service import IssueService
from creditshare.services.upload_service import UploadService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/files", tags=["Files"])


def content_disposition(filename: str) -> str:
    """Attachment header value; non-ASCII names use the RFC 5987 form."""
    quoted = quote(filename)
    if quoted != filename:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{filename}"'


@router.post(
    "/upload",
    status_code=201,
    response_model=UploadResponse,
    responses={
        400: {"description": "Missing or oversized file", "model": ErrorResponse},
        401: {"description": "No identity supplied", "model": ErrorResponse},
        500: {"description": "Storage failure", "model": ErrorResponse},
    },
    summary="Upload a file and earn credits",
)
async def upload_file(
    file: UploadFile = File(..., description="The file to share"),
    description: str = Form(default="", max_length=5000),
    user: User = Depends(get_current_user),
    upload_service: UploadService = Depends(get_upload_service),
) -> UploadResponse:
    """
    Store the file and credit the uploader with CREDIT_REWARD.

    The blob is made durable before the catalog record and the reward are
    committed together.
    """
    try:
        content = await file.read()
        logger.info(
            "Received upload: user=%s filename=%s size=%d bytes",
            user.id,
            file.filename or "unknown",
            len(content),
        )
        result = await upload_service.upload(
            user_id=user.id,
            filename=file.filename or "",
            content=content,
            content_type=file.content_type,
            description=description,
        )
    finally:
        await file.close()

    return UploadResponse(
        file=UploadedFile(
            id=result.file.file_id,
            filename=result.file.file_name,
            size=result.file.size,
            content_type=result.file.content_type,
        ),
        credits=result.credits,
    )


@router.get(
    "",
    response_model=List[FileListing],
    responses={400: {"description": "Unknown sort option", "model": ErrorResponse}},
    summary="List shared files",
)
async def list_files(
    file_type: Optional[str] = Query(default=None, alias="fileType", description="Exact content type"),
    min_size: Optional[int] = Query(default=None, alias="minSize", ge=0, description="Minimum size in bytes"),
    max_size: Optional[int] = Query(default=None, alias="maxSize", ge=0, description="Maximum size in bytes"),
    sort_by: str = Query(default="newest", alias="sortBy", description="newest, oldest, most_downloads, most_likes"),
    catalog_service: CatalogService = Depends(get_catalog_service),
) -> List[FileListing]:
    return await catalog_service.list_files(
        CatalogFilter(file_type=file_type, min_size=min_size, max_size=max_size, sort_by=sort_by)
    )


@router.get(
    "/{file_id}",
    response_model=FileListing,
    responses={
        400: {"description": "Malformed file id", "model": ErrorResponse},
        404: {"description": "Unknown file", "model": ErrorResponse},
    },
    summary="File metadata (free, no identity required)",
)
async def get_file(
    file_id: str,
    catalog_service: CatalogService = Depends(get_catalog_service),
) -> FileListing:
    return await catalog_service.get_file(file_id)


async def stream_blob(reader: BlobReader) -> AsyncIterator[bytes]:
    async with aclosing(reader.iter_chunks()) as chunks:
        async for chunk in chunks:
            yield chunk


# Registered before /{file_id}/download so "uploads" is never taken for an id
@router.get(
    "/uploads/{filename}",
    responses={404: {"description": "No stored file with that name", "model": ErrorResponse}},
    summary="Fetch a stored file by its original name",
)
async def fetch_by_name(
    filename: str = Path(..., min_length=1),
    blob_store: BlobStore = Depends(get_blob_store),
) -> StreamingResponse:
    """Public fetch without a credit charge; the newest upload with the name wins."""
    file_id = await blob_store.lookup(filename)
    reader = await blob_store.open_read(file_id)
    return StreamingResponse(
        stream_blob(reader),
        media_type=reader.info.content_type,
        headers={"Content-Length": str(reader.info.size)},
    )


@router.get(
    "/{file_id}/download",
    responses={
        200: {"description": "File contents", "content": {"application/octet-stream": {}}},
        400: {"description": "Malformed file id", "model": ErrorResponse},
        403: {"description": "Insufficient credits", "model": ErrorResponse},
        404: {"description": "Unknown file", "model": ErrorResponse},
    },
    summary="Download a file (costs credits the first time)",
)
async def download_file(
    file_id: str,
    user: User = Depends(get_current_user),
    download_service: DownloadService = Depends(get_download_service),
) -> StreamingResponse:
    ticket = await download_service.request_download(user.id, file_id)
    charged = download_service.download_cost if ticket.charged else 0
    return StreamingResponse(
        ticket.iter_bytes(),
        media_type=ticket.content_type,
        headers={
            "Content-Disposition": content_disposition(ticket.file.file_name),
            "Content-Length": str(ticket.reader.info.size),
            "X-Credits-Charged": str(charged),
            "X-Credits-Balance": str(ticket.balance),
        },
    )


@router.post(
    "/{file_id}/report",
    status_code=200,
    response_model=ReportIssueResponse,
    responses={
        400: {"description": "Malformed file id or blank issue type", "model": ErrorResponse},
        403: {"description": "File not downloaded by this user", "model": ErrorResponse},
        404: {"description": "Unknown file", "model": ErrorResponse},
    },
    summary="Report an issue with a downloaded file",
)
async def report_issue(
    file_id: str,
    body: ReportIssueRequest,
    user: User = Depends(get_current_user),
    issue_service: IssueService = Depends(get_issue_service),
) -> ReportIssueResponse:
    await issue_service.report_issue(user.id, file_id, body.issue_type, body.description)
    return ReportIssueResponse()
