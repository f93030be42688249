"""
CreditShare Backend - FastAPI Dependencies
===========================================

What:  Dependency providers that hand route handlers their services and the
       current user.
How:   create_app() wires every service once and stores it on app.state;
       these functions read it back from the request. Tests override
       individual providers through app.dependency_overrides.

Identity:
    Authentication happens upstream. The auth collaborator forwards the
    caller's identity in X-User-ID (required) and X-User-Email (optional).
    A request without X-User-ID is rejected with 401 before any service
    runs. A first-time identity is registered with a zero balance.
"""

from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from creditshare.config import Settings
from creditshare.exceptions import AuthenticationError
from creditshare.models.user import User
from creditshare.services.blob_store import BlobStore
from creditshare.services.catalog_service import CatalogService
from creditshare.services.download_service import DownloadService
from creditshare.services.issue_service import IssueService
from creditshare.services.ledger_service import LedgerService
from creditshare.services.upload_service import UploadService
from creditshare.services.user_service import UserService


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    return request.app.state.session_factory


def get_blob_store(request: Request) -> BlobStore:
    return request.app.state.blob_store


def get_ledger(request: Request) -> LedgerService:
    return request.app.state.ledger


def get_user_service(request: Request) -> UserService:
    return request.app.state.user_service


def get_catalog_service(request: Request) -> CatalogService:
    return request.app.state.catalog_service


def get_upload_service(request: Request) -> UploadService:
    return request.app.state.upload_service


def get_download_service(request: Request) -> DownloadService:
    return request.app.state.download_service


def get_issue_service(request: Request) -> IssueService:
    return request.app.state.issue_service


async def get_current_user(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-ID"),
    x_user_email: Optional[str] = Header(default=None, alias="X-User-Email"),
    user_service: UserService = Depends(get_user_service),
) -> User:
    """Resolve the forwarded identity to a User row, creating it on first sight."""
    if not x_user_id or not x_user_id.strip():
        raise AuthenticationError(message="Missing X-User-ID header.")
    return await user_service.ensure_user(x_user_id, email=x_user_email or None)
