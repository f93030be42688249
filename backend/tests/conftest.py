"""
CreditShare Backend - Test Configuration (conftest.py)
=======================================================

What:  Shared pytest fixtures for the entire test suite.
How:   Every test gets its own SQLite database file (aiosqlite) and blob
       root under pytest's tmp_path, with the schema created from
       Base.metadata. Services are constructed exactly as create_app()
       wires them.

Fixture Hierarchy (all function-scoped):
    test_settings ── engine ── session_factory ─┬─ user/catalog/issue services
                 └── blob_store ────────────────┼─ upload_service
                                  ledger ───────┴─ download_service
    make_user / make_file: insert fixtures rows directly
    app / test_client: full FastAPI app over the same database and blob root
"""

import os
import tempfile

# Environment must be set before creditshare.config builds its default Settings
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///" + os.path.join(
    tempfile.mkdtemp(prefix="creditshare_db_"), "test.db"
)
os.environ["STORAGE_ROOT"] = tempfile.mkdtemp(prefix="creditshare_test_")
os.environ["LOG_LEVEL"] = "WARNING"

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select

import creditshare.models  # noqa: F401  (registers tables)
from creditshare.config import Settings
from creditshare.database import Base, build_engine, build_session_factory
from creditshare.models import CreditTransaction, FileDownload, FileRecord, User
from creditshare.services.blob_store import LocalBlobStore
from creditshare.services.catalog_service import CatalogService
from creditshare.services.download_service import DownloadService
from creditshare.services.issue_service import IssueService
from creditshare.services.ledger_service import LedgerService
from creditshare.services.upload_service import UploadService
from creditshare.services.user_service import UserService


# ══════════════════════════════════════════════════════════════════════════
# Storage
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'creditshare.db'}",
        storage_root=str(tmp_path / "storage"),
        log_level="WARNING",
    )


@pytest_asyncio.fixture
async def engine(test_settings):
    engine = build_engine(test_settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def blob_store(test_settings):
    return LocalBlobStore(test_settings.storage_root, chunk_size=1024, io_timeout=5.0)


@pytest.fixture
def temp_storage(tmp_path):
    """A fresh blob root for tests that build their own LocalBlobStore."""
    storage_dir = tmp_path / "blobs-only"
    storage_dir.mkdir()
    return str(storage_dir)


# ══════════════════════════════════════════════════════════════════════════
# Services
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def ledger():
    return LedgerService()


@pytest.fixture
def user_service(session_factory):
    return UserService(session_factory)


@pytest.fixture
def catalog_service(session_factory):
    return CatalogService(session_factory)


@pytest.fixture
def issue_service(session_factory):
    return IssueService(session_factory)


@pytest.fixture
def upload_service(session_factory, blob_store, ledger):
    return UploadService(session_factory, blob_store, ledger, credit_reward=10, max_file_size=1024 * 1024)


@pytest.fixture
def download_service(session_factory, blob_store, ledger):
    return DownloadService(session_factory, blob_store, ledger, download_cost=5)


# ══════════════════════════════════════════════════════════════════════════
# Row factories
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def make_user(session_factory):
    """Insert a user directly, bypassing the ledger."""

    async def _make_user(credits: int = 0, email: Optional[str] = None, external_id: Optional[str] = None) -> User:
        async with session_factory() as session:
            user = User(
                external_id=external_id or f"auth|{uuid4().hex[:12]}",
                email=email,
                credits=credits,
            )
            session.add(user)
            await session.commit()
            return user

    return _make_user


@pytest.fixture
def make_file(session_factory, blob_store):
    """
    Insert a catalog record, storing its blob first unless store_blob=False.
    """

    async def _make_file(
        owner: Optional[User] = None,
        name: str = "notes.pdf",
        content: bytes = b"x" * 100,
        content_type: str = "application/pdf",
        uploaded_at: Optional[datetime] = None,
        download_count: int = 0,
        like_count: int = 0,
        store_blob: bool = True,
    ) -> FileRecord:
        if store_blob:
            writer = await blob_store.open_write(name, content_type)
            await writer.write(content)
            file_id = await writer.finish()
        else:
            file_id = uuid4().hex

        async with session_factory() as session:
            record = FileRecord(
                file_id=file_id,
                file_name=name,
                uploaded_by=owner.id if owner else None,
                size=len(content),
                content_type=content_type,
                description="",
                uploaded_at=uploaded_at or datetime.now(timezone.utc),
                download_count=download_count,
                like_count=like_count,
            )
            session.add(record)
            await session.commit()
            return record

    return _make_file


# ══════════════════════════════════════════════════════════════════════════
# Query helpers
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def db(session_factory):
    """Small read helpers for assertions against committed state."""

    class _Db:
        async def balance(self, user_id) -> int:
            async with session_factory() as session:
                return (await session.execute(select(User.credits).where(User.id == user_id))).scalar_one()

        async def transactions(self, user_id):
            async with session_factory() as session:
                result = await session.execute(
                    select(CreditTransaction)
                    .where(CreditTransaction.user_id == user_id)
                    .order_by(CreditTransaction.id)
                )
                return list(result.scalars().all())

        async def downloaders(self, file_id):
            async with session_factory() as session:
                result = await session.execute(
                    select(FileDownload.user_id).where(FileDownload.file_id == file_id)
                )
                return set(result.scalars().all())

        async def file(self, file_id) -> Optional[FileRecord]:
            async with session_factory() as session:
                return await session.get(FileRecord, file_id)

        async def count(self, model) -> int:
            async with session_factory() as session:
                return (await session.execute(select(func.count()).select_from(model))).scalar_one()

    return _Db()


# ══════════════════════════════════════════════════════════════════════════
# HTTP
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def app(test_settings, engine):
    from creditshare.main import create_app

    application = create_app(test_settings)
    yield application
    await application.state.engine.dispose()


@pytest_asyncio.fixture
async def test_client(app):
    """
    HTTPX AsyncClient routed straight into the ASGI app.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
            assert response.status_code == 200
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
