"""
CreditShare Backend - Catalog Service Tests
============================================

What we test:
    ✅ Sort options and stable tie-breaking
    ✅ Type and size filters (inclusive bounds, min > max → empty)
    ✅ Uploader rendered as email, or "Unknown"
    ✅ Issues embedded in listings
    ✅ Unknown sort option → InvalidInputError
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from creditshare.exceptions import InvalidInputError, NotFoundError
from creditshare.models import FileDownload, IssueReport
from creditshare.schemas.files import CatalogFilter
from creditshare.services.catalog_service import UNKNOWN_UPLOADER

BASE_TIME = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def seeded_catalog(make_user, make_file):
    async def _seed():
        owner = await make_user(email="owner@example.com")
        old = await make_file(
            owner=owner, name="old.pdf", content=b"o" * 10, uploaded_at=BASE_TIME,
            download_count=7, like_count=1,
        )
        mid = await make_file(
            owner=owner, name="mid.png", content=b"m" * 200, content_type="image/png",
            uploaded_at=BASE_TIME + timedelta(hours=1), download_count=2, like_count=9,
        )
        new = await make_file(
            owner=None, name="new.pdf", content=b"n" * 3000,
            uploaded_at=BASE_TIME + timedelta(hours=2), download_count=2, like_count=0,
        )
        return old, mid, new

    return _seed


def names(listings):
    return [listing.file_name for listing in listings]


class TestListingSort:

    @pytest.mark.asyncio
    async def test_default_is_newest_first(self, catalog_service, seeded_catalog):
        await seeded_catalog()

        listings = await catalog_service.list_files()

        assert names(listings) == ["new.pdf", "mid.png", "old.pdf"]

    @pytest.mark.asyncio
    async def test_oldest_first(self, catalog_service, seeded_catalog):
        await seeded_catalog()

        listings = await catalog_service.list_files(CatalogFilter(sort_by="oldest"))

        assert names(listings) == ["old.pdf", "mid.png", "new.pdf"]

    @pytest.mark.asyncio
    async def test_most_downloads_ties_broken_by_newest(self, catalog_service, seeded_catalog):
        await seeded_catalog()

        listings = await catalog_service.list_files(CatalogFilter(sort_by="most_downloads"))

        assert names(listings) == ["old.pdf", "new.pdf", "mid.png"]

    @pytest.mark.asyncio
    async def test_most_likes(self, catalog_service, seeded_catalog):
        await seeded_catalog()

        listings = await catalog_service.list_files(CatalogFilter(sort_by="most_likes"))

        assert names(listings) == ["mid.png", "old.pdf", "new.pdf"]

    @pytest.mark.asyncio
    async def test_unknown_sort_rejected(self, catalog_service):
        with pytest.raises(InvalidInputError) as exc_info:
            await catalog_service.list_files(CatalogFilter(sort_by="alphabetical"))

        assert exc_info.value.field == "sortBy"


class TestListingFilters:

    @pytest.mark.asyncio
    async def test_filter_by_type(self, catalog_service, seeded_catalog):
        await seeded_catalog()

        listings = await catalog_service.list_files(CatalogFilter(file_type="application/pdf"))

        assert names(listings) == ["new.pdf", "old.pdf"]

    @pytest.mark.asyncio
    async def test_size_bounds_are_inclusive(self, catalog_service, seeded_catalog):
        await seeded_catalog()

        listings = await catalog_service.list_files(CatalogFilter(min_size=10, max_size=200))

        assert names(listings) == ["mid.png", "old.pdf"]

    @pytest.mark.asyncio
    async def test_min_above_max_is_empty(self, catalog_service, seeded_catalog):
        await seeded_catalog()

        assert await catalog_service.list_files(CatalogFilter(min_size=500, max_size=100)) == []

    @pytest.mark.asyncio
    async def test_empty_catalog(self, catalog_service):
        assert await catalog_service.list_files() == []


class TestListingContent:

    @pytest.mark.asyncio
    async def test_uploader_email_or_unknown(self, catalog_service, seeded_catalog):
        await seeded_catalog()

        listings = {item.file_name: item for item in await catalog_service.list_files()}

        assert listings["old.pdf"].uploaded_by == "owner@example.com"
        assert listings["new.pdf"].uploaded_by == UNKNOWN_UPLOADER

    @pytest.mark.asyncio
    async def test_uploader_without_email_is_unknown(self, catalog_service, make_user, make_file):
        owner = await make_user(email=None)
        await make_file(owner=owner)

        listings = await catalog_service.list_files()

        assert listings[0].uploaded_by == UNKNOWN_UPLOADER

    @pytest.mark.asyncio
    async def test_counters_and_issues_included(self, catalog_service, session_factory, make_user, make_file):
        reporter = await make_user(email="reporter@example.com")
        record = await make_file(download_count=1, like_count=3)
        async with session_factory() as session:
            session.add(FileDownload(user_id=reporter.id, file_id=record.file_id))
            session.add(IssueReport(file_id=record.file_id, user_id=reporter.id, issue_type="corrupt", description="truncated"))
            await session.commit()

        [listing] = await catalog_service.list_files()

        assert listing.downloads == 1
        assert listing.likes == 3
        assert [(i.issue_type, i.description) for i in listing.issues] == [("corrupt", "truncated")]


class TestGetFile:

    @pytest.mark.asyncio
    async def test_get_existing(self, catalog_service, make_user, make_file):
        owner = await make_user(email="owner@example.com")
        record = await make_file(owner=owner, name="exists.txt")

        found = await catalog_service.get_file(record.file_id)

        assert found.file_id == record.file_id
        assert found.file_name == "exists.txt"
        assert found.uploaded_by == "owner@example.com"
        assert found.downloads == 0

    @pytest.mark.asyncio
    async def test_get_without_owner_is_unknown(self, catalog_service, make_file):
        record = await make_file(owner=None)

        found = await catalog_service.get_file(record.file_id)

        assert found.uploaded_by == "Unknown"

    @pytest.mark.asyncio
    async def test_get_missing(self, catalog_service):
        with pytest.raises(NotFoundError):
            await catalog_service.get_file(uuid4().hex)

    @pytest.mark.asyncio
    async def test_get_malformed(self, catalog_service):
        with pytest.raises(InvalidInputError):
            await catalog_service.get_file("not-a-file-id")
