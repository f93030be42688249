"""
CreditShare Backend - Issue Report Tests
=========================================

What we test:
    ✅ Reporting without a prior download → ForbiddenError, nothing stored
    ✅ After a download → exactly one report appended, credits untouched
    ✅ Input validation and unknown users/files
"""

from uuid import uuid4

import pytest

from creditshare.exceptions import ForbiddenError, InvalidInputError, NotFoundError
from creditshare.models import IssueReport


class TestReportIssue:

    @pytest.mark.asyncio
    async def test_report_without_download_is_forbidden(self, issue_service, make_user, make_file, db):
        user = await make_user(credits=10)
        record = await make_file()

        with pytest.raises(ForbiddenError) as exc_info:
            await issue_service.report_issue(user.id, record.file_id, "broken", "will not open")

        assert exc_info.value.message == "You can only report files you have downloaded."
        assert await db.count(IssueReport) == 0

    @pytest.mark.asyncio
    async def test_report_after_download_appends_one(
        self, issue_service, download_service, catalog_service, make_user, make_file, db
    ):
        user = await make_user(credits=5)
        record = await make_file()
        await download_service.request_download(user.id, record.file_id)

        report = await issue_service.report_issue(user.id, record.file_id, "  wrong file  ", "not the notes")

        assert report.issue_type == "wrong file"
        assert await db.count(IssueReport) == 1
        assert await db.balance(user.id) == 0
        assert (await db.file(record.file_id)).download_count == 1

        [listing] = await catalog_service.list_files()
        assert [i.issue_type for i in listing.issues] == ["wrong file"]

    @pytest.mark.asyncio
    async def test_repeated_reports_are_all_kept(self, issue_service, download_service, make_user, make_file, db):
        user = await make_user(credits=5)
        record = await make_file()
        await download_service.request_download(user.id, record.file_id)

        await issue_service.report_issue(user.id, record.file_id, "broken")
        await issue_service.report_issue(user.id, record.file_id, "broken")

        assert await db.count(IssueReport) == 2


class TestReportValidation:

    @pytest.mark.asyncio
    async def test_blank_issue_type(self, issue_service, make_user, make_file):
        user = await make_user()
        record = await make_file()

        with pytest.raises(InvalidInputError):
            await issue_service.report_issue(user.id, record.file_id, "   ")

    @pytest.mark.asyncio
    async def test_malformed_file_id(self, issue_service, make_user):
        user = await make_user()

        with pytest.raises(InvalidInputError):
            await issue_service.report_issue(user.id, "123", "broken")

    @pytest.mark.asyncio
    async def test_unknown_file(self, issue_service, make_user):
        user = await make_user()

        with pytest.raises(NotFoundError):
            await issue_service.report_issue(user.id, uuid4().hex, "broken")

    @pytest.mark.asyncio
    async def test_unknown_user(self, issue_service, make_file):
        record = await make_file()

        with pytest.raises(NotFoundError):
            await issue_service.report_issue(uuid4(), record.file_id, "broken")
