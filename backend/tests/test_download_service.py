"""
CreditShare Backend - Download Gate Tests
==========================================

What we test:
    ✅ First download charges DOWNLOAD_COST once and records ownership
    ✅ Re-download streams without a charge
    ✅ Insufficient credits: no balance, ownership or ledger change
    ✅ Concurrent duplicate requests with exactly DOWNLOAD_COST: one charge,
       both receive the stream
    ✅ Separate workers (own lock registries) still charge once
    ✅ Two files racing for credit enough for one: one refused, nothing
       recorded for the loser
    ✅ Missing blob after the charge: the charge stands, re-request is free
    ✅ Closing the stream early closes the blob reader
    ✅ Database failure during the charge rolls everything back
    ✅ Malformed ids and unknown files/users
"""

import asyncio
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from creditshare.exceptions import (
    DatabaseError,
    InsufficientCreditsError,
    InvalidInputError,
    NotFoundError,
)
from creditshare.services.locks import KeyedLock


async def read_all(ticket) -> bytes:
    return b"".join([chunk async for chunk in ticket.iter_bytes()])


class TestFirstDownload:

    @pytest.mark.asyncio
    async def test_charges_once_and_records_ownership(self, download_service, make_user, make_file, db):
        owner = await make_user(email="owner@example.com")
        user = await make_user(credits=5)
        record = await make_file(owner=owner, content=b"payload" * 10)

        ticket = await download_service.request_download(user.id, record.file_id)

        assert ticket.charged is True
        assert ticket.balance == 0
        assert await read_all(ticket) == b"payload" * 10
        assert await db.balance(user.id) == 0
        assert await db.downloaders(record.file_id) == {user.id}

        transactions = await db.transactions(user.id)
        assert [t.amount for t in transactions] == [-5]
        assert transactions[0].description == f"Downloaded file ID: {record.file_id}"

        stored = await db.file(record.file_id)
        assert stored.download_count == 1

    @pytest.mark.asyncio
    async def test_second_request_is_free(self, download_service, make_user, make_file, db):
        user = await make_user(credits=5)
        record = await make_file()

        first = await download_service.request_download(user.id, record.file_id)
        await read_all(first)
        second = await download_service.request_download(user.id, record.file_id)

        assert second.charged is False
        assert second.balance == 0
        assert await read_all(second) == b"x" * 100
        assert len(await db.transactions(user.id)) == 1
        assert (await db.file(record.file_id)).download_count == 1

    @pytest.mark.asyncio
    async def test_owned_file_is_free_even_with_zero_balance(self, download_service, make_user, make_file, db):
        user = await make_user(credits=5)
        record = await make_file()
        await read_all(await download_service.request_download(user.id, record.file_id))
        assert await db.balance(user.id) == 0

        ticket = await download_service.request_download(user.id, record.file_id)

        assert ticket.charged is False


class TestInsufficientCredits:

    @pytest.mark.asyncio
    async def test_no_state_change(self, download_service, make_user, make_file, db):
        user = await make_user(credits=4)
        record = await make_file()

        with pytest.raises(InsufficientCreditsError):
            await download_service.request_download(user.id, record.file_id)

        assert await db.balance(user.id) == 4
        assert await db.downloaders(record.file_id) == set()
        assert await db.transactions(user.id) == []
        assert (await db.file(record.file_id)).download_count == 0


class TestConcurrentDownloads:

    @pytest.mark.asyncio
    async def test_duplicate_requests_charge_once_and_both_stream(self, download_service, make_user, make_file, db):
        user = await make_user(credits=5)
        record = await make_file(content=b"shared bytes")

        first, second = await asyncio.gather(
            download_service.request_download(user.id, record.file_id),
            download_service.request_download(user.id, record.file_id),
        )

        assert sorted([first.charged, second.charged]) == [False, True]
        assert await read_all(first) == b"shared bytes"
        assert await read_all(second) == b"shared bytes"
        assert await db.balance(user.id) == 0
        assert [t.amount for t in await db.transactions(user.id)] == [-5]
        assert await db.downloaders(record.file_id) == {user.id}

    @pytest.mark.asyncio
    async def test_lock_released_after_requests(self, session_factory, blob_store, ledger, make_user, make_file):
        from creditshare.services.download_service import DownloadService

        locks = KeyedLock()
        service = DownloadService(session_factory, blob_store, ledger, download_cost=5, locks=locks)
        user = await make_user(credits=10)
        record = await make_file()

        await service.request_download(user.id, record.file_id)

        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_separate_workers_charge_once(self, session_factory, blob_store, ledger, make_user, make_file, db):
        from creditshare.services.download_service import DownloadService

        # Independent lock registries, as in two server processes
        workers = [
            DownloadService(session_factory, blob_store, ledger, download_cost=5, locks=KeyedLock())
            for _ in range(2)
        ]
        user = await make_user(credits=5)
        record = await make_file(content=b"shared bytes")

        tickets = await asyncio.gather(
            *[worker.request_download(user.id, record.file_id) for worker in workers]
        )

        assert sorted(t.charged for t in tickets) == [False, True]
        for ticket in tickets:
            assert await read_all(ticket) == b"shared bytes"
        assert await db.balance(user.id) == 0
        assert [t.amount for t in await db.transactions(user.id)] == [-5]
        assert await db.downloaders(record.file_id) == {user.id}
        assert (await db.file(record.file_id)).download_count == 1

    @pytest.mark.asyncio
    async def test_two_files_with_credit_for_one(self, download_service, make_user, make_file, db):
        user = await make_user(credits=5)
        first = await make_file(name="a.pdf")
        second = await make_file(name="b.pdf")

        results = await asyncio.gather(
            download_service.request_download(user.id, first.file_id),
            download_service.request_download(user.id, second.file_id),
            return_exceptions=True,
        )

        refused = [r for r in results if isinstance(r, InsufficientCreditsError)]
        granted = [r for r in results if not isinstance(r, Exception)]
        assert len(refused) == 1
        assert len(granted) == 1 and granted[0].charged
        assert await db.balance(user.id) == 0
        assert [t.amount for t in await db.transactions(user.id)] == [-5]

        winner = granted[0].file.file_id
        loser = second.file_id if winner == first.file_id else first.file_id
        assert await db.downloaders(winner) == {user.id}
        assert await db.downloaders(loser) == set()
        assert (await db.file(loser)).download_count == 0


class TestFailurePolicy:

    @pytest.mark.asyncio
    async def test_closing_stream_early_closes_reader(self, download_service, make_user, make_file):
        user = await make_user(credits=5)
        record = await make_file(content=b"abc")
        ticket = await download_service.request_download(user.id, record.file_id)
        closed = []

        async def chunks():
            try:
                yield b"first"
                yield b"second"
            finally:
                closed.append(True)

        with patch.object(ticket.reader, "iter_chunks", chunks):
            stream = ticket.iter_bytes()
            assert await stream.__anext__() == b"first"
            await stream.aclose()

        assert closed == [True]

    @pytest.mark.asyncio
    async def test_missing_blob_keeps_the_charge(self, download_service, make_user, make_file, db):
        user = await make_user(credits=5)
        record = await make_file(store_blob=False)

        with pytest.raises(NotFoundError):
            await download_service.request_download(user.id, record.file_id)

        # Committed before the blob was opened
        assert await db.balance(user.id) == 0
        assert await db.downloaders(record.file_id) == {user.id}

        with pytest.raises(NotFoundError):
            await download_service.request_download(user.id, record.file_id)
        assert len(await db.transactions(user.id)) == 1

    @pytest.mark.asyncio
    async def test_database_failure_rolls_back(self, download_service, ledger, make_user, make_file, db):
        user = await make_user(credits=5)
        record = await make_file()
        failure = OperationalError("UPDATE users", {}, Exception("disk I/O error"))

        with patch.object(ledger, "debit", AsyncMock(side_effect=failure)):
            with pytest.raises(DatabaseError):
                await download_service.request_download(user.id, record.file_id)

        assert await db.balance(user.id) == 5
        assert await db.downloaders(record.file_id) == set()
        assert await db.transactions(user.id) == []

    @pytest.mark.asyncio
    async def test_malformed_file_id(self, download_service, make_user):
        user = await make_user(credits=5)

        with pytest.raises(InvalidInputError):
            await download_service.request_download(user.id, "../../etc/passwd")

    @pytest.mark.asyncio
    async def test_unknown_file(self, download_service, make_user, db):
        user = await make_user(credits=5)

        with pytest.raises(NotFoundError):
            await download_service.request_download(user.id, uuid4().hex)
        assert await db.balance(user.id) == 5

    @pytest.mark.asyncio
    async def test_unknown_user(self, download_service, make_file):
        record = await make_file()

        with pytest.raises(NotFoundError):
            await download_service.request_download(uuid4(), record.file_id)
