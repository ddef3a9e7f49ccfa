"""Tests for the file and printer stores, page counting and the error log"""

import uuid

import pytest
from sqlalchemy import select

from print_agent.models import Active, Deleted, LogEntry
from print_agent.result import ErrorKind
from print_agent.services.error_log import Entity, record_error
from print_agent.services.file_store import parse_file_id
from print_agent.services.pdf import count_pages


class TestFileRepository:
    @pytest.mark.asyncio
    async def test_soft_deleted_record_hidden_from_normal_reads(self, file_repo):
        file_id = uuid.uuid4()
        await file_repo.insert(file_id, "a.pdf", 1, f"/srv/files/alice/{file_id}.pdf")
        assert isinstance((await file_repo.get(file_id)).value.lifecycle, Active)

        assert (await file_repo.soft_delete(file_id)).value is True
        assert (await file_repo.soft_delete(file_id)).value is False

        assert (await file_repo.get(file_id)).value is None
        assert (await file_repo.list_for_print()).value == []
        assert isinstance((await file_repo.get_any(file_id)).value.lifecycle, Deleted)

    @pytest.mark.asyncio
    async def test_mark_printed_unknown_is_not_found(self, file_repo):
        result = await file_repo.mark_printed(uuid.uuid4(), "p1")
        assert result.kind == ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_duplicate_path_is_store_error(self, file_repo):
        await file_repo.insert(uuid.uuid4(), "a.pdf", 1, "/srv/files/alice/same.pdf")
        result = await file_repo.insert(uuid.uuid4(), "b.pdf", 1, "/srv/files/alice/same.pdf")
        assert result.kind == ErrorKind.STORE

    @pytest.mark.asyncio
    async def test_sync_queue(self, file_repo):
        printed, waiting = uuid.uuid4(), uuid.uuid4()
        await file_repo.insert(printed, "a.pdf", 1, "/a.pdf")
        await file_repo.insert(waiting, "b.pdf", 1, "/b.pdf")
        await file_repo.mark_printed(printed, "p1")

        assert [r.id for r in (await file_repo.list_for_sync()).value] == [printed]
        assert [r.id for r in (await file_repo.list_for_print()).value] == [waiting]

        await file_repo.mark_synced(printed)
        assert (await file_repo.list_for_sync()).value == []


class TestParseFileId:
    def test_canonical_form(self):
        file_id = uuid.uuid4()
        assert parse_file_id(str(file_id)) == file_id

    @pytest.mark.parametrize("variant", ["hex", "braces", "urn", "upper"])
    def test_other_spellings_are_not_identifiers(self, variant):
        file_id = uuid.UUID("0190a1b2-c3d4-7e5f-8a6b-7c8d9e0f1a2b")
        stem = {
            "hex": file_id.hex,
            "braces": f"{{{file_id}}}",
            "urn": file_id.urn,
            "upper": str(file_id).upper(),
        }[variant]
        assert parse_file_id(stem) is None

    def test_plain_name(self):
        assert parse_file_id("report") is None


class TestPrinterRepository:
    @pytest.mark.asyncio
    async def test_update_missing_printer_is_not_found(self, printer_repo):
        result = await printer_repo.update("ghost", {"name": "Ghost"})
        assert result.kind == ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_insert_revives_soft_deleted_row(self, printer_repo):
        await printer_repo.insert("p1", {"name": "Old", "ip_address": "10.0.0.5"})
        await printer_repo.soft_delete("p1")

        revived = await printer_repo.insert("p1", {"name": "New", "ip_address": "10.0.0.6"})

        assert revived.ok
        printer = (await printer_repo.get("p1")).value
        assert (printer.name, printer.ip_address, printer.deleted_at) == ("New", "10.0.0.6", None)

    @pytest.mark.asyncio
    async def test_get_by_name_skips_deleted_rows(self, printer_repo):
        await printer_repo.insert("p1", {"name": "Front Desk"})
        assert (await printer_repo.get_by_name("Front Desk")).value.id == "p1"

        await printer_repo.soft_delete("p1")
        assert (await printer_repo.get_by_name("Front Desk")).value is None

    @pytest.mark.asyncio
    async def test_unknown_columns_are_ignored(self, printer_repo):
        result = await printer_repo.insert("p1", {"name": "P", "connectivity": {"port": {}}})
        assert result.ok


class TestCountPages:
    @pytest.mark.asyncio
    async def test_counts_pages(self, tmp_path, make_pdf):
        result = await count_pages(make_pdf(tmp_path / "three.pdf", pages=3))
        assert result.ok and result.value == 3

    @pytest.mark.asyncio
    async def test_garbage_is_io_error(self, tmp_path):
        bad = tmp_path / "bad.pdf"
        bad.write_bytes(b"\x00\x01 definitely not a pdf")
        result = await count_pages(bad)
        assert result.kind == ErrorKind.IO


class TestErrorLog:
    @pytest.mark.asyncio
    async def test_error_is_persisted(self, session_factory):
        await record_error(Entity.PRINTERS, "Setup CUPS Printer", RuntimeError("lpadmin exploded"))

        async with session_factory() as db:
            entries = (await db.execute(select(LogEntry))).scalars().all()

        assert len(entries) == 1
        assert entries[0].entity == "PRINTERS"
        assert entries[0].operation == "Setup CUPS Printer"
        assert entries[0].error_message == "lpadmin exploded"
        assert entries[0].log_type == "error"
