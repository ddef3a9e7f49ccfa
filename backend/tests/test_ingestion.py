"""Tests for the file ingestion pipeline against a real temp directory and SQLite store"""

import asyncio
import os
import time
import uuid
from pathlib import Path
from types import SimpleNamespace

import aiofiles.os
import pytest

from print_agent.services.ingestion import FileIngestionPipeline, Outcome, new_file_id

from conftest import FakeNotifier


async def no_sleep(_seconds):
    return None


@pytest.fixture
def root(tmp_path) -> Path:
    r = tmp_path / "files"
    (r / "alice").mkdir(parents=True)
    return r


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def pipeline(root, file_repo, notifier) -> FileIngestionPipeline:
    return FileIngestionPipeline(root, file_repo, notifier, debounce_seconds=0, hold_seconds=6, sleep=no_sleep)


async def pending(file_repo):
    result = await file_repo.list_for_print()
    assert result.ok
    return result.value


class TestNewFileId:
    def test_is_version_7(self):
        file_id = new_file_id()
        assert file_id.version == 7
        assert file_id.variant == uuid.RFC_4122

    def test_time_ordered(self):
        first = new_file_id()
        time.sleep(0.002)
        second = new_file_id()
        assert first.int >> 80 < second.int >> 80


class TestRegistration:
    @pytest.mark.asyncio
    async def test_dropped_pdf_is_registered_and_renamed(self, pipeline, file_repo, notifier, root, make_pdf):
        source = make_pdf(root / "alice" / "report.pdf", pages=3)

        result = await pipeline.on_file_appeared(source)
        await pipeline.drain()

        assert result.outcome == Outcome.REGISTERED
        records = await pending(file_repo)
        assert len(records) == 1
        record = records[0]
        assert record.id == result.file_id
        assert record.pages == 3
        assert record.printed is False
        assert record.file_name == "report.pdf"
        canonical = root / "alice" / f"{record.id}.pdf"
        assert record.path == str(canonical)
        assert canonical.is_file()
        assert not source.exists()
        assert notifier.notified == [str(record.id)]

    @pytest.mark.asyncio
    async def test_display_name_is_sanitized(self, pipeline, file_repo, root, make_pdf):
        source = make_pdf(root / "alice" / "Relat_303_263rio - Microsoft Word-job_42.pdf", pages=1)

        await pipeline.process(source)

        [record] = await pending(file_repo)
        assert record.file_name == "Relatório.pdf"

    @pytest.mark.asyncio
    async def test_non_pdf_is_deleted_without_record(self, pipeline, file_repo, root):
        source = root / "alice" / "notes.txt"
        source.write_text("hello")

        result = await pipeline.on_file_appeared(source)

        assert result.outcome == Outcome.DELETED_NON_PDF
        assert not source.exists()
        assert await pending(file_repo) == []

    @pytest.mark.asyncio
    async def test_file_at_root_is_rejected(self, pipeline, file_repo, root, make_pdf):
        source = make_pdf(root / "report.pdf")

        result = await pipeline.process(source)

        assert result.outcome == Outcome.REJECTED_ROOT
        assert source.exists()
        assert await pending(file_repo) == []

    @pytest.mark.asyncio
    async def test_root_files_allowed_when_subdirectories_not_required(self, root, file_repo, make_pdf):
        pipeline = FileIngestionPipeline(root, file_repo, None, debounce_seconds=0, require_subdirectory=False, sleep=no_sleep)
        source = make_pdf(root / "report.pdf")

        result = await pipeline.process(source)

        assert result.outcome == Outcome.REGISTERED

    @pytest.mark.asyncio
    async def test_unreadable_pdf_is_left_for_retry(self, pipeline, file_repo, root):
        source = root / "alice" / "broken.pdf"
        source.write_bytes(b"this is not a pdf")

        result = await pipeline.process(source)

        assert result.outcome == Outcome.FAILED
        assert source.exists()
        assert await pending(file_repo) == []

    @pytest.mark.asyncio
    async def test_vanished_before_debounce_ends(self, pipeline, root):
        result = await pipeline.on_file_appeared(root / "alice" / "gone.pdf")
        assert result.outcome == Outcome.MISSING

    @pytest.mark.asyncio
    async def test_notification_failure_keeps_registration(self, root, file_repo, make_pdf):
        notifier = FakeNotifier(succeed=False)
        pipeline = FileIngestionPipeline(root, file_repo, notifier, debounce_seconds=0, sleep=no_sleep)
        source = make_pdf(root / "alice" / "report.pdf")

        result = await pipeline.process(source)
        await pipeline.drain()

        assert result.outcome == Outcome.REGISTERED
        assert len(await pending(file_repo)) == 1
        assert len(notifier.notified) == 1


class TestIdempotency:
    @pytest.mark.asyncio
    async def test_same_event_twice_yields_one_record(self, pipeline, file_repo, root, make_pdf):
        source = make_pdf(root / "alice" / "report.pdf")

        first, second = await asyncio.gather(
            pipeline.on_file_appeared(source),
            pipeline.on_file_appeared(source),
        )

        assert sorted([first.outcome, second.outcome]) == sorted([Outcome.REGISTERED, Outcome.BUSY])
        assert len(await pending(file_repo)) == 1

    @pytest.mark.asyncio
    async def test_event_racing_sweep_yields_one_record(self, pipeline, file_repo, root, make_pdf):
        source = make_pdf(root / "alice" / "report.pdf")

        await asyncio.gather(pipeline.on_file_appeared(source), pipeline.sweep())
        await pipeline.sweep()

        assert len(await pending(file_repo)) == 1
        assert [p.name for p in (root / "alice").iterdir()] == [f"{(await pending(file_repo))[0].id}.pdf"]

    @pytest.mark.asyncio
    async def test_tracked_canonical_file_is_not_reregistered(self, pipeline, file_repo, root, make_pdf):
        registered = await pipeline.process(make_pdf(root / "alice" / "report.pdf"))

        again = await pipeline.process(Path(registered.path))

        assert again.outcome == Outcome.TRACKED
        assert again.file_id == registered.file_id
        assert await pipeline.sweep() == []
        assert len(await pending(file_repo)) == 1

    @pytest.mark.asyncio
    async def test_non_canonical_uuid_name_is_registered_as_new(self, pipeline, file_repo, root, make_pdf):
        registered = await pipeline.process(make_pdf(root / "alice" / "report.pdf"))
        lookalike = make_pdf(root / "alice" / f"{registered.file_id.hex}.pdf")

        result = await pipeline.process(lookalike)

        assert result.outcome == Outcome.REGISTERED
        assert result.file_id != registered.file_id
        assert not lookalike.exists()
        assert len(await pending(file_repo)) == 2

    @pytest.mark.asyncio
    async def test_canonical_name_without_record_is_reregistered(self, pipeline, file_repo, root, make_pdf):
        orphan_id = uuid.uuid4()
        source = make_pdf(root / "alice" / f"{orphan_id}.pdf")

        result = await pipeline.process(source)

        assert result.outcome == Outcome.REGISTERED
        assert result.file_id != orphan_id
        assert not source.exists()

    @pytest.mark.asyncio
    async def test_sweep_catches_missed_file_and_skips_hidden(self, pipeline, file_repo, root, make_pdf):
        make_pdf(root / "alice" / "missed.pdf")
        make_pdf(root / "alice" / ".~lock.pdf")
        make_pdf(root / ".trash" / "old.pdf")

        results = await pipeline.sweep()

        assert [r.outcome for r in results] == [Outcome.REGISTERED]
        assert (root / "alice" / ".~lock.pdf").exists()
        assert (root / ".trash" / "old.pdf").exists()


class TestMaterializeRollback:
    @pytest.mark.asyncio
    async def test_size_mismatch_rolls_back_record_and_keeps_original(
        self, root, file_repo, make_pdf, monkeypatch
    ):
        fixed_id = uuid.uuid4()
        pipeline = FileIngestionPipeline(
            root, file_repo, None, debounce_seconds=0, sleep=no_sleep, id_factory=lambda: fixed_id,
        )
        source = make_pdf(root / "alice" / "report.pdf")
        real_stat = aiofiles.os.stat

        async def short_copy_stat(path, *args, **kwargs):
            st = await real_stat(path, *args, **kwargs)
            if Path(path).name == f"{fixed_id}.pdf":
                return SimpleNamespace(st_size=st.st_size - 1, st_mtime=st.st_mtime)
            return st

        monkeypatch.setattr(aiofiles.os, "stat", short_copy_stat)

        result = await pipeline.process(source)

        assert result.outcome == Outcome.FAILED
        assert source.exists()
        assert not (root / "alice" / f"{fixed_id}.pdf").exists()
        assert (await file_repo.get_any(fixed_id)).value is None


class TestRemoval:
    @pytest.mark.asyncio
    async def test_unprinted_file_removed_from_disk_soft_deletes_record(self, pipeline, file_repo, root, make_pdf):
        registered = await pipeline.process(make_pdf(root / "alice" / "report.pdf"))
        os.remove(registered.path)

        assert await pipeline.on_file_removed(Path(registered.path)) is True

        assert (await file_repo.get(registered.file_id)).value is None
        record = (await file_repo.get_any(registered.file_id)).value
        assert record.is_deleted

    @pytest.mark.asyncio
    async def test_printed_file_keeps_record(self, pipeline, file_repo, root, make_pdf):
        registered = await pipeline.process(make_pdf(root / "alice" / "report.pdf"))
        await file_repo.mark_printed(registered.file_id, "p1")
        os.remove(registered.path)

        assert await pipeline.on_file_removed(Path(registered.path)) is False

        record = (await file_repo.get(registered.file_id)).value
        assert record is not None and record.printed

    @pytest.mark.asyncio
    async def test_non_canonical_removal_is_ignored(self, pipeline, root):
        assert await pipeline.on_file_removed(root / "alice" / "report.pdf") is False

    @pytest.mark.asyncio
    async def test_modified_non_pdf_is_deleted(self, pipeline, root):
        partial = root / "alice" / "upload.tmp"
        partial.write_bytes(b"...")

        result = await pipeline.on_file_changed(partial)

        assert result.outcome == Outcome.DELETED_NON_PDF
        assert not partial.exists()


class TestRetention:
    @pytest.mark.asyncio
    async def test_old_files_deleted_and_new_files_kept(self, root, file_repo, make_pdf):
        pipeline = FileIngestionPipeline(root, file_repo, None, debounce_seconds=0, retention_days=1, sleep=no_sleep)
        registered = await pipeline.process(make_pdf(root / "alice" / "old.pdf"))
        fresh = make_pdf(root / "alice" / "bob" / "fresh.pdf")
        three_days_ago = time.time() - 3 * 86400
        os.utime(registered.path, (three_days_ago, three_days_ago))

        removed = await pipeline.retention_sweep()

        assert removed == 1
        assert not Path(registered.path).exists()
        assert fresh.exists()
        assert (await file_repo.get(registered.file_id)).value is None
