"""File ingestion pipeline.

Turns a document dropped into the shared folder into a tracked, renamed,
print-ready artifact:

    discovered -> classified (pdf | other) -> deduplicated -> registered
               -> materialized as <root>/<user>/<id>.pdf -> (printed) -> (deleted)

Three entry points feed it: watcher events (debounced per path), the
periodic full sweep, and the retention sweep. Event and sweep paths share an
in-flight claim set, and registration only happens for paths that do not
already decode to a live record, so re-processing the same path is a no-op.
"""
import asyncio
import logging
import os
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Optional

import aiofiles
import aiofiles.os

from print_agent.result import Err, ErrorKind, Ok, Result, err_from_exception
from print_agent.services.error_log import Entity, record_error
from print_agent.services.file_store import FileRepository, parse_file_id
from print_agent.services.filename import sanitize_file_name
from print_agent.services.pdf import count_pages
from print_agent.services.peer_notifier import PeerNotifier
from print_agent.services.saga import Saga
from print_agent.services.ttl_cache import NEVER, TtlCache

logger = logging.getLogger(__name__)

PDF_EXTENSION = ".pdf"
COPY_CHUNK_SIZE = 1024 * 1024


def new_file_id() -> uuid.UUID:
    """Time-ordered identifier (UUID version 7: 48-bit ms timestamp + random bits)."""
    value = (time.time_ns() // 1_000_000) << 80 | int.from_bytes(os.urandom(10), "big")
    value = (value & ~(0xF << 76)) | (0x7 << 76)
    value = (value & ~(0x3 << 62)) | (0x2 << 62)
    return uuid.UUID(int=value)


class Outcome(str, Enum):
    REGISTERED = "registered"
    TRACKED = "already_tracked"
    DELETED_NON_PDF = "deleted_non_pdf"
    REJECTED_ROOT = "rejected_root"
    MISSING = "missing"
    BUSY = "busy"
    FAILED = "failed"


@dataclass(frozen=True)
class IngestionResult:
    outcome: Outcome
    path: str
    file_id: Optional[uuid.UUID] = None
    detail: Optional[str] = None


class FileIngestionPipeline:
    def __init__(
        self,
        root: Path,
        files: FileRepository,
        notifier: Optional[PeerNotifier] = None,
        *,
        debounce_seconds: float = 3.0,
        hold_seconds: float = 6.0,
        require_subdirectory: bool = True,
        retention_days: int = 1,
        processing: Optional[TtlCache[str, bool]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], uuid.UUID] = new_file_id,
    ):
        self.root = Path(os.path.abspath(root))
        self._files = files
        self._notifier = notifier
        self._debounce = debounce_seconds
        self._hold = hold_seconds
        self._require_subdirectory = require_subdirectory
        self._retention_days = retention_days
        self._processing: TtlCache[str, bool] = processing if processing is not None else TtlCache(hold_seconds)
        self._sleep = sleep
        self._clock = clock
        self._new_id = id_factory
        self._background: set[asyncio.Task] = set()

    # ---------- In-flight claims ----------

    @staticmethod
    def _key(path: Path | str) -> str:
        return os.path.abspath(path)

    def _claim(self, path: Path) -> bool:
        key = self._key(path)
        if key in self._processing:
            return False
        self._processing.set(key, True, ttl=NEVER)
        return True

    def _release(self, path: Path) -> None:
        # Hold the path briefly so trailing watcher events for it are absorbed
        self._processing.set(self._key(path), True, ttl=self._hold)

    # ---------- Watcher entry points ----------

    async def on_file_appeared(self, path: Path) -> IngestionResult:
        path = Path(path)
        if not self._claim(path):
            return IngestionResult(Outcome.BUSY, str(path))
        try:
            await self._sleep(self._debounce)
            if not await aiofiles.os.path.isfile(path):
                return IngestionResult(Outcome.MISSING, str(path))
            return await self.process(path)
        except Exception as e:
            await record_error(Entity.MONITOR, "Process New File", e)
            return IngestionResult(Outcome.FAILED, str(path), detail=str(e))
        finally:
            self._release(path)

    async def on_file_changed(self, path: Path) -> Optional[IngestionResult]:
        path = Path(path)
        if path.suffix.lower() != PDF_EXTENSION:
            logger.info(f"Deleting {path} due to extension '{path.suffix.lower()}'")
            await self._delete_quietly(path)
            return IngestionResult(Outcome.DELETED_NON_PDF, str(path))
        return None

    async def on_file_removed(self, path: Path) -> bool:
        """Soft-delete the record of a canonical file that vanished before printing."""
        path = Path(path)
        if await aiofiles.os.path.exists(path):
            return False
        file_id = parse_file_id(path.stem)
        if file_id is None:
            return False
        found = await self._files.get(file_id)
        if not found.ok or found.value is None or found.value.printed:
            return False
        deleted = await self._files.soft_delete(file_id)
        if deleted.ok and deleted.value:
            logger.info(f"File {file_id} removed from disk before printing; record deleted")
            return True
        return False

    # ---------- Core processing ----------

    async def process(self, path: Path) -> IngestionResult:
        """Classify, deduplicate, register and materialize one file."""
        path = Path(path)
        ext = path.suffix.lower()
        if ext != PDF_EXTENSION:
            logger.info(f"Deleting {path} due to extension '{ext}'")
            await self._delete_quietly(path)
            return IngestionResult(Outcome.DELETED_NON_PDF, str(path))

        if self._require_subdirectory and Path(self._key(path)).parent == self.root:
            logger.warning(f"Ignoring {path}: files must be dropped inside a user folder")
            return IngestionResult(Outcome.REJECTED_ROOT, str(path))

        existing_id = parse_file_id(path.stem)
        if existing_id is not None:
            found = await self._files.get(existing_id)
            if not found.ok:
                return IngestionResult(Outcome.FAILED, str(path), detail=str(found))
            if found.value is not None:
                return IngestionResult(Outcome.TRACKED, str(path), file_id=existing_id)
            logger.info(f"{path.name} looks canonical but has no live record; re-registering")

        pages = await count_pages(path)
        if not pages.ok:
            logger.warning(f"Could not read pages of {path}; will retry on next sweep")
            return IngestionResult(Outcome.FAILED, str(path), detail=str(pages))

        file_id = self._new_id()
        canonical = path.with_name(f"{file_id}{PDF_EXTENSION}")
        display_name = sanitize_file_name(path.name)

        saga = Saga(f"ingest {path.name}")
        saga.add(
            "register",
            lambda: self._files.insert(file_id, display_name, pages.value, str(canonical)),
            lambda: self._files.purge(file_id),
        )
        saga.add(
            "materialize",
            lambda: self._copy_verified(path, canonical),
            lambda: self._unlink(canonical),
        )
        saga.add("remove-original", lambda: self._unlink(path))
        outcome = await saga.run()

        if not outcome.ok:
            await record_error(
                Entity.MONITOR, "Process New File",
                f"{path}: step '{outcome.failed_step}' failed ({outcome.error}); "
                f"rolled back {outcome.compensated or 'nothing'}",
            )
            return IngestionResult(Outcome.FAILED, str(path), detail=str(outcome.error))

        logger.info(f"Registered {path.name} as {file_id} ({pages.value} pages)")
        self._announce(str(file_id))
        return IngestionResult(Outcome.REGISTERED, str(canonical), file_id=file_id)

    async def _copy_verified(self, source: Path, destination: Path) -> Result[int]:
        try:
            async with aiofiles.open(source, "rb") as src, aiofiles.open(destination, "wb") as dst:
                while chunk := await src.read(COPY_CHUNK_SIZE):
                    await dst.write(chunk)
            source_size = (await aiofiles.os.stat(source)).st_size
            copied_size = (await aiofiles.os.stat(destination)).st_size
        except OSError as e:
            await self._unlink(destination)
            return err_from_exception(ErrorKind.IO, e)
        if source_size != copied_size:
            # a failed step is not compensated by the saga; drop the partial copy here
            await self._unlink(destination)
            return Err(ErrorKind.IO, f"Size mismatch copying {source.name}: {source_size} != {copied_size}")
        return Ok(copied_size)

    async def _unlink(self, path: Path) -> Result[bool]:
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            return Ok(False)
        except OSError as e:
            return err_from_exception(ErrorKind.IO, e)
        return Ok(True)

    async def _delete_quietly(self, path: Path) -> None:
        result = await self._unlink(path)
        if not result.ok:
            await record_error(Entity.MONITOR, "Delete File", f"{path}: {result.detail}")

    # ---------- Peer notification ----------

    def _announce(self, file_id: str) -> None:
        if self._notifier is None:
            return
        task = asyncio.create_task(self._notify(file_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _notify(self, file_id: str) -> None:
        try:
            if not await self._notifier.notify(file_id):
                logger.info(f"File {file_id} registered but the companion API was not notified")
        except Exception as e:
            await record_error(Entity.MONITOR, "Send File to API", e)

    async def drain(self) -> None:
        """Wait for pending background notifications."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def cancel_background(self) -> None:
        for task in list(self._background):
            task.cancel()

    # ---------- Sweeps ----------

    def _walk(self) -> list[Path]:
        found = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = [d for d in dirnames if not d.startswith(".")]
            found.extend(Path(dirpath) / name for name in filenames if not name.startswith("."))
        return found

    async def sweep(self) -> list[IngestionResult]:
        """Re-walk the tree and process any PDF a missed event left behind."""
        results = []
        now = self._clock()
        for path in await asyncio.to_thread(self._walk):
            if path.suffix.lower() != PDF_EXTENSION:
                continue
            try:
                stat = await aiofiles.os.stat(path)
            except FileNotFoundError:
                continue
            if now - stat.st_mtime < self._debounce:
                # still being written; the event path or the next sweep picks it up
                continue
            file_id = parse_file_id(path.stem)
            if file_id is not None:
                found = await self._files.get(file_id)
                if not found.ok or found.value is not None:
                    continue
            if not self._claim(path):
                continue
            try:
                results.append(await self.process(path))
            except Exception as e:
                await record_error(Entity.MONITOR, "Check All Files", e)
            finally:
                self._release(path)
        return results

    async def retention_sweep(self) -> int:
        """Delete files (and soft-delete their records) older than the retention threshold."""
        cutoff = self._clock() - self._retention_days * 86400
        removed = 0
        for path in await asyncio.to_thread(self._walk):
            try:
                stat = await aiofiles.os.stat(path)
            except FileNotFoundError:
                continue
            if stat.st_mtime >= cutoff:
                continue
            file_id = parse_file_id(path.stem)
            if file_id is not None:
                await self._files.soft_delete(file_id)
            logger.info(f"Deleting {path}: older than {self._retention_days} day(s)")
            result = await self._unlink(path)
            if result.ok:
                removed += 1
            else:
                await record_error(Entity.MONITOR, "Delete Old Files", f"{path}: {result.detail}")
        return removed
