"""Print dispatcher: sends a registered file to a configured printer."""
import asyncio
import logging
from pathlib import Path

import aiofiles.os

from print_agent.result import Err, ErrorKind, Ok, Result
from print_agent.services.cups import CupsAdapter, PrinterError
from print_agent.services.error_log import Entity, record_error
from print_agent.services.file_store import FileRepository, parse_file_id
from print_agent.services.printer_store import PrinterRepository

logger = logging.getLogger(__name__)


class PrintDispatcher:
    def __init__(self, files: FileRepository, printers: PrinterRepository, adapter: CupsAdapter):
        self._files = files
        self._printers = printers
        self._adapter = adapter
        self._cleanup: set[asyncio.Task] = set()

    async def print(self, file_id: str, printer_id: str) -> Result[str]:
        """Print ``file_id`` on ``printer_id``.

        The file is flagged printed before the job is submitted, so a crash
        mid-print does not put it back in the queue. A failed submission does
        not clear the flag; an operator re-triggers it.
        """
        uid = parse_file_id(file_id)
        if uid is None:
            return Err(ErrorKind.VALIDATION, f"Invalid file id: {file_id}")

        found = await self._files.get(uid)
        if not found.ok:
            return Err(ErrorKind.NOT_FOUND, f"File {file_id} could not be loaded: {found.detail}")
        if found.value is None:
            return Err(ErrorKind.NOT_FOUND, f"File {file_id} not found")
        record = found.value

        printer = await self._printers.get(printer_id)
        if not printer.ok:
            return Err(ErrorKind.NOT_FOUND, f"Printer {printer_id} could not be loaded: {printer.detail}")
        if printer.value is None:
            return Err(ErrorKind.NOT_FOUND, f"Printer {printer_id} not found")

        path = Path(record.path)
        if not await aiofiles.os.path.isfile(path):
            await self._files.soft_delete(uid)
            logger.warning(f"File {file_id} missing from {path}; record deleted")
            return Err(ErrorKind.NOT_FOUND, f"File {file_id} no longer exists on disk")

        marked = await self._files.mark_printed(uid, printer_id)
        if not marked.ok:
            return marked

        try:
            await self._adapter.print_file(printer.value.name, path, job_name=record.file_name)
        except PrinterError as e:
            await record_error(Entity.PRINT_JOBS, "Print File", e)
            return Err(ErrorKind.ADAPTER, str(e))

        logger.info(f"File {file_id} sent to {printer.value.name}")
        task = asyncio.create_task(self._remove_printed(path))
        self._cleanup.add(task)
        task.add_done_callback(self._cleanup.discard)
        return Ok(f"File {record.file_name} sent to {printer.value.name}")

    async def _remove_printed(self, path: Path) -> None:
        try:
            await aiofiles.os.remove(path)
            logger.info(f"Deleted printed file {path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            await record_error(Entity.PRINT_JOBS, "Delete Printed File", e)

    async def drain(self) -> None:
        if self._cleanup:
            await asyncio.gather(*list(self._cleanup), return_exceptions=True)
