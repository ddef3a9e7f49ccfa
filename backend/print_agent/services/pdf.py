"""Page counting for ingested documents."""
import asyncio
import logging
from pathlib import Path

from pypdf import PdfReader

from print_agent.result import Err, ErrorKind, Ok, Result
from print_agent.services.error_log import Entity, record_error

logger = logging.getLogger(__name__)


def _count_pages_sync(path: Path) -> int:
    reader = PdfReader(str(path))
    return len(reader.pages)


async def count_pages(path: Path) -> Result[int]:
    """Parse the PDF structure off the event loop. Err(IO) if unreadable or empty."""
    try:
        pages = await asyncio.to_thread(_count_pages_sync, path)
    except Exception as e:
        # pypdf surfaces malformed input as a wide range of exception types
        await record_error(Entity.MONITOR, "Get Pages", e)
        return Err(ErrorKind.IO, f"Could not read pages of {path.name}: {e}")
    if pages < 1:
        return Err(ErrorKind.IO, f"{path.name} has no pages")
    return Ok(pages)
