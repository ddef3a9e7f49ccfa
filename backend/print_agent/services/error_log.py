"""Operational error log.

Every failure that may leave data lost or inconsistent goes through
``record_error``. It always reaches the process logger, and it is also
persisted to the ``logs`` table so operators can follow up without shell
access. Persisting is best-effort: a failing database never turns a logged
error into a raised one.
"""
import logging
import traceback
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from print_agent.models.log_entry import LogEntry

logger = logging.getLogger(__name__)


class Entity:
    MONITOR = "MONITOR"
    PRINTERS = "PRINTERS"
    PRINT_JOBS = "PRINT_JOBS"
    SYNC = "SYNC"


_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def configure(session_factory: Optional[async_sessionmaker[AsyncSession]]) -> None:
    """Point the error log at a session factory (None disables persistence)."""
    global _session_factory
    _session_factory = session_factory


async def record_error(
    entity: str,
    operation: str,
    error: BaseException | str,
    stack: Optional[str] = None,
) -> None:
    if isinstance(error, BaseException):
        message = str(error).strip() or type(error).__name__
        if stack is None:
            stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
    else:
        message = error

    logger.error(f"[{entity}] {operation}: {message}")
    if stack:
        logger.debug(stack)

    if _session_factory is None:
        return
    try:
        async with _session_factory() as db:
            db.add(LogEntry(
                log_type="error",
                entity=entity,
                operation=operation,
                error_message=message[:5000],
                error_stack=(stack or "")[:20000] or None,
            ))
            await db.commit()
    except (SQLAlchemyError, OSError) as e:
        logger.warning(f"Could not persist error log entry ({entity}/{operation}): {e}")
