"""File record store.

All reads except ``get_any`` hide soft-deleted rows. Every method returns a
Result; SQLAlchemy errors are logged and converted into ``Err(STORE)``.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from print_agent.models.file_record import FileRecord
from print_agent.result import Err, ErrorKind, Ok, Result, err_from_exception
from print_agent.services.error_log import Entity, record_error

logger = logging.getLogger(__name__)


def parse_file_id(value: str) -> Optional[uuid.UUID]:
    """Return the UUID a file stem encodes, or None if it is not an identifier."""
    try:
        parsed = uuid.UUID(value)
    except (ValueError, TypeError, AttributeError):
        return None
    # only the canonical hyphenated lowercase form names a tracked file
    return parsed if str(parsed) == value else None


class FileRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def _fail(self, operation: str, e: Exception) -> Err:
        await record_error(Entity.MONITOR, operation, e)
        return err_from_exception(ErrorKind.STORE, e)

    async def get(self, file_id: uuid.UUID) -> Result[Optional[FileRecord]]:
        """Live record by id, or Ok(None)."""
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(FileRecord).where(
                        FileRecord.id == file_id,
                        FileRecord.deleted_at.is_(None),
                    )
                )
                return Ok(result.scalar_one_or_none())
        except SQLAlchemyError as e:
            return await self._fail("Get File By Id", e)

    async def get_any(self, file_id: uuid.UUID) -> Result[Optional[FileRecord]]:
        """Record by id regardless of lifecycle."""
        try:
            async with self._session_factory() as db:
                return Ok(await db.get(FileRecord, file_id))
        except SQLAlchemyError as e:
            return await self._fail("Get File By Id", e)

    async def insert(
        self, file_id: uuid.UUID, file_name: str, pages: int, path: str,
    ) -> Result[FileRecord]:
        try:
            async with self._session_factory() as db:
                record = FileRecord(
                    id=file_id,
                    asset_id=None,
                    file_name=file_name,
                    pages=pages,
                    path=path,
                    printed=False,
                    synced=False,
                )
                db.add(record)
                await db.commit()
                await db.refresh(record)
                return Ok(record)
        except SQLAlchemyError as e:
            return await self._fail("Insert File", e)

    async def soft_delete(self, file_id: uuid.UUID) -> Result[bool]:
        """Mark deleted. Ok(False) when nothing live matched."""
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    update(FileRecord)
                    .where(FileRecord.id == file_id, FileRecord.deleted_at.is_(None))
                    .values(deleted_at=datetime.now(timezone.utc))
                )
                await db.commit()
                return Ok(result.rowcount > 0)
        except SQLAlchemyError as e:
            return await self._fail("Delete File", e)

    async def purge(self, file_id: uuid.UUID) -> Result[bool]:
        """Hard delete. Only used to roll back an ingestion that never materialized."""
        try:
            async with self._session_factory() as db:
                result = await db.execute(delete(FileRecord).where(FileRecord.id == file_id))
                await db.commit()
                return Ok(result.rowcount > 0)
        except SQLAlchemyError as e:
            return await self._fail("Purge File", e)

    async def mark_printed(self, file_id: uuid.UUID, asset_id: str) -> Result[bool]:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    update(FileRecord)
                    .where(FileRecord.id == file_id, FileRecord.deleted_at.is_(None))
                    .values(printed=True, asset_id=asset_id)
                )
                await db.commit()
                if result.rowcount == 0:
                    return Err(ErrorKind.NOT_FOUND, f"File {file_id} not found")
                return Ok(True)
        except SQLAlchemyError as e:
            return await self._fail("Update Printed", e)

    async def mark_synced(self, file_id: uuid.UUID) -> Result[bool]:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    update(FileRecord).where(FileRecord.id == file_id).values(synced=True)
                )
                await db.commit()
                if result.rowcount == 0:
                    return Err(ErrorKind.NOT_FOUND, f"File {file_id} not found")
                return Ok(True)
        except SQLAlchemyError as e:
            return await self._fail("Update Synced", e)

    async def list_for_print(self) -> Result[list[FileRecord]]:
        """Live files still waiting to be printed, oldest first."""
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(FileRecord)
                    .where(FileRecord.deleted_at.is_(None), FileRecord.printed.is_(False))
                    .order_by(FileRecord.created_at)
                )
                return Ok(list(result.scalars().all()))
        except SQLAlchemyError as e:
            return await self._fail("Get For Print", e)

    async def list_for_sync(self) -> Result[list[FileRecord]]:
        """Printed files the upstream authority has not acknowledged yet."""
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(FileRecord)
                    .where(FileRecord.printed.is_(True), FileRecord.synced.is_(False))
                    .order_by(FileRecord.created_at)
                )
                return Ok(list(result.scalars().all()))
        except SQLAlchemyError as e:
            return await self._fail("Get For Sync", e)
