"""Printer record store. Same Result contract as the file store."""
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from print_agent.models.printer import Printer
from print_agent.result import Err, ErrorKind, Ok, Result, err_from_exception
from print_agent.services.error_log import Entity, record_error

logger = logging.getLogger(__name__)

# Columns a sync or manual edit may write
PRINTER_FIELDS = (
    "name", "status", "protocol", "mac_address", "driver", "uri",
    "description", "location", "ip_address", "port",
)


class PrinterRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def _fail(self, operation: str, e: Exception) -> Err:
        await record_error(Entity.PRINTERS, operation, e)
        return err_from_exception(ErrorKind.STORE, e)

    async def list_active(self) -> Result[list[Printer]]:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(Printer).where(Printer.deleted_at.is_(None)).order_by(Printer.name)
                )
                return Ok(list(result.scalars().all()))
        except SQLAlchemyError as e:
            return await self._fail("Get All Printers", e)

    async def get(self, printer_id: str) -> Result[Optional[Printer]]:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(Printer).where(Printer.id == printer_id, Printer.deleted_at.is_(None))
                )
                return Ok(result.scalar_one_or_none())
        except SQLAlchemyError as e:
            return await self._fail("Get Printer By Id", e)

    async def get_by_name(self, name: str) -> Result[Optional[Printer]]:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(Printer).where(Printer.name == name, Printer.deleted_at.is_(None))
                )
                return Ok(result.scalars().first())
        except SQLAlchemyError as e:
            return await self._fail("Get Printer By Name", e)

    async def insert(self, printer_id: str, values: dict[str, Any]) -> Result[Printer]:
        """Insert a printer row. Reuses a soft-deleted row with the same id."""
        data = {k: v for k, v in values.items() if k in PRINTER_FIELDS}
        try:
            async with self._session_factory() as db:
                printer = await db.get(Printer, printer_id)
                if printer is None:
                    printer = Printer(id=printer_id, **data)
                    db.add(printer)
                else:
                    for key, value in data.items():
                        setattr(printer, key, value)
                    printer.deleted_at = None
                await db.commit()
                await db.refresh(printer)
                return Ok(printer)
        except SQLAlchemyError as e:
            return await self._fail("Insert Printer", e)

    async def update(self, printer_id: str, values: dict[str, Any]) -> Result[Printer]:
        data = {k: v for k, v in values.items() if k in PRINTER_FIELDS}
        try:
            async with self._session_factory() as db:
                printer = await db.get(Printer, printer_id)
                if printer is None or printer.deleted_at is not None:
                    return Err(ErrorKind.NOT_FOUND, f"Printer {printer_id} not found")
                for key, value in data.items():
                    setattr(printer, key, value)
                printer.updated_at = datetime.now(timezone.utc)
                await db.commit()
                await db.refresh(printer)
                return Ok(printer)
        except SQLAlchemyError as e:
            return await self._fail("Update Printer", e)

    async def soft_delete(self, printer_id: str) -> Result[bool]:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    update(Printer)
                    .where(Printer.id == printer_id, Printer.deleted_at.is_(None))
                    .values(deleted_at=datetime.now(timezone.utc))
                )
                await db.commit()
                return Ok(result.rowcount > 0)
        except SQLAlchemyError as e:
            return await self._fail("Delete Printer", e)
