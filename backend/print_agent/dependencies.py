"""FastAPI dependencies: repositories, services and Result-to-HTTP mapping.

Routes take their collaborators through these providers so tests can swap
them with ``app.dependency_overrides``.
"""
from fastapi import HTTPException

from print_agent.database import async_session
from print_agent.result import Err, ErrorKind, Result
from print_agent.services.cups import CupsAdapter, cups_adapter
from print_agent.services.dispatcher import PrintDispatcher
from print_agent.services.file_store import FileRepository
from print_agent.services.fleet_sync import PrinterFleetReconciler
from print_agent.services.network import NetworkProbe, network_probe
from print_agent.services.printer_store import PrinterRepository

STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.VALIDATION: 400,
    ErrorKind.STORE: 400,
    ErrorKind.ADAPTER: 500,
    ErrorKind.IO: 500,
    ErrorKind.INTERNAL: 500,
}

file_repository = FileRepository(async_session)
printer_repository = PrinterRepository(async_session)
reconciler = PrinterFleetReconciler(printer_repository, cups_adapter, network_probe)
dispatcher = PrintDispatcher(file_repository, printer_repository, cups_adapter)


def http_error(err: Err) -> HTTPException:
    return HTTPException(STATUS_BY_KIND.get(err.kind, 500), err.detail or err.kind.value)


def unwrap(result: Result):
    """Value of an Ok, or raise the HTTPException matching the Err kind."""
    if not result.ok:
        raise http_error(result)
    return result.value


def get_file_repository() -> FileRepository:
    return file_repository


def get_printer_repository() -> PrinterRepository:
    return printer_repository


def get_adapter() -> CupsAdapter:
    return cups_adapter


def get_network_probe() -> NetworkProbe:
    return network_probe


def get_reconciler() -> PrinterFleetReconciler:
    return reconciler


def get_dispatcher() -> PrintDispatcher:
    return dispatcher
