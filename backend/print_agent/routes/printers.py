"""Printers API - fleet sync, manual edits and discovery helpers."""
from fastapi import APIRouter, Depends, HTTPException

from print_agent.dependencies import (
    get_adapter,
    get_network_probe,
    get_printer_repository,
    get_reconciler,
    unwrap,
)
from print_agent.schemas.printer import (
    DiscoveredDevice,
    EndpointTestRequest,
    EndpointTestResponse,
    MacLookupResponse,
    PrinterDescriptor,
    PrinterResponse,
    PrinterSyncRequest,
    SyncSummaryResponse,
)
from print_agent.services.cups import CupsAdapter
from print_agent.services.fleet_sync import PrinterFleetReconciler
from print_agent.services.network import NetworkProbe
from print_agent.services.printer_store import PrinterRepository

router = APIRouter(prefix="/api/printers", tags=["printers"])


@router.get("", response_model=list[PrinterResponse])
async def list_printers(printers: PrinterRepository = Depends(get_printer_repository)):
    return unwrap(await printers.list_active())


@router.post("/sync", response_model=SyncSummaryResponse)
async def sync_printers(
    body: PrinterSyncRequest,
    reconciler: PrinterFleetReconciler = Depends(get_reconciler),
):
    """Reconcile CUPS and the store with the upstream printer list."""
    summary = await reconciler.sync(body.printers, prune=body.prune)
    return SyncSummaryResponse.model_validate(summary)


async def _apply_one(reconciler: PrinterFleetReconciler, descriptor: PrinterDescriptor) -> SyncSummaryResponse:
    summary = await reconciler.apply(descriptor)
    if summary.errors:
        raise HTTPException(400, summary.errors[0].message)
    return SyncSummaryResponse.model_validate(summary)


@router.post("", response_model=SyncSummaryResponse, status_code=201)
async def create_printer(
    body: PrinterDescriptor,
    reconciler: PrinterFleetReconciler = Depends(get_reconciler),
):
    return await _apply_one(reconciler, body)


@router.put("", response_model=SyncSummaryResponse)
async def update_printer(
    body: PrinterDescriptor,
    reconciler: PrinterFleetReconciler = Depends(get_reconciler),
    printers: PrinterRepository = Depends(get_printer_repository),
):
    if not body.id:
        raise HTTPException(400, "Printer id is required")
    if unwrap(await printers.get(body.id)) is None:
        raise HTTPException(404, "Printer not found")
    return await _apply_one(reconciler, body)


@router.get("/drivers", response_model=list[str])
async def list_drivers(adapter: CupsAdapter = Depends(get_adapter)):
    return await adapter.list_drivers()


@router.get("/discover", response_model=list[DiscoveredDevice])
async def discover_printers(adapter: CupsAdapter = Depends(get_adapter)):
    """Devices CUPS backends can see (``lpinfo -v``)."""
    return await adapter.discover()


@router.post("/test-endpoint", response_model=EndpointTestResponse)
async def test_endpoint(body: EndpointTestRequest, adapter: CupsAdapter = Depends(get_adapter)):
    return await adapter.test_endpoint(body.protocol, body.ip_address, body.port, body.path)


@router.get("/find-by-mac/{mac_address}", response_model=MacLookupResponse)
async def find_by_mac(mac_address: str, probe: NetworkProbe = Depends(get_network_probe)):
    return await probe.find_printer_by_mac(mac_address)
