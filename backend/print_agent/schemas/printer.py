"""Printer schemas: stored rows, upstream descriptors and sync summaries."""
from datetime import datetime
from typing import Any, Optional

from pydantic import field_validator

from print_agent.schemas.base import CamelModel, CamelORMModel


class PrinterResponse(CamelORMModel):
    id: str
    name: str
    status: str
    protocol: str
    driver: Optional[str] = None
    uri: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    ip_address: Optional[str] = None
    mac_address: Optional[str] = None
    port: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PortConnectivity(CamelModel):
    open: bool = False
    number: Optional[int] = None


class Connectivity(CamelModel):
    port: Optional[PortConnectivity] = None


class PrinterDescriptor(CamelModel):
    """A printer definition pushed by the upstream authority.

    ``id`` and ``name`` are optional at the schema level so one bad item is
    reported in the summary instead of rejecting the whole batch.
    """
    id: Optional[str] = None
    name: Optional[str] = None
    status: str = "functional"
    protocol: Optional[str] = "socket"
    driver: Optional[str] = "generic"
    port: Optional[int] = None
    uri: Optional[str] = None
    path: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    ip_address: Optional[str] = None
    mac_address: Optional[str] = None
    connectivity: Optional[Connectivity] = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_text(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v

    def missing_fields(self) -> list[str]:
        missing = [f for f in ("id", "name") if not getattr(self, f)]
        if not (self.ip_address or self.uri or self.mac_address):
            missing.append("ip_address|uri|mac_address")
        return missing


class PrinterSyncRequest(CamelModel):
    printers: list[PrinterDescriptor]
    prune: bool = True


class SyncIssue(CamelORMModel):
    id: Optional[str] = None
    name: Optional[str] = None
    message: str


class SyncSummaryResponse(CamelORMModel):
    success: bool
    message: str
    total: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    deleted: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[SyncIssue] = []
    warnings: list[SyncIssue] = []


class EndpointTestRequest(CamelModel):
    protocol: str = "ipp"
    ip_address: str
    port: Optional[int] = None
    path: Optional[str] = None


class EndpointTestResponse(CamelORMModel):
    valid: bool
    path: Optional[str] = None
    error: Optional[str] = None


class DiscoveredDevice(CamelModel):
    type: str
    uri: str


class MacLookupResponse(CamelORMModel):
    found: bool
    mac_address: str
    ip: Optional[str] = None
    port: Optional[int] = None
    online: bool = False
    status: Optional[str] = None
    protocol: Optional[str] = None
    error: Optional[str] = None
