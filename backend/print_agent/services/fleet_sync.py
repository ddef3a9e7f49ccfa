"""Printer fleet reconciler.

Brings the CUPS queues and the ``printers`` table in line with a batch of
descriptors from the upstream authority. Descriptors are processed one at a
time under a lock so two configure/remove calls for the same queue name
never overlap. Every create/update runs as a Saga so a failure in the
second half undoes the CUPS change made in the first half.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urlsplit

from print_agent.models.printer import Printer
from print_agent.result import ErrorKind, Ok, Result
from print_agent.schemas.printer import PrinterDescriptor
from print_agent.services.cups import CupsAdapter, QueueConfig, default_port
from print_agent.services.error_log import Entity, record_error
from print_agent.services.network import NetworkProbe
from print_agent.services.printer_store import PRINTER_FIELDS, PrinterRepository
from print_agent.services.saga import Saga

logger = logging.getLogger(__name__)


@dataclass
class SyncIssue:
    id: Optional[str]
    name: Optional[str]
    message: str


@dataclass
class SyncSummary:
    total: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    deleted: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[SyncIssue] = field(default_factory=list)
    warnings: list[SyncIssue] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def message(self) -> str:
        text = (
            f"{self.created} created, {self.updated} updated, {self.unchanged} unchanged, "
            f"{self.deleted} deleted, {self.skipped} skipped"
        )
        if self.errors:
            text += f", {len(self.errors)} errors"
        if self.warnings:
            text += f", {len(self.warnings)} warnings"
        return text


@dataclass(frozen=True)
class Reachability:
    reachable: bool
    ip: Optional[str] = None
    path: Optional[str] = None
    detail: Optional[str] = None


def _queue_from(values: dict[str, Any], uri: Optional[str], path: Optional[str]) -> QueueConfig:
    return QueueConfig(
        name=values["name"],
        protocol=values.get("protocol") or "socket",
        driver=values.get("driver") or "generic",
        uri=uri,
        path=path,
        description=values.get("description"),
        location=values.get("location"),
        ip_address=values.get("ip_address"),
        port=values.get("port"),
    )


def _record_values(printer: Printer) -> dict[str, Any]:
    return {f: getattr(printer, f) for f in PRINTER_FIELDS}


def _has_address(values: dict[str, Any]) -> bool:
    return bool(values.get("ip_address") or values.get("uri"))


class PrinterFleetReconciler:
    def __init__(self, printers: PrinterRepository, adapter: CupsAdapter, probe: NetworkProbe):
        self._printers = printers
        self._adapter = adapter
        self._probe = probe
        self._lock = asyncio.Lock()

    async def sync(self, descriptors: list[PrinterDescriptor], prune: bool = True) -> SyncSummary:
        summary = SyncSummary(total=len(descriptors))
        async with self._lock:
            for descriptor in descriptors:
                try:
                    await self._reconcile(descriptor, summary)
                except Exception as e:
                    summary.failed += 1
                    summary.errors.append(SyncIssue(descriptor.id, descriptor.name, f"Unexpected error: {e}"))
                    await record_error(Entity.SYNC, "Sync Printer", e)

            if prune:
                seen = {d.id for d in descriptors if d.id}
                await self._prune(seen, summary)

        logger.info(f"Printer sync finished: {summary.message}")
        return summary

    # ---------- Per descriptor ----------

    async def _reconcile(self, d: PrinterDescriptor, summary: SyncSummary) -> None:
        missing = d.missing_fields()
        if missing:
            summary.skipped += 1
            message = f"Missing required fields: {', '.join(missing)}"
            summary.errors.append(SyncIssue(d.id, d.name, message))
            await record_error(Entity.SYNC, "Validate Printer", f"{d.id or '?'}: {message}")
            return

        if not await self._name_available(d, summary):
            return

        reach = await self._check_reachability(d)

        found = await self._printers.get(d.id)
        if not found.ok:
            summary.failed += 1
            summary.errors.append(SyncIssue(d.id, d.name, f"Could not load printer: {found.detail}"))
            return

        if found.value is None:
            await self._create(d, reach, summary)
        else:
            await self._update(d, found.value, reach, summary)

    async def _name_available(self, d: PrinterDescriptor, summary: SyncSummary) -> bool:
        """A CUPS queue name belongs to one live printer; configure would replace another's queue."""
        owner = await self._printers.get_by_name(d.name)
        if not owner.ok:
            summary.failed += 1
            summary.errors.append(SyncIssue(d.id, d.name, f"Could not check queue name: {owner.detail}"))
            return False
        if owner.value is not None and owner.value.id != d.id:
            summary.failed += 1
            message = f"Queue name '{d.name}' is already used by printer {owner.value.id}"
            summary.errors.append(SyncIssue(d.id, d.name, message))
            await record_error(Entity.SYNC, "Validate Printer", f"{d.id}: {message}")
            return False
        return True

    async def _configure_new_queue(self, queue: QueueConfig) -> Result[str]:
        """Configure a queue name not yet in use. A partial setup is removed again."""
        result = await self._adapter.configure(queue)
        if not result.ok and result.kind == ErrorKind.ADAPTER:
            removed = await self._adapter.remove(queue.name)
            if not removed.ok:
                logger.warning(f"Partial queue {queue.name} could not be removed: {removed.detail}")
        return result

    async def _check_reachability(self, d: PrinterDescriptor) -> Reachability:
        protocol = (d.protocol or "socket").lower()
        port = d.port or default_port(protocol)

        if d.connectivity is not None and d.connectivity.port is not None:
            return Reachability(
                reachable=d.connectivity.port.open,
                ip=d.ip_address,
                path=d.path,
                detail=None if d.connectivity.port.open else "Port reported closed by upstream",
            )

        ip = d.ip_address
        if not ip and d.mac_address:
            lookup = await self._probe.find_printer_by_mac(d.mac_address)
            if not lookup.found:
                return Reachability(False, detail=lookup.error)
            ping = await self._probe.ping(lookup.ip)
            if not ping.success:
                logger.info(f"Printer {d.name} at {lookup.ip} does not answer ping")
            if protocol not in ("ipp", "ipps"):
                return Reachability(lookup.online, ip=lookup.ip, path=d.path, detail=lookup.error)
            ip = lookup.ip

        if not ip:
            host = urlsplit(d.uri or "")
            if not host.hostname:
                return Reachability(False, detail="No address to probe")
            ok = await self._probe.test_port(host.hostname, host.port or port)
            return Reachability(ok, path=d.path, detail=None if ok else f"{host.hostname} is not reachable")

        if protocol in ("ipp", "ipps"):
            endpoint = await self._adapter.test_endpoint(protocol, ip, port, d.path)
            if endpoint.valid:
                return Reachability(True, ip=ip, path=endpoint.path)
            # keep the configure step from probing the same dead host again
            return Reachability(False, ip=ip, path=d.path or "/ipp/print", detail=endpoint.error)

        ok = await self._probe.test_port(ip, port)
        return Reachability(ok, ip=ip, path=d.path, detail=None if ok else f"Port {port} closed on {ip}")

    def _incoming_values(self, d: PrinterDescriptor, reach: Reachability) -> dict[str, Any]:
        values = {f: getattr(d, f) for f in PRINTER_FIELDS}
        if reach.ip:
            values["ip_address"] = reach.ip
        return values

    async def _create(self, d: PrinterDescriptor, reach: Reachability, summary: SyncSummary) -> None:
        values = self._incoming_values(d, reach)
        values["protocol"] = values["protocol"] or "socket"
        values["driver"] = values["driver"] or "generic"
        values["port"] = values["port"] or default_port(values["protocol"])
        queue = _queue_from(values, d.uri, reach.path)
        configured: dict[str, str] = {}

        async def configure() -> Result[str]:
            result = await self._configure_new_queue(queue)
            if result.ok:
                configured["uri"] = result.value
            return result

        saga = Saga(f"create printer {d.id}")
        addressed = _has_address(values)
        if addressed:
            saga.add("configure", configure, lambda: self._adapter.remove(queue.name))
        saga.add("store", lambda: self._printers.insert(d.id, {**values, "uri": configured.get("uri", d.uri)}))
        outcome = await saga.run()

        if not outcome.ok:
            summary.failed += 1
            if outcome.failed_step == "configure":
                message = f"CUPS configuration failed: {outcome.error.detail}"
            else:
                message = f"Could not save printer: {outcome.error.detail}"
                if "configure" in outcome.compensated:
                    message += " (CUPS queue removed)"
                elif addressed:
                    message += " (CUPS queue may be orphaned)"
                    await record_error(Entity.SYNC, "Create Printer", f"{d.id}: {message}")
            summary.errors.append(SyncIssue(d.id, d.name, message))
            return

        summary.created += 1
        logger.info(f"Printer {d.name} ({d.id}) created")
        if not addressed:
            # the queue is configured by the first sync that resolves an address
            summary.warnings.append(SyncIssue(
                d.id, d.name, f"Created but unreachable: no address resolved ({reach.detail or 'unknown'})",
            ))
        elif not reach.reachable:
            summary.warnings.append(SyncIssue(d.id, d.name, f"Created but unreachable: {reach.detail}"))

    def _diff(self, incoming: dict[str, Any], existing: dict[str, Any]) -> dict[str, Any]:
        changes = {}
        for key, value in incoming.items():
            # fields the descriptor leaves out keep their stored value
            if value is None:
                continue
            if value != existing.get(key):
                changes[key] = value
        return changes

    async def _update(self, d: PrinterDescriptor, printer: Printer, reach: Reachability, summary: SyncSummary) -> None:
        previous = _record_values(printer)
        changes = self._diff(self._incoming_values(d, reach), previous)

        if not changes:
            summary.unchanged += 1
            if not reach.reachable:
                summary.warnings.append(SyncIssue(d.id, d.name, f"Unchanged but unreachable: {reach.detail}"))
            return

        logger.info(f"Printer {d.id} changed: {sorted(changes)}")
        merged = {**previous, **changes}
        renamed = merged["name"] != previous["name"]
        uri = d.uri or (None if merged.get("ip_address") else previous.get("uri"))
        queue = _queue_from(merged, uri, reach.path)
        restore = _queue_from(previous, previous.get("uri"), None)
        configured: dict[str, str] = {}

        async def checkpoint() -> Result[None]:
            return Ok(None)

        async def remove_old_queue() -> Result[bool]:
            result = await self._adapter.remove(previous["name"])
            if not result.ok:
                logger.warning(f"Old queue {previous['name']} could not be removed: {result.detail}")
            return Ok(result.ok)

        had_queue = _has_address(previous)
        addressed = bool(merged.get("ip_address") or uri)

        async def configure() -> Result[str]:
            if renamed or not had_queue:
                result = await self._configure_new_queue(queue)
            else:
                result = await self._adapter.configure(queue)
            if result.ok:
                configured["uri"] = result.value
            return result

        saga = Saga(f"update printer {d.id}")
        if had_queue and addressed:
            saga.add("checkpoint", checkpoint, lambda: self._adapter.configure(restore))
            if renamed:
                saga.add("remove-old-queue", remove_old_queue)
        if addressed:
            saga.add("configure", configure)
        saga.add(
            "store",
            lambda: self._printers.update(d.id, {**merged, "uri": configured.get("uri", uri)}),
            rollback_on_failure=False,
        )
        outcome = await saga.run()

        if not outcome.ok:
            summary.failed += 1
            if outcome.failed_step == "store" and not addressed:
                message = f"Could not save printer: {outcome.error.detail}"
            elif outcome.failed_step == "store":
                message = f"CUPS updated but the printer row was not: {outcome.error.detail}"
                await record_error(Entity.SYNC, "Update Printer", f"{d.id}: {message}")
            else:
                message = f"CUPS configuration failed: {outcome.error.detail}"
                if "checkpoint" in outcome.compensated:
                    message += f" (previous configuration of {previous['name']} restored)"
                elif outcome.compensation_errors:
                    message += f" (restore failed: {'; '.join(outcome.compensation_errors)})"
                    await record_error(Entity.SYNC, "Restore Printer", f"{d.id}: {message}")
            summary.errors.append(SyncIssue(d.id, d.name, message))
            return

        summary.updated += 1
        if not addressed:
            summary.warnings.append(SyncIssue(
                d.id, d.name, f"Updated but unreachable: no address resolved ({reach.detail or 'unknown'})",
            ))
        elif not reach.reachable:
            summary.warnings.append(SyncIssue(d.id, d.name, f"Updated but unreachable: {reach.detail}"))

    # ---------- Pruning ----------

    async def _prune(self, seen: set[str], summary: SyncSummary) -> None:
        active = await self._printers.list_active()
        if not active.ok:
            summary.errors.append(SyncIssue(None, None, f"Could not list printers for pruning: {active.detail}"))
            return

        for printer in active.value:
            if printer.id in seen:
                continue
            removed = await self._adapter.remove(printer.name)
            if not removed.ok:
                summary.warnings.append(
                    SyncIssue(printer.id, printer.name, f"CUPS queue could not be removed: {removed.detail}")
                )
            deleted = await self._printers.soft_delete(printer.id)
            if deleted.ok and deleted.value:
                summary.deleted += 1
                logger.info(f"Printer {printer.name} ({printer.id}) no longer in fleet; deleted")
            elif not deleted.ok:
                summary.errors.append(SyncIssue(printer.id, printer.name, f"Could not delete: {deleted.detail}"))

    # ---------- Single-descriptor edits ----------

    async def apply(self, descriptor: PrinterDescriptor) -> SyncSummary:
        """Create or update one printer without pruning the rest of the fleet."""
        return await self.sync([descriptor], prune=False)
