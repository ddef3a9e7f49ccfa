"""CUPS-backed Printer Control Adapter.

Drives ``lpadmin``/``lpinfo``/``lp``/``cupsenable``/``cupsaccept`` through an
injectable async command runner. Configuration calls return a Result;
``print_file`` raises PrinterError because a print submission is
fire-and-forget from the caller's point of view.
"""
import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import aiofiles.os
import aiohttp

from print_agent.config import settings
from print_agent.result import Err, ErrorKind, Ok, Result
from print_agent.services.commands import CommandRunner, run_command
from print_agent.services.error_log import Entity, record_error

logger = logging.getLogger(__name__)

# Ordered; the first endpoint answering below 500 wins
IPP_COMMON_PATHS = ["/ipp/print", "/ipp", "/printer", "/printers/printer", "/", "/IPP/Print"]


class PrinterError(RuntimeError):
    """Raised when the print subsystem cannot accept a print request."""


@dataclass(frozen=True)
class QueueConfig:
    name: str
    protocol: str = "socket"
    driver: Optional[str] = "generic"
    uri: Optional[str] = None
    path: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    ip_address: Optional[str] = None
    port: Optional[int] = None


@dataclass(frozen=True)
class EndpointProbe:
    valid: bool
    path: Optional[str] = None
    error: Optional[str] = None


def default_port(protocol: Optional[str]) -> int:
    return {
        "ipp": 631,
        "ipps": 631,
        "lpd": 515,
        "http": 80,
        "https": 443,
    }.get((protocol or "socket").lower(), 9100)


def _with_slash(path: str) -> str:
    return path if path.startswith("/") else "/" + path


def build_printer_uri(
    protocol: Optional[str], ip: Optional[str], port: Optional[int] = None, path: Optional[str] = None,
) -> str:
    """Device URI for a network printer. Raises ValueError without an address."""
    if not ip:
        raise ValueError("IP address is required to build a printer URI")

    proto = (protocol or "socket").lower()
    if proto in ("ipp", "ipps", "http", "https"):
        return f"{proto}://{ip}:{port or default_port(proto)}{_with_slash(path) if path else '/ipp/print'}"
    if proto == "lpd":
        return f"lpd://{ip}:{port or 515}/queue"
    if proto == "smb":
        return f"smb://{ip}/printer"
    if proto == "dnssd":
        return f"dnssd://{ip}/"
    return f"socket://{ip}:{port or 9100}"


class CupsAdapter:
    def __init__(
        self,
        runner: CommandRunner = run_command,
        http_timeout: float | None = None,
    ):
        self._run = runner
        self._http_timeout = http_timeout if http_timeout is not None else settings.HTTP_PROBE_TIMEOUT_SECONDS

    # ---------- Queue configuration ----------

    async def configure(self, queue: QueueConfig) -> Result[str]:
        """Create or replace the CUPS queue ``queue.name``. Ok value is the device URI."""
        try:
            uri = await self._resolve_uri(queue)
        except ValueError as e:
            return Err(ErrorKind.VALIDATION, f"Could not build URI: {e}")
        logger.info(f"URI for {queue.name}: {uri}")

        removed = await self._run([settings.LPADMIN_PATH, "-x", queue.name])
        if removed.ok:
            logger.info(f"Printer {queue.name} removed for reconfiguration")

        model = await self._resolve_model(queue.driver)
        cmd = [settings.LPADMIN_PATH, "-p", queue.name, "-E", "-v", uri, "-m", model]
        if queue.description:
            cmd += ["-D", queue.description]
        if queue.location:
            cmd += ["-L", queue.location]
        cmd += ["-o", "printer-is-shared=true"]

        for step in (
            cmd,
            [settings.CUPSENABLE_PATH, queue.name],
            [settings.CUPSACCEPT_PATH, queue.name],
        ):
            out = await self._run(step)
            if not out.ok:
                message = f"{step[0]} failed (rc={out.returncode}): {out.output}"
                await record_error(Entity.PRINTERS, "Setup CUPS Printer", message)
                return Err(ErrorKind.ADAPTER, message)

        return Ok(uri)

    async def remove(self, name: str) -> Result[bool]:
        out = await self._run([settings.LPADMIN_PATH, "-x", name])
        if not out.ok:
            message = f"lpadmin -x failed (rc={out.returncode}): {out.output}"
            await record_error(Entity.PRINTERS, "Remove CUPS Printer", message)
            return Err(ErrorKind.ADAPTER, message)
        return Ok(True)

    async def _resolve_uri(self, queue: QueueConfig) -> str:
        if queue.uri:
            return queue.uri
        proto = (queue.protocol or "socket").lower()
        if proto in ("ipp", "ipps") and queue.ip_address and not queue.path:
            probe = await self.test_endpoint(proto, queue.ip_address, queue.port or default_port(proto))
            return build_printer_uri(proto, queue.ip_address, queue.port, probe.path if probe.valid else None)
        return build_printer_uri(proto, queue.ip_address, queue.port, queue.path)

    async def _resolve_model(self, driver: Optional[str]) -> str:
        if not driver or driver.lower() == "generic":
            return "raw"
        out = await self._run([settings.LPINFO_PATH, "-m"])
        if out.ok:
            needle = driver.lower()
            for line in out.stdout.splitlines():
                if needle in line.lower():
                    return line.split(" ")[0]
        return "raw"

    # ---------- Queries ----------

    async def list_drivers(self) -> list[str]:
        out = await self._run([settings.LPINFO_PATH, "-m"])
        if not out.ok:
            await record_error(Entity.PRINTERS, "Get CUPS Drivers", out.output or "lpinfo -m failed")
            return []
        return [line.split(" ")[0] for line in out.stdout.splitlines() if line.strip()]

    async def discover(self) -> list[dict]:
        out = await self._run([settings.LPINFO_PATH, "-v"])
        if not out.ok:
            await record_error(Entity.PRINTERS, "Discover Printers", out.output or "lpinfo -v failed")
            return []
        devices = []
        for line in out.stdout.splitlines():
            parts = line.split()
            if len(parts) >= 2:
                devices.append({"type": parts[0], "uri": parts[1]})
        return devices

    async def test_endpoint(
        self, protocol: str, ip: str, port: Optional[int] = None, suggested_path: Optional[str] = None,
    ) -> EndpointProbe:
        """Find the first IPP path on ``ip:port`` that answers with a status below 500."""
        proto = (protocol or "ipp").lower()
        port = port or default_port(proto)
        scheme = "https" if proto in ("ipps", "https") else "http"

        candidates = list(IPP_COMMON_PATHS)
        if suggested_path:
            candidates.insert(0, _with_slash(suggested_path))
        candidates = list(dict.fromkeys(candidates))

        timeout = aiohttp.ClientTimeout(total=self._http_timeout)
        last_error = None
        async with aiohttp.ClientSession(timeout=timeout) as session:
            for path in candidates:
                url = f"{scheme}://{ip}:{port}{path}"
                try:
                    async with session.get(url, ssl=False) as resp:
                        if resp.status < 500:
                            logger.info(f"Valid endpoint found: {url}")
                            return EndpointProbe(valid=True, path=path)
                        last_error = f"HTTP {resp.status} from {url}"
                except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                    last_error = f"{url}: {e or type(e).__name__}"
        logger.warning(f"No valid {proto} endpoint found for {ip}:{port}")
        return EndpointProbe(valid=False, error=last_error or "no endpoint responded")

    # ---------- Printing ----------

    async def print_file(self, printer_name: str, file_path: Path, *, job_name: str | None = None) -> None:
        if not await aiofiles.os.path.isfile(file_path):
            raise PrinterError(f"Print file does not exist: {file_path}")
        out = await self._run([
            settings.LP_PATH,
            "-d", printer_name,
            "-t", job_name or file_path.name,
            str(file_path),
        ])
        if not out.ok:
            raise PrinterError(f"lp failed (rc={out.returncode}): {out.output}")


cups_adapter = CupsAdapter()
