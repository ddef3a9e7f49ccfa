"""Network probes used by printer discovery and fleet sync.

Each probe is independent and never raises: failures come back as False,
None or an ``online=False`` status, so a dead printer degrades a sync item
to a warning instead of aborting it.
"""
import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from print_agent.config import settings
from print_agent.services.commands import CommandRunner, run_command

logger = logging.getLogger(__name__)

COMMON_PRINTER_PORTS = [9100, 631, 515, 80, 443]
HR_DEVICE_STATUS_OID = ".1.3.6.1.2.1.25.3.2.1.5.1"

_IPV4 = re.compile(r"^(\d{1,3}\.){3}\d{1,3}$")
_ARP_IP = re.compile(r"\(([0-9.]+)\)")


@dataclass(frozen=True)
class PrinterStatus:
    online: bool
    status: str
    error: Optional[str] = None


@dataclass(frozen=True)
class PingResult:
    success: bool
    output: str


@dataclass(frozen=True)
class MacLookup:
    found: bool
    mac_address: str
    ip: Optional[str] = None
    port: Optional[int] = None
    online: bool = False
    status: Optional[str] = None
    protocol: Optional[str] = None
    error: Optional[str] = None


def normalize_mac(mac: str) -> str:
    return mac.strip().lower().replace("-", ":")


def protocol_for_port(port: int) -> str:
    if port == 631:
        return "ipp"
    if port == 515:
        return "lpd"
    return "socket"


class NetworkProbe:
    def __init__(
        self,
        runner: CommandRunner = run_command,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        tcp_timeout: float | None = None,
    ):
        self._run = runner
        self._sleep = sleep
        self._tcp_timeout = tcp_timeout

    # ---------- TCP / ICMP ----------

    async def test_port(self, ip: str, port: int = 9100, timeout: float | None = None) -> bool:
        """True iff a TCP connection to ip:port is established before the timeout."""
        if timeout is None:
            timeout = self._tcp_timeout if self._tcp_timeout is not None else settings.TCP_PROBE_TIMEOUT_SECONDS
        try:
            _, writer = await asyncio.wait_for(asyncio.open_connection(ip, port), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Timeout connecting to {ip}:{port}")
            return False
        except OSError as e:
            logger.warning(f"Error connecting to {ip}:{port}: {e}")
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True

    async def ping(self, ip: str) -> PingResult:
        out = await self._run(["ping", "-c", "1", "-W", "2", ip])
        return PingResult(success=out.ok, output=out.output)

    # ---------- Status ----------

    async def query_status(self, ip: str) -> PrinterStatus:
        """SNMP hrDeviceStatus, falling back to a port probe when SNMP is unavailable."""
        out = await self._run([
            "snmpget", "-v", "1", "-c", settings.SNMP_COMMUNITY, ip, HR_DEVICE_STATUS_OID,
        ])
        if out.ok:
            if "running(4)" in out.stdout:
                return PrinterStatus(online=True, status="running")
            if "warning(3)" in out.stdout:
                return PrinterStatus(online=True, status="warning")
            if "down(5)" in out.stdout:
                return PrinterStatus(online=False, status="down")
            return PrinterStatus(online=True, status="unknown")

        connected = await self.test_port(ip)
        return PrinterStatus(
            online=connected,
            status="online" if connected else "offline",
            error=out.output or "snmpget failed",
        )

    # ---------- MAC resolution ----------

    async def _ip_from_arp(self, mac: str) -> Optional[str]:
        out = await self._run(["arp", "-a"])
        if not out.ok:
            logger.warning(f"ARP lookup failed: {out.output}")
            return None
        for line in out.stdout.splitlines():
            if mac in line.lower():
                match = _ARP_IP.search(line)
                if match:
                    return match.group(1)
        return None

    async def _ip_from_neighbors(self, mac: str) -> Optional[str]:
        out = await self._run(["ip", "neigh"])
        if not out.ok:
            logger.warning(f"ip neigh lookup failed: {out.output}")
            return None
        for line in out.stdout.splitlines():
            if mac in line.lower():
                first = line.split(" ")[0]
                if _IPV4.match(first):
                    return first
        return None

    async def _ip_from_scan(self, mac: str) -> Optional[str]:
        route = await self._run(["ip", "route"])
        match = re.search(r"default via ([0-9.]+)", route.stdout) if route.ok else None
        if not match:
            logger.warning("Network scan skipped: no default route")
            return None
        network_range = ".".join(match.group(1).split(".")[:3]) + ".0/24"
        scan = await self._run(["nmap", "-sn", network_range], timeout=120)
        if not scan.ok:
            logger.warning(f"Network scan failed: {scan.output}")
            return None
        # give the kernel a moment to populate the ARP table
        await self._sleep(2)
        return await self._ip_from_arp(mac)

    async def resolve_ip_from_mac(self, mac_address: str) -> Optional[str]:
        """ARP table, then neighbor table, then subnet scan + ARP. First hit wins."""
        mac = normalize_mac(mac_address)
        for method in (self._ip_from_arp, self._ip_from_neighbors, self._ip_from_scan):
            ip = await method(mac)
            if ip:
                logger.info(f"Resolved {mac} to {ip} via {method.__name__}")
                return ip
        return None

    async def find_printer_by_mac(self, mac_address: str) -> MacLookup:
        ip = await self.resolve_ip_from_mac(mac_address)
        if not ip:
            return MacLookup(
                found=False, mac_address=mac_address,
                error="No IP found for the given MAC address",
            )

        open_port = None
        for port in COMMON_PRINTER_PORTS:
            if await self.test_port(ip, port):
                open_port = port
                break
        if open_port is None:
            return MacLookup(
                found=True, mac_address=mac_address, ip=ip, online=False,
                error="No printer port responding",
            )

        status = await self.query_status(ip)
        return MacLookup(
            found=True,
            mac_address=mac_address,
            ip=ip,
            port=open_port,
            online=status.online,
            status=status.status,
            protocol=protocol_for_port(open_port),
        )


network_probe = NetworkProbe()
