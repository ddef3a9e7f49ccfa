"""Best-effort notification of the companion desktop API.

The desktop application that shows the print queue runs on a host whose
address the agent does not know (typically the Windows side of a WSL2 or
Docker setup). Candidate addresses are gathered from configuration and the
local network setup, probed concurrently, and the responsive ones are kept
in a short-lived cache. A failed notification never affects ingestion; it is
logged, the cache is cleared, and the next file tries again.
"""
import asyncio
import logging
import re
import socket
from typing import Optional

import aiofiles
import aiohttp

from print_agent.config import settings
from print_agent.services.commands import CommandRunner, run_command
from print_agent.services.error_log import Entity, record_error
from print_agent.services.ttl_cache import TtlCache

logger = logging.getLogger(__name__)

# Default gateways of the usual Docker/WSL bridge networks
COMMON_BRIDGE_GATEWAYS = [
    "172.17.0.1", "172.18.0.1", "172.19.0.1", "172.20.0.1",
    "172.21.0.1", "172.22.0.1", "192.168.0.1",
]

_IPV4 = re.compile(r"^(\d{1,3}\.){3}\d{1,3}$")


class PeerNotifier:
    def __init__(
        self,
        cache: Optional[TtlCache[str, bool]] = None,
        runner: CommandRunner = run_command,
        port: int | None = None,
        timeout: float | None = None,
        configured_hosts: Optional[list[str]] = None,
        resolv_conf: str = "/etc/resolv.conf",
    ):
        self._cache = cache if cache is not None else TtlCache(settings.PEER_CACHE_TTL_SECONDS)
        self._run = runner
        self._port = port or settings.PEER_API_PORT
        self._timeout = timeout if timeout is not None else settings.PEER_TIMEOUT_SECONDS
        if configured_hosts is None:
            configured_hosts = [h.strip() for h in settings.PEER_HOSTS.split(",") if h.strip()]
        self._configured_hosts = configured_hosts
        self._resolv_conf = resolv_conf

    @property
    def active_hosts(self) -> list[str]:
        return self._cache.keys()

    # ---------- Discovery ----------

    async def _gateway(self) -> Optional[str]:
        out = await self._run(["ip", "route"])
        match = re.search(r"default via ([0-9.]+)", out.stdout) if out.ok else None
        return match.group(1) if match else None

    async def _nameserver(self) -> Optional[str]:
        try:
            async with aiofiles.open(self._resolv_conf, "r") as f:
                content = await f.read()
        except OSError:
            return None
        match = re.search(r"nameserver\s+(\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3})", content)
        return match.group(1) if match else None

    async def _docker_host(self) -> Optional[str]:
        loop = asyncio.get_running_loop()
        try:
            infos = await loop.getaddrinfo("host.docker.internal", None, family=socket.AF_INET)
        except OSError:
            return None
        return infos[0][4][0] if infos else None

    async def candidate_hosts(self) -> list[str]:
        found: list[Optional[str]] = list(self._configured_hosts)
        for method in (self._docker_host, self._nameserver, self._gateway):
            try:
                found.append(await method())
            except Exception as e:
                logger.debug(f"Peer discovery via {method.__name__} failed: {e}")
        found.extend(COMMON_BRIDGE_GATEWAYS)

        hosts = []
        for ip in found:
            if ip and _IPV4.match(ip) and not ip.startswith("127.") and ip not in hosts:
                hosts.append(ip)
        return hosts

    async def _responds(self, session: aiohttp.ClientSession, url: str, **params) -> bool:
        try:
            async with session.get(url, params=params or None) as resp:
                return resp.status == 200
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.debug(f"Peer {url} not reachable: {e}")
            return False

    async def refresh(self, hosts: Optional[list[str]] = None) -> list[str]:
        """Probe candidates concurrently and cache the responsive ones."""
        if hosts is None:
            hosts = await self.candidate_hosts()
        logger.info(f"Testing companion API on {len(hosts)} hosts")
        timeout = aiohttp.ClientTimeout(total=self._timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            checks = await asyncio.gather(
                *(self._responds(session, f"http://{ip}:{self._port}/api") for ip in hosts)
            )
        active = [ip for ip, ok in zip(hosts, checks) if ok]
        for ip in active:
            self._cache.set(ip, True)
        logger.info(f"Active companion hosts: {active}")
        return active

    # ---------- Notification ----------

    async def notify(self, file_id: str) -> bool:
        targets = self.active_hosts
        if not targets:
            candidates = await self.candidate_hosts()
            targets = await self.refresh(candidates) or candidates

        errors = []
        timeout = aiohttp.ClientTimeout(total=self._timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            for ip in targets:
                url = f"http://{ip}:{self._port}/api/new-file"
                if await self._responds(session, url, fileId=file_id):
                    logger.info(f"File {file_id} announced to {url}")
                    self._cache.set(ip, True)
                    return True
                errors.append(url)
                self._cache.discard(ip)

        self._cache.clear()
        await record_error(
            Entity.MONITOR, "Send File to API",
            f"All attempts to announce file {file_id} failed",
            stack="\n".join(errors),
        )
        return False
