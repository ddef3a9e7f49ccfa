"""Pytest configuration and shared fixtures"""

from pathlib import Path
from typing import Optional

import pytest
import pytest_asyncio
from pypdf import PdfWriter
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from print_agent.models import Base
from print_agent.result import Err, ErrorKind, Ok
from print_agent.services import error_log
from print_agent.services.commands import CommandOutput
from print_agent.services.cups import EndpointProbe, QueueConfig, build_printer_uri
from print_agent.services.file_store import FileRepository
from print_agent.services.network import MacLookup, PingResult
from print_agent.services.printer_store import PrinterRepository


class FakeClock:
    """Manually advanced clock for TtlCache and sweep tests"""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRunner:
    """Command runner that records argv and answers by command prefix"""

    def __init__(self, responses: Optional[dict] = None):
        self.calls: list[list[str]] = []
        self.responses = dict(responses or {})

    async def __call__(self, args, **kwargs) -> CommandOutput:
        self.calls.append(list(args))
        for prefix in sorted(self.responses, key=len, reverse=True):
            if tuple(args[: len(prefix)]) == prefix:
                return self.responses[prefix]
        return CommandOutput(0)

    def commands(self) -> list[str]:
        return [c[0] for c in self.calls]


class FakeAdapter:
    """Stand-in for CupsAdapter that records configure/remove calls"""

    def __init__(self):
        self.configured: list[QueueConfig] = []
        self.removed: list[str] = []
        self.printed: list[tuple[str, Path]] = []
        self.fail_configure_for: set[str] = set()
        self.fail_remove_for: set[str] = set()
        self.endpoint = EndpointProbe(valid=True, path="/ipp/print")
        self.print_error: Optional[Exception] = None

    async def configure(self, queue: QueueConfig):
        self.configured.append(queue)
        if queue.name in self.fail_configure_for:
            return Err(ErrorKind.ADAPTER, f"lpadmin failed for {queue.name}")
        return Ok(queue.uri or build_printer_uri(queue.protocol, queue.ip_address, queue.port, queue.path))

    async def remove(self, name: str):
        self.removed.append(name)
        if name in self.fail_remove_for:
            return Err(ErrorKind.ADAPTER, f"lpadmin -x failed for {name}")
        return Ok(True)

    async def test_endpoint(self, protocol, ip, port=None, suggested_path=None):
        return self.endpoint

    async def print_file(self, printer_name, file_path, *, job_name=None):
        if self.print_error is not None:
            raise self.print_error
        self.printed.append((printer_name, file_path))

    @property
    def calls(self) -> int:
        return len(self.configured) + len(self.removed)


class FakeProbe:
    """Stand-in for NetworkProbe with fixed answers"""

    def __init__(self, port_open: bool = True, mac_lookup: Optional[MacLookup] = None):
        self.port_open = port_open
        self.mac_lookup = mac_lookup
        self.port_checks: list[tuple[str, int]] = []

    async def test_port(self, ip, port=9100, timeout=None):
        self.port_checks.append((ip, port))
        return self.port_open

    async def ping(self, ip):
        return PingResult(success=self.port_open, output="")

    async def find_printer_by_mac(self, mac_address):
        if self.mac_lookup is None:
            return MacLookup(found=False, mac_address=mac_address, error="No IP found for the given MAC address")
        return self.mac_lookup


class FakeNotifier:
    """Records announced file ids"""

    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.notified: list[str] = []
        self.refreshed = 0

    async def notify(self, file_id: str) -> bool:
        self.notified.append(file_id)
        return self.succeed

    async def refresh(self, hosts=None):
        self.refreshed += 1
        return []


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Temp-file SQLite database with all tables created"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'print_agent.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    error_log.configure(factory)
    yield factory
    error_log.configure(None)
    await engine.dispose()


@pytest.fixture
def file_repo(session_factory) -> FileRepository:
    return FileRepository(session_factory)


@pytest.fixture
def printer_repo(session_factory) -> PrinterRepository:
    return PrinterRepository(session_factory)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_pdf():
    """Write a blank multi-page PDF"""

    def _make(path: Path, pages: int = 3) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        writer = PdfWriter()
        for _ in range(pages):
            writer.add_blank_page(width=612, height=792)
        with open(path, "wb") as f:
            writer.write(f)
        return path

    return _make
