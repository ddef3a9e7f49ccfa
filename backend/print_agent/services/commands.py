"""Async wrapper around OS command-line tools (CUPS, arp, ip, ping, snmpget).

Commands run as argument vectors, never through a shell. A missing binary or
a timeout becomes a non-zero CommandOutput instead of an exception, so every
caller handles one failure shape.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandOutput:
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return ((self.stdout or "") + (self.stderr or "")).strip()


CommandRunner = Callable[..., Awaitable[CommandOutput]]


async def run_command(args: Sequence[str], timeout: Optional[float] = 30.0) -> CommandOutput:
    logger.debug(f"Executing: {' '.join(args)}")
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        return CommandOutput(127, "", f"'{args[0]}' not found in PATH")
    except PermissionError as e:
        return CommandOutput(126, "", str(e))

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        return CommandOutput(124, "", f"'{args[0]}' timed out after {timeout}s")

    return CommandOutput(
        proc.returncode if proc.returncode is not None else 1,
        stdout.decode("utf-8", errors="replace"),
        stderr.decode("utf-8", errors="replace"),
    )
