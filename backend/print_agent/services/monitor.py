"""Hosts the ingestion pipeline: filesystem watch plus periodic sweeps.

The watchdog Observer runs in its own thread; its handler only hands events
to the asyncio loop. All processing happens on the loop.
"""
import asyncio
import logging
from pathlib import Path
from typing import Optional

import aiofiles.os
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from print_agent.services.error_log import Entity, record_error
from print_agent.services.ingestion import FileIngestionPipeline
from print_agent.services.peer_notifier import PeerNotifier

logger = logging.getLogger(__name__)


def is_hidden(path: Path, root: Path) -> bool:
    try:
        parts = path.relative_to(root).parts
    except ValueError:
        parts = path.parts
    return any(part.startswith(".") for part in parts)


class _EventBridge(FileSystemEventHandler):
    def __init__(self, monitor: "FileMonitor", loop: asyncio.AbstractEventLoop):
        self._monitor = monitor
        self._loop = loop

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._loop.call_soon_threadsafe(self._monitor.dispatch, event.event_type,
                                        str(event.src_path), str(getattr(event, "dest_path", "") or ""))


class FileMonitor:
    def __init__(
        self,
        pipeline: FileIngestionPipeline,
        notifier: Optional[PeerNotifier] = None,
        *,
        sweep_interval: float = 5.0,
        retention_interval: float = 3600.0,
    ):
        self.pipeline = pipeline
        self._notifier = notifier
        self._sweep_interval = sweep_interval
        self._retention_interval = retention_interval
        self._observer: Optional[Observer] = None
        self._timers: list[asyncio.Task] = []
        self._events: set[asyncio.Task] = set()

    @property
    def root(self) -> Path:
        return self.pipeline.root

    @property
    def running(self) -> bool:
        return self._observer is not None

    # ---------- Event routing ----------

    def dispatch(self, event_type: str, src_path: str, dest_path: str = "") -> Optional[asyncio.Task]:
        """Map a watcher event to a pipeline entry point. Must run on the loop."""
        if event_type == "created":
            return self._spawn(self.pipeline.on_file_appeared, src_path)
        if event_type == "modified":
            return self._spawn(self.pipeline.on_file_changed, src_path)
        if event_type == "deleted":
            return self._spawn(self.pipeline.on_file_removed, src_path)
        if event_type == "moved":
            self._spawn(self.pipeline.on_file_removed, src_path)
            if dest_path:
                return self._spawn(self.pipeline.on_file_appeared, dest_path)
        return None

    def _spawn(self, handler, raw_path: str) -> Optional[asyncio.Task]:
        path = Path(raw_path)
        if is_hidden(path, self.root):
            return None
        task = asyncio.create_task(self._guard(handler, path))
        self._events.add(task)
        task.add_done_callback(self._events.discard)
        return task

    async def _guard(self, handler, path: Path):
        try:
            return await handler(path)
        except Exception as e:
            await record_error(Entity.MONITOR, f"Handle Event {handler.__name__}", e)

    async def wait_idle(self) -> None:
        """Wait for in-flight event handlers and background notifications."""
        if self._events:
            await asyncio.gather(*list(self._events), return_exceptions=True)
        await self.pipeline.drain()

    # ---------- Timers ----------

    async def _every(self, interval: float, job, name: str) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                await record_error(Entity.MONITOR, name, e)

    # ---------- Lifecycle ----------

    async def start(self) -> None:
        await aiofiles.os.makedirs(self.root, exist_ok=True)

        if self._notifier is not None:
            try:
                await self._notifier.refresh()
            except Exception as e:
                logger.warning(f"Companion API discovery failed at startup: {e}")

        logger.info(f"Initial sweep of {self.root}")
        await self.pipeline.sweep()

        loop = asyncio.get_running_loop()
        observer = Observer()
        observer.schedule(_EventBridge(self, loop), str(self.root), recursive=True)
        observer.start()
        self._observer = observer

        self._timers = [
            asyncio.create_task(self._every(self._sweep_interval, self.pipeline.sweep, "Check All Files")),
            asyncio.create_task(
                self._every(self._retention_interval, self.pipeline.retention_sweep, "Delete Old Files")
            ),
        ]
        logger.info(f"Monitoring {self.root}")

    async def stop(self) -> None:
        for task in self._timers:
            task.cancel()
        if self._timers:
            await asyncio.gather(*self._timers, return_exceptions=True)
        self._timers = []

        if self._observer is not None:
            self._observer.stop()
            await asyncio.to_thread(self._observer.join, 5)
            self._observer = None

        for task in list(self._events):
            task.cancel()
        self.pipeline.cancel_background()
        logger.info("File monitor stopped")
