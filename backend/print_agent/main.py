"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from print_agent.config import settings
from print_agent.database import async_session, engine, get_db
from print_agent.dependencies import file_repository
from print_agent.models import Base
from print_agent.services import error_log
from print_agent.services.error_log import record_error
from print_agent.services.ingestion import FileIngestionPipeline
from print_agent.services.monitor import FileMonitor
from print_agent.services.peer_notifier import PeerNotifier

logger = logging.getLogger(__name__)


def build_monitor() -> FileMonitor:
    notifier = PeerNotifier()
    pipeline = FileIngestionPipeline(
        Path(settings.WATCH_ROOT),
        file_repository,
        notifier,
        debounce_seconds=settings.DEBOUNCE_SECONDS,
        hold_seconds=settings.PROCESSING_HOLD_SECONDS,
        require_subdirectory=settings.REQUIRE_SUBDIRECTORY,
        retention_days=settings.FILES_OLD_THRESHOLD_DAYS,
    )
    return FileMonitor(
        pipeline,
        notifier,
        sweep_interval=settings.SCAN_INTERVAL_SECONDS,
        retention_interval=settings.RETENTION_INTERVAL_SECONDS,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, point the error log at the database, start the file monitor."""
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    error_log.configure(async_session)

    monitor = build_monitor()
    await monitor.start()
    app.state.monitor = monitor

    yield

    # Cleanup
    await monitor.stop()
    error_log.configure(None)
    await engine.dispose()


app = FastAPI(
    title="Print Agent API",
    version="1.0.0",
    description="Shared-folder ingestion and CUPS fleet management.",
    lifespan=lifespan,
)

# CORS
origins = [o.strip() for o in settings.CORS_ORIGINS.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    await record_error("API", f"{request.method} {request.url.path}", exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/api/health")
async def health_check():
    """Verify API and database connectivity."""
    try:
        async for db in get_db():
            await db.execute(text("SELECT 1"))
            return {"status": "ok", "database": "connected"}
    except Exception as e:
        return {"status": "error", "database": str(e)}


# Register routers
from print_agent.routes.files import router as files_router
from print_agent.routes.sync import router as sync_router
from print_agent.routes.print_jobs import router as print_router
from print_agent.routes.printers import router as printers_router
app.include_router(files_router)
app.include_router(sync_router)
app.include_router(print_router)
app.include_router(printers_router)


def run() -> None:
    import uvicorn

    uvicorn.run("print_agent.main:app", host="0.0.0.0", port=settings.API_PORT)


if __name__ == "__main__":
    run()
