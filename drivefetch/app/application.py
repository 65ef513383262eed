"""FastAPI application setup."""
import asyncio
import contextlib
import logging
import sys
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Security
from fastapi.security import APIKeyHeader

from drivefetch.config import AuthConfig, RuntimeConfig, Settings
from drivefetch.routes import download_router, system_router, tasks_router
from drivefetch.services import EventHub, ProcessSupervisor, Scheduler
from drivefetch.state import TaskRegistry
from .middleware import RequestIdFilter, RequestLoggingMiddleware

logger = logging.getLogger("drivefetch")


def setup_logging(level: str = "INFO") -> None:
    """Configure the drivefetch logger once, with request_id on every line."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s request_id=%(request_id)s %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, RequestIdFilter) for f in handler.filters):
            handler.addFilter(RequestIdFilter())
    logger.setLevel(level.upper())


def _api_key_dependency(auth_config: AuthConfig):
    api_key_header = APIKeyHeader(name=auth_config.header_name, auto_error=False)

    async def require_api_key(api_key: Optional[str] = Security(api_key_header)) -> None:
        """Global API key dependency."""
        if not auth_config.enabled:
            return

        if not auth_config.master_key:
            logger.error("API key auth enabled but master key env var missing")
            raise HTTPException(status_code=500, detail="API key auth is enabled but API_MASTER_KEY is not set.")

        if not api_key or api_key != auth_config.master_key:
            logger.warning("Authentication failed (invalid/missing API key)")
            raise HTTPException(status_code=401, detail="Invalid or missing API key.")

    return require_api_key


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    registry: TaskRegistry = app.state.registry
    scheduler: Scheduler = app.state.scheduler

    async def resume_later() -> None:
        # give the server a moment to come up before spawning downloads
        await asyncio.sleep(settings.resume_delay)
        scheduler.recover()

    flusher = asyncio.create_task(registry.run_flusher())
    resumer = asyncio.create_task(resume_later())
    logger.info("drivefetch started")
    try:
        yield
    finally:
        for background in (resumer, flusher):
            background.cancel()
        await asyncio.gather(resumer, flusher, return_exceptions=True)
        await scheduler.shutdown()
        registry.close()
        logger.info("drivefetch stopped")


def create_app(settings: Optional[Settings] = None, auth_config: Optional[AuthConfig] = None) -> FastAPI:
    """Build the application and its task registry, scheduler and event hub."""
    settings = settings or Settings.from_env()
    auth_config = auth_config or AuthConfig.from_env()

    registry = TaskRegistry(db_file=settings.tasks_db, flush_interval=settings.flush_interval)
    hub = EventHub()
    supervisor = ProcessSupervisor(settings.tool_command)
    scheduler = Scheduler(
        registry,
        supervisor,
        hub,
        runtime_config=RuntimeConfig.load(settings.config_file),
        config_file=settings.config_file,
        poll_interval=settings.poll_interval,
    )

    app = FastAPI(
        title="drivefetch",
        description="Batch Google Drive folder downloads with live progress",
        dependencies=[Depends(_api_key_dependency(auth_config))],
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.registry = registry
    app.state.hub = hub
    app.state.supervisor = supervisor
    app.state.scheduler = scheduler

    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(download_router)
    app.include_router(tasks_router)
    app.include_router(system_router)

    return app


def start_api() -> None:
    """Start the API server."""
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    app = create_app(settings)
    logger.info("Starting uvicorn host=%s port=%s", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port)
