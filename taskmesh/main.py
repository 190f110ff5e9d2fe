"""FastAPI entry-point exposing orchestrator controls."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from taskmesh.api.routes import router as agents_router
from taskmesh.api.system import router as system_router
from taskmesh.api.tasks import router as tasks_router
from taskmesh.config import config
from taskmesh.logging_config import configure_logging
from taskmesh.runtime import get_orchestrator, get_resource_manager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for FastAPI application."""
    configure_logging(config.log_level)
    resources = get_resource_manager()
    orchestrator = get_orchestrator()

    # uvicorn owns SIGINT/SIGTERM, so only exception hooks are installed here
    resources.install_crash_handlers(handle_signals=False)
    resources.start_monitoring(config.resources.monitor_interval_ms)
    await orchestrator.start_orchestrator()
    logger.info("taskmesh started (%s)", config.environment)
    yield
    # Shutdown: persist state, then stop the loops
    await resources.emergency_dump("shutdown")
    await orchestrator.stop_orchestrator()
    await resources.stop_monitoring()
    resources.uninstall_crash_handlers()


app = FastAPI(title="taskmesh", lifespan=lifespan)
app.include_router(agents_router)
app.include_router(tasks_router)
app.include_router(system_router)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


def run() -> None:
    """Serve the API with uvicorn on the configured host and port."""
    uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level.lower())


if __name__ == "__main__":
    run()
