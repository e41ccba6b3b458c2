import asyncio
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request

from casting_assistant.container import Container, build_container
from casting_assistant.logging_config import get_logger, setup_logging
from casting_assistant.routers import admin, line_webhook
from casting_assistant.services.retention_service import run_retention_worker

retention_logger = get_logger("retention_worker")


def _is_retention_worker_enabled(container: Container) -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return container.settings.retention_worker_enabled


def create_app(container: Optional[Container] = None) -> FastAPI:
    container = container or build_container()
    setup_logging(container.settings.log_level, service=container.settings.app_name)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        worker_task: asyncio.Task | None = None
        if _is_retention_worker_enabled(container):
            worker_task = asyncio.create_task(
                run_retention_worker(container.retention, container.settings.retention_sweep_interval_seconds)
            )
            retention_logger.info("Retention worker started")
        try:
            yield
        finally:
            if worker_task is not None:
                worker_task.cancel()
                try:
                    await worker_task
                except asyncio.CancelledError:
                    pass

    app = FastAPI(
        title=container.settings.app_name,
        description="LINE casting assistant: dedupe, decisioning, escalation and retention",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.container = container

    app.include_router(line_webhook.router)
    app.include_router(admin.router)

    @app.get("/health")
    async def health(request: Request):
        current: Container = request.app.state.container
        return {
            "status": "ok",
            "storage_backend": current.settings.storage_backend,
            "dedupe_backend": current.settings.dedupe_backend,
            "external_ai": current.settings.use_external_ai,
            "line_configured": current.line_client.is_configured(),
            "conversation_logs": current.memory.count(),
            "escalations": current.orchestrator.escalation_count,
        }

    return app


app = create_app()
