"""
Workflow execution service.

Hosts the execution queue dispatcher jobs and, unless disabled, an in-process
Temporal worker. Standalone workers run with ``python -m services.temporal.worker``.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import ORJSONResponse

from core.container import container
from core.health import get_health_status, set_startup_time
from core.logging import configure_logging, get_logger
from services.temporal.worker import TemporalWorkerManager

# Initialize settings and logging
settings = container.settings()
configure_logging(settings)
logger = get_logger(__name__)

# Suppress noisy loggers
import logging
logging.getLogger("uvicorn").setLevel(logging.WARNING)
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
logging.getLogger("uvicorn.error").setLevel(logging.WARNING)

PROCESS_QUEUE_JOB = "process-execution-queue"
RECOVER_STALE_JOB = "recover-stale-queue-items"

_worker: Optional[TemporalWorkerManager] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    global _worker

    logger.info("Starting workflow execution service", instance=settings.instance_name)
    set_startup_time()

    await container.database().startup()

    if settings.temporal_enabled:
        client = await container.temporal_client().connect()
        if settings.temporal_worker_enabled:
            _worker = TemporalWorkerManager(
                client,
                container.workflow_activities(),
                task_queue=settings.temporal_task_queue,
                pool_size=settings.temporal_max_concurrent_activities,
            )
            await _worker.start()

    from services.scheduler import register_interval_job, start_scheduler, shutdown_scheduler
    start_scheduler()
    if settings.temporal_enabled and settings.dispatcher_enabled:
        dispatcher = container.dispatcher()
        register_interval_job(PROCESS_QUEUE_JOB, settings.queue_poll_interval_seconds, dispatcher.poll)
        register_interval_job(RECOVER_STALE_JOB, settings.queue_recovery_interval_seconds, dispatcher.sweep)
        logger.info("Execution queue dispatcher scheduled",
                    poll_interval=settings.queue_poll_interval_seconds,
                    batch_size=settings.queue_batch_size)

    logger.info("Services started successfully")
    yield

    # Shutdown: stop taking new work before closing resources
    shutdown_scheduler()
    if _worker is not None:
        await _worker.stop()
        _worker = None
    await container.temporal_client().disconnect()
    await container.http_client().aclose()
    await container.database().shutdown()
    logger.info("Services shutdown complete")


app = FastAPI(
    title="Workflow Execution Service",
    version="1.0.0",
    description="Durable workflow orchestration with a shared execution queue",
    lifespan=lifespan,
    default_response_class=ORJSONResponse
)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception", path=request.url.path,
                 error=f"{type(exc).__name__}: {exc}", exc_info=True)
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "error": type(exc).__name__, "detail": "Internal server error"},
    )


@app.get("/health")
async def health_check():
    """Detailed health check."""
    health = await get_health_status(
        container.database(),
        container.temporal_client(),
        container.execution_queue(),
        settings,
        worker=_worker,
    )
    health["environment"] = "development" if settings.debug else "production"
    health["timestamp"] = datetime.now(timezone.utc).isoformat()
    return health


if __name__ == "__main__":
    import uvicorn
    logger.info("Starting workflow execution service",
                host=settings.host, port=settings.port, debug=settings.debug)
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        reload_dirs=["."] if settings.debug else None,
        reload_excludes=["*.pyc", "__pycache__", "*.log", "*.db"] if settings.debug else None,
    )
