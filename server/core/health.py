"""Health check utilities for daemon monitoring.

Provides uptime tracking and health status for the /health endpoint.
"""
import time
from typing import Dict, Any, Optional, TYPE_CHECKING

import psutil

if TYPE_CHECKING:
    from core.config import Settings
    from core.database import Database
    from services.execution.queue import ExecutionQueueService
    from services.temporal.client import TemporalClientWrapper
    from services.temporal.worker import TemporalWorkerManager

# Module-level startup time tracking
_startup_time: float = 0.0


def set_startup_time() -> None:
    """Record the application startup time. Call once during lifespan startup."""
    global _startup_time
    _startup_time = time.time()


def get_uptime() -> float:
    """Get uptime in seconds since startup."""
    return time.time() - _startup_time if _startup_time else 0.0


def get_memory_mb() -> float:
    """Get current process memory usage in MB."""
    return psutil.Process().memory_info().rss / (1024 * 1024)


async def check_database(database: "Database") -> bool:
    """Check database connectivity."""
    try:
        return await database.ping()
    except Exception:
        return False


async def check_temporal(client_wrapper: "TemporalClientWrapper") -> bool:
    """Check the Temporal frontend answers a health check."""
    if not client_wrapper.is_connected:
        return False
    try:
        return await client_wrapper.client.service_client.check_health()
    except Exception:
        return False


async def get_health_status(
    database: "Database",
    client_wrapper: "TemporalClientWrapper",
    queue: "ExecutionQueueService",
    settings: "Settings",
    worker: Optional["TemporalWorkerManager"] = None,
) -> Dict[str, Any]:
    """Get health status for /health endpoint.

    Returns:
        Dict containing status, uptime, checks, queue depth and feature flags.
    """
    db_healthy = await check_database(database)
    temporal_healthy = await check_temporal(client_wrapper) if settings.temporal_enabled else True

    pending = await queue.get_pending_count() if db_healthy else None

    return {
        "status": "healthy" if (db_healthy and temporal_healthy) else "degraded",
        "uptime_seconds": round(get_uptime(), 1),
        "memory_mb": round(get_memory_mb(), 1),
        "checks": {
            "database": db_healthy,
            "temporal": temporal_healthy,
        },
        "queue": {
            "pending": pending,
        },
        "features": {
            "temporal": settings.temporal_enabled,
            "worker": worker is not None and worker.is_running,
            "dispatcher": settings.dispatcher_enabled,
        },
    }
