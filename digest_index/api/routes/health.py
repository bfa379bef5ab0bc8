"""
Health check endpoints.
Reports the index health state machine plus process and system resources.
"""
from datetime import datetime, timezone
import os
import sys
import psutil
from fastapi import APIRouter, Request, Response, status

from digest_index.core.config import settings
from digest_index.core.logging import get_logger
from digest_index.schemas.monitoring import HealthStatus, SystemInfo

logger = get_logger(__name__)

router = APIRouter()

# Track application start time
APP_START_TIME = datetime.now(timezone.utc)


def get_uptime_seconds() -> float:
    """Calculate application uptime in seconds."""
    return (datetime.now(timezone.utc) - APP_START_TIME).total_seconds()


def get_system_info() -> SystemInfo:
    """Get system resource information."""
    process = psutil.Process(os.getpid())
    memory = psutil.virtual_memory()

    return SystemInfo(
        cpu_percent=psutil.cpu_percent(interval=None),
        memory_percent=memory.percent,
        memory_available_mb=memory.available / 1024 / 1024,
        python_version=f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
        process_memory_mb=process.memory_info().rss / 1024 / 1024
    )


@router.get("/health", response_model=HealthStatus, tags=["health"])
async def health_check(request: Request, response: Response):
    """
    Health snapshot of the vector index.
    Responds 503 once the monitor has marked the index unhealthy.
    """
    monitor = request.app.state.indexer.health
    index_state = monitor.get_status()

    if index_state["status"] == "unhealthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    health_status = HealthStatus(
        status=index_state["status"],
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=settings.APP_VERSION,
        uptime_seconds=get_uptime_seconds(),
        index=index_state,
        system=get_system_info()
    )

    logger.info(
        "health_check_performed",
        status=index_state["status"],
        consecutive_failures=index_state["consecutive_failures"]
    )

    return health_status


@router.get("/health/live", tags=["health"])
async def liveness_check():
    """
    Simple liveness check for container orchestration.
    Returns 200 if the process is running.
    """
    return {"status": "alive", "timestamp": datetime.now(timezone.utc).isoformat()}
