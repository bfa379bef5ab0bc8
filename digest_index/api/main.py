"""
Operational FastAPI application.
Read-only health and metrics surface over one ContentIndexer.
"""
from contextlib import asynccontextmanager
from typing import Optional
import time

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from digest_index.core.config import settings
from digest_index.core.logging import get_logger, set_correlation_id
from digest_index.core.exceptions import BaseAppException
from digest_index.services.indexing import ContentIndexer

# Get logger
logger = get_logger(__name__)


def create_app(indexer: Optional[ContentIndexer] = None, manage_lifecycle: bool = True) -> FastAPI:
    """
    Build the application around an indexer.

    Args:
        indexer: Indexer to observe; built from settings when omitted
        manage_lifecycle: Start and stop the indexer's loops with the app
    """
    indexer = indexer or ContentIndexer.build_default()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Manage application lifecycle.
        Runs the health and metrics loops for the life of the app.
        """
        logger.info("application_startup", version=settings.APP_VERSION)
        if manage_lifecycle:
            await indexer.start()
        try:
            yield
        finally:
            logger.info("application_shutdown")
            if manage_lifecycle:
                await indexer.shutdown()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Health and metrics for the publisher digest index",
        docs_url=f"{settings.API_PREFIX}/docs",
        openapi_url=f"{settings.API_PREFIX}/openapi.json",
        lifespan=lifespan
    )
    app.state.indexer = indexer

    @app.exception_handler(BaseAppException)
    async def handle_app_exception(request: Request, exc: BaseAppException):
        """Render client exceptions with their own status code."""
        logger.error(
            "application_error",
            path=request.url.path,
            error_code=exc.error_code,
            message=exc.message,
            details=exc.details
        )
        return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})

    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next):
        """Add processing time and correlation id to response headers."""
        start_time = time.time()

        correlation_id = set_correlation_id(request.headers.get("x-correlation-id"))
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(round(process_time * 1000, 2)) + "ms"
        response.headers["x-correlation-id"] = correlation_id
        return response

    from digest_index.api.routes import health, metrics
    app.include_router(health.router, prefix=settings.API_PREFIX, tags=["health"])
    app.include_router(metrics.router, prefix=settings.API_PREFIX, tags=["metrics"])

    return app
