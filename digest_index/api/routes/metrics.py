"""
Metrics endpoints.
Exposes the operation metrics snapshot and embedding usage totals.
"""
from fastapi import APIRouter, Request

from digest_index.core.logging import get_logger, get_utc_timestamp
from digest_index.schemas.monitoring import MetricsCleared, MetricsResponse

logger = get_logger(__name__)

router = APIRouter(prefix="/metrics", tags=["metrics"])


@router.get("", response_model=MetricsResponse)
async def get_metrics(request: Request) -> MetricsResponse:
    """
    Get per-operation counts, durations, slow operations and errors.
    """
    indexer = request.app.state.indexer
    snapshot = indexer.metrics.get_metrics()
    snapshot["embedding_usage"] = indexer.embeddings.get_usage_summary().to_dict()
    return MetricsResponse(**snapshot)


@router.delete("", response_model=MetricsCleared)
async def clear_metrics(request: Request) -> MetricsCleared:
    """
    Reset every operation and error counter.
    """
    metrics = request.app.state.indexer.metrics
    cleared = sorted(metrics.get_metrics()["operations"])
    metrics.clear()

    logger.info("metrics_cleared_via_api", operations=len(cleared))
    return MetricsCleared(cleared_operations=cleared, timestamp=get_utc_timestamp())
