"""Pydantic schemas for API serialization."""

from .monitoring import (
    SystemInfo,
    EmbeddingProbe,
    HealthState,
    HealthStatus,
    OperationMetric,
    ErrorMetric,
    UsageSummary,
    MetricsResponse,
    MetricsCleared
)

__all__ = [
    "SystemInfo",
    "EmbeddingProbe",
    "HealthState",
    "HealthStatus",
    "OperationMetric",
    "ErrorMetric",
    "UsageSummary",
    "MetricsResponse",
    "MetricsCleared"
]
