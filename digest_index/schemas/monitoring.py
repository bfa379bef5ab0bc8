"""
Operational API schemas.
Response models for the health and metrics endpoints.
"""
from typing import Dict, List, Optional, Any
from pydantic import BaseModel, Field


class SystemInfo(BaseModel):
    """System information model."""
    cpu_percent: float
    memory_percent: float
    memory_available_mb: float
    python_version: str
    process_memory_mb: float


class EmbeddingProbe(BaseModel):
    """Result of the latest embedding API probe."""
    available: bool
    reason: str
    check_duration_ms: float
    checked_at: str


class HealthState(BaseModel):
    """Snapshot of the index health state machine."""
    is_healthy: bool
    status: str = Field(..., description="unknown, healthy or unhealthy")
    consecutive_failures: int
    consecutive_successes: int
    last_check: Optional[str] = None
    last_error: Optional[str] = None
    last_duration_ms: Optional[float] = None
    total_checks: int = 0
    healthy_threshold: int
    unhealthy_threshold: int
    monitoring: bool
    embedding: Optional[EmbeddingProbe] = None


class HealthStatus(BaseModel):
    """Health check response model."""
    status: str
    timestamp: str
    version: str
    uptime_seconds: float
    index: HealthState
    system: SystemInfo


class OperationMetric(BaseModel):
    operation: str
    count: int
    calls: int
    total_duration: float
    avg_duration: float
    min_duration: float
    max_duration: float
    slow_count: int
    p95_duration: float


class LastError(BaseModel):
    message: str
    type: str
    timestamp: str
    duration_ms: Optional[float] = None


class ErrorMetric(BaseModel):
    operation: str
    count: int
    error_types: Dict[str, int] = Field(default_factory=dict)
    last_error: Optional[LastError] = None


class UsageSummary(BaseModel):
    """Embedding token and cost totals."""
    total_tokens: int
    total_cost: float
    request_count: int
    avg_cost_per_request: float
    avg_tokens_per_request: float


class MetricsResponse(BaseModel):
    """Metrics snapshot response model."""
    operations: Dict[str, OperationMetric]
    errors: Dict[str, ErrorMetric]
    slow_query_threshold_ms: float
    generated_at: str
    embedding_usage: UsageSummary


class MetricsCleared(BaseModel):
    status: str = "cleared"
    cleared_operations: List[str] = Field(default_factory=list)
    timestamp: str
