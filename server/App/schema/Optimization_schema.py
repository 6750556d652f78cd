from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, computed_field

from App.enums import (
    BatchOperationType,
    DistanceFunction,
    HealthStatus,
    IndexType,
    MaintenanceTaskType,
    Priority,
    RecommendationType,
    Severity,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- 1. INDEX ANALYSIS ---
class IndexMetric(BaseModel):
    """Derived read-only view of one physical index; the store's statistics stay authoritative."""

    index_name: str
    index_type: IndexType
    table_name: str
    size_mb: float = 0.0
    scan_count: int = 0
    tuple_read: int = 0
    tuple_fetch: int = 0
    hit_ratio: float = 0.0
    avg_query_time_ms: float = 0.0
    last_vacuum: Optional[datetime] = None
    last_analyze: Optional[datetime] = None
    fragmentation_ratio: float = Field(0.0, ge=0.0)


class TableStatistics(BaseModel):
    table_name: str
    row_count: int = 0
    size_mb: float = 0.0
    last_vacuum: Optional[datetime] = None
    last_analyze: Optional[datetime] = None


class VectorIndexConfiguration(BaseModel):
    index_type: IndexType = IndexType.IVFFLAT
    distance_function: DistanceFunction = DistanceFunction.COSINE
    lists: Optional[int] = Field(None, ge=1)
    m: Optional[int] = Field(None, ge=2)
    ef_construction: Optional[int] = Field(None, ge=4)
    ef_search: Optional[int] = Field(None, ge=1)


class OptimizationRecommendation(BaseModel):
    type: RecommendationType
    priority: Priority
    description: str
    estimated_improvement: str
    implementation_sql: Optional[str] = None
    rollback_sql: Optional[str] = None
    estimated_downtime_minutes: float = 0
    cost_benefit_score: float = Field(..., ge=0, le=100)
    target: Optional[str] = None
    requires_review: bool = False

    @computed_field
    @property
    def auto_applicable(self) -> bool:
        """Zero downtime, a ready-to-run statement, and no manual evaluation needed."""
        return (
            self.estimated_downtime_minutes == 0
            and bool(self.implementation_sql)
            and not self.requires_review
        )


class ApplyOutcome(BaseModel):
    description: str
    statement: str
    success: bool
    dry_run: bool = False
    error: Optional[str] = None
    rollback_sql: Optional[str] = None


class QueryPlanAnalysis(BaseModel):
    execution_time_ms: float
    original_plan: Dict[str, Any]
    optimized_query: str
    expected_improvement: str
    explanation: str
    recommendation: Optional[OptimizationRecommendation] = None


class BatchOperation(BaseModel):
    type: BatchOperationType
    data: Any = None


class BatchPlan(BaseModel):
    """Operations regrouped by type; writes chunked, searches kept together to run in parallel."""

    optimized_batches: List[List[Any]] = []
    estimated_time_reduction_ms: float = 0.0
    recommendations: List[str] = []


# --- 2. MONITORING ---
class PerformanceSample(BaseModel):
    timestamp: datetime = Field(default_factory=_utcnow)
    avg_query_time_ms: float = 0.0
    p95_query_time_ms: float = 0.0
    p99_query_time_ms: float = 0.0
    cache_hit_ratio: float = 0.0
    connection_pool_usage: float = 0.0
    memory_usage_mb: float = 0.0
    active_connections: int = 0


class PerformanceAlert(BaseModel):
    metric: str
    value: float
    threshold: float
    message: str


class MaintenanceTask(BaseModel):
    task_id: str
    task_type: MaintenanceTaskType
    table_name: str
    estimated_duration_minutes: int = 1
    last_run: Optional[datetime] = None
    next_scheduled: datetime
    auto_run: bool = True
    priority: int = 2
    success: bool = True
    error: Optional[str] = None


class TableMaintenanceState(BaseModel):
    table_name: str
    size_mb: float = 0.0
    last_vacuum: Optional[datetime] = None
    last_analyze: Optional[datetime] = None
    days_since_vacuum: float = 999.0
    days_since_analyze: float = 999.0


# --- 3. HEALTH ---
class HealthIssue(BaseModel):
    category: str
    severity: Severity
    description: str
    recommendation: str


class HealthMetrics(BaseModel):
    avg_query_time_ms: float
    cache_hit_ratio: float
    index_efficiency: float
    connection_health: float
    storage_efficiency: float


class HealthCheck(BaseModel):
    overall_health: HealthStatus
    performance_score: int = Field(..., ge=0, le=100)
    issues: List[HealthIssue] = []
    metrics: HealthMetrics


# --- 4. REQUESTS ---
class OptimizeRequest(BaseModel):
    table_name: str = Field("document_chunks", pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    config: Optional[VectorIndexConfiguration] = None


class ApplyRequest(OptimizeRequest):
    dry_run: bool = True


class QueryPlanRequest(BaseModel):
    query: str = Field(..., min_length=1)
    parameters: Dict[str, Any] = {}


class MaintenanceRequest(BaseModel):
    run_vacuum: bool = True
    run_analyze: bool = True
    cleanup: bool = True


class MonitoringStartRequest(BaseModel):
    interval_seconds: float = Field(300.0, gt=0)


class BatchOptimizationRequest(BaseModel):
    operations: List[BatchOperation] = Field(..., min_length=1)
