"""
Composite health check.

Five equally weighted sub-scores (query-time headroom, cache hit ratio,
average index hit ratio, connection headroom, storage headroom) form the 0-100
performance score. The status comes from the issues found against the same
thresholds the monitor and analyzer use.
"""

import logging
from typing import List, Optional, Sequence

from App.enums import HealthStatus, Severity
from App.schema.Optimization_schema import (
    HealthCheck,
    HealthIssue,
    HealthMetrics,
    IndexMetric,
    PerformanceSample,
)
from App.services.IndexAnalyzer import IndexAnalyzer
from App.services.PerformanceMonitor import PerformanceMonitor
from Config.settings import OptimizerPolicy

logger = logging.getLogger(__name__)


def _bounded(score: float) -> float:
    return max(0.0, min(100.0, score))


def storage_headroom(indexes: Sequence[IndexMetric], policy: OptimizerPolicy) -> float:
    """Share of vector indexes below the fragmentation threshold, as 0-100."""
    if not indexes:
        return 100.0
    healthy = sum(1 for idx in indexes if idx.fragmentation_ratio <= policy.fragmentation_threshold)
    return healthy / len(indexes) * 100


def detect_issues(
    sample: PerformanceSample, indexes: Sequence[IndexMetric], policy: OptimizerPolicy
) -> List[HealthIssue]:
    issues = []

    if sample.avg_query_time_ms > policy.latency_budget_ms:
        issues.append(HealthIssue(
            category="performance",
            severity=Severity.HIGH if sample.avg_query_time_ms > policy.critical_latency_ms else Severity.MEDIUM,
            description=(
                f"Average query time is {sample.avg_query_time_ms:.2f}ms "
                f"(target: <{policy.latency_budget_ms:.0f}ms)"
            ),
            recommendation="Review and optimize vector indexes, consider upgrading to HNSW",
        ))

    if sample.cache_hit_ratio < policy.cache_hit_floor:
        issues.append(HealthIssue(
            category="caching",
            severity=Severity.HIGH if sample.cache_hit_ratio < policy.cache_hit_critical else Severity.MEDIUM,
            description=f"Cache hit ratio is {sample.cache_hit_ratio:.2f}% (target: >{policy.cache_hit_floor:.0f}%)",
            recommendation="Increase shared_buffers, run VACUUM and ANALYZE on tables",
        ))

    if sample.connection_pool_usage > policy.pool_usage_ceiling:
        issues.append(HealthIssue(
            category="connections",
            severity=Severity.HIGH if sample.connection_pool_usage > policy.pool_usage_critical else Severity.MEDIUM,
            description=f"Connection pool usage is {sample.connection_pool_usage:.2f}%",
            recommendation="Increase connection pool size or optimize connection usage",
        ))

    fragmented = [idx.index_name for idx in indexes if idx.fragmentation_ratio > policy.fragmentation_threshold]
    if fragmented:
        issues.append(HealthIssue(
            category="maintenance",
            severity=Severity.MEDIUM,
            description=f"Indexes with high fragmentation: {', '.join(fragmented)}",
            recommendation="Run REINDEX on fragmented indexes during maintenance window",
        ))

    return issues


def evaluate_health(
    sample: PerformanceSample, indexes: Sequence[IndexMetric], policy: Optional[OptimizerPolicy] = None
) -> HealthCheck:
    policy = policy or OptimizerPolicy()

    query_time_score = _bounded(100 - (sample.avg_query_time_ms / policy.latency_budget_ms) * 100)
    cache_score = _bounded(sample.cache_hit_ratio)
    index_score = _bounded(sum(idx.hit_ratio for idx in indexes) / len(indexes)) if indexes else 0.0
    connection_score = _bounded(100 - (sample.connection_pool_usage / policy.pool_usage_ceiling) * 100)
    storage_score = _bounded(storage_headroom(indexes, policy))

    performance_score = (query_time_score + cache_score + index_score + connection_score + storage_score) / 5
    issues = detect_issues(sample, indexes, policy)

    if any(issue.severity == Severity.HIGH for issue in issues):
        status = HealthStatus.CRITICAL
    elif any(issue.severity == Severity.MEDIUM for issue in issues):
        status = HealthStatus.WARNING
    else:
        status = HealthStatus.HEALTHY

    return HealthCheck(
        overall_health=status,
        performance_score=round(performance_score),
        issues=issues,
        metrics=HealthMetrics(
            avg_query_time_ms=sample.avg_query_time_ms,
            cache_hit_ratio=sample.cache_hit_ratio,
            index_efficiency=index_score,
            connection_health=connection_score,
            storage_efficiency=storage_score,
        ),
    )


class HealthService:
    def __init__(self, monitor: PerformanceMonitor, analyzer: IndexAnalyzer, policy: Optional[OptimizerPolicy] = None):
        self.monitor = monitor
        self.analyzer = analyzer
        self.policy = policy or monitor.policy

    async def get_health_check(self) -> HealthCheck:
        # Reuse the monitor's latest sample; sample on demand when the loop has not run yet
        sample = self.monitor.latest_sample()
        if sample is None:
            sample = await self.monitor.collect_performance_metrics()
        indexes = await self.analyzer.analyze_index_performance()
        health = evaluate_health(sample, indexes, self.policy)
        logger.info(
            "🩺 Health check completed: %s (score %d, %d issues)",
            health.overall_health.value, health.performance_score, len(health.issues),
        )
        return health
