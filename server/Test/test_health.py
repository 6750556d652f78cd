import pytest

from App.enums import HealthStatus, IndexType, Severity
from App.schema.Optimization_schema import IndexMetric, PerformanceSample
from App.services.HealthService import HealthService, evaluate_health, storage_headroom
from App.services.IndexAnalyzer import IndexAnalyzer
from App.services.PerformanceMonitor import PerformanceMonitor


def index(hit_ratio=100.0, fragmentation=0.0, name="idx_chunks_embedding_hnsw") -> IndexMetric:
    return IndexMetric(index_name=name, index_type=IndexType.HNSW, table_name="document_chunks",
                       hit_ratio=hit_ratio, fragmentation_ratio=fragmentation)


def test_perfect_store_scores_100(policy):
    sample = PerformanceSample(avg_query_time_ms=0, cache_hit_ratio=100, connection_pool_usage=0)
    health = evaluate_health(sample, [index()], policy)
    assert health.overall_health == HealthStatus.HEALTHY
    assert health.performance_score == 100
    assert health.issues == []


def test_score_averages_five_components(policy):
    sample = PerformanceSample(avg_query_time_ms=100, cache_hit_ratio=90, connection_pool_usage=40)
    health = evaluate_health(sample, [index(hit_ratio=80), index(fragmentation=0.5, name="idx_b")], policy)
    # query 50, cache 90, index 90, connections 50, storage 50
    assert health.performance_score == 66
    assert health.metrics.index_efficiency == pytest.approx(90)
    assert health.metrics.storage_efficiency == pytest.approx(50)


def test_score_is_clamped(policy):
    sample = PerformanceSample(avg_query_time_ms=5000, cache_hit_ratio=0, connection_pool_usage=400)
    health = evaluate_health(sample, [], policy)
    assert health.performance_score == 20
    assert health.overall_health == HealthStatus.CRITICAL


def test_medium_issue_means_warning(policy):
    sample = PerformanceSample(avg_query_time_ms=250, cache_hit_ratio=99, connection_pool_usage=10)
    health = evaluate_health(sample, [index()], policy)
    assert health.overall_health == HealthStatus.WARNING
    assert [(i.category, i.severity) for i in health.issues] == [("performance", Severity.MEDIUM)]


def test_fragmented_index_is_reported(policy):
    sample = PerformanceSample(avg_query_time_ms=10, cache_hit_ratio=99, connection_pool_usage=10)
    health = evaluate_health(sample, [index(fragmentation=0.4, name="idx_frag")], policy)
    [issue] = health.issues
    assert issue.category == "maintenance"
    assert "idx_frag" in issue.description


def test_storage_headroom(policy):
    assert storage_headroom([], policy) == 100.0
    assert storage_headroom([index(), index(fragmentation=0.9)], policy) == 50.0


@pytest.mark.asyncio
async def test_health_check_uses_latest_sample(store, policy, events):
    monitor = PerformanceMonitor(store, policy, events)
    monitor.record_sample(PerformanceSample(avg_query_time_ms=600, cache_hit_ratio=99, connection_pool_usage=10))
    service = HealthService(monitor, IndexAnalyzer(store, policy), policy)

    health = await service.get_health_check()

    assert health.overall_health == HealthStatus.CRITICAL
    assert store.statements("pg_stat_database") == []


@pytest.mark.asyncio
async def test_health_check_samples_on_demand_without_recording(store, policy, events):
    store.on("pg_stat_database", scalar=99.0)
    monitor = PerformanceMonitor(store, policy, events)
    service = HealthService(monitor, IndexAnalyzer(store, policy), policy)

    health = await service.get_health_check()

    assert health.metrics.cache_hit_ratio == 99.0
    assert monitor.get_history() == []
