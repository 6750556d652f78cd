from datetime import datetime, timedelta, timezone

import pytest

from App.enums import IndexType, Priority, RecommendationType
from App.schema.Optimization_schema import IndexMetric, TableStatistics, VectorIndexConfiguration
from App.services.IndexAnalyzer import IndexAnalyzer
from App.services.OptimizationService import (
    OptimizationService,
    build_recommendations,
    calculate_cost_benefit_score,
    optimal_partition_count,
    quote_identifier,
    sort_recommendations,
)
from App.utils.events import OPTIMIZATION_ANALYZED

NOW = datetime(2026, 10, 1, tzinfo=timezone.utc)
RECENT = NOW - timedelta(hours=6)


def metric(**overrides) -> IndexMetric:
    values = dict(
        index_name="idx_chunks_embedding_hnsw",
        index_type=IndexType.HNSW,
        table_name="document_chunks",
        scan_count=500,
        hit_ratio=95.0,
        avg_query_time_ms=50.0,
        fragmentation_ratio=0.05,
        last_vacuum=RECENT,
        last_analyze=RECENT,
    )
    values.update(overrides)
    return IndexMetric(**values)


def stats(rows: int = 5000) -> TableStatistics:
    return TableStatistics(table_name="document_chunks", row_count=rows, last_vacuum=RECENT, last_analyze=RECENT)


def test_table_without_vector_index_gets_single_create_recommendation(policy):
    recs = build_recommendations("document_chunks", [], stats(50_000), policy=policy, now=NOW)

    assert len(recs) == 1
    [rec] = recs
    assert rec.priority == Priority.HIGH
    assert rec.cost_benefit_score == 100
    assert "lists = 50" in rec.implementation_sql
    assert rec.implementation_sql.startswith("CREATE INDEX CONCURRENTLY")
    assert rec.auto_applicable


def test_empty_table_still_gets_one_partition(policy):
    [rec] = build_recommendations("document_chunks", [], stats(0), policy=policy, now=NOW)
    assert "lists = 1" in rec.implementation_sql


def test_fragmented_slow_index_gets_high_priority_online_rebuild(policy):
    index = metric(fragmentation_ratio=0.45, avg_query_time_ms=350.0)

    recs = build_recommendations("document_chunks", [index], stats(), policy=policy, now=NOW)

    [rebuild] = [r for r in recs if r.implementation_sql.startswith("REINDEX")]
    assert rebuild.type == RecommendationType.INDEX_REBUILD
    assert rebuild.priority == Priority.HIGH
    assert rebuild.estimated_downtime_minutes == 0
    assert "CONCURRENTLY" in rebuild.implementation_sql


def test_moderately_slow_index_rebuild_is_medium(policy):
    recs = build_recommendations(
        "document_chunks", [metric(avg_query_time_ms=250.0)], stats(), policy=policy, now=NOW
    )
    assert [r.priority for r in recs] == [Priority.MEDIUM]


def test_healthy_index_yields_nothing(policy):
    assert build_recommendations("document_chunks", [metric()], stats(), policy=policy, now=NOW) == []


def test_ivfflat_lists_far_from_optimal_is_tuned(policy):
    index = metric(index_name="idx_chunks_embedding_ivfflat", index_type=IndexType.IVFFLAT)

    recs = build_recommendations(
        "document_chunks", [index], stats(50_000), {"idx_chunks_embedding_ivfflat": 100}, policy=policy, now=NOW
    )

    [tune] = [r for r in recs if r.type == RecommendationType.PARAMETER_TUNE]
    assert "lists = 50" in tune.implementation_sql
    assert "lists = 100" in tune.rollback_sql
    assert tune.estimated_downtime_minutes == 2
    assert not tune.auto_applicable


def test_ivfflat_lists_within_tolerance_is_left_alone(policy):
    index = metric(index_name="idx_chunks_embedding_ivfflat", index_type=IndexType.IVFFLAT)
    recs = build_recommendations(
        "document_chunks", [index], stats(50_000), {"idx_chunks_embedding_ivfflat": 55}, policy=policy, now=NOW
    )
    assert recs == []


def test_large_slow_ivfflat_table_suggests_hnsw_for_review(policy):
    index = metric(index_name="idx_chunks_embedding_ivfflat", index_type=IndexType.IVFFLAT, avg_query_time_ms=180.0)

    recs = build_recommendations(
        "document_chunks", [index], stats(20_000), {"idx_chunks_embedding_ivfflat": 20},
        config=VectorIndexConfiguration(m=24), policy=policy, now=NOW,
    )

    [hnsw] = [r for r in recs if "USING hnsw" in (r.implementation_sql or "")]
    assert hnsw.requires_review
    assert not hnsw.auto_applicable
    assert "m = 24" in hnsw.implementation_sql
    assert "ef_construction = 64" in hnsw.implementation_sql


def test_staleness_is_reported_once_per_table(policy):
    old = NOW - timedelta(days=10)
    indexes = [
        metric(last_vacuum=old, last_analyze=old),
        metric(index_name="idx_other_embedding", last_vacuum=old, last_analyze=old),
    ]

    recs = build_recommendations("document_chunks", indexes, stats(), policy=policy, now=NOW)

    maintenance = [r for r in recs if r.type == RecommendationType.MAINTENANCE]
    assert sorted(r.implementation_sql for r in maintenance) == ["ANALYZE document_chunks", "VACUUM ANALYZE document_chunks"]
    analyze = next(r for r in maintenance if r.implementation_sql == "ANALYZE document_chunks")
    assert analyze.priority == Priority.MEDIUM and analyze.auto_applicable
    vacuum = next(r for r in maintenance if r.implementation_sql.startswith("VACUUM"))
    assert vacuum.priority == Priority.LOW and not vacuum.auto_applicable


def test_never_maintained_table_is_stale(policy):
    index = metric(last_vacuum=None, last_analyze=None)
    table = TableStatistics(table_name="document_chunks", row_count=100)
    recs = build_recommendations("document_chunks", [index], table, policy=policy, now=NOW)
    assert len([r for r in recs if r.type == RecommendationType.MAINTENANCE]) == 2


def test_recommendations_are_ordered_by_priority_then_score(policy):
    old = NOW - timedelta(days=10)
    indexes = [
        metric(index_name="idx_a_embedding", fragmentation_ratio=0.5, avg_query_time_ms=250.0,
               last_vacuum=old, last_analyze=old),
        metric(index_name="idx_b_embedding", fragmentation_ratio=0.5, avg_query_time_ms=400.0, scan_count=20_000),
    ]

    recs = build_recommendations("document_chunks", indexes, stats(), policy=policy, now=NOW)

    weights = [r.priority.weight for r in recs]
    assert weights == sorted(weights, reverse=True)
    for earlier, later in zip(recs, recs[1:]):
        if earlier.priority == later.priority:
            assert earlier.cost_benefit_score >= later.cost_benefit_score
    assert recs[0].target == "idx_b_embedding"


def test_cost_benefit_score_is_capped(policy):
    busy = metric(avg_query_time_ms=900, fragmentation_ratio=2.0, hit_ratio=10, scan_count=50_000)
    assert calculate_cost_benefit_score(busy, "hnsw_upgrade", policy) == 100
    assert calculate_cost_benefit_score(metric(), "rebuild", policy) == 10


def test_sort_recommendations_is_stable_for_equal_keys(policy):
    old = NOW - timedelta(days=10)
    recs = build_recommendations("document_chunks", [metric(last_vacuum=old, last_analyze=RECENT)], stats(),
                                 policy=policy, now=NOW)
    assert sort_recommendations(recs) == recs


def test_partition_count_and_identifier_quoting(policy):
    assert optimal_partition_count(50_000, policy) == 50
    assert optimal_partition_count(10, policy) == 1
    assert optimal_partition_count(10**9, policy) == policy.max_partitions
    assert quote_identifier("document_chunks") == "document_chunks"
    assert quote_identifier('Weird"Name') == '"Weird""Name"'


@pytest.mark.asyncio
async def test_optimize_indexes_reads_store_and_emits_event(store, policy, events, sink):
    store.on("pg_stat_user_indexes", rows=[])
    store.on("WHERE relname = :table_name", rows=[{"row_count": 50_000, "size_mb": 80.0,
                                                   "last_vacuum": None, "last_analyze": None}])
    service = OptimizationService(store, IndexAnalyzer(store, policy), policy, events)

    [rec] = await service.optimize_indexes("document_chunks")

    assert "lists = 50" in rec.implementation_sql
    [event] = sink.events(OPTIMIZATION_ANALYZED)
    assert event.metadata["recommendations_count"] == 1
    assert event.identifiers == {"table_name": "document_chunks"}
