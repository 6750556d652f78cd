"""
Optimization Recommender

Turns index metrics and table statistics into a prioritized list of
remediation actions. Recommending is advisory; `RecommendationExecutor` is the
separate, opt-in path that runs auto-eligible statements.
"""

import json
import logging
import re
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import text
from sqlalchemy.ext.asyncio import async_sessionmaker

from App.enums import BatchOperationType, IndexType, Priority, RecommendationType
from App.exceptions import FilterValidationError, OptimizationExecutionError, StoreQueryError
from App.schema.Optimization_schema import (
    ApplyOutcome,
    BatchOperation,
    BatchPlan,
    IndexMetric,
    OptimizationRecommendation,
    QueryPlanAnalysis,
    TableStatistics,
    VectorIndexConfiguration,
)
from App.services.IndexAnalyzer import IndexAnalyzer
from App.utils.events import OPTIMIZATION_ANALYZED, OPTIMIZATION_APPLIED, OPTIMIZATION_BATCHED, EventEmitter
from App.utils.store_calls import guarded_call
from Config.settings import OptimizerPolicy

logger = logging.getLogger(__name__)

_PLAIN_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_$]*$")
_READ_ONLY_QUERY = re.compile(r"^\s*(select|with)\b", re.IGNORECASE)

# Action-type base contribution to the cost/benefit score
ACTION_BASE_SCORES = {
    "rebuild": 10,
    "parameter_tune": 25,
    "hnsw_upgrade": 40,
}


def quote_identifier(name: str) -> str:
    if _PLAIN_IDENTIFIER.match(name):
        return name
    return '"' + name.replace('"', '""') + '"'


def days_since(moment: Optional[datetime], now: datetime) -> float:
    """Age in days; 999 when the event never happened."""
    if moment is None:
        return 999.0
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return max(0.0, (now - moment).total_seconds() / 86400)


def optimal_partition_count(row_count: int, policy: OptimizerPolicy) -> int:
    return max(policy.min_partitions, min(policy.max_partitions, row_count // policy.rows_per_partition))


def calculate_cost_benefit_score(index: IndexMetric, action: str, policy: OptimizerPolicy) -> float:
    score = 0.0

    # Factor in current performance issues
    if index.avg_query_time_ms > policy.latency_budget_ms:
        score += 30
    if index.fragmentation_ratio > policy.fragmentation_threshold:
        score += 20
    if index.hit_ratio < policy.low_index_hit_ratio:
        score += 15

    # Factor in index usage
    if index.scan_count > 1000:
        score += 20
    if index.scan_count > 10000:
        score += 30

    score += ACTION_BASE_SCORES[action]
    return min(100.0, score)


def sort_recommendations(recommendations: Sequence[OptimizationRecommendation]) -> List[OptimizationRecommendation]:
    """High > medium > low, then descending cost/benefit; stable otherwise."""
    return sorted(recommendations, key=lambda r: (-r.priority.weight, -r.cost_benefit_score))


def build_recommendations(
    table_name: str,
    indexes: Sequence[IndexMetric],
    table_stats: TableStatistics,
    current_lists: Optional[Mapping[str, int]] = None,
    config: Optional[VectorIndexConfiguration] = None,
    policy: Optional[OptimizerPolicy] = None,
    now: Optional[datetime] = None,
) -> List[OptimizationRecommendation]:
    """
    Pure recommendation pass over one table.

    Args:
        table_name: Table being tuned
        indexes: Metrics of the vector indexes on that table
        table_stats: Row count, size and maintenance timestamps of the table
        current_lists: IVFFlat `lists` parameter per index name
        config: Desired index configuration (distance function, HNSW params)
        policy: Thresholds; defaults to OptimizerPolicy()
        now: Reference time for staleness and generated index names
    """
    policy = policy or OptimizerPolicy()
    config = config or VectorIndexConfiguration()
    now = now or datetime.now(timezone.utc)
    current_lists = current_lists or {}
    ops = config.distance_function.value
    table = quote_identifier(table_name)
    recommendations: List[OptimizationRecommendation] = []

    # No vector index at all
    if not indexes:
        lists = max(policy.min_partitions, table_stats.row_count // policy.rows_per_partition)
        index_name = quote_identifier(f"idx_{table_name}_embedding_ivfflat")
        recommendations.append(OptimizationRecommendation(
            type=RecommendationType.INDEX_REBUILD,
            priority=Priority.HIGH,
            description=f"No vector indexes found on {table_name} - create an IVFFlat index with lists={lists}",
            estimated_improvement="90%+ query performance improvement",
            implementation_sql=(
                f"CREATE INDEX CONCURRENTLY {index_name} "
                f"ON {table} USING ivfflat (embedding {ops}) WITH (lists = {lists})"
            ),
            rollback_sql=f"DROP INDEX IF EXISTS {index_name}",
            estimated_downtime_minutes=0,
            cost_benefit_score=100,
            target=table_name,
        ))
        return recommendations

    for index in indexes:
        name = quote_identifier(index.index_name)

        if (index.fragmentation_ratio > policy.fragmentation_threshold
                or index.avg_query_time_ms > policy.latency_budget_ms):
            recommendations.append(OptimizationRecommendation(
                type=RecommendationType.INDEX_REBUILD,
                priority=Priority.HIGH if index.avg_query_time_ms > policy.high_latency_ms else Priority.MEDIUM,
                description=(
                    f"Rebuild {index.index_name} - fragmentation: {index.fragmentation_ratio:.2f}, "
                    f"avg query time: {index.avg_query_time_ms:.2f}ms"
                ),
                estimated_improvement=f"{min(50, index.fragmentation_ratio * 100):.0f}% query time reduction",
                implementation_sql=f"REINDEX INDEX CONCURRENTLY {name}",
                estimated_downtime_minutes=0,  # CONCURRENTLY keeps reads online
                cost_benefit_score=calculate_cost_benefit_score(index, "rebuild", policy),
                target=index.index_name,
            ))

        if index.index_type == IndexType.IVFFLAT and table_stats.row_count > 0:
            optimal = optimal_partition_count(table_stats.row_count, policy)
            current = current_lists.get(index.index_name, policy.default_ivf_lists)
            if abs(current - optimal) > optimal * policy.partition_tolerance:
                new_name = quote_identifier(f"{index.index_name[:40]}_optimized_{int(now.timestamp())}")
                restore_name = quote_identifier(f"{index.index_name[:40]}_rollback")
                recommendations.append(OptimizationRecommendation(
                    type=RecommendationType.PARAMETER_TUNE,
                    priority=Priority.MEDIUM,
                    description=f"Optimize IVFFlat lists parameter on {index.index_name}: current={current}, optimal={optimal}",
                    estimated_improvement="10-30% query performance improvement",
                    implementation_sql=(
                        f"CREATE INDEX CONCURRENTLY {new_name} ON {table} "
                        f"USING ivfflat (embedding {ops}) WITH (lists = {optimal}); "
                        f"DROP INDEX CONCURRENTLY {name}; "
                        f"ALTER INDEX {new_name} RENAME TO {name}"
                    ),
                    rollback_sql=(
                        f"CREATE INDEX CONCURRENTLY {restore_name} ON {table} "
                        f"USING ivfflat (embedding {ops}) WITH (lists = {current}); "
                        f"DROP INDEX CONCURRENTLY {name}; "
                        f"ALTER INDEX {restore_name} RENAME TO {name}"
                    ),
                    estimated_downtime_minutes=2,
                    cost_benefit_score=calculate_cost_benefit_score(index, "parameter_tune", policy),
                    target=index.index_name,
                ))

        if (index.index_type == IndexType.IVFFLAT
                and table_stats.row_count > policy.graph_index_min_rows
                and index.avg_query_time_ms > policy.graph_index_latency_ms):
            hnsw_name = quote_identifier(f"{index.index_name[:50]}_hnsw")
            m = config.m or policy.hnsw_m
            ef_construction = config.ef_construction or policy.hnsw_ef_construction
            recommendations.append(OptimizationRecommendation(
                type=RecommendationType.INDEX_REBUILD,
                priority=Priority.MEDIUM,
                description=f"Consider HNSW index for better performance on large dataset ({table_stats.row_count} rows)",
                estimated_improvement="20-40% query performance improvement for large datasets",
                implementation_sql=(
                    f"CREATE INDEX CONCURRENTLY {hnsw_name} ON {table} "
                    f"USING hnsw (embedding {ops}) WITH (m = {m}, ef_construction = {ef_construction})"
                ),
                rollback_sql=f"DROP INDEX IF EXISTS {hnsw_name}",
                estimated_downtime_minutes=0,
                cost_benefit_score=calculate_cost_benefit_score(index, "hnsw_upgrade", policy),
                target=index.index_name,
                requires_review=True,
            ))

    # Staleness is a table property; report it once per table
    stale_tables = {}
    for index in indexes:
        stale_tables.setdefault(index.table_name, index)
    for stale_table, index in stale_tables.items():
        last_vacuum = index.last_vacuum or table_stats.last_vacuum
        last_analyze = index.last_analyze or table_stats.last_analyze
        vacuum_age = days_since(last_vacuum, now)
        analyze_age = days_since(last_analyze, now)
        quoted = quote_identifier(stale_table)

        if vacuum_age > policy.vacuum_stale_days:
            recommendations.append(OptimizationRecommendation(
                type=RecommendationType.MAINTENANCE,
                priority=Priority.LOW,
                description=f"Table {stale_table} needs vacuum ({vacuum_age:.0f} days since last vacuum)",
                estimated_improvement="5-10% query performance improvement",
                implementation_sql=f"VACUUM ANALYZE {quoted}",
                estimated_downtime_minutes=1,
                cost_benefit_score=15,
                target=stale_table,
            ))

        if analyze_age > policy.analyze_stale_days:
            recommendations.append(OptimizationRecommendation(
                type=RecommendationType.MAINTENANCE,
                priority=Priority.MEDIUM,
                description=f"Table {stale_table} needs analyze ({analyze_age:.0f} days since last analyze)",
                estimated_improvement="5-15% query planning improvement",
                implementation_sql=f"ANALYZE {quoted}",
                estimated_downtime_minutes=0,
                cost_benefit_score=20,
                target=stale_table,
            ))

    return sort_recommendations(recommendations)


def analyze_query_plan(query_text: str, plan: Mapping[str, Any], policy: OptimizerPolicy) -> QueryPlanAnalysis:
    """Inspect an EXPLAIN (FORMAT JSON) plan and propose a rewrite when over budget."""
    execution_time = float(plan.get("Execution Time") or 0)
    optimized_query = query_text
    expected_improvement = "No optimization needed"
    explanation = "Query is already optimal"
    recommendation = None

    if execution_time > policy.latency_budget_ms:
        if "Seq Scan" in json.dumps(plan):
            explanation = "Sequential scan detected. Consider adding or rebuilding vector index."
            expected_improvement = "50-90% performance improvement with proper indexing"

        if "<=>" in query_text and not re.search(r"\blimit\b", query_text, re.IGNORECASE):
            optimized_query = f"{query_text.rstrip().rstrip(';')} LIMIT 100"
            explanation = "Added LIMIT to vector search for better performance. Consider using approximate search for large datasets."
            expected_improvement = "30-50% performance improvement"

        if not re.search(r"\bwhere\b", query_text, re.IGNORECASE) and "document_chunks" in query_text:
            explanation = "Consider adding filters (chatbot_id, document_id) to reduce search space."
            expected_improvement = "20-40% performance improvement with proper filtering"

        recommendation = OptimizationRecommendation(
            type=RecommendationType.QUERY_REWRITE,
            priority=Priority.HIGH if execution_time > policy.high_latency_ms else Priority.MEDIUM,
            description=explanation,
            estimated_improvement=expected_improvement,
            implementation_sql=None,
            estimated_downtime_minutes=0,
            cost_benefit_score=min(100.0, 30 + execution_time / policy.latency_budget_ms * 10),
            requires_review=True,
        )

    return QueryPlanAnalysis(
        execution_time_ms=execution_time,
        original_plan=dict(plan),
        optimized_query=optimized_query,
        expected_improvement=expected_improvement,
        explanation=explanation,
        recommendation=recommendation,
    )


def plan_batches(operations: Sequence[BatchOperation], policy: OptimizerPolicy) -> BatchPlan:
    """
    Group operations by type and chunk the writes.

    Inserts and updates are split into `write_batch_size` chunks, each saved
    round trip counting `round_trip_ms`. Searches stay in one batch to run in
    parallel. Groups keep the order in which their type first appears.
    """
    grouped: Dict[BatchOperationType, List[Any]] = {}
    for operation in operations:
        grouped.setdefault(operation.type, []).append(operation.data)

    batches: List[List[Any]] = []
    advice: List[str] = []
    saved_ms = 0.0
    size = policy.write_batch_size

    for op_type, items in grouped.items():
        if op_type == BatchOperationType.SEARCH:
            batches.append(items)
            if len(items) > 1:
                saved_ms += len(items) * policy.parallel_search_saving_ms
                advice.append(f"Running {len(items)} search operations in parallel")
            continue

        chunks = [items[i:i + size] for i in range(0, len(items), size)]
        batches.extend(chunks)
        saved_ms += max(0, len(items) - len(chunks)) * policy.round_trip_ms
        if len(items) > size:
            advice.append(f"Batching {len(items)} {op_type.value} operations into {len(chunks)} batches for better performance")

    if len(operations) > policy.pooling_advice_operations:
        advice.append("Consider implementing connection pooling for large batch operations")
    if BatchOperationType.SEARCH in grouped:
        advice.append("Consider implementing result caching for frequently searched vectors")

    return BatchPlan(optimized_batches=batches, estimated_time_reduction_ms=saved_ms, recommendations=advice)


class OptimizationService:
    """Runs the analyzer against the store and feeds the pure recommender."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        analyzer: IndexAnalyzer,
        policy: Optional[OptimizerPolicy] = None,
        events: Optional[EventEmitter] = None,
        timeout: Optional[float] = 30.0,
    ):
        self.session_factory = session_factory
        self.analyzer = analyzer
        self.policy = policy or analyzer.policy
        self.events = events or EventEmitter()
        self.timeout = timeout

    async def optimize_indexes(
        self,
        table_name: str = "document_chunks",
        config: Optional[VectorIndexConfiguration] = None,
    ) -> List[OptimizationRecommendation]:
        started = time.perf_counter()
        metrics = await self.analyzer.analyze_index_performance()
        table_indexes = [m for m in metrics if m.table_name == table_name]
        table_stats = await self.analyzer.get_table_statistics(table_name)

        current_lists: Dict[str, int] = {}
        for index in table_indexes:
            if index.index_type == IndexType.IVFFLAT:
                current_lists[index.index_name] = await self.analyzer.get_ivf_list_count(index.index_name)

        recommendations = build_recommendations(
            table_name, table_indexes, table_stats, current_lists, config, self.policy
        )

        self.events.emit(
            OPTIMIZATION_ANALYZED,
            duration_ms=(time.perf_counter() - started) * 1000,
            identifiers={"table_name": table_name},
            recommendations_count=len(recommendations),
            high_priority=sum(1 for r in recommendations if r.priority == Priority.HIGH),
            auto_applicable=sum(1 for r in recommendations if r.auto_applicable),
        )
        return recommendations

    def batch_optimization(self, operations: Sequence[BatchOperation]) -> BatchPlan:
        started = time.perf_counter()
        plan = plan_batches(operations, self.policy)
        self.events.emit(
            OPTIMIZATION_BATCHED,
            duration_ms=(time.perf_counter() - started) * 1000,
            total_operations=len(operations),
            optimized_batches=len(plan.optimized_batches),
            estimated_time_reduction_ms=plan.estimated_time_reduction_ms,
        )
        return plan

    async def optimize_query(self, query_text: str, parameters: Optional[Dict[str, Any]] = None) -> QueryPlanAnalysis:
        """
        EXPLAIN ANALYZE a read-only statement and suggest a rewrite.

        Only SELECT / WITH statements are accepted since ANALYZE executes them.
        """
        if not _READ_ONLY_QUERY.match(query_text):
            raise FilterValidationError("Only SELECT statements can be analyzed", field="query")

        async with self.session_factory() as db:
            result = await guarded_call(
                "optimize_query",
                db.execute(text(f"EXPLAIN (FORMAT JSON, ANALYZE, BUFFERS) {query_text}"), parameters or {}),
                self.timeout,
                {"query_length": len(query_text)},
            )
            raw = result.scalar()
            # EXPLAIN ANALYZE ran the statement; never keep its side effects
            await db.rollback()

        if isinstance(raw, str):
            raw = json.loads(raw)
        plan = raw[0] if isinstance(raw, list) and raw else {}
        analysis = analyze_query_plan(query_text, plan, self.policy)
        logger.info(
            "🔍 Query plan analyzed: %.2fms (needs optimization: %s)",
            analysis.execution_time_ms, analysis.recommendation is not None,
        )
        return analysis


class RecommendationExecutor:
    """
    Applies auto-eligible recommendations one at a time.

    Statements run in autocommit mode (CONCURRENTLY cannot run inside a
    transaction block). A failing recommendation is reported in its outcome
    and does not stop the remaining ones.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        events: Optional[EventEmitter] = None,
        timeout: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.events = events or EventEmitter()
        self.timeout = timeout

    @staticmethod
    def split_statements(sql: str) -> List[str]:
        return [part.strip() for part in sql.split(";") if part.strip()]

    async def execute(self, recommendation: OptimizationRecommendation) -> None:
        statements = self.split_statements(recommendation.implementation_sql or "")
        async with self.session_factory() as db:
            conn = await db.connection(execution_options={"isolation_level": "AUTOCOMMIT"})
            for statement in statements:
                try:
                    await guarded_call("apply_recommendation", conn.execute(text(statement)), self.timeout,
                                       {"target": recommendation.target})
                except StoreQueryError as e:
                    raise OptimizationExecutionError(
                        f"Remediation failed: {e.message}",
                        statement=statement,
                        rollback_statement=recommendation.rollback_sql,
                    ) from e

    async def apply(
        self,
        recommendations: Sequence[OptimizationRecommendation],
        dry_run: bool = False,
    ) -> List[ApplyOutcome]:
        outcomes: List[ApplyOutcome] = []
        for recommendation in recommendations:
            if not recommendation.auto_applicable:
                continue
            started = time.perf_counter()
            outcome = ApplyOutcome(
                description=recommendation.description,
                statement=recommendation.implementation_sql,
                success=True,
                dry_run=dry_run,
                rollback_sql=recommendation.rollback_sql,
            )
            if not dry_run:
                try:
                    await self.execute(recommendation)
                except OptimizationExecutionError as e:
                    logger.error("❌ %s (rollback: %s)", e.message, e.rollback_statement or "none")
                    outcome = outcome.model_copy(update={
                        "success": False,
                        "statement": e.statement,
                        "error": e.user_message,
                    })
            self.events.emit(
                OPTIMIZATION_APPLIED,
                success=outcome.success,
                duration_ms=(time.perf_counter() - started) * 1000,
                identifiers={"target": recommendation.target},
                type=recommendation.type.value,
                dry_run=dry_run,
            )
            outcomes.append(outcome)
        return outcomes
