"""
Index Performance Analyzer

Read-only inspection of vector index usage. Combines the store's native
counters (pg_stat_user_indexes / pg_stat_user_tables / pg_stat_statements)
into one IndexMetric per index. Never mutates store state.
"""

import logging
import re
from typing import Any, List, Mapping, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import async_sessionmaker

from App.enums import IndexType
from App.exceptions import StoreQueryError
from App.schema.Optimization_schema import IndexMetric, TableStatistics
from App.utils.store_calls import guarded_call
from Config.settings import OptimizerPolicy

logger = logging.getLogger(__name__)

_LISTS_PATTERN = re.compile(r"lists\s*=\s*'?(\d+)'?", re.IGNORECASE)

INDEX_STATS_SQL = """
    SELECT
        s.indexrelname AS index_name,
        s.relname AS table_name,
        pg_get_indexdef(s.indexrelid) AS index_def,
        pg_relation_size(s.indexrelid) / 1024.0 / 1024.0 AS size_mb,
        COALESCE(s.idx_scan, 0) AS scan_count,
        COALESCE(s.idx_tup_read, 0) AS tuple_read,
        COALESCE(s.idx_tup_fetch, 0) AS tuple_fetch,
        GREATEST(t.last_vacuum, t.last_autovacuum) AS last_vacuum,
        GREATEST(t.last_analyze, t.last_autoanalyze) AS last_analyze,
        COALESCE(t.n_tup_ins + t.n_tup_upd + t.n_tup_del, 0) AS total_modifications
    FROM pg_stat_user_indexes s
    LEFT JOIN pg_stat_user_tables t ON t.relid = s.relid
    WHERE s.indexrelname LIKE '%embedding%'
       OR s.indexrelname LIKE '%vector%'
       OR pg_get_indexdef(s.indexrelid) ~* 'using (ivfflat|hnsw)'
    ORDER BY s.idx_scan DESC NULLS LAST, size_mb DESC
"""

VECTOR_QUERY_TIME_SQL = """
    SELECT COALESCE(AVG(mean_exec_time), 0) AS avg_time_ms
    FROM pg_stat_statements
    WHERE query LIKE '%<=>%'
"""

TABLE_STATS_SQL = """
    SELECT
        relname AS table_name,
        COALESCE(n_live_tup, 0) AS row_count,
        COALESCE(pg_total_relation_size(relid) / 1024.0 / 1024.0, 0) AS size_mb,
        GREATEST(last_vacuum, last_autovacuum) AS last_vacuum,
        GREATEST(last_analyze, last_autoanalyze) AS last_analyze
    FROM pg_stat_user_tables
    WHERE relname = :table_name
"""

INDEX_DEF_SQL = """
    SELECT pg_get_indexdef(indexrelid) AS index_def
    FROM pg_stat_user_indexes
    WHERE indexrelname = :index_name
"""


def compute_fragmentation_ratio(total_modifications: Any, scan_count: Any) -> float:
    """Row modifications per index scan; 0 when the index was never scanned."""
    scans = int(scan_count or 0)
    modifications = float(total_modifications or 0)
    if scans <= 0 or modifications <= 0:
        return 0.0
    return modifications / scans


def compute_hit_ratio(tuple_read: Any, tuple_fetch: Any, scan_count: Any) -> float:
    """Fetched / read tuples as a percentage; 0 for unscanned indexes."""
    read = int(tuple_read or 0)
    if int(scan_count or 0) <= 0 or read <= 0:
        return 0.0
    return min(100.0, int(tuple_fetch or 0) / read * 100)


def classify_index(index_name: str, index_def: Optional[str] = None) -> IndexType:
    definition = (index_def or "").lower()
    if "using ivfflat" in definition or (not definition and "ivfflat" in index_name.lower()):
        return IndexType.IVFFLAT
    if "using hnsw" in definition or (not definition and "hnsw" in index_name.lower()):
        return IndexType.HNSW
    return IndexType.BTREE


def parse_ivf_lists(index_def: Optional[str]) -> Optional[int]:
    match = _LISTS_PATTERN.search(index_def or "")
    return int(match.group(1)) if match else None


def build_index_metric(row: Mapping[str, Any], avg_query_time_ms: float = 0.0) -> IndexMetric:
    return IndexMetric(
        index_name=row["index_name"],
        index_type=classify_index(row["index_name"], row.get("index_def")),
        table_name=row["table_name"],
        size_mb=float(row.get("size_mb") or 0),
        scan_count=int(row.get("scan_count") or 0),
        tuple_read=int(row.get("tuple_read") or 0),
        tuple_fetch=int(row.get("tuple_fetch") or 0),
        hit_ratio=compute_hit_ratio(row.get("tuple_read"), row.get("tuple_fetch"), row.get("scan_count")),
        avg_query_time_ms=float(avg_query_time_ms or 0),
        last_vacuum=row.get("last_vacuum"),
        last_analyze=row.get("last_analyze"),
        fragmentation_ratio=compute_fragmentation_ratio(row.get("total_modifications"), row.get("scan_count")),
    )


class IndexAnalyzer:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        policy: Optional[OptimizerPolicy] = None,
        timeout: Optional[float] = 10.0,
    ):
        self.session_factory = session_factory
        self.policy = policy or OptimizerPolicy()
        self.timeout = timeout

    async def _fetch(self, operation: str, sql: str, params: Optional[dict] = None) -> List[Mapping[str, Any]]:
        async with self.session_factory() as db:
            result = await guarded_call(operation, db.execute(text(sql), params or {}), self.timeout)
            return list(result.mappings().all())

    async def average_vector_query_time(self) -> float:
        """Mean execution time of distance queries, 0 when pg_stat_statements is unavailable."""
        try:
            rows = await self._fetch("vector_query_time", VECTOR_QUERY_TIME_SQL)
        except StoreQueryError as e:
            logger.warning("⚠️  pg_stat_statements unavailable, query time reported as 0: %s", e.message)
            return 0.0
        return float(rows[0]["avg_time_ms"] or 0) if rows else 0.0

    async def analyze_index_performance(self) -> List[IndexMetric]:
        rows = await self._fetch("analyze_index_performance", INDEX_STATS_SQL)
        avg_time = await self.average_vector_query_time() if rows else 0.0
        metrics = [build_index_metric(row, avg_time) for row in rows]
        logger.info("🔍 Vector index performance analyzed: %d indexes", len(metrics))
        return metrics

    async def get_table_statistics(self, table_name: str) -> TableStatistics:
        rows = await self._fetch("table_statistics", TABLE_STATS_SQL, {"table_name": table_name})
        if not rows:
            return TableStatistics(table_name=table_name)
        row = rows[0]
        return TableStatistics(
            table_name=table_name,
            row_count=int(row.get("row_count") or 0),
            size_mb=float(row.get("size_mb") or 0),
            last_vacuum=row.get("last_vacuum"),
            last_analyze=row.get("last_analyze"),
        )

    async def get_ivf_list_count(self, index_name: str) -> int:
        rows = await self._fetch("ivf_list_count", INDEX_DEF_SQL, {"index_name": index_name})
        lists = parse_ivf_lists(rows[0]["index_def"]) if rows else None
        return lists or self.policy.default_ivf_lists
