"""
Performance Monitor

Background sampling loop: every `interval_seconds` it reads live latency,
cache and connection statistics from the store, appends a PerformanceSample to
a bounded history and raises one structured alert per sample that breaches the
thresholds. The loop is an explicit asyncio task so stopping is deterministic.
"""

import asyncio
import logging
import time
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Deque, List, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import async_sessionmaker

from App.exceptions import StoreQueryError
from App.schema.Optimization_schema import PerformanceAlert, PerformanceSample
from App.utils.events import MONITOR_SAMPLE, PERFORMANCE_ALERT, EventEmitter
from App.utils.store_calls import guarded_call
from Config.settings import OptimizerPolicy

logger = logging.getLogger(__name__)

AVG_QUERY_TIME_SQL = """
    SELECT COALESCE(AVG(mean_exec_time), 0) AS avg_time_ms
    FROM pg_stat_statements
    WHERE query LIKE '%<=>%' OR query LIKE '%vector%'
"""

CACHE_HIT_SQL = """
    SELECT
        CASE WHEN (blks_hit + blks_read) > 0
        THEN (blks_hit * 100.0 / (blks_hit + blks_read))
        ELSE 0 END AS cache_hit_ratio
    FROM pg_stat_database
    WHERE datname = current_database()
"""

CONNECTIONS_SQL = """
    SELECT
        count(*) AS active_connections,
        count(*) * 100.0 / GREATEST(current_setting('max_connections')::int, 1) AS pool_usage
    FROM pg_stat_activity
    WHERE state = 'active'
"""

DATABASE_SIZE_SQL = """
    SELECT COALESCE(pg_database_size(current_database()) / 1024.0 / 1024.0, 0) AS db_size_mb
"""


def evaluate_alerts(sample: PerformanceSample, policy: OptimizerPolicy) -> List[PerformanceAlert]:
    alerts = []
    if sample.avg_query_time_ms > policy.latency_budget_ms:
        alerts.append(PerformanceAlert(
            metric="avg_query_time_ms",
            value=sample.avg_query_time_ms,
            threshold=policy.latency_budget_ms,
            message=f"High average query time: {sample.avg_query_time_ms:.2f}ms",
        ))
    if sample.cache_hit_ratio < policy.cache_hit_floor:
        alerts.append(PerformanceAlert(
            metric="cache_hit_ratio",
            value=sample.cache_hit_ratio,
            threshold=policy.cache_hit_floor,
            message=f"Low cache hit ratio: {sample.cache_hit_ratio:.2f}%",
        ))
    if sample.connection_pool_usage > policy.pool_usage_ceiling:
        alerts.append(PerformanceAlert(
            metric="connection_pool_usage",
            value=sample.connection_pool_usage,
            threshold=policy.pool_usage_ceiling,
            message=f"High connection pool usage: {sample.connection_pool_usage:.2f}%",
        ))
    return alerts


class PerformanceMonitor:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        policy: Optional[OptimizerPolicy] = None,
        events: Optional[EventEmitter] = None,
        timeout: Optional[float] = 10.0,
    ):
        self.session_factory = session_factory
        self.policy = policy or OptimizerPolicy()
        self.events = events or EventEmitter()
        self.timeout = timeout
        self._history: Deque[PerformanceSample] = deque(maxlen=self.policy.history_capacity)
        self._task: Optional[asyncio.Task] = None
        self.interval_seconds: Optional[float] = None

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    async def collect_performance_metrics(self) -> PerformanceSample:
        async with self.session_factory() as db:
            cache = await guarded_call("monitor.cache_hit", db.execute(text(CACHE_HIT_SQL)), self.timeout)
            cache_hit_ratio = float(cache.scalar() or 0)
            conns = await guarded_call("monitor.connections", db.execute(text(CONNECTIONS_SQL)), self.timeout)
            conn_row = conns.mappings().first() or {}
            size = await guarded_call("monitor.db_size", db.execute(text(DATABASE_SIZE_SQL)), self.timeout)
            db_size_mb = float(size.scalar() or 0)

        avg_time = 0.0
        try:
            async with self.session_factory() as db:
                latency = await guarded_call("monitor.query_time", db.execute(text(AVG_QUERY_TIME_SQL)), self.timeout)
                avg_time = float(latency.scalar() or 0)
        except StoreQueryError as e:
            logger.warning("⚠️  pg_stat_statements unavailable, query time reported as 0: %s", e.message)

        return PerformanceSample(
            avg_query_time_ms=avg_time,
            p95_query_time_ms=avg_time * 1.5,  # Approximation
            p99_query_time_ms=avg_time * 2.0,  # Approximation
            cache_hit_ratio=cache_hit_ratio,
            connection_pool_usage=float(conn_row.get("pool_usage") or 0),
            memory_usage_mb=db_size_mb,
            active_connections=int(conn_row.get("active_connections") or 0),
        )

    def record_sample(self, sample: PerformanceSample) -> List[PerformanceAlert]:
        """Append to history (oldest evicted past capacity), then evaluate thresholds."""
        self._history.append(sample)
        alerts = evaluate_alerts(sample, self.policy)
        if alerts:
            logger.warning("⚠️  Performance alerts: %s", ", ".join(a.message for a in alerts))
            self.events.emit(
                PERFORMANCE_ALERT,
                success=True,
                identifiers={"sample_timestamp": sample.timestamp.isoformat()},
                alerts=[a.model_dump() for a in alerts],
            )
        return alerts

    async def run_once(self) -> PerformanceSample:
        started = time.perf_counter()
        sample = await self.collect_performance_metrics()
        self.record_sample(sample)
        self.events.emit(
            MONITOR_SAMPLE,
            duration_ms=(time.perf_counter() - started) * 1000,
            avg_query_time_ms=sample.avg_query_time_ms,
            cache_hit_ratio=sample.cache_hit_ratio,
            active_connections=sample.active_connections,
        )
        return sample

    # ------------------------------------------------------------------
    # Loop control
    # ------------------------------------------------------------------

    async def _loop(self, interval_seconds: float) -> None:
        while True:
            try:
                await self.run_once()
            except Exception:
                logger.exception("❌ Performance monitoring cycle failed")
            await asyncio.sleep(interval_seconds)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self, interval_seconds: float = 300.0) -> None:
        """Start (or restart with a new interval) the sampling loop."""
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        await self.stop()
        self.interval_seconds = interval_seconds
        self._task = asyncio.get_running_loop().create_task(
            self._loop(interval_seconds), name="performance-monitor"
        )
        logger.info("🚀 Performance monitoring started (every %ss)", interval_seconds)

    async def stop(self) -> None:
        """Cancel the loop and wait for it to exit. Safe to call repeatedly."""
        task, self._task = self._task, None
        if task is None:
            return
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("🛑 Performance monitoring stopped")

    # ------------------------------------------------------------------
    # History (snapshot reads only)
    # ------------------------------------------------------------------

    def latest_sample(self) -> Optional[PerformanceSample]:
        return self._history[-1] if self._history else None

    def get_history(self, hours: float = 24) -> List[PerformanceSample]:
        cutoff = datetime.now(timezone.utc) - timedelta(hours=hours)
        return [s for s in list(self._history) if s.timestamp >= cutoff]

    def prune_history(self, max_age: timedelta) -> int:
        cutoff = datetime.now(timezone.utc) - max_age
        kept = [s for s in self._history if s.timestamp >= cutoff]
        removed = len(self._history) - len(kept)
        self._history = deque(kept, maxlen=self.policy.history_capacity)
        return removed
