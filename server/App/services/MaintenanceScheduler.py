"""
Maintenance Scheduler

Housekeeping driven by staleness thresholds: VACUUM (compaction) when a table
has not been vacuumed for `vacuum_stale_days`, ANALYZE (statistics refresh)
when statistics are older than `analyze_stale_days`. A failure on one table is
recorded and logged; the remaining tables are still processed.
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

from sqlalchemy import bindparam, text
from sqlalchemy.ext.asyncio import async_sessionmaker

from App.enums import MaintenanceTaskType
from App.exceptions import StoreQueryError
from App.schema.Optimization_schema import MaintenanceTask, TableMaintenanceState
from App.services.OptimizationService import days_since, quote_identifier
from App.utils.events import MAINTENANCE_EXECUTED, EventEmitter
from App.utils.store_calls import guarded_call
from Config.settings import OptimizerPolicy

logger = logging.getLogger(__name__)

DEFAULT_TABLES = ("document_chunks", "documents", "products", "embedding_cache")

TABLE_STATE_SQL = """
    SELECT
        relname AS table_name,
        COALESCE(pg_total_relation_size(relid) / 1024.0 / 1024.0, 0) AS size_mb,
        GREATEST(last_vacuum, last_autovacuum) AS last_vacuum,
        GREATEST(last_analyze, last_autoanalyze) AS last_analyze
    FROM pg_stat_user_tables
    WHERE relname IN :tables
    ORDER BY size_mb DESC
"""


class MaintenanceScheduler:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        policy: Optional[OptimizerPolicy] = None,
        events: Optional[EventEmitter] = None,
        monitor=None,
        tables: Iterable[str] = DEFAULT_TABLES,
        timeout: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.policy = policy or OptimizerPolicy()
        self.events = events or EventEmitter()
        self.monitor = monitor
        self.tables = tuple(tables)
        self.timeout = timeout

    async def get_table_states(self, now: Optional[datetime] = None) -> List[TableMaintenanceState]:
        now = now or datetime.now(timezone.utc)
        query = text(TABLE_STATE_SQL).bindparams(bindparam("tables", expanding=True))
        async with self.session_factory() as db:
            result = await guarded_call(
                "maintenance_table_states", db.execute(query, {"tables": list(self.tables)}), self.timeout
            )
            rows = result.mappings().all()
        return [
            TableMaintenanceState(
                table_name=row["table_name"],
                size_mb=float(row.get("size_mb") or 0),
                last_vacuum=row.get("last_vacuum"),
                last_analyze=row.get("last_analyze"),
                days_since_vacuum=days_since(row.get("last_vacuum"), now),
                days_since_analyze=days_since(row.get("last_analyze"), now),
            )
            for row in rows
        ]

    async def _execute(self, statement: str, table_name: str) -> None:
        # VACUUM cannot run inside a transaction block
        async with self.session_factory() as db:
            conn = await db.connection(execution_options={"isolation_level": "AUTOCOMMIT"})
            await guarded_call("maintenance", conn.execute(text(statement)), self.timeout, {"table": table_name})

    async def _run_task(self, task: MaintenanceTask, statement: str) -> MaintenanceTask:
        started = time.perf_counter()
        try:
            await self._execute(statement, task.table_name)
            task = task.model_copy(update={"last_run": datetime.now(timezone.utc)})
            logger.info("✅ %s completed for %s", task.task_type.value, task.table_name)
        except StoreQueryError as e:
            task = task.model_copy(update={"success": False, "error": e.message})
            logger.error("❌ %s failed for %s: %s", task.task_type.value, task.table_name, e.message)
        self.events.emit(
            MAINTENANCE_EXECUTED,
            success=task.success,
            duration_ms=(time.perf_counter() - started) * 1000,
            identifiers={"table_name": task.table_name, "task_id": task.task_id},
            task_type=task.task_type.value,
        )
        return task

    def plan_tasks(self, state: TableMaintenanceState, run_vacuum: bool, run_analyze: bool,
                   now: datetime) -> List[MaintenanceTask]:
        """Tasks due for one table, without executing anything."""
        policy = self.policy
        stamp = int(now.timestamp() * 1000)
        tasks = []
        if run_vacuum and state.days_since_vacuum > policy.vacuum_stale_days:
            tasks.append(MaintenanceTask(
                task_id=f"vacuum_{state.table_name}_{stamp}",
                task_type=MaintenanceTaskType.VACUUM,
                table_name=state.table_name,
                estimated_duration_minutes=max(1, int(state.size_mb // 1000)),
                last_run=state.last_vacuum,
                next_scheduled=now + timedelta(days=policy.vacuum_stale_days),
                priority=1 if state.days_since_vacuum > policy.vacuum_urgent_days else 2,
            ))
        if run_analyze and state.days_since_analyze > policy.analyze_stale_days:
            tasks.append(MaintenanceTask(
                task_id=f"analyze_{state.table_name}_{stamp}",
                task_type=MaintenanceTaskType.ANALYZE,
                table_name=state.table_name,
                estimated_duration_minutes=max(1, int(state.size_mb // 5000)),
                last_run=state.last_analyze,
                next_scheduled=now + timedelta(days=policy.analyze_stale_days),
                priority=1 if state.days_since_analyze > policy.analyze_urgent_days else 2,
            ))
        return tasks

    async def run_maintenance_routines(
        self,
        run_vacuum: bool = True,
        run_analyze: bool = True,
        cleanup: bool = True,
    ) -> List[MaintenanceTask]:
        now = datetime.now(timezone.utc)
        states = await self.get_table_states(now)
        completed: List[MaintenanceTask] = []

        for state in states:
            table = quote_identifier(state.table_name)
            for task in self.plan_tasks(state, run_vacuum, run_analyze, now):
                statement = f"VACUUM {table}" if task.task_type == MaintenanceTaskType.VACUUM else f"ANALYZE {table}"
                completed.append(await self._run_task(task, statement))

        if cleanup and self.monitor is not None:
            removed = self.monitor.prune_history(timedelta(days=self.policy.history_cleanup_days))
            if removed:
                logger.info("🧹 Removed %d performance samples older than %s days", removed,
                            self.policy.history_cleanup_days)

        logger.info("🏁 Maintenance routines completed: %d tasks across %d tables", len(completed), len(states))
        return completed
