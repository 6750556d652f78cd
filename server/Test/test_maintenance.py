from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from App.enums import MaintenanceTaskType
from App.schema.Optimization_schema import PerformanceSample, TableMaintenanceState
from App.services.MaintenanceScheduler import MaintenanceScheduler
from App.services.PerformanceMonitor import PerformanceMonitor
from App.utils.events import MAINTENANCE_EXECUTED

NOW = datetime.now(timezone.utc)


def table_row(name, vacuum_days, analyze_days, size_mb=10.0):
    return {
        "table_name": name,
        "size_mb": size_mb,
        "last_vacuum": NOW - timedelta(days=vacuum_days) if vacuum_days is not None else None,
        "last_analyze": NOW - timedelta(days=analyze_days) if analyze_days is not None else None,
    }


def test_plan_tasks(store, policy, events):
    scheduler = MaintenanceScheduler(store, policy, events)
    state = TableMaintenanceState(table_name="document_chunks", size_mb=12_000,
                                  days_since_vacuum=20, days_since_analyze=4)

    vacuum, analyze = scheduler.plan_tasks(state, True, True, NOW)

    assert vacuum.task_type == MaintenanceTaskType.VACUUM
    assert vacuum.priority == 1
    assert vacuum.estimated_duration_minutes == 12
    assert analyze.task_type == MaintenanceTaskType.ANALYZE
    assert analyze.priority == 2
    assert analyze.estimated_duration_minutes == 2
    assert scheduler.plan_tasks(state, False, False, NOW) == []


@pytest.mark.parametrize("days, priority", [(4, 2), (6.5, 2), (7, 2), (7.5, 1), (30, 1)])
def test_analyze_becomes_urgent_after_a_week(store, policy, events, days, priority):
    scheduler = MaintenanceScheduler(store, policy, events)
    state = TableMaintenanceState(table_name="documents", days_since_vacuum=0, days_since_analyze=days)

    [analyze] = scheduler.plan_tasks(state, True, True, NOW)

    assert analyze.task_type == MaintenanceTaskType.ANALYZE
    assert analyze.priority == priority


@pytest.mark.asyncio
async def test_only_stale_tables_are_maintained(store, policy, events, sink):
    store.on("pg_stat_user_tables", rows=[
        table_row("document_chunks", vacuum_days=10, analyze_days=1),
        table_row("documents", vacuum_days=1, analyze_days=1),
    ])
    scheduler = MaintenanceScheduler(store, policy, events)

    tasks = await scheduler.run_maintenance_routines()

    assert [(t.task_type, t.table_name) for t in tasks] == [(MaintenanceTaskType.VACUUM, "document_chunks")]
    assert tasks[0].success and tasks[0].last_run is not None
    assert [e["sql"] for e in store.statements("VACUUM")] == ["VACUUM document_chunks"]
    assert store.statements("VACUUM")[0]["options"] == {"isolation_level": "AUTOCOMMIT"}
    assert len(sink.events(MAINTENANCE_EXECUTED)) == 1


@pytest.mark.asyncio
async def test_failing_table_does_not_stop_the_others(store, policy, events, sink):
    store.on("pg_stat_user_tables", rows=[
        table_row("document_chunks", vacuum_days=None, analyze_days=None),
        table_row("documents", vacuum_days=None, analyze_days=None),
    ])
    store.on("VACUUM document_chunks", error=OperationalError("VACUUM", {}, Exception("lock timeout")))
    scheduler = MaintenanceScheduler(store, policy, events)

    tasks = await scheduler.run_maintenance_routines(run_analyze=False)

    assert [(t.table_name, t.success) for t in tasks] == [("document_chunks", False), ("documents", True)]
    assert tasks[0].error
    assert [e.success for e in sink.events(MAINTENANCE_EXECUTED)] == [False, True]


@pytest.mark.asyncio
async def test_cleanup_prunes_monitor_history(store, policy, events):
    store.on("pg_stat_user_tables", rows=[])
    monitor = PerformanceMonitor(store, policy, events)
    monitor.record_sample(PerformanceSample(timestamp=NOW - timedelta(days=45), cache_hit_ratio=99))
    monitor.record_sample(PerformanceSample(cache_hit_ratio=99))
    scheduler = MaintenanceScheduler(store, policy, events, monitor=monitor)

    await scheduler.run_maintenance_routines()

    assert len(monitor.get_history(hours=24 * 90)) == 1
