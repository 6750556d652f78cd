"""
Optimization API Router

Provides endpoints for:
- Index usage and fragmentation metrics
- Ranked optimization recommendations for a table
- Applying auto-applicable recommendations (dry run by default)
- EXPLAIN-based query plan analysis
- Batch planning for embedding operations
- On-demand maintenance routines
"""

from typing import List

from fastapi import APIRouter, Request, status

from App.api.errors import to_http_exception
from App.exceptions import VectorEngineError
from App.schema.Optimization_schema import (
    ApplyOutcome,
    ApplyRequest,
    BatchOptimizationRequest,
    BatchPlan,
    IndexMetric,
    MaintenanceRequest,
    MaintenanceTask,
    OptimizationRecommendation,
    OptimizeRequest,
    QueryPlanAnalysis,
    QueryPlanRequest,
)

router = APIRouter(tags=["Index Optimization"])


@router.get(
    "/indexes",
    response_model=List[IndexMetric],
    status_code=status.HTTP_200_OK,
    summary="Index Metrics",
)
async def index_metrics(request: Request) -> List[IndexMetric]:
    try:
        return await request.app.state.engine.analyze_index_performance()
    except VectorEngineError as e:
        raise to_http_exception(e)


@router.post(
    "/recommendations",
    response_model=List[OptimizationRecommendation],
    status_code=status.HTTP_200_OK,
    summary="Optimization Recommendations",
    description="Recommendations ordered by priority, then cost/benefit score",
)
async def recommendations(body: OptimizeRequest, request: Request) -> List[OptimizationRecommendation]:
    try:
        return await request.app.state.engine.optimize_indexes(body.table_name, body.config)
    except VectorEngineError as e:
        raise to_http_exception(e)


@router.post(
    "/apply",
    response_model=List[ApplyOutcome],
    status_code=status.HTTP_200_OK,
    summary="Apply Recommendations",
    description="Run every zero-downtime recommendation for the table; dry_run only reports statements",
)
async def apply_recommendations(body: ApplyRequest, request: Request) -> List[ApplyOutcome]:
    engine = request.app.state.engine
    try:
        recommendations = await engine.optimize_indexes(body.table_name, body.config)
        return await engine.apply_recommendations(recommendations, dry_run=body.dry_run)
    except VectorEngineError as e:
        raise to_http_exception(e)


@router.post(
    "/query-plan",
    response_model=QueryPlanAnalysis,
    status_code=status.HTTP_200_OK,
    summary="Query Plan Analysis",
)
async def query_plan(body: QueryPlanRequest, request: Request) -> QueryPlanAnalysis:
    try:
        return await request.app.state.engine.optimize_query(body.query, body.parameters)
    except VectorEngineError as e:
        raise to_http_exception(e)


@router.post(
    "/batch",
    response_model=BatchPlan,
    status_code=status.HTTP_200_OK,
    summary="Batch Planning",
    description="Group insert/update/search operations into batches and estimate the time saved",
)
async def batch_optimization(body: BatchOptimizationRequest, request: Request) -> BatchPlan:
    return request.app.state.engine.batch_optimization(body.operations)


@router.post(
    "/maintenance",
    response_model=List[MaintenanceTask],
    status_code=status.HTTP_200_OK,
    summary="Run Maintenance",
)
async def run_maintenance(body: MaintenanceRequest, request: Request) -> List[MaintenanceTask]:
    try:
        return await request.app.state.engine.run_maintenance(body.run_vacuum, body.run_analyze, body.cleanup)
    except VectorEngineError as e:
        raise to_http_exception(e)
